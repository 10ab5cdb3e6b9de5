import os

import pytest

os.environ["FLASK_ENV"] = "local"
os.environ['AWS_ACCESS_KEY'] = ''
os.environ['AWS_SECRET_KEY'] = ''
os.environ['AWS_REGION_NAME'] = "us-east-1"
os.environ['AWS_DEFAULT_REGION'] = "us-east-1"
os.environ['FLASK_SECRET_KEY'] = ''
os.environ['ROLE_SESSION_NAME'] = 'certvalidator-test'

from certvalidator.certificates import WorkflowConfig
from certvalidator.helpers import Backoff, Poller
from certvalidator.models import (
    CertificateHandle, CertificateRequest, DomainValidationOption, ResourceRecord
)

ARN = 'arn:aws:acm:us-east-1:123456789012:certificate/8a1f6a8e-0b6c-4c1e-9a32-1c2f1a0c9f3d'
ROLE_ARN = 'arn:aws:iam::111111111111:role/DNSDelegationRole'


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, now=0.0):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def poller(clock):
    return Poller(sleep=clock.sleep, jitter=lambda: 0.5, clock=clock)


@pytest.fixture
def config():
    return WorkflowConfig(
        validation_options=Backoff(10, 0.15, 0.05),
        certificate_validated=Backoff(19, 30, 1, exponential=False),
        certificate_unused=Backoff(10, 30, 1, exponential=False),
        record_propagation=Backoff(10, 30, 1, exponential=False),
    )


@pytest.fixture
def cert_request():
    return CertificateRequest(
        request_id='f4e1c0a2-6f3b-4d3b-9f0e-1a2b3c4d5e6f',
        application_name='app',
        environment_name='env',
        domain_name='example.com',
        subject_alternative_names=(),
        environment_hosted_zone_id='ZENV',
        delegation_role_arn=ROLE_ARN,
        region='us-east-1',
    )


def make_option(domain, populated=True, status='PENDING_VALIDATION'):
    record = None
    if populated:
        label = domain.split('.')[0].replace('*', 'wild')
        record = ResourceRecord(f'_{label}.{domain}.', 'CNAME', f'_{label}.acm-validations.aws.')
    return DomainValidationOption(domain, record, status)


def make_handle(options=(), in_use=(), status='PENDING_VALIDATION'):
    return CertificateHandle(ARN, frozenset(in_use), tuple(options), status)
