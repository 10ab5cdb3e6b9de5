from dataclasses import replace
import hashlib
import logging
import threading
import time
from unittest.mock import call, MagicMock

import pytest

from conftest import ARN, make_handle, make_option
from certvalidator.authority import CertificateAuthorityBase
from certvalidator.certificates import CertificateWorkflow, is_certificate_arn
from certvalidator.dns import DELETE, UPSERT, DNSBase
from certvalidator.errors import (
    CertificateStillInUse, CertificateValidationTimeout, UpstreamError, ValidationOptionsTimeout
)
from certvalidator.models import DomainValidationOption, ResourceRecord
from certvalidator.zones import ZoneResolver

logger = logging.getLogger(__name__)


@pytest.fixture
def dns():
    dns = MagicMock(spec=DNSBase)
    dns.find_hosted_zone.side_effect = lambda d: {'app.example.com': 'ZAPP'}.get(d)
    dns.change_record.return_value = '/change/C1'
    dns.is_change_insync.return_value = True
    return dns


@pytest.fixture
def delegated():
    delegated = MagicMock(spec=DNSBase)
    delegated.find_hosted_zone.side_effect = lambda d: {'example.com': 'ZROOT'}.get(d)
    delegated.change_record.return_value = '/change/C2'
    delegated.is_change_insync.return_value = True
    return delegated


@pytest.fixture
def authority():
    authority = MagicMock(spec=CertificateAuthorityBase)
    authority.request_certificate.return_value = ARN
    return authority


@pytest.fixture
def build(authority, dns, delegated, poller, config):
    def _build(request):
        resolver = ZoneResolver(request, dns, delegated_dns_factory=lambda role: delegated)
        return CertificateWorkflow(request, authority, resolver, poller, config)
    return _build


@pytest.fixture
def workflow(build, cert_request):
    return build(cert_request)


@pytest.fixture
def multi_zone_request(cert_request):
    return replace(cert_request, subject_alternative_names=('app.example.com', 'example.com', 'other.example.net'))


@pytest.mark.parametrize("value,expected", [
    (ARN, True),
    ('arn:aws-us-gov:acm:us-gov-west-1:123456789012:certificate/abc-123', True),
    ('RESOURCE_NOT_CREATED', False),
    ('2024/01/01/[$LATEST]abcdef', False),
    ('arn:aws:iam::123456789012:role/Foo', False),
    ('', False),
    (None, False),
])
def test_is_certificate_arn(value, expected):
    assert is_certificate_arn(value) is expected

def test_create_single_domain_scenario(workflow, authority, dns, delegated):
    record = ResourceRecord('_abc.env.app.example.com.', 'CNAME', '_xyz.acm-validations.aws.')
    option = DomainValidationOption('env.app.example.com', record, 'PENDING_VALIDATION')
    authority.describe_certificate.side_effect = [
        make_handle([DomainValidationOption('env.app.example.com')]),
        make_handle([option]),
        make_handle([replace(option, validation_status='SUCCESS')], status='ISSUED'),
    ]

    assert workflow.create() == ARN

    authority.request_certificate.assert_called_once_with('env.app.example.com', [], workflow.request.idempotency_token)
    dns.change_record.assert_called_once_with('ZENV', UPSERT, record, 60)
    delegated.change_record.assert_not_called()

def test_create_upserts_once_per_matched_zone(build, multi_zone_request, authority, dns, delegated):
    options = [make_option(d) for d in multi_zone_request.requested_domains]
    authority.describe_certificate.side_effect = [
        make_handle(options),
        make_handle([replace(o, validation_status='SUCCESS') for o in options]),
    ]

    build(multi_zone_request).create()

    by_domain = {o.domain_name: o.resource_record for o in options}
    assert sorted(dns.change_record.call_args_list, key=str) == sorted([
        call('ZENV', UPSERT, by_domain['env.app.example.com'], 60),
        call('ZAPP', UPSERT, by_domain['app.example.com'], 60),
    ], key=str)
    delegated.change_record.assert_called_once_with('ZROOT', UPSERT, by_domain['example.com'], 60)
    written = [c.args[2] for c in dns.change_record.call_args_list + delegated.change_record.call_args_list]
    assert by_domain['other.example.net'] not in written

def test_create_waits_for_options_with_exponential_backoff(workflow, authority, clock):
    pending = make_handle([make_option('env.app.example.com', populated=False)])
    ready = make_handle([make_option('env.app.example.com')])
    issued = make_handle([make_option('env.app.example.com', status='SUCCESS')], status='ISSUED')
    authority.describe_certificate.side_effect = [pending, pending, pending, ready, issued]

    workflow.create()

    assert clock.sleeps == pytest.approx([0.175, 0.35, 0.7])

def test_same_request_id_uses_same_idempotency_token(build, cert_request, authority):
    authority.describe_certificate.return_value = make_handle(
        [make_option('env.app.example.com', status='SUCCESS')], status='ISSUED'
    )

    build(cert_request).create()
    build(cert_request).create()

    tokens = [c.args[2] for c in authority.request_certificate.call_args_list]
    assert tokens == [hashlib.sha256(cert_request.request_id.encode()).hexdigest()[:32]] * 2

def test_create_options_never_populated(workflow, authority, dns):
    authority.describe_certificate.return_value = make_handle([make_option('env.app.example.com', populated=False)])

    with pytest.raises(ValidationOptionsTimeout,
                       match="DescribeCertificate did not contain DomainValidationOptions after 10 tries."):
        workflow.create()

    assert authority.describe_certificate.call_count == 10
    dns.change_record.assert_not_called()

def test_create_options_missing_for_requested_san(build, cert_request, authority):
    request = replace(cert_request, subject_alternative_names=('app.example.com',))
    authority.describe_certificate.return_value = make_handle([make_option('env.app.example.com')])

    with pytest.raises(ValidationOptionsTimeout):
        build(request).create()

def test_create_validation_times_out(workflow, authority, clock):
    authority.describe_certificate.return_value = make_handle([make_option('env.app.example.com')])

    with pytest.raises(CertificateValidationTimeout):
        workflow.create()

    # one describe for the options, then the full validated budget
    assert authority.describe_certificate.call_count == 1 + 19
    assert clock.sleeps.count(30.5) == 18

def test_create_validation_failed(workflow, authority):
    authority.describe_certificate.side_effect = [
        make_handle([make_option('env.app.example.com')]),
        make_handle([make_option('env.app.example.com', status='FAILED')], status='FAILED'),
    ]

    with pytest.raises(UpstreamError, match="failed validation"):
        workflow.create()

def test_create_record_failure_aborts(workflow, authority, dns):
    authority.describe_certificate.return_value = make_handle([make_option('env.app.example.com')])
    dns.change_record.side_effect = DNSBase.DNSError("AccessDenied")

    with pytest.raises(DNSBase.DNSError):
        workflow.create()

    # never reached the validated wait
    assert authority.describe_certificate.call_count == 1

def test_record_failure_joins_running_zone_changes(build, multi_zone_request, authority, dns, delegated):
    options = [make_option(d) for d in multi_zone_request.requested_domains]
    authority.describe_certificate.return_value = make_handle(options)
    finished = []
    lock = threading.Lock()
    started = threading.Semaphore(0)

    def change(zone_id, action, record, ttl):
        if zone_id == 'ZENV':
            for _ in range(2):
                started.acquire(timeout=5)
            raise DNSBase.DNSError("AccessDenied")
        started.release()
        time.sleep(0.2)
        with lock:
            finished.append(zone_id)
        return '/change/C1'
    dns.change_record.side_effect = change
    delegated.change_record.side_effect = change

    with pytest.raises(DNSBase.DNSError):
        build(multi_zone_request).create()

    # siblings already running have completed by the time the error surfaces
    assert sorted(finished) == ['ZAPP', 'ZROOT']

def test_delete_skips_non_arn(workflow, authority, dns, delegated):
    workflow.delete('RESOURCE_NOT_CREATED')

    assert authority.method_calls == []
    assert dns.method_calls == []
    assert delegated.method_calls == []

def test_delete_waits_until_unused(workflow, authority, dns, clock):
    option = make_option('env.app.example.com')
    authority.describe_certificate.side_effect = [
        make_handle([option], in_use=['arn:aws:elasticloadbalancing:listener/1']),
        make_handle([option]),
    ]

    workflow.delete(ARN)

    dns.change_record.assert_called_once_with('ZENV', DELETE, option.resource_record, 60)
    authority.delete_certificate.assert_called_once_with(ARN)
    assert clock.sleeps == [30.5]

def test_delete_tolerates_absent_records(build, multi_zone_request, authority, dns, delegated, caplog):
    caplog.set_level(logging.WARNING)
    options = [make_option(d) for d in multi_zone_request.requested_domains]
    authority.describe_certificate.return_value = make_handle(options)

    def change(zone_id, action, record, ttl):
        if zone_id == 'ZENV':
            raise DNSBase.RecordNotFoundError("not found")
        return '/change/C1'
    dns.change_record.side_effect = change
    delegated.change_record.side_effect = DNSBase.RecordNotFoundError("not found")

    build(multi_zone_request).delete(ARN)

    assert dns.change_record.call_count == 2
    authority.delete_certificate.assert_called_once_with(ARN)
    assert "already absent" in caplog.text

def test_delete_aborts_on_other_zone_error(workflow, authority, dns):
    authority.describe_certificate.return_value = make_handle([make_option('env.app.example.com')])
    dns.change_record.side_effect = DNSBase.DNSError("AccessDenied")

    with pytest.raises(DNSBase.DNSError):
        workflow.delete(ARN)
    authority.delete_certificate.assert_not_called()

def test_delete_certificate_still_in_use(workflow, authority, dns, clock):
    authority.describe_certificate.return_value = make_handle(
        [make_option('env.app.example.com')], in_use=['arn:aws:cloudfront::123456789012:distribution/E1']
    )

    with pytest.raises(CertificateStillInUse, match="Certificate still in use after checking for 10 attempts."):
        workflow.delete(ARN)

    assert authority.describe_certificate.call_count == 10
    assert clock.sleeps == [30.5] * 9
    dns.change_record.assert_not_called()
    authority.delete_certificate.assert_not_called()

def test_delete_proceeds_when_unused_but_options_incomplete(build, multi_zone_request, authority, dns, delegated):
    options = [
        make_option('env.app.example.com'),
        make_option('app.example.com', populated=False),
    ]
    authority.describe_certificate.return_value = make_handle(options)

    build(multi_zone_request).delete(ARN)

    dns.change_record.assert_called_once_with('ZENV', DELETE, options[0].resource_record, 60)
    authority.delete_certificate.assert_called_once_with(ARN)

def test_delete_certificate_already_gone_while_describing(workflow, authority, dns):
    authority.describe_certificate.side_effect = CertificateAuthorityBase.NotFoundError("gone")

    workflow.delete(ARN)

    dns.change_record.assert_not_called()
    authority.delete_certificate.assert_not_called()

def test_delete_certificate_already_gone_while_deleting(workflow, authority):
    authority.describe_certificate.return_value = make_handle([make_option('env.app.example.com')])
    authority.delete_certificate.side_effect = CertificateAuthorityBase.NotFoundError("gone")

    workflow.delete(ARN)

def test_delete_certificate_other_error(workflow, authority):
    authority.describe_certificate.return_value = make_handle([make_option('env.app.example.com')])
    authority.delete_certificate.side_effect = CertificateAuthorityBase.AuthorityError("ResourceInUse")

    with pytest.raises(CertificateAuthorityBase.AuthorityError):
        workflow.delete(ARN)
