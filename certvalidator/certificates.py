# Request, validate and tear down DNS-validated certificates.

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
import logging
import re
from typing import Iterable, Optional

from certvalidator import settings
from certvalidator.authority import CertificateAuthorityBase
from certvalidator.dns import DELETE, UPSERT, DNSBase
from certvalidator.errors import (
    CertificateStillInUse, CertificateValidationTimeout, ExhaustedRetries,
    UpstreamError, ValidationOptionsTimeout
)
from certvalidator.helpers import Backoff, Poller
from certvalidator.models import CertificateHandle, CertificateRequest, DomainValidationOption
from certvalidator.records import RecordReconciler
from certvalidator.zones import ZoneResolver

logger = logging.getLogger(__name__)

CERTIFICATE_ARN = re.compile(r"^arn:aws[a-z-]*:acm:[a-z0-9-]+:\d{12}:certificate/[A-Za-z0-9-]+$")
FAILED_CERTIFICATE_STATUSES = ('FAILED', 'VALIDATION_TIMED_OUT', 'REVOKED')


def is_certificate_arn(value: Optional[str]) -> bool:
    return bool(value) and CERTIFICATE_ARN.match(value) is not None


@dataclass(frozen=True)
class WorkflowConfig:
    """Attempt budgets and delay profiles for every wait in the workflow."""
    validation_options: Backoff
    certificate_validated: Backoff
    certificate_unused: Backoff
    record_propagation: Backoff
    max_zone_workers: int = 4

    @classmethod
    def from_settings(cls) -> "WorkflowConfig":
        return cls(
            validation_options=Backoff(
                settings.VALIDATION_OPTIONS_MAX_ATTEMPTS,
                settings.VALIDATION_OPTIONS_DELAY,
                settings.VALIDATION_OPTIONS_JITTER,
                exponential=True,
            ),
            certificate_validated=Backoff(
                settings.CERTIFICATE_VALIDATED_MAX_ATTEMPTS,
                settings.CERTIFICATE_VALIDATED_DELAY,
                settings.CERTIFICATE_VALIDATED_JITTER,
                exponential=False,
            ),
            certificate_unused=Backoff(
                settings.CERTIFICATE_UNUSED_MAX_ATTEMPTS,
                settings.CERTIFICATE_UNUSED_DELAY,
                settings.CERTIFICATE_UNUSED_JITTER,
                exponential=False,
            ),
            record_propagation=Backoff(
                settings.RECORD_PROPAGATION_MAX_ATTEMPTS,
                settings.RECORD_PROPAGATION_DELAY,
                settings.RECORD_PROPAGATION_JITTER,
                exponential=False,
            ),
            max_zone_workers=settings.MAX_ZONE_WORKERS,
        )


class CertificateWorkflow:

    def __init__(self, request: CertificateRequest, authority: CertificateAuthorityBase,
                 resolver: ZoneResolver, poller: Poller,
                 config: Optional[WorkflowConfig] = None,
                 reconciler: Optional[RecordReconciler] = None):
        """Initialize the workflow for one request.

        Args:
            request (CertificateRequest): The request being processed. A
                workflow instance handles exactly one request.
            authority (CertificateAuthorityBase): Certificate authority plugin.
            resolver (ZoneResolver): Binds validation options to hosted zones.
            poller (Poller): Shared poller carrying the invocation deadline,
                sleep function, jitter source and clock.
            config (WorkflowConfig | None): Poll profiles. Defaults to the
                values in settings.
            reconciler (RecordReconciler | None): Record change applier.
                Defaults to one using `poller` and the record propagation
                profile.
        """
        self.request = request
        self.authority = authority
        self.resolver = resolver
        self.poller = poller
        self.config = config or WorkflowConfig.from_settings()
        self.reconciler = reconciler or RecordReconciler(poller, self.config.record_propagation)

    def create(self) -> str:
        """Request the certificate, publish its validation records and wait until it is issued.

        Records already written are left in place when a later step fails, so
        a retried invocation picks up where this one stopped.

        Returns:
            str: The validated certificate ARN.

        Raises:
            ValidationOptionsTimeout: If the CA never populated every
                validation record.
            CertificateValidationTimeout: If the certificate was not validated
                within the budget.
            CertificateValidatorError: Any other classified failure from the
                zone resolver, the reconciler or the poller.
            CertificateAuthorityBase.AuthorityError: If the certificate request
                itself is rejected.
        """
        request = self.request
        logger.info(f"Requesting certificate for {request.primary_domain} (request {request.request_id})")
        arn = self.authority.request_certificate(
            request.primary_domain,
            list(request.subject_alternative_names),
            request.idempotency_token
        )
        logger.info(f"Certificate requested: {arn}")

        handle = self._await_validation_options(arn)
        self._reconcile(UPSERT, handle.validation_options)
        self._await_validated(arn)
        logger.info(f"Certificate {arn} validated")
        return arn

    def delete(self, arn: Optional[str]) -> None:
        """Wait for the certificate to be unused, remove its validation records and delete it.

        A physical id that is not a certificate ARN means the create never
        finished, so there is nothing to delete. A certificate the CA no longer
        knows about counts as deleted, and so does a validation record that is
        already absent from its zone.

        Args:
            arn (str | None): The resource's physical id.

        Raises:
            CertificateStillInUse: If consumers still reference the certificate
                after the budget is spent.
            CertificateValidatorError: Any other classified failure.
            DNSBase.DNSError: If a zone rejects a record deletion for a reason
                other than the record being absent.
            CertificateAuthorityBase.AuthorityError: If deletion fails for a
                reason other than not-found.
        """
        if not is_certificate_arn(arn):
            logger.info(f"Physical id {arn!r} is not a certificate ARN, nothing to delete")
            return

        logger.info(f"Waiting for certificate {arn} to become unused")
        try:
            handle = self._await_unused(arn)
            self._reconcile(DELETE, handle.validation_options, tolerate_absent=True)
            self.authority.delete_certificate(arn)
        except CertificateAuthorityBase.NotFoundError:
            logger.warning(f"Certificate {arn} not found, treating as deleted")
            return
        except UpstreamError as e:
            if isinstance(e.cause, CertificateAuthorityBase.NotFoundError):
                logger.warning(f"Certificate {arn} not found, treating as deleted")
                return
            raise
        logger.info(f"Certificate {arn} deleted")

    def _await_validation_options(self, arn: str) -> CertificateHandle:
        domains = self.request.requested_domains
        latest = {}

        def options_ready():
            handle = self.authority.describe_certificate(arn)
            latest['handle'] = handle
            return handle.options_ready(domains)

        backoff = self.config.validation_options
        try:
            self.poller.poll(options_ready, backoff, f"validation options of {arn}")
        except ExhaustedRetries as e:
            raise ValidationOptionsTimeout(
                f"DescribeCertificate did not contain DomainValidationOptions after {backoff.max_attempts} tries.",
                attempts=e.attempts
            ) from e
        return latest['handle']

    def _await_validated(self, arn: str) -> None:
        def validated():
            handle = self.authority.describe_certificate(arn)
            statuses = [o.validation_status for o in handle.validation_options]
            if handle.status in FAILED_CERTIFICATE_STATUSES or 'FAILED' in statuses:
                raise CertificateAuthorityBase.AuthorityError(
                    f"Certificate {arn} failed validation with status {handle.status}"
                )
            if handle.status == 'ISSUED':
                return True
            return bool(statuses) and all(s == 'SUCCESS' for s in statuses)

        backoff = self.config.certificate_validated
        try:
            self.poller.poll(validated, backoff, f"validation of certificate {arn}")
        except ExhaustedRetries as e:
            raise CertificateValidationTimeout(
                f"Certificate {arn} was not validated after {backoff.max_attempts} checks.",
                attempts=e.attempts
            ) from e

    def _await_unused(self, arn: str) -> CertificateHandle:
        latest = {}

        def unused():
            handle = self.authority.describe_certificate(arn)
            latest['handle'] = handle
            if handle.in_use:
                logger.info(f"Certificate {arn} still in use by {sorted(handle.in_use_by)}")
            return not handle.in_use and handle.options_ready()

        backoff = self.config.certificate_unused
        try:
            self.poller.poll(unused, backoff, f"certificate {arn} to become unused")
        except ExhaustedRetries as e:
            handle = latest.get('handle')
            if handle is None or handle.in_use:
                raise CertificateStillInUse(
                    f"Certificate still in use after checking for {backoff.max_attempts} attempts.",
                    attempts=e.attempts
                ) from e
            logger.warning(f"Validation options of {arn} still incomplete, removing the populated records only")
        return latest['handle']

    def _reconcile(self, action: str, options: Iterable[DomainValidationOption], tolerate_absent: bool = False) -> None:
        """Apply `action` for every matched option, one zone per worker, and join.

        The first failure is raised once it is observed. Changes not yet
        started are cancelled and those already running are joined first, so
        no zone is touched after this returns.
        """
        pairs = self.resolver.targets_for(options)
        if not pairs:
            logger.info(f"No validation records to {action.lower()}")
            return

        def _apply(target, option):
            try:
                self.reconciler.apply(action, target, option.resource_record)
            except DNSBase.RecordNotFoundError as e:
                if not tolerate_absent:
                    raise
                logger.warning(f"Record for {option.domain_name} already absent in Hosted Zone {target.zone_id}: {e}")

        max_workers = max(1, min(self.config.max_zone_workers, len(pairs)))
        executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="zone")
        try:
            futures = [executor.submit(_apply, target, option) for target, option in pairs]
            for future in as_completed(futures):
                future.result()
        except Exception:
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown()
