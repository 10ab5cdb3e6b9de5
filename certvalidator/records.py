import logging

from certvalidator import settings
from certvalidator.errors import ExhaustedRetries, PropagationTimeout
from certvalidator.helpers import Backoff, Poller
from certvalidator.models import HostedZoneTarget, ResourceRecord

logger = logging.getLogger(__name__)


class RecordReconciler:
    """Apply one validation record change to a zone and wait until it propagates.

    Errors from the zone API are raised as-is; deciding which of them are
    acceptable is up to the caller.
    """

    def __init__(self, poller: Poller, backoff: Backoff, ttl: int = settings.RECORD_TTL):
        self.poller = poller
        self.backoff = backoff
        self.ttl = ttl

    def apply(self, action: str, target: HostedZoneTarget, record: ResourceRecord) -> None:
        """Submit `action` for `record` in `target`'s zone and block until INSYNC.

        Args:
            action (str): `UPSERT` or `DELETE`.
            target (HostedZoneTarget): Zone and DNS plugin to use.
            record (ResourceRecord): The validation record.

        Raises:
            DNSBase.DNSError: Whatever the zone API raised for the change itself.
            PropagationTimeout: If the change is not INSYNC within the budget.
            UpstreamError: If polling the change status fails.
            DeadlineExceeded: If the invocation deadline runs out first.
        """
        change_id = target.dns.change_record(target.zone_id, action, record, self.ttl)
        description = f"{action} of {record.name} in Hosted Zone {target.zone_id}"
        try:
            self.poller.poll(lambda: target.dns.is_change_insync(change_id), self.backoff, description)
        except ExhaustedRetries as e:
            raise PropagationTimeout(
                f"{description} did not propagate after {self.backoff.max_attempts} checks",
                attempts=e.attempts
            ) from e
        logger.info(f"{description} complete")
