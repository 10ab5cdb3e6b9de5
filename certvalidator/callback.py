import json
import logging

import requests

from certvalidator import settings
from certvalidator.errors import DeliveryError
from certvalidator.models import CallbackResult, LifecycleEvent

logger = logging.getLogger(__name__)


class CallbackReporter:
    """Deliver the outcome of one invocation to the host's response URL.

    Delivery is attempted exactly once. A retry could hand the host a
    second, possibly contradicting, signal for the same resource.
    """

    def __init__(self, timeout: float = settings.CALLBACK_TIMEOUT_SECONDS, session=None):
        self.timeout = timeout
        self.session = session or requests

    def report(self, event: LifecycleEvent, result: CallbackResult) -> None:
        """PUT the serialized result to `event.response_url`.

        Args:
            event (LifecycleEvent): Inbound event supplying the callback
                address and the correlation identifiers.
            result (CallbackResult): Outcome to report.

        Raises:
            DeliveryError: On connection failure, timeout or an HTTP error
                status from the host.
        """
        body = json.dumps(result.to_payload(event))
        logger.info(f"Reporting {result.status} for {event.logical_resource_id} "
                    f"(physical id {result.physical_resource_id})")
        try:
            r = self.session.put(
                event.response_url,
                data=body.encode("utf-8"),
                headers={"Content-Type": ""},
                timeout=self.timeout,
            )
            r.raise_for_status()
        except requests.RequestException as e:
            logger.exception(f"Callback delivery failed: {e}")
            raise DeliveryError(f"Callback delivery failed: {e}") from e
        logger.info(f"Callback delivered with HTTP {r.status_code}")
