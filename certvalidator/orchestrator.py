# Lifecycle events from the stack host are dispatched from here.

import hmac
import json
import logging
import re
from urllib.parse import urlparse

from flask import abort, Blueprint, current_app, jsonify, request
import requests

from certvalidator import settings
from certvalidator.authority.aws import AWSCertificateManager
from certvalidator.callback import CallbackReporter
from certvalidator.certificates import CertificateWorkflow, is_certificate_arn
from certvalidator.config import configure_logging
from certvalidator.dns.aws import AWSRoute53
from certvalidator.errors import DeliveryError, UnsupportedRequestType
from certvalidator.helpers import Poller
from certvalidator.models import CallbackResult, LifecycleEvent
from certvalidator.zones import ZoneResolver

bp = Blueprint('orchestrator', __name__)
logger = logging.getLogger(__name__)

CREATE = "Create"
UPDATE = "Update"
DELETE = "Delete"

SNS_HOST = re.compile(r"^sns\.[a-z0-9-]+\.amazonaws\.com(\.cn)?$")


def build_workflow(certificate_request, poller):
    """Wire the AWS plugins for one request.

    Clients, and the assumed-role credentials for the root zone, are created
    per invocation and never shared across invocations.
    """
    resolver = ZoneResolver(
        certificate_request,
        dns=AWSRoute53(),
        delegated_dns_factory=AWSRoute53.from_role
    )
    authority = AWSCertificateManager(region_name=certificate_request.region)
    return CertificateWorkflow(certificate_request, authority, resolver, poller)


def build_poller(context=None):
    """Return a poller whose deadline leaves a margin for reporting before the host's timeout."""
    remaining = settings.INVOCATION_TIMEOUT_SECONDS
    if context is not None and hasattr(context, 'get_remaining_time_in_millis'):
        remaining = context.get_remaining_time_in_millis() / 1000.0
    return Poller.with_timeout(max(0.0, remaining - settings.DEADLINE_MARGIN_SECONDS))


class RequestDispatcher:
    """Route lifecycle events to the certificate workflow and always report back.

    Every event that carries a response URL gets exactly one callback, SUCCESS
    or FAILED, whatever happens inside the workflow.
    """

    def __init__(self, reporter=None, workflow_factory=build_workflow, poller_factory=build_poller):
        self.reporter = reporter or CallbackReporter()
        self.workflow_factory = workflow_factory
        self.poller_factory = poller_factory

    def handle(self, event, context=None):
        """Process one lifecycle event and report its outcome.

        Args:
            event (dict): The host's event (`RequestType`, `RequestId`,
                `StackId`, `LogicalResourceId`, `PhysicalResourceId`,
                `ResponseURL`, `ResourceProperties`).
            context: Host invocation context; used for the deadline and the
                fallback physical id. May be None.

        Returns:
            CallbackResult: The outcome that was reported.

        Raises:
            KeyError: If the event has no `ResponseURL`, so there is nowhere
                to report to.
            DeliveryError: If the callback could not be delivered. It is not
                retried.
        """
        reporting = LifecycleEvent.for_reporting(event)
        lifecycle = None
        try:
            lifecycle = LifecycleEvent.from_dict(event)
            logger.info(f"Received {lifecycle.request_type} for {lifecycle.logical_resource_id} "
                        f"(request {lifecycle.request_id})")
            result = self._route(lifecycle, context)
        except Exception as e:
            logger.exception(f"Caught error {e!r}")
            result = CallbackResult.failure(
                reporting.physical_resource_id or self._fallback_physical_id(context),
                str(e) or e.__class__.__name__
            )
        self.reporter.report(lifecycle or reporting, result)
        return result

    def _route(self, lifecycle, context):
        if lifecycle.request_type in (CREATE, UPDATE):
            certificate_request = lifecycle.certificate_request()
            workflow = self.workflow_factory(certificate_request, self.poller_factory(context))
            arn = workflow.create()
            return CallbackResult.success(arn, {'Arn': arn})

        if lifecycle.request_type == DELETE:
            physical_id = lifecycle.physical_resource_id
            # A create that never finished leaves a physical id that is not an ARN
            if not is_certificate_arn(physical_id):
                logger.info(f"Nothing to delete for physical id {physical_id!r}")
                return CallbackResult.success(physical_id or self._fallback_physical_id(context))
            certificate_request = lifecycle.certificate_request()
            workflow = self.workflow_factory(certificate_request, self.poller_factory(context))
            workflow.delete(physical_id)
            return CallbackResult.success(physical_id)

        raise UnsupportedRequestType(f"Unsupported request type {lifecycle.request_type}")

    def _fallback_physical_id(self, context):
        return getattr(context, 'log_stream_name', None) or settings.UNCREATED_PHYSICAL_ID


dispatcher = RequestDispatcher()


def lambda_handler(event, context):
    """Function entry point invoked by the stack host."""
    configure_logging()
    dispatcher.handle(event, context)


def validate_header_key(request_headers):
    """Reject the request unless its `Flask-Key` header matches the app's secret key.

    An app configured without a secret key rejects every request.

    Raises:
        werkzeug.exceptions.Unauthorized: Via `flask.abort(401)` when the
            header is missing or incorrect.
    """
    key = request_headers.get('Flask-Key')
    secret = current_app.secret_key
    if not key:
        logger.error("Error: Event rejected on: Missing key value")
        abort(401)
    if not secret or not hmac.compare_digest(str(key), str(secret)):
        logger.error("Error: Event rejected on: Incorrect key value")
        abort(401)


def is_sns_subscribe_url(url):
    parsed = urlparse(url) if isinstance(url, str) else None
    return bool(parsed) and parsed.scheme == 'https' and SNS_HOST.match(parsed.hostname or '') is not None


@bp.route('/events', methods=['POST'])
def receive_event():
    """Accept a lifecycle event over HTTP and run it through the dispatcher.

    Callers authenticate with the `Flask-Key` header. The body is either the
    raw event or an SNS envelope. A `SubscriptionConfirmation` is confirmed
    by visiting its `SubscribeURL`, which must point at an SNS endpoint; a
    `Notification` carries the event JSON in `Message`.

    Returns:
        flask.Response: 200 with the reported status, 400 for a body that is
            not an event, 401 without a valid key, 502 when the callback
            could not be delivered.
    """
    validate_header_key(request.headers)

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400)

    if payload.get('Type') == 'SubscriptionConfirmation':
        subscribe_url = payload.get('SubscribeURL')
        if not is_sns_subscribe_url(subscribe_url):
            logger.error(f"Refusing to confirm subscription via {subscribe_url!r}")
            abort(400)
        logger.info(f"Confirming SNS subscription for {payload.get('TopicArn')}")
        r = requests.get(subscribe_url, timeout=settings.CALLBACK_TIMEOUT_SECONDS)
        r.raise_for_status()
        return jsonify({'Status': 'Confirmed'}), 200

    if payload.get('Type') == 'Notification':
        try:
            payload = json.loads(payload['Message'])
        except (KeyError, TypeError, ValueError):
            abort(400)

    if not isinstance(payload, dict) or 'ResponseURL' not in payload:
        abort(400)

    try:
        result = dispatcher.handle(payload)
    except DeliveryError as e:
        return jsonify({'Status': 'DeliveryFailed', 'Reason': str(e)}), 502
    return jsonify({
        'Status': result.status,
        'PhysicalResourceId': result.physical_resource_id,
        'Reason': result.reason,
    }), 200
