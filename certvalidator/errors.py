"""Error taxonomy for the certificate validation workflow.

Every error raised by the poller, the zone resolver, the record reconciler
and the certificate workflow derives from `CertificateValidatorError`. The
dispatcher turns any of them (and anything else) into a FAILED callback
whose reason is `str(error)`, so messages are written for the operator
reading the stack event, not for the log.
"""


class CertificateValidatorError(Exception):
    """Base class for all workflow errors."""


class ExhaustedRetries(CertificateValidatorError):
    """A polled condition never became true within its attempt budget."""

    def __init__(self, message, attempts=None):
        super().__init__(message)
        self.attempts = attempts


class DeadlineExceeded(CertificateValidatorError):
    """The invocation deadline ran out before the attempt budget did."""


class UpstreamError(CertificateValidatorError):
    """A wrapped provider call failed, as opposed to reporting "not ready yet".

    The original exception is available as `cause`.
    """

    def __init__(self, message, cause=None):
        super().__init__(message)
        self.cause = cause


class ZoneNotFound(CertificateValidatorError):
    pass


class CredentialError(CertificateValidatorError):
    pass


class PropagationTimeout(ExhaustedRetries):
    pass


class ValidationOptionsTimeout(ExhaustedRetries):
    pass


class CertificateValidationTimeout(ExhaustedRetries):
    pass


class CertificateStillInUse(ExhaustedRetries):
    pass


class UnsupportedRequestType(CertificateValidatorError):
    pass


class DeliveryError(CertificateValidatorError):
    """The callback could not be delivered to the host."""
