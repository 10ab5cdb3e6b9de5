import os

from dotenv import load_dotenv
load_dotenv()

def _bool(name, default=False):
    """Parse a boolean environment variable with sensible defaults.

    Reads the environment variable `name` and interprets truthy values in a
    case-insensitive manner. Recognized truthy strings are: "1", "true",
    "yes", and "on". If the variable is unset, returns `default`.

    Args:
        name (str): Environment variable name to read.
        default (bool, optional): Value to return when the variable is unset.
            Defaults to False.

    Returns:
        bool: Parsed boolean value from the environment or the provided default.
    """
    v = os.getenv(name)
    if v is None:
        return default
    return v.lower() in {"1","true","yes","on"}

def _list(name, default=""):
    """Parse a comma separated environment variable into a tuple of stripped values."""
    v = os.getenv(name, default)
    return tuple(x.strip() for x in v.split(",") if x.strip())

# Flask
FLASK_ENV = os.getenv("FLASK_ENV", "local")
FLASK_SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "")
FLASK_APP = os.getenv("FLASK_APP", "certvalidator")
FLASK_DEBUG = _bool("FLASK_DEBUG", False)

# AWS
# ==========================================================================
AWS_ACCESS_KEY = os.getenv("AWS_ACCESS_KEY", "")
AWS_SECRET_KEY = os.getenv("AWS_SECRET_KEY", "")
AWS_REGION_NAME = os.getenv("AWS_REGION_NAME", "us-east-1")
ROLE_SESSION_NAME = os.getenv("ROLE_SESSION_NAME", "certvalidator-root-dns")

# Error codes treated as "already gone" by the provider plugins
ACM_NOT_FOUND_CODES = _list("ACM_NOT_FOUND_CODES", "ResourceNotFoundException")
ROUTE53_NOT_FOUND_CODES = _list("ROUTE53_NOT_FOUND_CODES", "InvalidChangeBatch")

# Polling profiles
# ==========================================================================
VALIDATION_OPTIONS_MAX_ATTEMPTS = int(os.getenv("VALIDATION_OPTIONS_MAX_ATTEMPTS", "10"))
VALIDATION_OPTIONS_DELAY = float(os.getenv("VALIDATION_OPTIONS_DELAY", "0.15"))
VALIDATION_OPTIONS_JITTER = float(os.getenv("VALIDATION_OPTIONS_JITTER", "0.05"))

CERTIFICATE_VALIDATED_MAX_ATTEMPTS = int(os.getenv("CERTIFICATE_VALIDATED_MAX_ATTEMPTS", "19"))
CERTIFICATE_VALIDATED_DELAY = float(os.getenv("CERTIFICATE_VALIDATED_DELAY", "30"))
CERTIFICATE_VALIDATED_JITTER = float(os.getenv("CERTIFICATE_VALIDATED_JITTER", "1"))

CERTIFICATE_UNUSED_MAX_ATTEMPTS = int(os.getenv("CERTIFICATE_UNUSED_MAX_ATTEMPTS", "10"))
CERTIFICATE_UNUSED_DELAY = float(os.getenv("CERTIFICATE_UNUSED_DELAY", "30"))
CERTIFICATE_UNUSED_JITTER = float(os.getenv("CERTIFICATE_UNUSED_JITTER", "1"))

RECORD_PROPAGATION_MAX_ATTEMPTS = int(os.getenv("RECORD_PROPAGATION_MAX_ATTEMPTS", "10"))
RECORD_PROPAGATION_DELAY = float(os.getenv("RECORD_PROPAGATION_DELAY", "30"))
RECORD_PROPAGATION_JITTER = float(os.getenv("RECORD_PROPAGATION_JITTER", "1"))

# Other application values
# ==========================================================================
LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s L%(lineno)d - %(levelname)s - %(message)s")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
RECORD_TTL = int(os.getenv("RECORD_TTL", "60"))
MAX_ZONE_WORKERS = int(os.getenv("MAX_ZONE_WORKERS", "4"))
CALLBACK_TIMEOUT_SECONDS = float(os.getenv("CALLBACK_TIMEOUT_SECONDS", "10"))
INVOCATION_TIMEOUT_SECONDS = float(os.getenv("INVOCATION_TIMEOUT_SECONDS", "900"))
DEADLINE_MARGIN_SECONDS = float(os.getenv("DEADLINE_MARGIN_SECONDS", "5"))
UNCREATED_PHYSICAL_ID = os.getenv("UNCREATED_PHYSICAL_ID", "RESOURCE_NOT_CREATED")
