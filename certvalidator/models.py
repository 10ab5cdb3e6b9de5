import enum
import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

SUCCESS = "SUCCESS"
FAILED = "FAILED"

REQUIRED_PROPERTIES = ("AppName", "EnvName", "DomainName")


class ZoneKind(enum.Enum):
    ENVIRONMENT = "environment"
    APPLICATION = "application"
    ROOT = "root"


@dataclass(frozen=True)
class ResourceRecord:
    name: str
    type: str
    value: str

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "ResourceRecord":
        return cls(name=record["Name"], type=record["Type"], value=record["Value"])


@dataclass(frozen=True)
class DomainValidationOption:
    """One domain's DNS validation instructions as reported by the CA.

    `resource_record` stays None until the CA has generated the record; such
    an option is pending and must not be written to any zone.
    """
    domain_name: str
    resource_record: Optional[ResourceRecord] = None
    validation_status: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.resource_record is None

    @classmethod
    def from_dict(cls, option: Dict[str, Any]) -> "DomainValidationOption":
        record = option.get("ResourceRecord")
        return cls(
            domain_name=option["DomainName"],
            resource_record=ResourceRecord.from_dict(record) if record else None,
            validation_status=option.get("ValidationStatus"),
        )


@dataclass(frozen=True)
class CertificateHandle:
    arn: str
    in_use_by: FrozenSet[str] = frozenset()
    validation_options: Tuple[DomainValidationOption, ...] = ()
    status: Optional[str] = None

    @property
    def in_use(self) -> bool:
        return bool(self.in_use_by)

    def options_ready(self, domains: Optional[Iterable[str]] = None) -> bool:
        """True when there is at least one option and none is pending.

        When `domains` is given, every one of them must also have an option.
        """
        if not self.validation_options:
            return False
        if any(o.is_pending for o in self.validation_options):
            return False
        if domains is not None:
            reported = {o.domain_name for o in self.validation_options}
            return set(domains) <= reported
        return True

    def populated_options(self) -> List[DomainValidationOption]:
        return [o for o in self.validation_options if not o.is_pending]


@dataclass(frozen=True)
class CertificateRequest:
    request_id: str
    application_name: str
    environment_name: str
    domain_name: str
    subject_alternative_names: Tuple[str, ...] = ()
    environment_hosted_zone_id: Optional[str] = None
    delegation_role_arn: Optional[str] = None
    region: Optional[str] = None

    @property
    def application_domain(self) -> str:
        return f"{self.application_name}.{self.domain_name}"

    @property
    def primary_domain(self) -> str:
        return f"{self.environment_name}.{self.application_domain}"

    @property
    def requested_domains(self) -> List[str]:
        # the CA folds duplicate names into a single option
        return list(dict.fromkeys([self.primary_domain, *self.subject_alternative_names]))

    @property
    def idempotency_token(self) -> str:
        """Deterministic token so a retried request does not mint a second certificate."""
        return hashlib.sha256(self.request_id.encode("utf-8")).hexdigest()[:32]

    @classmethod
    def from_properties(cls, request_id: str, properties: Dict[str, Any]) -> "CertificateRequest":
        missing = [p for p in REQUIRED_PROPERTIES if not properties.get(p)]
        if missing:
            raise ValueError(f"Missing required resource properties: {', '.join(missing)}")
        return cls(
            request_id=request_id,
            application_name=properties["AppName"],
            environment_name=properties["EnvName"],
            domain_name=properties["DomainName"],
            subject_alternative_names=tuple(properties.get("SubjectAlternativeNames") or ()),
            environment_hosted_zone_id=properties.get("EnvHostedZoneId") or None,
            delegation_role_arn=properties.get("RootDNSRole") or None,
            region=properties.get("Region") or None,
        )


@dataclass(frozen=True)
class HostedZoneTarget:
    """A validation option bound to the zone and DNS client allowed to change it."""
    kind: ZoneKind
    domain_name: str
    zone_id: str
    dns: Any = field(compare=False, repr=False)
    assumed_credentials: bool = False


@dataclass(frozen=True)
class LifecycleEvent:
    request_type: str
    request_id: str
    stack_id: str
    logical_resource_id: str
    response_url: str
    physical_resource_id: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, event: Dict[str, Any]) -> "LifecycleEvent":
        return cls(
            request_type=event.get("RequestType", ""),
            request_id=event.get("RequestId", ""),
            stack_id=event.get("StackId", ""),
            logical_resource_id=event.get("LogicalResourceId", ""),
            response_url=event["ResponseURL"],
            physical_resource_id=event.get("PhysicalResourceId"),
            properties=dict(event.get("ResourceProperties") or {}),
        )

    @classmethod
    def for_reporting(cls, event: Dict[str, Any]) -> "LifecycleEvent":
        """Keep only the identifiers a callback needs; malformed values become empty."""
        def text(key):
            value = event.get(key)
            return value if isinstance(value, str) else ""

        return cls(
            request_type=text("RequestType"),
            request_id=text("RequestId"),
            stack_id=text("StackId"),
            logical_resource_id=text("LogicalResourceId"),
            response_url=event["ResponseURL"],
            physical_resource_id=text("PhysicalResourceId") or None,
        )

    def certificate_request(self) -> CertificateRequest:
        return CertificateRequest.from_properties(self.request_id, self.properties)


@dataclass(frozen=True)
class CallbackResult:
    status: str
    physical_resource_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None

    @classmethod
    def success(cls, physical_resource_id, data=None) -> "CallbackResult":
        return cls(SUCCESS, physical_resource_id, dict(data or {}))

    @classmethod
    def failure(cls, physical_resource_id, reason) -> "CallbackResult":
        return cls(FAILED, physical_resource_id, {}, reason)

    def to_payload(self, event: LifecycleEvent) -> Dict[str, Any]:
        """Build the response body in the host's field names; `Reason` only on failure."""
        payload = {
            "Status": self.status,
            "PhysicalResourceId": self.physical_resource_id,
            "StackId": event.stack_id,
            "RequestId": event.request_id,
            "LogicalResourceId": event.logical_resource_id,
            "Data": self.data,
        }
        if self.status == FAILED:
            payload["Reason"] = self.reason or "Unknown error"
        return payload
