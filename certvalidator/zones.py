import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from certvalidator.dns import DNSBase
from certvalidator.errors import CredentialError, UpstreamError, ZoneNotFound
from certvalidator.models import (
    CertificateRequest, DomainValidationOption, HostedZoneTarget, ZoneKind
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ZoneMatcher:
    """How to find the zone for validation options of one domain name.

    `domain_for` derives the exact domain name this matcher owns from the
    request. `lookup_by_name` looks the zone up by that name instead of using
    the supplied environment zone id, and `assume_role` routes both the lookup
    and the record changes through the delegation role's credentials.
    """
    kind: ZoneKind
    domain_for: Callable[[CertificateRequest], str]
    lookup_by_name: bool = True
    assume_role: bool = False


# Matched in order; the first matcher whose domain equals the option's wins.
ZONE_MATCHERS: Tuple[ZoneMatcher, ...] = (
    ZoneMatcher(ZoneKind.ENVIRONMENT, lambda r: r.primary_domain, lookup_by_name=False),
    ZoneMatcher(ZoneKind.APPLICATION, lambda r: r.application_domain),
    ZoneMatcher(ZoneKind.ROOT, lambda r: r.domain_name, assume_role=True),
)


def _normalize(name: str) -> str:
    return name.rstrip('.').lower()


class ZoneResolver:
    """Bind validation options to hosted zones for a single request.

    One resolver lives for one invocation. The delegated DNS plugin (assumed
    role credentials) is built at most once, on first use by a root-domain
    option, and resolved targets are remembered so each domain's zone is
    looked up only once.
    """

    def __init__(self, request: CertificateRequest, dns: DNSBase,
                 delegated_dns_factory: Optional[Callable[[str], DNSBase]] = None,
                 matchers: Sequence[ZoneMatcher] = ZONE_MATCHERS):
        self.request = request
        self.dns = dns
        self.delegated_dns_factory = delegated_dns_factory
        self.matchers = tuple(matchers)
        self._delegated_dns = None
        self._targets: Dict[str, HostedZoneTarget] = {}

    def match(self, option: DomainValidationOption) -> Optional[ZoneMatcher]:
        name = _normalize(option.domain_name)
        for matcher in self.matchers:
            if name == _normalize(matcher.domain_for(self.request)):
                return matcher
        return None

    def resolve(self, matcher: ZoneMatcher) -> HostedZoneTarget:
        """Locate the hosted zone and DNS client for a matched domain.

        Args:
            matcher (ZoneMatcher): The matcher an option was bound to.

        Returns:
            HostedZoneTarget: Zone id plus the DNS plugin allowed to change it.

        Raises:
            ZoneNotFound: If no zone id was supplied for the environment domain,
                or no zone has the domain's exact name.
            CredentialError: If the delegation role is missing or cannot be
                assumed.
            UpstreamError: If the zone lookup call itself fails.
        """
        domain = matcher.domain_for(self.request)
        if _normalize(domain) in self._targets:
            return self._targets[_normalize(domain)]

        dns = self._delegated() if matcher.assume_role else self.dns

        if matcher.lookup_by_name:
            try:
                zone_id = dns.find_hosted_zone(domain)
            except DNSBase.DNSError as e:
                raise UpstreamError(f"Error looking up Hosted Zone {domain}: {e}", cause=e) from e
            if not zone_id:
                raise ZoneNotFound(f"Couldn't find any Hosted Zone with DNS name {domain}.")
        else:
            zone_id = self.request.environment_hosted_zone_id
            if not zone_id:
                raise ZoneNotFound(f"No Hosted Zone id was supplied for {domain}.")

        target = HostedZoneTarget(
            kind=matcher.kind,
            domain_name=domain,
            zone_id=zone_id,
            dns=dns,
            assumed_credentials=matcher.assume_role,
        )
        logger.info(f"Resolved {matcher.kind.value} domain {domain} to Hosted Zone {zone_id}")
        self._targets[_normalize(domain)] = target
        return target

    def targets_for(self, options: Iterable[DomainValidationOption]) -> List[Tuple[HostedZoneTarget, DomainValidationOption]]:
        """Pair every populated, matching option with its zone target.

        Options whose domain matches no matcher are not part of this
        deployment's validation set and are dropped. At most one option per
        domain name is kept, so no domain gets a record in two zones.
        """
        pairs = []
        seen = set()
        for option in options:
            if option.is_pending:
                continue
            name = _normalize(option.domain_name)
            if name in seen:
                continue
            matcher = self.match(option)
            if matcher is None:
                logger.info(f"Ignoring validation option for {option.domain_name}: no matching Hosted Zone")
                continue
            seen.add(name)
            pairs.append((self.resolve(matcher), option))
        return pairs

    def _delegated(self) -> DNSBase:
        if self._delegated_dns is not None:
            return self._delegated_dns
        role_arn = self.request.delegation_role_arn
        if not role_arn:
            raise CredentialError(f"No DNS delegation role was supplied to manage {self.request.domain_name}.")
        if self.delegated_dns_factory is None:
            raise CredentialError(f"No credential source is configured to assume {role_arn}.")
        try:
            self._delegated_dns = self.delegated_dns_factory(role_arn)
        except DNSBase.DNSError as e:
            raise CredentialError(f"Unable to assume DNS delegation role {role_arn}: {e}") from e
        return self._delegated_dns
