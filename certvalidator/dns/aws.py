import logging
from typing import Iterable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from certvalidator import settings
from certvalidator.dns import DNSBase
from certvalidator.models import ResourceRecord

logger = logging.getLogger(__name__)


class AWSRoute53(DNSBase):
    """AWS Route53 implementation of DNS plugin."""

    def __init__(self, credentials: Optional[dict] = None, client=None,
                 not_found_codes: Optional[Iterable[str]] = None):
        """Initialize the AWS Route53 DNS plugin.

        Uses explicit temporary credentials when given (an assumed role), and
        otherwise the long-lived keys from application settings, falling back
        to the default boto3 credential chain when those are empty.

        Args:
            credentials (dict | None): STS `Credentials` mapping with
                `AccessKeyId`, `SecretAccessKey` and `SessionToken`.
            client: Pre-built Route53 client, used instead of creating one.
            not_found_codes (Iterable[str] | None): Error codes that mean the
                record to delete is already absent. Defaults to
                `settings.ROUTE53_NOT_FOUND_CODES`.
        """
        self.credentials = credentials
        self.aws_access_key = settings.AWS_ACCESS_KEY
        self.aws_secret_key = settings.AWS_SECRET_KEY
        self.aws_region_name = getattr(settings, "AWS_REGION_NAME", "us-east-1")
        self.not_found_codes = frozenset(
            settings.ROUTE53_NOT_FOUND_CODES if not_found_codes is None else not_found_codes
        )
        self.client = client or self.get_dns_client()

    @classmethod
    def from_role(cls, role_arn: str, session_name: Optional[str] = None, sts_client=None) -> "AWSRoute53":
        """Build a plugin acting through an assumed role in the zone owner's account.

        The role is assumed from the long-lived credential source; the
        temporary credentials are not cached beyond the returned instance.

        Raises:
            DNSBase.DNSError: If the role cannot be assumed.
        """
        session_name = session_name or settings.ROLE_SESSION_NAME
        try:
            if sts_client is None:
                sts_client = boto3.client(
                    'sts',
                    aws_access_key_id=settings.AWS_ACCESS_KEY or None,
                    aws_secret_access_key=settings.AWS_SECRET_KEY or None,
                    region_name=settings.AWS_REGION_NAME
                )
            logger.info(f"Assuming role {role_arn} for Route53 changes")
            response = sts_client.assume_role(RoleArn=role_arn, RoleSessionName=session_name)
        except (ClientError, BotoCoreError) as error:
            logger.exception(f"Unable to assume role {role_arn}: {error}")
            raise DNSBase.DNSError(f"Unable to assume role {role_arn}: {error}")
        return cls(credentials=response['Credentials'])

    def get_dns_client(self):
        """Return an authenticated boto3 Route 53 client.

        Returns:
            botocore.client.Route53: Authenticated client for Route 53 operations.

        Raises:
            DNSBase.DNSError: If the client cannot be created.
        """
        if self.credentials:
            kwargs = {
                'aws_access_key_id': self.credentials['AccessKeyId'],
                'aws_secret_access_key': self.credentials['SecretAccessKey'],
                'aws_session_token': self.credentials['SessionToken'],
            }
        else:
            kwargs = {
                'aws_access_key_id': self.aws_access_key or None,
                'aws_secret_access_key': self.aws_secret_key or None,
            }
        try:
            logger.info(f"Creating Route53 client in region={self.aws_region_name!r}")
            return boto3.client('route53', region_name=self.aws_region_name, **kwargs)
        except (ClientError, BotoCoreError) as error:
            logger.exception(f"Unable to create Route53 client: {error}")
            raise DNSBase.DNSError(error)

    def find_hosted_zone(self, domain: str) -> Optional[str]:
        """Find the hosted zone whose DNS name is exactly `domain`.

        `list_hosted_zones_by_name` returns zones in lexicographic order
        starting at the given name, so the first result is only a match if its
        name is equal to `domain`.

        Args:
            domain (str): Zone DNS name, with or without the trailing dot.

        Returns:
            str | None: The bare zone id (without the `/hostedzone/` prefix),
                or None if no zone has that name.

        Raises:
            DNSBase.DNSError: If the lookup call fails.
        """
        wanted = domain.rstrip('.').lower()
        try:
            response = self.client.list_hosted_zones_by_name(DNSName=wanted, MaxItems='1')
        except (ClientError, BotoCoreError) as error:
            logger.exception(f"Error listing hosted zones for {wanted}: {error}")
            raise DNSBase.DNSError(error)
        for zone in response.get('HostedZones', []):
            if zone['Name'].rstrip('.').lower() == wanted:
                return zone['Id'].split('/')[-1]
        return None

    def change_record(self, zone_id: str, action: str, record: ResourceRecord, ttl: int) -> str:
        """Submit a single record change to a hosted zone.

        Args:
            zone_id (str): Hosted zone identifier.
            action (str): `UPSERT` or `DELETE`.
            record (ResourceRecord): Record name, type and single value.
            ttl (int): Time-to-live in seconds.

        Returns:
            str: The Route53 change id to poll with `is_change_insync`.

        Raises:
            DNSBase.RecordNotFoundError: If a DELETE targets an absent record.
            DNSBase.DNSError: For any other rejected change.
        """
        logger.info(f"{action} DNS record into Hosted Zone {zone_id}: {record.name} {record.type} {record.value}")
        try:
            response = self.client.change_resource_record_sets(
                HostedZoneId=zone_id,
                ChangeBatch=self.build_record_change(action, record, ttl)
            )
        except (ClientError, BotoCoreError) as error:
            if isinstance(error, ClientError) and self._is_not_found(error):
                raise DNSBase.RecordNotFoundError(
                    f"Record {record.name} {record.type} not found in zone {zone_id}"
                )
            err = f"Error applying {action} for {record.name} in zone {zone_id}: {error}"
            logger.exception(err)
            raise DNSBase.DNSError(err)
        return response['ChangeInfo']['Id']

    def is_change_insync(self, change_id: str) -> bool:
        response = self.client.get_change(Id=change_id)
        status = response['ChangeInfo']['Status']
        logger.info(f"Route53 change {change_id} status: {status}")
        return status == 'INSYNC'

    def _is_not_found(self, error: ClientError) -> bool:
        code = error.response.get('Error', {}).get('Code', '')
        if code not in self.not_found_codes:
            return False
        # InvalidChangeBatch also covers conflicts and malformed records
        if code == 'InvalidChangeBatch':
            message = error.response.get('Error', {}).get('Message', '')
            return 'not found' in message.lower()
        return True
