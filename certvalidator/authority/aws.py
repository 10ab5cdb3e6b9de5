import logging
from typing import Iterable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from certvalidator import settings
from certvalidator.authority import CertificateAuthorityBase
from certvalidator.models import CertificateHandle, DomainValidationOption

logger = logging.getLogger(__name__)

class AWSCertificateManager(CertificateAuthorityBase):
    """AWS Certificate Manager implementation of certificate authority plugin."""

    def __init__(self, region_name: Optional[str] = None, client=None,
                 not_found_codes: Optional[Iterable[str]] = None):
        """Initialize the ACM plugin.

        Args:
            region_name (str | None): Region the certificate lives in. Defaults
                to `settings.AWS_REGION_NAME`.
            client: Pre-built ACM client, used instead of creating one.
            not_found_codes (Iterable[str] | None): Error codes that mean the
                certificate does not exist. Defaults to
                `settings.ACM_NOT_FOUND_CODES`.
        """
        self.aws_access_key = settings.AWS_ACCESS_KEY
        self.aws_secret_key = settings.AWS_SECRET_KEY
        self.aws_region_name = region_name or getattr(settings, "AWS_REGION_NAME", "us-east-1")
        self.not_found_codes = frozenset(
            settings.ACM_NOT_FOUND_CODES if not_found_codes is None else not_found_codes
        )
        self.client = client or self.get_authority_client()

    def get_authority_client(self):
        """Return an authenticated boto3 ACM client.

        Raises:
            CertificateAuthorityBase.AuthorityError: If the client cannot be
            created.
        """
        try:
            logger.info(f"Creating ACM client in region={self.aws_region_name!r}")
            client = boto3.client(
                'acm',
                aws_access_key_id=self.aws_access_key or None,
                aws_secret_access_key=self.aws_secret_key or None,
                region_name=self.aws_region_name
            )
            return client
        except (ClientError, BotoCoreError) as error:
            logger.exception(f"Unable to create ACM client: {error}")
            raise CertificateAuthorityBase.AuthorityError(error)

    def request_certificate(self, domain: str, subject_alternative_names: List[str], idempotency_token: str) -> str:
        params = {
            'DomainName': domain,
            'IdempotencyToken': idempotency_token,
            'ValidationMethod': 'DNS',
        }
        # ACM rejects an empty SubjectAlternativeNames list
        if subject_alternative_names:
            params['SubjectAlternativeNames'] = list(subject_alternative_names)
        logger.info(f"Requesting certificate for {domain} with SANs {list(subject_alternative_names)}")
        try:
            response = self.client.request_certificate(**params)
        except (ClientError, BotoCoreError) as error:
            raise self._translate(error, f"Error requesting certificate for {domain}")
        return response['CertificateArn']

    def describe_certificate(self, arn: str) -> CertificateHandle:
        try:
            response = self.client.describe_certificate(CertificateArn=arn)
        except (ClientError, BotoCoreError) as error:
            raise self._translate(error, f"Error describing certificate {arn}")
        certificate = response['Certificate']
        return CertificateHandle(
            arn=certificate.get('CertificateArn', arn),
            in_use_by=frozenset(certificate.get('InUseBy') or []),
            validation_options=tuple(
                DomainValidationOption.from_dict(o) for o in certificate.get('DomainValidationOptions') or []
            ),
            status=certificate.get('Status'),
        )

    def delete_certificate(self, arn: str) -> None:
        logger.info(f"Deleting certificate {arn}")
        try:
            self.client.delete_certificate(CertificateArn=arn)
        except (ClientError, BotoCoreError) as error:
            raise self._translate(error, f"Error deleting certificate {arn}")

    def _translate(self, error: Exception, message: str) -> CertificateAuthorityBase.AuthorityError:
        # transport failures carry no error code
        code = error.response.get('Error', {}).get('Code', '') if isinstance(error, ClientError) else ''
        if code in self.not_found_codes:
            return CertificateAuthorityBase.NotFoundError(f"{message}: {error}")
        logger.exception(f"{message}: {error}")
        return CertificateAuthorityBase.AuthorityError(f"{message}: {error}")
