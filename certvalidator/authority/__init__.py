from abc import ABC, abstractmethod
from typing import List

from certvalidator.models import CertificateHandle

class CertificateAuthorityBase(ABC):
    """Abstract base class for certificate authority plugins."""

    class AuthorityError(Exception):
        """Raised for certificate authority failures."""
        pass

    class NotFoundError(AuthorityError):
        """Raised when the certificate does not exist (or no longer exists)."""
        pass

    @abstractmethod
    def get_authority_client(self) -> object:
        """Return an authenticated client for the certificate authority.

        Returns:
            object: An SDK client/handle ready for certificate operations.

        Raises:
            AuthorityError: If the client cannot be created.
        """
        pass

    @abstractmethod
    def request_certificate(self, domain: str, subject_alternative_names: List[str], idempotency_token: str) -> str:
        """Request a DNS-validated certificate and return its identifier.

        Requests carrying the same idempotency token must resolve to the same
        certificate rather than creating a new one.

        Args:
            domain (str): Primary (common) name of the certificate.
            subject_alternative_names (list[str]): Additional names.
            idempotency_token (str): Deterministic token for the logical request.

        Returns:
            str: Provider identifier for the certificate (e.g., ARN).

        Raises:
            AuthorityError: If the request is rejected.
        """
        pass

    @abstractmethod
    def describe_certificate(self, arn: str) -> CertificateHandle:
        """Return the certificate's consumers, status and validation options.

        Raises:
            NotFoundError: If the certificate does not exist.
            AuthorityError: For any other failure.
        """
        pass

    @abstractmethod
    def delete_certificate(self, arn: str) -> None:
        """Delete the certificate.

        Raises:
            NotFoundError: If the certificate does not exist.
            AuthorityError: For any other failure.
        """
        pass
