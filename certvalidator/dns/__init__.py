from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from certvalidator.models import ResourceRecord

UPSERT = "UPSERT"
DELETE = "DELETE"


class DNSBase(ABC):
    """
    Abstract base class for DNS management plugins.
    Implementations raise DNSError on DNS failures and RecordNotFoundError when a
    DELETE targets a record that is already absent.
    """

    class DNSError(Exception):
        """Raised for DNS-related failures."""
        pass

    class RecordNotFoundError(DNSError):
        """Raised when the record to delete does not exist in the zone."""
        pass

    @abstractmethod
    def get_dns_client(self) -> Any:
        """Return the underlying DNS API client/session used by the plugin."""
        pass

    @abstractmethod
    def find_hosted_zone(self, domain: str) -> Optional[str]:
        """Return the id of the zone whose DNS name is exactly `domain`, or None."""
        pass

    @abstractmethod
    def change_record(self, zone_id: str, action: str, record: ResourceRecord, ttl: int) -> str:
        """Submit one single-value record change and return the provider's change id."""
        pass

    @abstractmethod
    def is_change_insync(self, change_id: str) -> bool:
        """Return True once the change has propagated to every authoritative server."""
        pass

    def build_record_change(self, action: str, record: ResourceRecord, ttl: int) -> Dict[str, Any]:
        """Build a change batch holding one single-value record set."""
        return {
            'Changes': [{
                'Action': action,
                'ResourceRecordSet': {
                    'Name': record.name,
                    'Type': record.type,
                    'TTL': ttl,
                    'ResourceRecords': [{'Value': record.value}]
                }
            }]
        }
