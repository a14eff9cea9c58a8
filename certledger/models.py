import datetime
from dataclasses import dataclass
from typing import Optional

from certledger.canonical import key_to_hex

PINATA_GATEWAY = "https://gateway.pinata.cloud/ipfs/"
PUBLIC_GATEWAY = "https://ipfs.io/ipfs/"


@dataclass(frozen=True)
class CertificateRecord:
    key: bytes
    active: bool = False
    owner: Optional[str] = None
    issued_at: int = 0
    storage_locator: str = ""

    @classmethod
    def unknown(cls, key):
        """The zero-value record returned for keys that were never issued."""
        return cls(key=key)

    @property
    def ever_issued(self) -> bool:
        return self.owner is not None

    def to_dict(self):
        data = {
            "certificate_hash": key_to_hex(self.key),
            "is_valid": self.active,
            "issuer": self.owner,
            "timestamp": self.issued_at,
            "issued_date": None,
            "ipfs_cid": self.storage_locator,
        }
        if self.issued_at:
            issued = datetime.datetime.fromtimestamp(self.issued_at, tz=datetime.timezone.utc)
            data["issued_date"] = issued.isoformat()
        if self.storage_locator:
            data["ipfs_url"] = PINATA_GATEWAY + self.storage_locator
            data["ipfs_gateway_url"] = PUBLIC_GATEWAY + self.storage_locator
        return data


@dataclass(frozen=True)
class Statistics:
    total_issued: int = 0
    total_revoked: int = 0

    @property
    def active_count(self) -> int:
        return self.total_issued - self.total_revoked

    def to_dict(self):
        return {
            "total_issued": self.total_issued,
            "total_revoked": self.total_revoked,
            "active_count": self.active_count,
        }


@dataclass(frozen=True)
class Receipt:
    transaction_hash: str
    block_number: int
    gas_used: int = 0

    def to_dict(self):
        return {
            "transaction_hash": self.transaction_hash,
            "block_number": self.block_number,
            "gas_used": str(self.gas_used),
        }


@dataclass(frozen=True)
class IssueResult:
    record: CertificateRecord
    receipt: Receipt


@dataclass(frozen=True)
class RevokeResult:
    record: CertificateRecord
    receipt: Receipt


# -------------------- Events --------------------
@dataclass(frozen=True)
class CertificateIssued:
    key: bytes
    owner: str
    storage_locator: str


@dataclass(frozen=True)
class CertificateRevoked:
    key: bytes
    revoked_by: str
