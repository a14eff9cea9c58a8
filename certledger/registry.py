"""
The certificate registry: issue, verify and revoke certificate records.

Every key walks through ``Unknown -> Active -> Revoked``. Revoked is
terminal: a revoked key can never be issued again, and revocation keeps the
owner, issue time and storage locator so the record stays auditable.

The registry validates its inputs, delegates storage to a ``Ledger`` and
notifies subscribers after each successful mutation. It never retries;
external failures propagate to the caller untouched.
"""
import logging

from certledger.canonical import is_zero_key, key_to_hex, parse_key
from certledger.errors import InvalidKey, InvalidLocator, NotAuthorized
from certledger.models import (
    CertificateIssued,
    CertificateRevoked,
    IssueResult,
    RevokeResult,
)


class CertificateRegistry:

    def __init__(self, ledger, require_locator=False):
        self.ledger = ledger
        self.require_locator = require_locator
        self.listeners = []

    def subscribe(self, listener):
        self.listeners.append(listener)

    def _emit(self, event):
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception as e:
                logging.error(f"Certificate event listener failed on {type(event).__name__}: {e}")

    def _key(self, key):
        key = parse_key(key)
        if is_zero_key(key):
            raise InvalidKey("Invalid certificate hash: zero key")
        return key

    def issue(self, key, caller, storage_locator="") -> IssueResult:
        key = self._key(key)
        if not caller:
            raise NotAuthorized("Issuer identity required")
        storage_locator = storage_locator or ""
        if self.require_locator and not storage_locator:
            raise InvalidLocator()

        record, receipt = self.ledger.put_if_absent(key, caller, storage_locator)
        logging.info(f"Certificate {key_to_hex(key)} issued by {caller} (tx {receipt.transaction_hash})")
        self._emit(CertificateIssued(key=key, owner=record.owner, storage_locator=record.storage_locator))
        return IssueResult(record=record, receipt=receipt)

    def verify(self, key):
        """Returns the record for key; unknown keys yield the inactive zero-value record."""
        return self.ledger.get(parse_key(key))

    def revoke(self, key, caller) -> RevokeResult:
        key = self._key(key)
        if not caller:
            raise NotAuthorized()

        record, receipt = self.ledger.deactivate(key, caller)
        logging.info(f"Certificate {key_to_hex(key)} revoked by {caller} (tx {receipt.transaction_hash})")
        self._emit(CertificateRevoked(key=key, revoked_by=caller))
        return RevokeResult(record=record, receipt=receipt)

    def statistics(self):
        return self.ledger.statistics()

    def was_ever_issued(self, key) -> bool:
        return self.ledger.was_ever_issued(parse_key(key))
