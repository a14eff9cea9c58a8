"""
Ledger ports backing the certificate registry.

A ledger owns the record table and the two counters. Every mutation is
atomic: the record change and its counter increment are applied together
or not at all. ``MemoryLedger`` keeps everything in a dict; the sqlite and
chain backends live in their own modules.
"""
import time
import uuid
import threading
import dataclasses

from certledger.errors import AlreadyIssued, AlreadyRevoked, NotAuthorized, NotFound
from certledger.models import CertificateRecord, Receipt, Statistics


class Ledger:

    name = "abstract"

    def put_if_absent(self, key, owner, storage_locator) -> tuple:
        """Creates an active record, returns (record, receipt). Raises AlreadyIssued if key was ever issued."""
        raise NotImplementedError

    def get(self, key) -> CertificateRecord:
        """Returns the record for key, or the zero-value record if it was never issued."""
        raise NotImplementedError

    def deactivate(self, key, caller) -> tuple:
        """Flips an active record owned by caller to revoked, returns (record, receipt)."""
        raise NotImplementedError

    def statistics(self) -> Statistics:
        raise NotImplementedError

    def was_ever_issued(self, key) -> bool:
        return self.get(key).ever_issued

    def is_connected(self) -> bool:
        return True

    def describe(self) -> dict:
        return {"backend": self.name}


def check_revocable(record, caller):
    """Raises the matching error when record cannot be revoked by caller."""
    if not record.ever_issued:
        raise NotFound()
    if not record.active:
        raise AlreadyRevoked()
    if not same_identity(record.owner, caller):
        raise NotAuthorized()


def same_identity(a, b):
    # account addresses may arrive in checksum or lowercase form
    if a is None or b is None:
        return False
    return a.lower() == b.lower()


def local_receipt(block_number):
    return Receipt(transaction_hash="0x" + uuid.uuid4().hex, block_number=block_number)


class MemoryLedger(Ledger):

    name = "memory"

    def __init__(self, clock=time.time):
        self.clock = clock
        self.records = {}
        self.total_issued = 0
        self.total_revoked = 0
        self.block_number = 0
        self.lock = threading.Lock()

    def put_if_absent(self, key, owner, storage_locator):
        with self.lock:
            if key in self.records:
                raise AlreadyIssued()
            record = CertificateRecord(
                key=key,
                active=True,
                owner=owner,
                issued_at=int(self.clock()),
                storage_locator=storage_locator or "",
            )
            self.records[key] = record
            self.total_issued += 1
            self.block_number += 1
            return record, local_receipt(self.block_number)

    def get(self, key):
        with self.lock:
            return self.records.get(key) or CertificateRecord.unknown(key)

    def deactivate(self, key, caller):
        with self.lock:
            record = self.records.get(key) or CertificateRecord.unknown(key)
            check_revocable(record, caller)
            record = dataclasses.replace(record, active=False)
            self.records[key] = record
            self.total_revoked += 1
            self.block_number += 1
            return record, local_receipt(self.block_number)

    def statistics(self):
        with self.lock:
            return Statistics(total_issued=self.total_issued, total_revoked=self.total_revoked)
