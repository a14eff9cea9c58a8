import time
import sqlite3
import logging

from certledger.errors import AlreadyIssued
from certledger.ledger import Ledger, check_revocable, local_receipt
from certledger.models import CertificateRecord, Statistics


class SqliteLedger(Ledger):
    """
    Ledger kept in a local sqlite file, for deployments without a chain node.

    Each mutation runs inside a ``BEGIN IMMEDIATE`` transaction so the record
    write and the counter update commit together, and two processes racing
    on the same key are serialized by sqlite's write lock.
    """

    name = "sqlite"

    def __init__(self, path, clock=time.time):
        self.path = path
        self.clock = clock
        self.init_db()

    def get_db(self):
        conn = sqlite3.connect(self.path, isolation_level=None, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self):
        conn = self.get_db()
        cursor = conn.cursor()
        cursor.execute("""
        CREATE TABLE IF NOT EXISTS ledger_records (
            cert_key BLOB PRIMARY KEY,
            active INTEGER NOT NULL,
            owner TEXT NOT NULL,
            issued_at INTEGER NOT NULL,
            storage_locator TEXT NOT NULL
        )
        """)
        cursor.execute("""
        CREATE TABLE IF NOT EXISTS ledger_counters (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            total_issued INTEGER NOT NULL,
            total_revoked INTEGER NOT NULL,
            block_number INTEGER NOT NULL
        )
        """)
        cursor.execute("INSERT OR IGNORE INTO ledger_counters VALUES (1, 0, 0, 0)")
        conn.close()

    def _row_to_record(self, key, row):
        if row is None:
            return CertificateRecord.unknown(key)
        return CertificateRecord(
            key=key,
            active=bool(row["active"]),
            owner=row["owner"],
            issued_at=row["issued_at"],
            storage_locator=row["storage_locator"],
        )

    def _transact(self, mutate):
        conn = self.get_db()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                record = mutate(conn)
                conn.execute("UPDATE ledger_counters SET block_number = block_number + 1 WHERE id = 1")
                block = conn.execute("SELECT block_number FROM ledger_counters WHERE id = 1").fetchone()[0]
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()
        return record, local_receipt(block)

    def put_if_absent(self, key, owner, storage_locator):
        def mutate(conn):
            row = conn.execute("SELECT cert_key FROM ledger_records WHERE cert_key=?", (key,)).fetchone()
            if row is not None:
                raise AlreadyIssued()
            record = CertificateRecord(
                key=key,
                active=True,
                owner=owner,
                issued_at=int(self.clock()),
                storage_locator=storage_locator or "",
            )
            conn.execute(
                "INSERT INTO ledger_records (cert_key, active, owner, issued_at, storage_locator) VALUES (?,?,?,?,?)",
                (key, 1, record.owner, record.issued_at, record.storage_locator)
            )
            conn.execute("UPDATE ledger_counters SET total_issued = total_issued + 1 WHERE id = 1")
            return record

        record, receipt = self._transact(mutate)
        logging.info(f"sqlite ledger: issued {key.hex()} in block {receipt.block_number}")
        return record, receipt

    def get(self, key):
        conn = self.get_db()
        row = conn.execute("SELECT * FROM ledger_records WHERE cert_key=?", (key,)).fetchone()
        conn.close()
        return self._row_to_record(key, row)

    def deactivate(self, key, caller):
        def mutate(conn):
            row = conn.execute("SELECT * FROM ledger_records WHERE cert_key=?", (key,)).fetchone()
            record = self._row_to_record(key, row)
            check_revocable(record, caller)
            conn.execute("UPDATE ledger_records SET active=0 WHERE cert_key=?", (key,))
            conn.execute("UPDATE ledger_counters SET total_revoked = total_revoked + 1 WHERE id = 1")
            return self._row_to_record(key, {**dict(row), "active": 0})

        record, receipt = self._transact(mutate)
        logging.info(f"sqlite ledger: revoked {key.hex()} in block {receipt.block_number}")
        return record, receipt

    def statistics(self):
        conn = self.get_db()
        row = conn.execute("SELECT total_issued, total_revoked FROM ledger_counters WHERE id = 1").fetchone()
        conn.close()
        return Statistics(total_issued=row["total_issued"], total_revoked=row["total_revoked"])

    def describe(self):
        return {"backend": self.name, "path": self.path}
