import sqlite3
import logging
import datetime

from certledger.canonical import key_to_hex
from certledger.db import get_db
from certledger.models import CertificateIssued, CertificateRevoked


def log_event(db_file, event, cert_key=None, detail="", username=None):
    """Appends an audit row. Failures are logged and never interrupt the request."""
    source_username = username if username else "Anonymous"
    conn = None
    try:
        conn = get_db(db_file)
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO audit_logs (event, cert_key, detail, username, logged_at)
            VALUES (?, ?, ?, ?, ?)
        """, (event, cert_key, detail, source_username, datetime.datetime.now(datetime.timezone.utc).isoformat()))
        conn.commit()
    except sqlite3.Error as e:
        logging.error(f"Failed to write audit event {event}: {e}")
    finally:
        if conn is not None:
            conn.close()


def list_events(db_file):
    conn = get_db(db_file)
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM audit_logs ORDER BY id")
    rows = [dict(r) for r in cursor.fetchall()]
    conn.close()
    return rows


def audit_listener(db_file):
    """Registry listener recording issuance and revocation events."""
    def listener(event):
        if isinstance(event, CertificateIssued):
            log_event(db_file, "issued", key_to_hex(event.key), event.storage_locator, username=event.owner)
        elif isinstance(event, CertificateRevoked):
            log_event(db_file, "revoked", key_to_hex(event.key), username=event.revoked_by)
    return listener
