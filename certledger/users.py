import json
import hashlib
import logging

from certledger.db import get_db

ROLES = ("admin", "institute", "organisation")


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def get_user(db_file, username):
    conn = get_db(db_file)
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM users WHERE username=?", (username,))
    row = cursor.fetchone()
    conn.close()
    return dict(row) if row else None


def add_user(db_file, username, password, role, address=None, details=""):
    conn = get_db(db_file)
    cursor = conn.cursor()
    cursor.execute(
        "INSERT INTO users (username, password, role, address, details) VALUES (?,?,?,?,?)",
        (username, hash_password(password), role, address, json.dumps(details))
    )
    conn.commit()
    conn.close()


def check_password(user, password) -> bool:
    return user is not None and user["password"] == hash_password(password)


def create_default_admin(db_file, username, password):
    if not get_user(db_file, username):
        add_user(db_file, username, password, "admin", details={"name": "Admin"})
        logging.info(f"Default admin created: {username}")
    else:
        logging.info("Default admin already exists")
