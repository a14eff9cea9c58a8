import os

from dotenv import load_dotenv

load_dotenv()


def env_flag(name, default="false"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "certledger-development-secret-change-me")
    DB_FILE = os.getenv("DB_FILE", "certledger.db")
    PORT = int(os.getenv("PORT", "5000"))

    # -------------------- Ledger --------------------
    LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "chain")
    PROVIDER_URL = os.getenv("PROVIDER_URL", "http://127.0.0.1:7545")
    CONTRACT_ADDRESS = os.getenv("CONTRACT_ADDRESS")
    CONTRACT_ABI_FILE = os.getenv("CONTRACT_ABI_FILE")
    PRIVATE_KEY = os.getenv("PRIVATE_KEY")
    TX_TIMEOUT = int(os.getenv("TX_TIMEOUT", "120"))

    # -------------------- IPFS --------------------
    PINATA_JWT = os.getenv("PINATA_JWT")
    PINATA_API_KEY = os.getenv("PINATA_API_KEY")
    PINATA_API_SECRET = os.getenv("PINATA_API_SECRET")
    REQUIRE_LOCATOR = env_flag("REQUIRE_LOCATOR")

    # -------------------- Uploads & auth --------------------
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", str(5 * 1024 * 1024)))
    TOKEN_HOURS = int(os.getenv("TOKEN_HOURS", "8"))
    ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
