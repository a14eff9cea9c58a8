import io

import pytest

from certledger.app import create_app
from certledger.ledger import MemoryLedger
from certledger.pinning import PinResult
from certledger.registry import CertificateRegistry
from certledger.sqlite_ledger import SqliteLedger

ALICE = "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1"
BOB = "0xFFcf8FDEE72ac11b5c542428B35EEF5769C409f0"


class FakeClock:

    def __init__(self, now=1700000000):
        self.now = now

    def __call__(self):
        return self.now


class FakePinner:

    def __init__(self, configured=True, cid="bafybeigdyrztcertificate"):
        self.configured = configured
        self.cid = cid
        self.pinned = []

    def pin(self, data, filename):
        self.pinned.append((filename, data))
        return PinResult(cid=self.cid, size=len(data))


@pytest.fixture(params=["memory", "sqlite"])
def ledger(request, tmp_path):
    if request.param == "memory":
        return MemoryLedger(clock=FakeClock())
    return SqliteLedger(str(tmp_path / "ledger.db"), clock=FakeClock())


@pytest.fixture
def registry(ledger):
    return CertificateRegistry(ledger)


@pytest.fixture
def pinner():
    return FakePinner()


@pytest.fixture
def app(tmp_path, pinner):
    overrides = {
        "TESTING": True,
        "DB_FILE": str(tmp_path / "app.db"),
        "LEDGER_BACKEND": "memory",
        "SECRET_KEY": "test-secret-key-for-certledger-suite",
        "ADMIN_USERNAME": "admin",
        "ADMIN_PASSWORD": "admin123",
        "REQUIRE_LOCATOR": False,
    }
    return create_app(overrides, ledger=MemoryLedger(clock=FakeClock()), pinner=pinner)


@pytest.fixture
def client(app):
    return app.test_client()


def signup_and_login(client, username, role="institute", address=None):
    body = {"username": username, "password": "pw-" + username, "role_type": role}
    if address:
        body["address"] = address
    r = client.post("/signup", json=body)
    assert r.status_code == 201
    r = client.post("/login", json={"username": username, "password": "pw-" + username})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.get_json()['access_token']}"}


@pytest.fixture
def alice_headers(client):
    return signup_and_login(client, "alice", address=ALICE)


@pytest.fixture
def bob_headers(client):
    return signup_and_login(client, "bob", address=BOB)


def pdf_upload(content=b"%PDF-1.4 SAMPLE-CERT-1", filename="cert.pdf"):
    return {"certificate": (io.BytesIO(content), filename)}
