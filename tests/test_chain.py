from unittest import mock

import pytest
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from certledger.canonical import derive_key
from certledger.chain import ZERO_ADDRESS, ChainLedger, map_chain_error
from certledger.errors import (
    AlreadyIssued,
    AlreadyRevoked,
    InsufficientFunds,
    InvalidAddress,
    LedgerUnavailable,
    NotAuthorized,
    NotFound,
    TransactionFailed,
    TransactionPending,
)
from certledger.registry import CertificateRegistry

from conftest import ALICE, BOB

# first account of a default ganache/hardhat mnemonic
SIGNER_KEY = "0x4f3edf983ac636a65a842ce7c78d9aa706d3b113bce9c46f30d7d21715b23b1d"
TX_HASH = b"\xab" * 32


class FakeFunction:

    def __init__(self, call=None, transact=None, built=None):
        self._call = call
        self._transact = transact
        self._built = built if built is not None else []

    def call(self):
        return self._call()

    def transact(self, tx):
        return self._transact(tx["from"])

    def build_transaction(self, tx):
        self._built.append(tx)
        return {
            "to": FakeContract.address,
            "value": 0,
            "gas": 100000,
            "gasPrice": 1,
            "nonce": tx["nonce"],
            "chainId": tx["chainId"],
            "data": "0x",
        }


class FakeContract:
    """Mimics the CertificateRegistry contract's functions namespace."""

    address = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

    def __init__(self):
        self.functions = self
        self.records = {}
        self.total_issued = 0
        self.total_revoked = 0
        self.transact_error = None
        self.built = []

    def _sent(self, apply):
        def transact(sender):
            if self.transact_error:
                raise self.transact_error
            apply(sender)
            return TX_HASH
        return transact

    def verifyCertificate(self, key):
        def call():
            rec = self.records.get(key)
            if rec is None:
                return (False, ZERO_ADDRESS, 0, "")
            return (rec["active"], rec["issuer"], rec["issued_at"], rec["cid"])
        return FakeFunction(call=call)

    def wasEverIssued(self, key):
        return FakeFunction(call=lambda: key in self.records)

    def getStatistics(self):
        return FakeFunction(call=lambda: (self.total_issued, self.total_revoked,
                                          self.total_issued - self.total_revoked))

    def issueCertificate(self, key, cid):
        def apply(sender):
            self.records[key] = {"active": True, "issuer": sender, "issued_at": 1700000000, "cid": cid}
            self.total_issued += 1
        return FakeFunction(transact=self._sent(apply), built=self.built)

    def revokeCertificate(self, key):
        def apply(sender):
            self.records[key]["active"] = False
            self.total_revoked += 1
        return FakeFunction(transact=self._sent(apply), built=self.built)


@pytest.fixture
def contract():
    return FakeContract()


@pytest.fixture
def w3():
    w3 = mock.MagicMock()
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 7, "gasUsed": 52000}
    w3.eth.get_transaction_count.return_value = 0
    w3.eth.chain_id = 1337
    w3.eth.send_raw_transaction.return_value = TX_HASH
    return w3


@pytest.fixture
def chain_registry(w3, contract):
    return CertificateRegistry(ChainLedger(w3, contract))


def test_unknown_key_maps_zero_address_to_none(chain_registry):
    record = chain_registry.verify(derive_key(b"unknown"))
    assert record.active is False
    assert record.owner is None
    assert not chain_registry.was_ever_issued(derive_key(b"unknown"))


def test_issue_waits_for_receipt(chain_registry, w3, contract):
    key = derive_key(b"doc")
    result = chain_registry.issue(key, ALICE, "bafycid")

    w3.eth.wait_for_transaction_receipt.assert_called_once_with(TX_HASH, timeout=120)
    assert result.receipt.transaction_hash == Web3.to_hex(TX_HASH)
    assert result.receipt.block_number == 7
    assert result.receipt.gas_used == 52000
    assert result.record.active
    assert result.record.owner == Web3.to_checksum_address(ALICE)
    assert result.record.storage_locator == "bafycid"
    assert contract.records[key]["issuer"] == Web3.to_checksum_address(ALICE)


def test_issue_precheck_rejects_known_key(chain_registry, w3):
    key = derive_key(b"doc")
    chain_registry.issue(key, ALICE)
    w3.eth.wait_for_transaction_receipt.reset_mock()
    with pytest.raises(AlreadyIssued):
        chain_registry.issue(key, BOB)
    w3.eth.wait_for_transaction_receipt.assert_not_called()


def test_revoke_lifecycle_on_chain(chain_registry):
    key = derive_key(b"doc")
    chain_registry.issue(key, ALICE, "cid")
    with pytest.raises(NotAuthorized):
        chain_registry.revoke(key, BOB)
    chain_registry.revoke(key, ALICE.lower())
    record = chain_registry.verify(key)
    assert record.active is False
    assert record.owner == Web3.to_checksum_address(ALICE)
    assert chain_registry.was_ever_issued(key)
    with pytest.raises(AlreadyRevoked):
        chain_registry.revoke(key, ALICE)
    with pytest.raises(NotFound):
        chain_registry.revoke(derive_key(b"other"), ALICE)

    stats = chain_registry.statistics()
    assert (stats.total_issued, stats.total_revoked, stats.active_count) == (1, 1, 0)


def test_unconfirmed_transaction_is_pending(chain_registry, w3):
    w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("not mined")
    with pytest.raises(TransactionPending) as excinfo:
        chain_registry.issue(derive_key(b"doc"), ALICE)
    assert excinfo.value.transaction_hash == Web3.to_hex(TX_HASH)
    assert excinfo.value.retriable
    assert excinfo.value.to_dict()["transaction_hash"] == Web3.to_hex(TX_HASH)


def test_reverted_receipt_is_failure(chain_registry, w3):
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 8, "gasUsed": 21000}
    with pytest.raises(TransactionFailed):
        chain_registry.issue(derive_key(b"doc"), ALICE)


@pytest.mark.parametrize("error, expected", [
    (ContractLogicError("execution reverted: Certificate already issued"), AlreadyIssued),
    (ContractLogicError("execution reverted: Not authorized"), NotAuthorized),
    (ContractLogicError("execution reverted: Certificate does not exist"), NotFound),
    (ContractLogicError("execution reverted: something else"), TransactionFailed),
    (ValueError({"code": -32000, "message": "insufficient funds for gas * price + value"}), InsufficientFunds),
    (ConnectionError("connection refused"), LedgerUnavailable),
])
def test_send_errors_are_mapped(chain_registry, contract, error, expected):
    contract.transact_error = error
    with pytest.raises(expected):
        chain_registry.issue(derive_key(b"doc"), ALICE)
    assert chain_registry.statistics().total_issued == 0


def test_map_chain_error_insufficient_funds_is_402():
    assert map_chain_error(ValueError("insufficient funds")).status_code == 402


def test_read_failure_is_ledger_unavailable(w3):
    contract = mock.MagicMock()
    contract.functions.verifyCertificate.return_value.call.side_effect = ConnectionError("down")
    registry = CertificateRegistry(ChainLedger(w3, contract))
    with pytest.raises(LedgerUnavailable):
        registry.verify(derive_key(b"doc"))


def test_local_signer_signs_and_sends_raw(w3, contract):
    ledger = ChainLedger(w3, contract, private_key=SIGNER_KEY)
    signer = ledger.account.address
    result = CertificateRegistry(ledger).issue(derive_key(b"doc"), signer, "cid")

    w3.eth.send_raw_transaction.assert_called_once()
    assert result.receipt.block_number == 7


def test_local_signer_rejects_other_callers(w3, contract):
    ledger = ChainLedger(w3, contract, private_key=SIGNER_KEY)
    with pytest.raises(NotAuthorized):
        CertificateRegistry(ledger).issue(derive_key(b"doc"), BOB)
    w3.eth.send_raw_transaction.assert_not_called()


def test_local_signer_uses_consecutive_pending_nonces(w3, contract):
    w3.eth.get_transaction_count.side_effect = [5, 6]
    ledger = ChainLedger(w3, contract, private_key=SIGNER_KEY)
    signer = ledger.account.address
    registry = CertificateRegistry(ledger)
    registry.issue(derive_key(b"first"), signer, "cid-1")
    registry.issue(derive_key(b"second"), signer.lower(), "cid-2")

    assert [tx["nonce"] for tx in contract.built] == [5, 6]
    assert [tx["from"] for tx in contract.built] == [signer, signer]
    w3.eth.get_transaction_count.assert_has_calls([mock.call(signer, "pending"), mock.call(signer, "pending")])
    assert w3.eth.send_raw_transaction.call_count == 2


@pytest.mark.parametrize("caller", ["banana", "0x1234", ALICE + "00"])
def test_malformed_caller_is_rejected_before_sending(chain_registry, w3, contract, caller):
    with pytest.raises(InvalidAddress) as excinfo:
        chain_registry.issue(derive_key(b"doc"), caller)
    assert excinfo.value.status_code == 400
    assert contract.records == {}
    w3.eth.wait_for_transaction_receipt.assert_not_called()


def test_malformed_caller_with_local_signer(w3, contract):
    ledger = ChainLedger(w3, contract, private_key=SIGNER_KEY)
    with pytest.raises(InvalidAddress):
        CertificateRegistry(ledger).issue(derive_key(b"doc"), "banana")
    w3.eth.get_transaction_count.assert_not_called()
    w3.eth.send_raw_transaction.assert_not_called()
