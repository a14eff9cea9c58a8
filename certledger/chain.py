import os
import json
import logging
import threading

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from certledger.errors import (
    AlreadyIssued,
    AlreadyRevoked,
    InsufficientFunds,
    InvalidAddress,
    InvalidKey,
    InvalidLocator,
    LedgerUnavailable,
    NotAuthorized,
    NotFound,
    TransactionFailed,
    TransactionPending,
)
from certledger.ledger import Ledger, check_revocable, same_identity
from certledger.models import CertificateRecord, Receipt, Statistics

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_ABI_FILE = os.path.join(os.path.dirname(__file__), "CertificateRegistryABI.json")

# revert reasons raised by the CertificateRegistry contract
REVERT_REASONS = (
    ("already issued", AlreadyIssued),
    ("already revoked", AlreadyRevoked),
    ("does not exist", NotFound),
    ("not authorized", NotAuthorized),
    ("invalid certificate hash", InvalidKey),
    ("ipfs cid", InvalidLocator),
)


def map_chain_error(e):
    """Translates a web3/node exception into the service's error taxonomy."""
    message = str(e)
    lowered = message.lower()
    if isinstance(e, ContractLogicError):
        for reason, error_cls in REVERT_REASONS:
            if reason in lowered:
                return error_cls()
        return TransactionFailed(f"Contract reverted: {message}")
    if "insufficient funds" in lowered:
        return InsufficientFunds()
    return LedgerUnavailable(f"Blockchain call failed: {message}")


class ChainLedger(Ledger):
    """
    Ledger backed by the CertificateRegistry contract.

    Writes block until the transaction is mined. When a private key is
    configured transactions are signed locally, otherwise they are sent
    from the caller's account, which the node must hold unlocked.
    """

    name = "chain"

    def __init__(self, w3, contract, private_key=None, timeout=120):
        self.w3 = w3
        self.contract = contract
        self.timeout = timeout
        self.account = Account.from_key(private_key) if private_key else None
        self.nonce_lock = threading.Lock()

    # -------------------- Reads --------------------
    def _call(self, fn):
        try:
            return fn.call()
        except (ContractLogicError, Web3Exception, ValueError, OSError) as e:
            raise map_chain_error(e)

    def get(self, key):
        is_valid, issuer, issued_at, cid = self._call(self.contract.functions.verifyCertificate(key))
        if not issuer or issuer == ZERO_ADDRESS:
            return CertificateRecord.unknown(key)
        return CertificateRecord(
            key=key,
            active=bool(is_valid),
            owner=issuer,
            issued_at=int(issued_at),
            storage_locator=cid or "",
        )

    def was_ever_issued(self, key):
        return bool(self._call(self.contract.functions.wasEverIssued(key)))

    def statistics(self):
        total_issued, total_revoked, _ = self._call(self.contract.functions.getStatistics())
        return Statistics(total_issued=int(total_issued), total_revoked=int(total_revoked))

    # -------------------- Writes --------------------
    def _sender(self, caller):
        if not caller or not Web3.is_address(caller):
            raise InvalidAddress(f"Invalid account address: {caller}")
        caller = Web3.to_checksum_address(caller)
        if self.account is not None and not same_identity(caller, self.account.address):
            raise NotAuthorized("Caller has no signing credential on this server")
        return caller

    def _submit(self, fn, sender):
        if self.account is None:
            return fn.transact({"from": sender})
        # nonce read, signing and broadcast must not interleave between requests
        with self.nonce_lock:
            tx = fn.build_transaction({
                "from": sender,
                "nonce": self.w3.eth.get_transaction_count(sender, "pending"),
                "chainId": self.w3.eth.chain_id,
            })
            signed = self.account.sign_transaction(tx)
            return self.w3.eth.send_raw_transaction(signed.raw_transaction)

    def _send(self, fn, caller):
        sender = self._sender(caller)
        try:
            tx_hash = self._submit(fn, sender)
        except (ContractLogicError, Web3Exception, ValueError, OSError) as e:
            raise map_chain_error(e)

        tx_hex = Web3.to_hex(tx_hash)
        logging.info(f"Transaction {tx_hex} submitted, waiting for confirmation")
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.timeout)
        except TimeExhausted:
            raise TransactionPending(tx_hex)
        except (Web3Exception, OSError) as e:
            raise map_chain_error(e)

        if receipt["status"] == 0:
            raise TransactionFailed(f"Transaction {tx_hex} reverted")
        logging.info(f"Transaction {tx_hex} confirmed in block {receipt['blockNumber']}")
        return Receipt(
            transaction_hash=tx_hex,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )

    def put_if_absent(self, key, owner, storage_locator):
        if self.get(key).ever_issued:
            raise AlreadyIssued()
        receipt = self._send(self.contract.functions.issueCertificate(key, storage_locator or ""), owner)
        return self.get(key), receipt

    def deactivate(self, key, caller):
        check_revocable(self.get(key), caller)
        receipt = self._send(self.contract.functions.revokeCertificate(key), caller)
        return self.get(key), receipt

    # -------------------- Status --------------------
    def is_connected(self):
        try:
            return self.w3.is_connected()
        except (Web3Exception, OSError):
            return False

    def describe(self):
        return {
            "backend": self.name,
            "contract": self.contract.address,
            "chain_id": self.w3.eth.chain_id,
            "block_number": self.w3.eth.block_number,
            "signer": self.account.address if self.account else None,
        }


def connect_chain(config):
    """Builds a ChainLedger from PROVIDER_URL, CONTRACT_ADDRESS and the contract ABI file."""
    if not config.get("PROVIDER_URL") or not config.get("CONTRACT_ADDRESS"):
        raise LedgerUnavailable("Missing PROVIDER_URL or CONTRACT_ADDRESS")

    w3 = Web3(Web3.HTTPProvider(config["PROVIDER_URL"]))
    with open(config.get("CONTRACT_ABI_FILE") or DEFAULT_ABI_FILE) as f:
        abi = json.load(f)
    contract = w3.eth.contract(address=Web3.to_checksum_address(config["CONTRACT_ADDRESS"]), abi=abi)

    ledger = ChainLedger(
        w3,
        contract,
        private_key=config.get("PRIVATE_KEY"),
        timeout=int(config.get("TX_TIMEOUT", 120)),
    )
    if ledger.is_connected():
        logging.info(f"Blockchain initialized: {config['PROVIDER_URL']} contract {contract.address}")
    else:
        logging.warning(f"Blockchain node at {config['PROVIDER_URL']} is not reachable")
    return ledger
