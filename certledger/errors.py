class CertLedgerError(Exception):
    """Base class for every error the certificate service reports."""

    status_code = 500
    code = "error"

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

    def to_dict(self):
        return {"success": False, "error": self.code, "message": self.message}


# -------------------- Validation --------------------
class ValidationError(CertLedgerError):
    status_code = 400
    code = "validation_error"


class InvalidKey(ValidationError):
    """Invalid certificate hash"""
    code = "invalid_key"


class InvalidLocator(ValidationError):
    """Storage locator is required"""
    code = "invalid_locator"


class InvalidQRPayload(ValidationError):
    """Invalid QR code format"""
    code = "invalid_qr"


class InvalidUpload(ValidationError):
    """Only PDF files are allowed"""
    code = "invalid_upload"


class InvalidAddress(ValidationError):
    """Invalid account address"""
    code = "invalid_address"


class InvalidCID(ValidationError):
    """Invalid IPFS CID"""
    code = "invalid_cid"


# -------------------- State conflicts --------------------
class StateConflict(CertLedgerError):
    status_code = 409
    code = "state_conflict"


class AlreadyIssued(StateConflict):
    """Certificate already issued"""
    code = "already_issued"


class AlreadyRevoked(StateConflict):
    """Certificate already revoked"""
    code = "already_revoked"


class NotFound(StateConflict):
    """Certificate does not exist"""
    status_code = 404
    code = "not_found"


# -------------------- Authorization --------------------
class NotAuthorized(CertLedgerError):
    """Not authorized to revoke"""
    status_code = 403
    code = "not_authorized"


# -------------------- External environment --------------------
class ExternalError(CertLedgerError):
    status_code = 503
    code = "external_error"
    retriable = True


class LedgerUnavailable(ExternalError):
    """Blockchain not initialized"""
    code = "ledger_unavailable"


class InsufficientFunds(ExternalError):
    """Insufficient funds"""
    status_code = 402
    code = "insufficient_funds"


class TransactionFailed(ExternalError):
    """Transaction was mined but reverted"""
    status_code = 502
    code = "transaction_failed"
    retriable = False


class TransactionPending(ExternalError):
    """Transaction submitted but not yet finalized"""
    status_code = 202
    code = "transaction_pending"

    def __init__(self, transaction_hash, message=None):
        super().__init__(message)
        self.transaction_hash = transaction_hash

    def to_dict(self):
        data = super().to_dict()
        data["transaction_hash"] = self.transaction_hash
        return data


class StorageUnavailable(ExternalError):
    """IPFS upload failed"""
    code = "storage_unavailable"
