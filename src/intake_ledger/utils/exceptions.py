"""Custom exceptions for the intake ledger."""


class IntakeLedgerError(Exception):
    """Base exception for all intake ledger errors."""

    pass


class ConfigurationError(IntakeLedgerError):
    """Raised when there is a configuration error."""

    pass


class AuthenticationError(IntakeLedgerError):
    """Raised when a bearer credential cannot be verified."""

    pass


class AuthenticationRequiredError(AuthenticationError):
    """Raised when server storage is selected without a credential."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ValidationError(IntakeLedgerError):
    """Raised when a record or field fails validation."""

    pass


class RecordNotFoundError(IntakeLedgerError):
    """Raised when an update or delete targets a missing record id."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} record not found: {record_id}")
        self.kind = kind
        self.record_id = record_id


class DuplicateRecordError(IntakeLedgerError):
    """Raised when creating a record whose id already exists."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} record already exists: {record_id}")
        self.kind = kind
        self.record_id = record_id


class StorageError(IntakeLedgerError):
    """Raised when a storage backend operation fails."""

    pass


class BackupFormatError(IntakeLedgerError):
    """Raised when a backup document cannot be parsed or has an invalid structure."""

    pass
