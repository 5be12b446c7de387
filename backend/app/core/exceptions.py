"""Custom exceptions for HabitDot backend."""


class DecryptionError(Exception):
    """Raised when an encrypted field envelope cannot be decrypted."""

    def __init__(self, reason: str = "unknown"):
        self.reason = reason
        super().__init__(f"Decryption failed: {reason}")


class StorageError(Exception):
    """Raised when the backing store cannot complete an operation."""


class StoreConflictError(StorageError):
    """Raised when a unique constraint (e.g. user email) would be violated."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Record already exists: {key}")
