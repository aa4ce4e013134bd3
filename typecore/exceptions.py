from typing import Optional


class StorageError(Exception):
    """Base exception for storage-related errors."""

    def __init__(
        self, message: str, original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.original_exception = original_exception


class DatabaseConnectionError(StorageError):
    """Raised for errors connecting to the database."""

    pass


class SchemaMigrationError(StorageError):
    """Raised when a schema migration step cannot be applied."""

    pass


class ConstraintViolation(StorageError):
    """Raised when a write violates a uniqueness or foreign-key constraint."""

    pass


class MarshallingError(StorageError):
    """Indicates an error during data conversion between application models
    and DB format."""

    pass


class SerializationError(Exception):
    """Raised for malformed JSON where structural parsing is required."""

    def __init__(
        self, message: str, original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.original_exception = original_exception
