"""Exception hierarchy — every failure maps to one JSON error and one status code."""

from fastapi import status


class FileVaultError(Exception):
    """
    Base exception for all errors reported to API callers.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FileVaultError):
    """
    Raised for malformed requests; nothing is transferred or stored.
    """

    status_code = status.HTTP_400_BAD_REQUEST


class FileTooLargeError(ValidationError):
    """
    Raised when the declared upload size exceeds the configured ceiling.
    """

    def __init__(self, size: int, limit: int):
        super().__init__(f"File exceeds maximum size of {limit // (1024 * 1024)} MB")
        self.size = size
        self.limit = limit


class EmptyFileError(ValidationError):
    """
    Raised when an upload declares zero bytes.
    """


class PrincipalError(FileVaultError):
    """
    Raised when the caller's identity cannot be established or normalized.
    """

    status_code = status.HTTP_401_UNAUTHORIZED


class ShareLinkNotFoundError(FileVaultError):
    """
    Raised when no file matches the requested (file id, owner) pair.
    """

    status_code = status.HTTP_404_NOT_FOUND


class TransferError(FileVaultError):
    """
    Raised when the durable storage call fails.
    """

    status_code = status.HTTP_502_BAD_GATEWAY


class TransferTimeoutError(TransferError):
    """
    Raised when the durable storage call does not finish within the deadline.
    """

    status_code = status.HTTP_504_GATEWAY_TIMEOUT


class PersistError(FileVaultError):
    """
    Raised when the metadata write fails after a successful transfer.
    The transferred object is left for the orphan reconciler.
    """


class RecordStoreError(FileVaultError):
    """
    Raised when the record store is unreachable or rejects a statement.
    Callers may retry.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class DeserializationError(FileVaultError):
    """
    Raised when a cached value cannot be parsed; signals cache corruption.
    """


class CacheError(Exception):
    """
    Raised by cache backends on connectivity problems or timeouts.
    Never reaches API callers.
    """
