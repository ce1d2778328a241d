"""
Custom exceptions for storjcli transfer operations.

This module defines the error taxonomy shared by the upload and download
pipelines, the key-ring and the bridge client.
"""
from typing import Optional, Any


class StorjError(Exception):
    """Base exception for all storjcli errors."""

    def __init__(self, message: str, error_code: Optional[int] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            error_code: Numeric error code (if available)
        """
        self.error_code = error_code
        self.message = message
        super().__init__(message)


class ValidationError(StorjError):
    """Exception raised for invalid construction-time parameters."""
    pass


class NotFoundError(StorjError):
    """Exception raised when a local path, bucket or remote file is missing."""
    pass


class SourcePermissionError(StorjError, PermissionError):
    """Exception raised when a source file cannot be read."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message)


class TokenAcquisitionError(StorjError):
    """Exception raised when a push or pull token cannot be obtained."""

    def __init__(
        self,
        message: str,
        last_error: Optional[BaseException] = None,
        attempts: int = 0
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            last_error: The error raised by the final attempt
            attempts: Number of attempts made
        """
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(message)


class EncryptionKeyMissingError(StorjError):
    """Exception raised when the key-ring holds no secret for a file."""

    def __init__(self, message: str, file_id: Optional[str] = None) -> None:
        self.file_id = file_id
        super().__init__(message)


class NetworkTransferError(StorjError):
    """
    Exception raised when a shard or file transfer fails.

    When the failure can be attributed to a single storage peer the
    exception carries the shard ``pointer``, which lets the download
    pipeline retry while excluding that peer.
    """

    def __init__(
        self,
        message: str,
        pointer: Any = None,
        error_code: Optional[int] = None
    ) -> None:
        self.pointer = pointer
        super().__init__(message, error_code)

    @property
    def peer_id(self) -> Optional[str]:
        """Node id of the failed peer, if known."""
        if self.pointer is None:
            return None
        farmer = getattr(self.pointer, 'farmer', None)
        if farmer is not None:
            return farmer.node_id
        if isinstance(self.pointer, dict):
            farmer = self.pointer.get('farmer') or {}
            return farmer.get('nodeID')
        return None


class RetriesExhaustedError(NetworkTransferError):
    """Exception raised when a download ran out of peers to exclude."""

    def __init__(self, message: str, excluded: Optional[list] = None) -> None:
        self.excluded = list(excluded or [])
        super().__init__(message)


class ResourceExhaustedError(StorjError):
    """Exception raised when host free memory drops under the safety floor."""

    def __init__(self, message: str, available: Optional[int] = None) -> None:
        self.available = available
        super().__init__(message)


class CleanupError(StorjError):
    """Exception raised when temp resources or partial files can't be removed."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message)


class StagingError(StorjError):
    """Exception raised when a file can't be encrypted into its staging area."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message)


class OverwriteRefusedError(StorjError):
    """Exception raised when a download would clobber an existing file."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message)


class InvalidDestinationError(StorjError):
    """Exception raised when a download destination directory is absent."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message)


class KeyRingError(StorjError):
    """Exception raised when the key-ring can't be unlocked or parsed."""
    pass


class BridgeError(StorjError):
    """Exception raised for bridge API errors."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        payload: Any = None
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message returned by the bridge
            status: HTTP status code
            payload: Decoded response body (if available)
        """
        self.status = status
        self.payload = payload
        super().__init__(message, status)


class BridgeNotFoundError(BridgeError, NotFoundError):
    """Exception raised when the bridge answers 404."""
    pass
