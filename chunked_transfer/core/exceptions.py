"""Centralized exception definitions and error taxonomy."""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    """Describes severity for surfaced errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categorization used for error routing and HTTP status mapping."""
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    COMPLETENESS = "completeness"
    INTEGRITY = "integrity"
    STORAGE = "storage"
    NETWORK = "network"
    FILE_SYSTEM = "file_system"
    SYSTEM = "system"


class TransferException(Exception):
    """Base exception type for the transfer service and client."""

    def __init__(
        self,
        message: str,
        error_code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.error_code = error_code
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception metadata into a dict."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "details": self.details,
            "type": self.__class__.__name__
        }


# Authentication exceptions
class AuthenticationException(TransferException):
    """Raised when authentication fails."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="AUTH_FAILED",
            category=ErrorCategory.AUTHENTICATION,
            severity=ErrorSeverity.MEDIUM,
            details=details
        )


# Validation exceptions
class ValidationException(TransferException):
    """Raised when request input is malformed. Never retried."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        validation_details = details or {}
        if field:
            validation_details["field"] = field
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.MEDIUM,
            details=validation_details
        )


# Session lifecycle exceptions
class SessionNotFoundException(TransferException):
    """Raised when no staged session exists for an identifier."""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Upload session not found: {session_id}",
            error_code="SESSION_NOT_FOUND",
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.MEDIUM,
            details={"session_id": session_id}
        )


class SessionConflictException(TransferException):
    """Raised when a session is in a state that forbids the operation."""

    def __init__(self, message: str, session_id: str, state: Optional[str] = None):
        details: Dict[str, Any] = {"session_id": session_id}
        if state:
            details["state"] = state
        super().__init__(
            message=message,
            error_code="SESSION_CONFLICT",
            category=ErrorCategory.CONFLICT,
            severity=ErrorSeverity.MEDIUM,
            details=details
        )


class IncompleteUploadException(TransferException):
    """Raised when completion is requested before every chunk arrived."""

    def __init__(self, session_id: str, received: int, total: int, missing: Optional[List[int]] = None):
        super().__init__(
            message=f"Upload incomplete: received {received} of {total} chunks",
            error_code="UPLOAD_INCOMPLETE",
            category=ErrorCategory.COMPLETENESS,
            severity=ErrorSeverity.MEDIUM,
            details={
                "session_id": session_id,
                "received": received,
                "total": total,
                "missing": missing or []
            }
        )
        self.received = received
        self.total = total
        self.missing = missing or []


class IntegrityException(TransferException):
    """Raised when the reassembled artifact does not match what was declared."""

    def __init__(self, message: str, session_id: str, details: Optional[Dict[str, Any]] = None):
        integrity_details = details or {}
        integrity_details["session_id"] = session_id
        super().__init__(
            message=message,
            error_code="INTEGRITY_MISMATCH",
            category=ErrorCategory.INTEGRITY,
            severity=ErrorSeverity.HIGH,
            details=integrity_details
        )


# Storage exceptions
class StorageException(TransferException):
    """Raised for staging or final storage failures."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        storage_details = details or {}
        if operation:
            storage_details["operation"] = operation
        super().__init__(
            message=message,
            error_code="STORAGE_ERROR",
            category=ErrorCategory.STORAGE,
            severity=ErrorSeverity.HIGH,
            details=storage_details,
            original_error=original_error
        )


class MissingChunkException(TransferException):
    """Raised when a chunk recorded as received has no file on disk."""

    def __init__(self, session_id: str, chunk_index: int):
        super().__init__(
            message=f"Chunk {chunk_index} is missing from staging for session {session_id}",
            error_code="CHUNK_MISSING",
            category=ErrorCategory.FILE_SYSTEM,
            severity=ErrorSeverity.HIGH,
            details={"session_id": session_id, "chunk_index": chunk_index}
        )
        self.chunk_index = chunk_index


# Sender-side exceptions
class CompressionException(TransferException):
    """Raised when a payload cannot be compressed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 original_error: Optional[Exception] = None):
        super().__init__(
            message=message,
            error_code="COMPRESSION_ERROR",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.LOW,
            details=details,
            original_error=original_error
        )


class ChunkTransferException(TransferException):
    """Raised by a transport when a request to the receiver fails.

    ``retryable`` tells the orchestrator whether another attempt can help:
    network faults, timeouts and server errors can, rejected input cannot.
    """

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        transfer_details = details or {}
        if status_code is not None:
            transfer_details["status_code"] = status_code
        super().__init__(
            message=message,
            error_code="CHUNK_TRANSFER_ERROR" if retryable else "CHUNK_REJECTED",
            category=ErrorCategory.NETWORK if retryable else ErrorCategory.VALIDATION,
            severity=ErrorSeverity.MEDIUM,
            details=transfer_details,
            original_error=original_error
        )
        self.retryable = retryable
        self.status_code = status_code


class UploadFailedException(TransferException):
    """Raised when an upload cannot be finished within its retry budget."""

    def __init__(self, message: str, session_id: str, details: Optional[Dict[str, Any]] = None,
                 original_error: Optional[Exception] = None, chunk_size: Optional[int] = None):
        failure_details = details or {}
        failure_details["session_id"] = session_id
        if chunk_size is not None:
            failure_details["chunk_size"] = chunk_size
        super().__init__(
            message=message,
            error_code="UPLOAD_FAILED",
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.HIGH,
            details=failure_details,
            original_error=original_error
        )
        self.session_id = session_id
        self.chunk_size = chunk_size


class UploadAbortedException(TransferException):
    """Raised when an upload was stopped by its caller."""

    def __init__(self, session_id: str, completed: int, total: int, chunk_size: Optional[int] = None):
        details: Dict[str, Any] = {"session_id": session_id, "completed": completed, "total": total}
        if chunk_size is not None:
            details["chunk_size"] = chunk_size
        super().__init__(
            message=f"Upload {session_id} aborted after {completed} of {total} chunks",
            error_code="UPLOAD_ABORTED",
            category=ErrorCategory.CONFLICT,
            severity=ErrorSeverity.LOW,
            details=details
        )
        self.session_id = session_id
        self.chunk_size = chunk_size


class ConfigurationException(TransferException):
    """Raised for configuration/initialization failures."""

    def __init__(self, message: str, config_key: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        config_details = details or {}
        if config_key:
            config_details["config_key"] = config_key
        super().__init__(
            message=message,
            error_code="CONFIG_ERROR",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.CRITICAL,
            details=config_details
        )
