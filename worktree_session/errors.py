"""
Error handling for the worktree session core.

Components raise the exceptions defined here; the hierarchy operations and the
command surface convert them into OperationResult values and failure
dictionaries so callers can render a message without special-casing.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class FailureKind(str, Enum):
    """Failure taxonomy shared by every component."""

    NOT_FOUND = "not_found"
    VALIDATION = "validation_failure"
    IO = "io_failure"
    PARSE = "parse_failure"
    EXTERNAL_TOOL = "external_tool_failure"
    INTERNAL = "internal_error"


class ErrorCode(Enum):
    """
    Error codes for the worktree session core.

    Command surface codes:
    - -32600: Invalid request
    - -32601: Method not found
    - -32602: Invalid params
    - -32603: Internal error

    Custom codes (1000-1399):
    - 1000-1099: Entity not found
    - 1100-1199: Validation errors
    - 1200-1299: File system errors
    - 1300-1399: External tool errors (git, port query)
    """

    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Entity not found (1000-1099)
    WORKSPACE_NOT_FOUND = 1000
    WORKTREE_NOT_FOUND = 1001
    TAB_GROUP_NOT_FOUND = 1002
    TAB_NOT_FOUND = 1003

    # Validation errors (1100-1199)
    VALIDATION_FAILED = 1100
    PERMUTATION_MISMATCH = 1101
    DUPLICATE_REPOSITORY = 1102
    DUPLICATE_WORKTREE = 1103
    GRID_CELL_OCCUPIED = 1104

    # File system errors (1200-1299)
    FILE_READ_ERROR = 1200
    FILE_WRITE_ERROR = 1201
    DOCUMENT_PARSE_ERROR = 1202

    # External tool errors (1300-1399)
    NOT_A_GIT_REPOSITORY = 1300
    BRANCH_UNKNOWN = 1301
    GIT_COMMAND_FAILED = 1302
    PORT_QUERY_FAILED = 1303
    PROCESS_GONE = 1304


_KIND_BY_RANGE = (
    (1000, 1099, FailureKind.NOT_FOUND),
    (1100, 1199, FailureKind.VALIDATION),
    (1200, 1201, FailureKind.IO),
    (1202, 1202, FailureKind.PARSE),
    (1300, 1399, FailureKind.EXTERNAL_TOOL),
    (-32602, -32600, FailureKind.VALIDATION),
)


def kind_for_code(code: ErrorCode) -> FailureKind:
    """Map an error code onto its failure kind."""
    for low, high, kind in _KIND_BY_RANGE:
        if low <= code.value <= high:
            return kind
    return FailureKind.INTERNAL


class SessionError(Exception):
    """Base exception for worktree session errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize session error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            suggestion: Suggested recovery action
            context: Additional context for debugging
        """
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.context = context or {}
        super().__init__(message)

    @property
    def kind(self) -> FailureKind:
        return kind_for_code(self.code)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to a dictionary for the command surface.

        Returns:
            Error dictionary with code, kind, message, suggestion, and context
        """
        result = {
            "code": self.code.value,
            "kind": self.kind.value,
            "message": self.message
        }

        if self.suggestion:
            result["suggestion"] = self.suggestion

        if self.context:
            result["context"] = self.context

        return result


class NotFoundError(SessionError):
    """Referenced workspace, worktree, tab group or tab does not exist."""

    _CODES = {
        "workspace": ErrorCode.WORKSPACE_NOT_FOUND,
        "worktree": ErrorCode.WORKTREE_NOT_FOUND,
        "tab group": ErrorCode.TAB_GROUP_NOT_FOUND,
        "tab": ErrorCode.TAB_NOT_FOUND,
    }

    def __init__(self, entity: str, entity_id: Optional[str]):
        super().__init__(
            code=self._CODES.get(entity, ErrorCode.WORKSPACE_NOT_FOUND),
            message=f"{entity.capitalize()} not found: {entity_id}",
            context={"entity": entity, "id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class ValidationFailure(SessionError):
    """Request is well-formed but conflicts with the current document."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(code=code, message=message, suggestion=suggestion, context=context)


class PersistenceError(SessionError):
    """Reading or writing the persisted document failed."""

    def __init__(self, file_path: str, reason: str, code: ErrorCode = ErrorCode.FILE_WRITE_ERROR):
        """
        Initialize persistence error.

        Args:
            file_path: Path to the session document
            reason: Reason for failure
            code: FILE_READ_ERROR, FILE_WRITE_ERROR or DOCUMENT_PARSE_ERROR
        """
        super().__init__(
            code=code,
            message=f"Failed to access session document {file_path}: {reason}",
            suggestion="Check file permissions and free disk space",
            context={"file_path": file_path, "reason": reason}
        )


class ExternalToolError(SessionError):
    """An external tool (git, the port query) could not run."""

    def __init__(
        self,
        operation: str,
        reason: str,
        code: ErrorCode = ErrorCode.GIT_COMMAND_FAILED,
        suggestion: Optional[str] = None
    ):
        """
        Initialize external tool error.

        Args:
            operation: Operation that failed (e.g., "worktree add", "port query")
            reason: Reason for failure
            code: Error code within the external tool range
            suggestion: Recovery suggestion
        """
        super().__init__(
            code=code,
            message=f"{operation} failed: {reason}",
            suggestion=suggestion,
            context={"operation": operation, "reason": reason}
        )


class ProcessGoneError(ExternalToolError):
    """The process whose ports were queried no longer exists."""

    def __init__(self, pid: int):
        super().__init__(
            operation="port query",
            reason=f"process {pid} no longer exists",
            code=ErrorCode.PROCESS_GONE
        )
        self.pid = pid


@dataclass
class OperationResult(Generic[T]):
    """Discriminated result of a hierarchy operation.

    Exactly one of ``value`` (on success) or ``error`` (on failure) is
    meaningful. ``value`` may legitimately be None for operations that only
    report success.
    """

    success: bool
    value: Optional[T] = None
    error: Optional[SessionError] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "OperationResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def failure(cls, error: SessionError) -> "OperationResult[T]":
        return cls(success=False, error=error)

    @property
    def kind(self) -> Optional[FailureKind]:
        return self.error.kind if self.error else None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if not self.success:
            raise self.error
        return self.value

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "value": _jsonable(self.value)}
        return {"success": False, "error": self.error.to_dict()}


def _jsonable(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


def error_response(error: Exception) -> Dict[str, Any]:
    """
    Create a command surface failure response from an exception.

    Args:
        error: Exception to convert

    Returns:
        Failure dictionary with the structured error
    """
    if isinstance(error, SessionError):
        error_dict = error.to_dict()
    else:
        error_dict = {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "kind": FailureKind.INTERNAL.value,
            "message": str(error),
            "suggestion": "Check the logs for details"
        }

    return {"success": False, "error": error_dict}


def validate_params(params: Dict[str, Any], required: list, optional: Optional[list] = None) -> None:
    """
    Validate command parameters.

    Args:
        params: Parameters dictionary
        required: List of required parameter names
        optional: List of optional parameter names

    Raises:
        ValidationFailure: If a required parameter is missing or an unknown one is given
    """
    missing = [name for name in required if name not in params]
    if missing:
        raise ValidationFailure(
            f"Missing required parameter(s): {', '.join(missing)}",
            code=ErrorCode.INVALID_PARAMS,
            suggestion=f"Provide parameters: {', '.join(required)}",
            context={"missing": missing}
        )

    allowed = set(required) | set(optional or [])
    unknown = [name for name in params if name not in allowed]
    if unknown:
        raise ValidationFailure(
            f"Unknown parameter(s): {', '.join(unknown)}",
            code=ErrorCode.INVALID_PARAMS,
            suggestion=f"Allowed parameters: {', '.join(sorted(allowed))}",
            context={"unknown": unknown}
        )
