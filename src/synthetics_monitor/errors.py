from typing import Optional


class SyntheticsException(Exception):
    """Base class for everything the synthetics client and manager raise.

    Carries the operation name and the monitor id (when known) so callers can
    report which call on which resource failed.
    """

    def __init__(self, message: str, operation: Optional[str] = None, monitor_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.monitor_id = monitor_id

    def __str__(self):
        parts = []
        if self.operation:
            parts.append(self.operation)
        if self.monitor_id:
            parts.append(f"monitor={self.monitor_id}")
        if parts:
            return f"[{' '.join(parts)}] {self.message}"
        return self.message


class InvalidArgument(SyntheticsException):
    """Raised for malformed caller input, e.g. an empty id"""
    pass


class NotFound(SyntheticsException):
    """Raised when a single monitor fetch returns 404"""
    pass


class ScriptNotFound(NotFound):
    """Raised when a monitor has no script attached"""
    pass


class RemoteError(SyntheticsException):
    """Raised for any non-success status the API returns"""

    def __init__(self, status: int, body: str, operation: Optional[str] = None, monitor_id: Optional[str] = None):
        super().__init__(f"invalid response with code {status}. Message: {body}", operation, monitor_id)
        self.status = status
        self.body = body


class ProtocolError(SyntheticsException):
    """Raised when a success response cannot be decoded or lacks the id header"""
    pass


class ParseError(SyntheticsException):
    """Raised for malformed timestamps"""
    pass


class ScriptUpdateError(SyntheticsException):
    """Raised when a monitor was saved but attaching its script failed.

    The monitor exists remotely under ``monitor_id``; callers may retry only the
    script step or tear the monitor down.
    """

    def __init__(self, monitor_id: str, cause: Exception, operation: Optional[str] = None):
        super().__init__(f"monitor saved but script update failed: {cause}", operation, monitor_id)
        self.cause = cause
