"""
cdpwright Error Taxonomy - Custom exception classes for CDP browser control.

Every error carries optional CDP context (session, target, method) so that a
failure deep in the transport can be traced back to the command that caused it.
"""
from typing import Optional


class CdpwrightError(Exception):
    """Base exception for all cdpwright errors."""

    def __init__(self, message: str, session_id: Optional[str] = None,
                 target_id: Optional[str] = None, method: Optional[str] = None,
                 **context):
        super().__init__(message)
        self.message = message
        self.session_id = session_id
        self.target_id = target_id
        self.method = method
        self.context = context

    def __str__(self):
        parts = [self.message]
        if self.session_id:
            parts.append(f"session_id={self.session_id}")
        if self.target_id:
            parts.append(f"target_id={self.target_id}")
        if self.method:
            parts.append(f"method={self.method}")
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"context=({context_str})")
        return " | ".join(parts)


class CDPConnectionError(CdpwrightError):
    """Raised when the discovery endpoint or websocket cannot be reached."""
    pass


class CDPTimeoutError(CdpwrightError):
    """Raised when a command, navigation or element wait exceeds its bound."""

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class CDPProtocolError(CdpwrightError):
    """Raised when CDP returns an error response or a malformed message."""

    def __init__(self, message: str, code: Optional[int] = None,
                 cdp_error: Optional[dict] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code
        self.cdp_error = cdp_error


class CDPClosedError(CdpwrightError):
    """Raised when an operation targets a closed channel, session or page."""
    pass


class BrowserLaunchError(CdpwrightError):
    """Raised when the browser process cannot be started."""
    pass


class EvaluationError(CdpwrightError):
    """Raised when a page-side expression throws."""

    def __init__(self, message: str, exception_details: Optional[dict] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.exception_details = exception_details


class NavigationError(CdpwrightError):
    """Raised when the browser reports a failed navigation."""
    pass


class ElementNotFoundError(CdpwrightError):
    """Raised when an action's selector matches nothing."""

    def __init__(self, selector: str, **kwargs):
        super().__init__(f"Element not found: {selector}", **kwargs)
        self.selector = selector
