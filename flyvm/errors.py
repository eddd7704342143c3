"""Project-specific exception types."""

from __future__ import annotations


class FlyVMError(RuntimeError):
    """Base error for domain-level flyvm failures."""


class ConfigurationError(FlyVMError):
    """Raised when credentials or target options are missing or invalid."""


class RemoteAPIError(FlyVMError):
    """Raised when the control-plane API answers with a non-success status."""

    def __init__(
        self, status_code: int, body: str = '', *, method: str = '', path: str = ''
    ):
        self.status_code = status_code
        self.body = body
        self.method = method
        self.path = path
        where = f' {method} {path}'.rstrip() if method or path else ''
        super().__init__(
            f'Remote API error (status={status_code}){where}: {body}'.strip()
        )


class NotFoundError(FlyVMError):
    """Raised when a machine lookup by name finds nothing."""


class WaitTimeoutError(FlyVMError, TimeoutError):
    """Raised when a bounded wait elapses without success."""

    def __init__(self, message: str, elapsed: float):
        self.elapsed = elapsed
        super().__init__(f'{message} (elapsed={elapsed:.1f}s)')


class TunnelError(FlyVMError):
    """Raised when the mesh session or a socket forward cannot be established."""
