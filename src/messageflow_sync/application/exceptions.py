from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class TransportError(AppError):
    """Network failure, timeout or non-2xx response. Retried by the owning loop."""

    def __init__(self, detail: str = "", status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(detail)


class ProtocolError(AppError):
    """Payload could not be decoded into the expected shape."""


class SessionExpiredError(AppError):
    pass
