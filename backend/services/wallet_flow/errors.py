from typing import Any, Optional

from utils.retry import FailureClass


class RpcError(Exception):
    """Base class for JSON-RPC failures."""


class RpcTransportError(RpcError):
    """A single attempt failed at the HTTP/transport layer."""

    def __init__(
        self,
        message: str,
        failure: FailureClass,
        *,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.failure = failure
        self.endpoint = endpoint
        self.status_code = status_code


class RpcResponseError(RpcError):
    """The endpoint answered, but with a JSON-RPC error object or an unusable result."""

    def __init__(self, message: str, error: Optional[Any] = None):
        super().__init__(message)
        self.error = error

    @property
    def code(self) -> Optional[int]:
        if isinstance(self.error, dict):
            code = self.error.get("code")
            if isinstance(code, int):
                return code
        return None


class RpcExhaustedError(RpcError):
    """Retries and endpoint rotation were used up without a successful answer."""

    def __init__(self, message: str, failure: FailureClass, attempts: int):
        super().__init__(message)
        self.failure = failure
        self.attempts = attempts
