# doh_proxy/errors.py
"""Error taxonomy for the DoH proxy"""

from typing import Optional

from .constants import (
    MSG_ALL_UNAVAILABLE,
    MSG_METHOD_NOT_ALLOWED,
    MSG_MISSING_DNS_PARAM,
)


class DoHProxyError(Exception):
    """Base class for all proxy errors"""


class RequestError(DoHProxyError):
    """Malformed inbound request, answered directly and never retried"""

    status = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class BadRequest(RequestError):
    status = 400

    def __init__(self, message: str = MSG_MISSING_DNS_PARAM):
        super().__init__(message)


class MethodNotAllowed(RequestError):
    status = 405

    def __init__(self, method: str = "", message: str = MSG_METHOD_NOT_ALLOWED):
        self.method = method
        super().__init__(message)


class UpstreamError(DoHProxyError):
    """A single upstream attempt failed"""

    def __init__(self, provider_name: str, message: str):
        self.provider_name = provider_name
        super().__init__(f"{provider_name}: {message}")


class UpstreamTransportFailure(UpstreamError):
    """Network-level failure talking to a provider"""


class UpstreamNonSuccess(UpstreamError):
    """Provider answered with a non-2xx status"""

    def __init__(self, provider_name: str, status: int):
        self.status = status
        super().__init__(provider_name, f"HTTP {status}")


class AllProvidersExhausted(DoHProxyError):
    """Every failover candidate failed"""

    status = 503

    def __init__(self, attempted: int = 0):
        self.attempted = attempted
        super().__init__(MSG_ALL_UNAVAILABLE)


class ConfigurationError(DoHProxyError):
    """Invalid provider registry or settings; fatal at startup"""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)
