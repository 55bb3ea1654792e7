# doh_proxy/messages.py
"""Request, attempt and response descriptors passed between proxy components"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple
from urllib.parse import parse_qs

from .constants import DOH_DNS_PARAM
from .errors import MethodNotAllowed
from .providers import Provider

HeaderList = Tuple[Tuple[str, str], ...]


class Method(str, Enum):
    """Methods the router forwards upstream"""

    GET = "GET"
    POST = "POST"

    @classmethod
    def parse(cls, value) -> "Method":
        if isinstance(value, bytes):
            value = value.decode("latin-1")
        try:
            return cls(value.upper())
        except (ValueError, AttributeError):
            raise MethodNotAllowed(str(value))


class AttemptOutcome(Enum):
    """Result of one upstream attempt"""

    SUCCESS = "success"
    NON_SUCCESS = "non_success"
    TRANSPORT_ERROR = "transport_error"
    TIMEOUT = "timeout"

    @property
    def is_transport_failure(self) -> bool:
        return self in (AttemptOutcome.TRANSPORT_ERROR, AttemptOutcome.TIMEOUT)


def header_value(headers: Iterable[Tuple[str, str]], name: str) -> Optional[str]:
    """First value of a header, case-insensitive"""
    name = name.lower()
    for key, value in headers:
        if key.lower() == name:
            return value
    return None


def without_headers(headers: Iterable[Tuple[str, str]], names) -> List[Tuple[str, str]]:
    names = {n.lower() for n in names}
    return [(k, v) for k, v in headers if k.lower() not in names]


def set_header(headers: List[Tuple[str, str]], name: str, value: str) -> List[Tuple[str, str]]:
    """Replace every occurrence of a header with a single value"""
    headers = without_headers(headers, (name,))
    headers.append((name, value))
    return headers


@dataclass(frozen=True)
class InboundRequest:
    """One client call as seen by the router"""

    method: Method
    query_string: str = ""  # raw, including the leading "?" when present
    headers: HeaderList = ()
    body: Optional[bytes] = None

    def has_query_param(self, name: str = DOH_DNS_PARAM) -> bool:
        query = self.query_string[1:] if self.query_string.startswith("?") else self.query_string
        return name in parse_qs(query, keep_blank_values=True)


@dataclass(frozen=True)
class UpstreamAttempt:
    provider: Provider
    target_url: str
    method: Method
    headers: HeaderList
    body: Optional[bytes] = None


@dataclass(frozen=True)
class UpstreamResponse:
    status: int
    status_text: str
    headers: HeaderList
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of one attempt: a response, a typed failure, or both for non-2xx"""

    provider: Provider
    outcome: AttemptOutcome
    response: Optional[UpstreamResponse] = None
    error: Optional[Exception] = None
    elapsed: float = 0.0


@dataclass
class OutboundResponse:
    """Final response handed back to the HTTP entry point"""

    status: int
    status_text: str
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    provider: Optional[Provider] = None

    def header(self, name: str) -> Optional[str]:
        return header_value(self.headers, name)
