# doh_proxy/providers.py
"""Upstream DoH provider registry"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
from urllib.parse import urlsplit

from .constants import DEFAULT_PROVIDERS
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Provider:
    """Upstream DoH resolver endpoint"""

    name: str
    url: str
    weight: int
    description: str = ""

    def __str__(self):
        return f"{self.name} ({self.url})"


def validate_provider_url(url: str) -> str:
    """Check that url is an absolute http(s) endpoint a query string can be appended to"""
    parts = urlsplit(url)
    if parts.scheme not in ("https", "http") or not parts.hostname:
        raise ConfigurationError(
            f"Provider URL '{url}' is not an absolute HTTPS URL",
            "Use a full endpoint such as https://dns.example/dns-query",
        )
    if parts.query or parts.fragment:
        raise ConfigurationError(
            f"Provider URL '{url}' must not carry a query string or fragment",
            "The client's query string is appended to the URL as-is",
        )
    if parts.scheme == "http":
        logger.warning(f"Provider URL {url} is not HTTPS; queries will travel in clear text")
    return url


class ProviderRegistry:
    """
    Ordered, read-only sequence of providers.

    Order matters: failover walks candidates in registry order.
    """

    def __init__(self, providers: Iterable[Provider]):
        providers = tuple(providers)
        if not providers:
            raise ConfigurationError(
                "No upstream DoH providers configured",
                "Add at least one [provider:NAME] section with a url",
            )

        seen = set()
        for provider in providers:
            if not isinstance(provider.weight, int) or provider.weight <= 0:
                raise ConfigurationError(
                    f"Provider {provider.name} has non-positive weight {provider.weight!r}",
                    "Weights must be whole numbers greater than zero",
                )
            if provider.name in seen:
                raise ConfigurationError(
                    f"Provider name '{provider.name}' is used more than once",
                    "Give every provider a unique name",
                )
            seen.add(provider.name)
            validate_provider_url(provider.url)

        self._providers: Tuple[Provider, ...] = providers

    @classmethod
    def default(cls) -> "ProviderRegistry":
        return cls(Provider(name, url, weight) for name, url, weight in DEFAULT_PROVIDERS)

    def providers(self) -> Tuple[Provider, ...]:
        return self._providers

    def without(self, excluded: Provider) -> Tuple[Provider, ...]:
        """All providers except ``excluded``, registry order preserved"""
        return tuple(p for p in self._providers if p.name != excluded.name)

    def get(self, name: str) -> Optional[Provider]:
        for provider in self._providers:
            if provider.name == name:
                return provider
        return None

    @property
    def total_weight(self) -> int:
        return sum(p.weight for p in self._providers)

    def __iter__(self):
        return iter(self._providers)

    def __len__(self):
        return len(self._providers)

    def __repr__(self):
        names = ", ".join(p.name for p in self._providers)
        return f"ProviderRegistry([{names}])"
