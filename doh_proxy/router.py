# doh_proxy/router.py
# Request routing and failover across upstream DoH providers

"""
Router

dispatch() picks a primary provider by weighted random choice and relays
its answer, whatever the HTTP status. Only a transport-level failure of the
primary (connection error, TLS error, timeout) moves the request to
failover(), which walks the remaining providers in registry order and
accepts the first 2xx answer. When every candidate fails the client gets a
503.

The primary choice never looks at past failures and failover only looks
at the status code of the current request. Nothing is remembered between
requests.
"""

import logging
from dataclasses import replace
from typing import Optional, Tuple

from twisted.internet import defer
from twisted.web.http import datetimeToString

from .constants import (
    CACHE_TTL,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGIN,
    DOH_DNS_PARAM,
    HOP_BY_HOP_HEADERS,
    USER_AGENT,
)
from .errors import AllProvidersExhausted, BadRequest, RequestError
from .messages import (
    AttemptOutcome,
    AttemptResult,
    InboundRequest,
    Method,
    OutboundResponse,
    UpstreamResponse,
    set_header,
    without_headers,
)
from .metrics import MetricsCollector
from .providers import Provider, ProviderRegistry
from .selector import WeightedSelector
from .translator import translate

logger = logging.getLogger(__name__)

# Recomputed when the response is written to the client
RELAY_DROP_HEADERS = HOP_BY_HOP_HEADERS | {"content-length"}


class Router:
    """Routes one inbound request to an upstream provider, failing over when needed"""

    def __init__(
        self,
        registry: ProviderRegistry,
        client,
        selector: Optional[WeightedSelector] = None,
        cache_ttl: int = CACHE_TTL,
        user_agent: str = USER_AGENT,
        clock=None,
        metrics: Optional[MetricsCollector] = None,
    ):
        if clock is None:
            from twisted.internet import reactor as clock
        self.registry = registry
        self.client = client
        self.selector = selector or WeightedSelector()
        self.cache_ttl = cache_ttl
        self.user_agent = user_agent
        self.clock = clock
        self.metrics = metrics or MetricsCollector(enabled=False)

    def validate(self, inbound: InboundRequest) -> InboundRequest:
        """Reject anything but GET with a dns parameter or POST"""
        method = Method.parse(inbound.method)
        if method is Method.GET and not inbound.has_query_param(DOH_DNS_PARAM):
            raise BadRequest()
        if inbound.method is not method:
            inbound = replace(inbound, method=method)
        return inbound

    def dispatch(self, inbound: InboundRequest) -> defer.Deferred:
        """
        Resolve to an OutboundResponse.

        Fails with BadRequest or MethodNotAllowed before any upstream call
        when the request is malformed.
        """
        try:
            inbound = self.validate(inbound)
        except RequestError as e:
            return defer.fail(e)
        return self._dispatch(inbound)

    @defer.inlineCallbacks
    def _dispatch(self, inbound: InboundRequest):
        provider = self.selector.select(self.registry.providers())
        logger.debug(f"Selected {provider.name} for {inbound.method.value} request")

        result = yield self._attempt(inbound, provider)
        if result.outcome.is_transport_failure:
            logger.warning(f"Primary provider failed ({result.error}); failing over")
            self.metrics.record_failover()
            response = yield self.failover(inbound, provider)
            return response

        return self.finalize(result.response, result.provider, primary=True)

    def failover_candidates(self, excluded: Provider) -> Tuple[Provider, ...]:
        return self.registry.without(excluded)

    @defer.inlineCallbacks
    def failover(self, inbound: InboundRequest, excluded: Provider):
        """Try every other provider once, in registry order; first 2xx wins"""
        candidates = self.failover_candidates(excluded)
        for provider in candidates:
            result = yield self._attempt(inbound, provider)
            if result.outcome is AttemptOutcome.SUCCESS:
                logger.info(f"Failover to {provider.name} succeeded")
                return self.finalize(result.response, provider, primary=False)
            logger.debug(f"Failover candidate {provider.name} skipped: {result.error}")

        exhausted = AllProvidersExhausted(attempted=len(candidates))
        logger.error(f"{exhausted} (primary {excluded.name}, {len(candidates)} fallbacks tried)")
        self.metrics.record_exhausted()
        return self.exhausted_response(exhausted)

    def _attempt(self, inbound: InboundRequest, provider: Provider) -> defer.Deferred:
        attempt = translate(inbound, provider, self.user_agent)
        return self.client.issue(attempt).addCallback(self._record)

    def _record(self, result: AttemptResult) -> AttemptResult:
        self.metrics.record_attempt(result.provider.name, result.outcome.value, result.elapsed)
        return result

    def finalize(
        self, upstream: UpstreamResponse, provider: Provider, primary: bool
    ) -> OutboundResponse:
        """Relay the upstream answer with CORS and cache headers forced on"""
        headers = without_headers(upstream.headers, RELAY_DROP_HEADERS)
        headers = set_header(headers, "Access-Control-Allow-Origin", CORS_ALLOW_ORIGIN)
        headers = set_header(headers, "Access-Control-Allow-Methods", CORS_ALLOW_METHODS)
        headers = set_header(headers, "Access-Control-Allow-Headers", CORS_ALLOW_HEADERS)
        headers = set_header(headers, "Cache-Control", f"public, max-age={self.cache_ttl}")
        if primary:
            expires = datetimeToString(self.clock.seconds() + self.cache_ttl)
            headers = set_header(headers, "Expires", expires.decode("ascii"))

        return OutboundResponse(
            status=upstream.status,
            status_text=upstream.status_text,
            headers=headers,
            body=upstream.body,
            provider=provider,
        )

    @staticmethod
    def exhausted_response(error: AllProvidersExhausted) -> OutboundResponse:
        return OutboundResponse(
            status=error.status,
            status_text="Service Unavailable",
            headers=[("Content-Type", "text/plain; charset=utf-8")],
            body=str(error).encode("utf-8"),
        )
