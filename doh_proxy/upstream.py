# doh_proxy/upstream.py
"""HTTP(S) client that performs one upstream DoH attempt"""

import logging
from io import BytesIO
from urllib.parse import urljoin

from twisted.internet import defer
from twisted.web.client import (
    Agent,
    BrowserLikePolicyForHTTPS,
    FileBodyProducer,
    HTTPConnectionPool,
    RedirectAgent,
    readBody,
)
from twisted.web.error import InfiniteRedirection
from twisted.web.http_headers import Headers

from .constants import (
    MAX_LOG_PAYLOAD_LENGTH,
    UPSTREAM_MAX_REDIRECTS,
    UPSTREAM_POOL_MAX_PERSISTENT,
    UPSTREAM_TIMEOUT,
)
from .errors import UpstreamNonSuccess, UpstreamTransportFailure
from .messages import AttemptOutcome, AttemptResult, Method, UpstreamAttempt, UpstreamResponse

logger = logging.getLogger(__name__)

# Redirects that keep the method and body; RedirectAgent refuses these for POST
METHOD_PRESERVING_REDIRECTS = (307, 308)


def build_agent(reactor, pool=None):
    """Agent that verifies TLS like a browser, over a persistent connection pool"""
    if pool is None:
        pool = HTTPConnectionPool(reactor, persistent=True)
        pool.maxPersistentPerHost = UPSTREAM_POOL_MAX_PERSISTENT
    return Agent(reactor, contextFactory=BrowserLikePolicyForHTTPS(), pool=pool)


def _body_producer(body):
    return FileBodyProducer(BytesIO(body)) if body is not None else None


class UpstreamClient:
    """
    Issue an UpstreamAttempt and report how it went.

    The returned Deferred never fails for network or HTTP problems; those
    come back as an AttemptResult. It only fails with CancelledError when
    the caller cancels it.

    GET requests follow redirects through RedirectAgent. POST requests
    follow 307/308 here, re-sending the same body to the new location.
    More than ``max_redirects`` hops is a transport failure either way.
    """

    def __init__(
        self,
        reactor=None,
        agent=None,
        timeout: float = UPSTREAM_TIMEOUT,
        max_redirects: int = UPSTREAM_MAX_REDIRECTS,
    ):
        if reactor is None:
            from twisted.internet import reactor
        self._reactor = reactor
        self._agent = agent if agent is not None else build_agent(reactor)
        self._redirecting_agent = RedirectAgent(self._agent, redirectLimit=max_redirects)
        self.timeout = timeout
        self.max_redirects = max_redirects

    def issue(self, attempt: UpstreamAttempt) -> defer.Deferred:
        started = self._reactor.seconds()
        logger.debug(
            f"{attempt.method.value} {attempt.target_url[:MAX_LOG_PAYLOAD_LENGTH]} "
            f"via {attempt.provider.name}"
        )

        headers = Headers()
        for name, value in attempt.headers:
            headers.addRawHeader(name.encode("latin-1"), value.encode("latin-1"))

        url = attempt.target_url.encode("latin-1")
        if attempt.method is Method.POST:
            pending = self._post(url, headers, attempt.body, 0)
        else:
            pending = self._redirecting_agent.request(
                attempt.method.value.encode("ascii"), url, headers, _body_producer(attempt.body)
            )

        pending.addCallback(self._read_response)
        if self.timeout:
            pending.addTimeout(self.timeout, self._reactor)
        pending.addCallbacks(
            self._completed,
            self._failed,
            callbackArgs=(attempt, started),
            errbackArgs=(attempt, started),
        )

        cancelled = []

        def cancel(_):
            cancelled.append(True)
            pending.cancel()

        result = defer.Deferred(cancel)

        def deliver(attempt_result):
            # A cancelled result Deferred errbacks with CancelledError on its own
            if not cancelled:
                result.callback(attempt_result)

        pending.addCallback(deliver)
        return result

    def _post(self, url: bytes, headers: Headers, body, hops: int) -> defer.Deferred:
        d = self._agent.request(b"POST", url, headers, _body_producer(body))
        d.addCallback(self._follow_post_redirect, url, headers, body, hops)
        return d

    def _follow_post_redirect(self, response, url: bytes, headers: Headers, body, hops: int):
        locations = response.headers.getRawHeaders(b"location")
        if response.code not in METHOD_PRESERVING_REDIRECTS or not locations:
            return response

        location = urljoin(url.decode("latin-1"), locations[0].decode("latin-1"))
        location = location.encode("latin-1")

        def next_hop(_):
            if hops >= self.max_redirects:
                raise InfiniteRedirection(
                    response.code, b"Too many redirects", location=location
                )
            logger.debug(f"Following {response.code} redirect to {location.decode('latin-1')}")
            return self._post(location, headers, body, hops + 1)

        # Drain the redirect body so the connection can go back to the pool
        return readBody(response).addCallback(next_hop)

    @staticmethod
    def _read_response(response):
        def build(body):
            headers = tuple(
                (name.decode("latin-1"), value.decode("latin-1"))
                for name, values in response.headers.getAllRawHeaders()
                for value in values
            )
            phrase = response.phrase
            if isinstance(phrase, bytes):
                phrase = phrase.decode("latin-1")
            return UpstreamResponse(response.code, phrase, headers, body)

        return readBody(response).addCallback(build)

    def _completed(self, response: UpstreamResponse, attempt: UpstreamAttempt, started: float):
        elapsed = self._reactor.seconds() - started
        if response.ok:
            return AttemptResult(attempt.provider, AttemptOutcome.SUCCESS, response, None, elapsed)

        logger.debug(f"{attempt.provider.name} answered HTTP {response.status}")
        return AttemptResult(
            attempt.provider,
            AttemptOutcome.NON_SUCCESS,
            response,
            UpstreamNonSuccess(attempt.provider.name, response.status),
            elapsed,
        )

    def _failed(self, failure, attempt: UpstreamAttempt, started: float):
        elapsed = self._reactor.seconds() - started
        if failure.check(defer.TimeoutError):
            outcome = AttemptOutcome.TIMEOUT
            message = f"no answer within {self.timeout}s"
        else:
            outcome = AttemptOutcome.TRANSPORT_ERROR
            message = failure.getErrorMessage() or failure.type.__name__

        logger.debug(f"{attempt.provider.name} attempt failed: {message}")
        return AttemptResult(
            attempt.provider,
            outcome,
            None,
            UpstreamTransportFailure(attempt.provider.name, message),
            elapsed,
        )
