#!/usr/bin/env python3
"""
Test utilities for DoH proxy tests

Provides shared fakes:
- provider registries with known weights
- an upstream client that answers from a script instead of the network
- Twisted response/agent doubles for the real UpstreamClient
- DummyRequest construction and rendering for the web resources
"""

from io import BytesIO

from twisted.internet import defer
from twisted.python.failure import Failure
from twisted.web import server
from twisted.web.client import ResponseDone
from twisted.web.http_headers import Headers
from twisted.web.resource import getChildForRequest
from twisted.web.test.requesthelper import DummyRequest

from doh_proxy.constants import DOH_MEDIA_TYPE
from doh_proxy.errors import UpstreamNonSuccess, UpstreamTransportFailure
from doh_proxy.messages import AttemptOutcome, AttemptResult, UpstreamResponse
from doh_proxy.providers import Provider, ProviderRegistry

EXAMPLE_WEIGHTS = (("A", 20), ("B", 15), ("C", 15), ("D", 10))

STATUS_PHRASES = {200: "OK", 404: "Not Found", 500: "Internal Server Error", 502: "Bad Gateway"}


def make_provider(name, weight=10):
    return Provider(name=name, url=f"https://{name.lower()}.example/dns-query", weight=weight)


def make_registry(weights=EXAMPLE_WEIGHTS):
    return ProviderRegistry(make_provider(name, weight) for name, weight in weights)


def eight_provider_registry():
    return make_registry(tuple((f"P{i}", 10 + i) for i in range(8)))


class ScriptedUpstreamClient:
    """
    Stand-in for UpstreamClient.

    ``script`` maps provider name to an int status, "transport", "timeout"
    or a Deferred that is returned as-is. Unlisted providers answer 200.
    """

    def __init__(self, script=None):
        self.script = script or {}
        self.attempts = []

    @property
    def attempted_names(self):
        return [attempt.provider.name for attempt in self.attempts]

    def issue(self, attempt):
        self.attempts.append(attempt)
        provider = attempt.provider
        behaviour = self.script.get(provider.name, 200)

        if isinstance(behaviour, defer.Deferred):
            return behaviour

        if behaviour in ("transport", "timeout"):
            outcome = (
                AttemptOutcome.TIMEOUT if behaviour == "timeout" else AttemptOutcome.TRANSPORT_ERROR
            )
            error = UpstreamTransportFailure(provider.name, "connection refused")
            return defer.succeed(AttemptResult(provider, outcome, None, error, 0.01))

        response = UpstreamResponse(
            status=behaviour,
            status_text=STATUS_PHRASES.get(behaviour, ""),
            headers=(
                ("Content-Type", DOH_MEDIA_TYPE),
                ("Content-Length", "17"),
                ("Cache-Control", "max-age=60"),
            ),
            body=f"answer-from-{provider.name}".encode("ascii"),
        )
        if response.ok:
            return defer.succeed(
                AttemptResult(provider, AttemptOutcome.SUCCESS, response, None, 0.01)
            )
        error = UpstreamNonSuccess(provider.name, behaviour)
        return defer.succeed(
            AttemptResult(provider, AttemptOutcome.NON_SUCCESS, response, error, 0.01)
        )


class FakeResponse:
    """Minimal IResponse that hands its whole body over at once"""

    def __init__(self, code=200, phrase=b"OK", headers=None, body=b""):
        self.code = code
        self.phrase = phrase
        self.headers = Headers(headers or {})
        self.length = len(body)
        self._body = body

    def deliverBody(self, protocol):
        protocol.dataReceived(self._body)
        protocol.connectionLost(Failure(ResponseDone()))

    def setPreviousResponse(self, response):
        self.previousResponse = response


class FakeAgent:
    """IAgent that records requests and returns a preset Deferred"""

    def __init__(self, result=None):
        self.result = result
        self.requests = []

    def request(self, method, uri, headers=None, bodyProducer=None):
        self.requests.append((method, uri, headers, bodyProducer))
        if self.result is None:
            return defer.Deferred()
        return self.result


class RoutingAgent:
    """IAgent that answers each URL with a preset FakeResponse"""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def request(self, method, uri, headers=None, bodyProducer=None):
        self.requests.append((method, uri, headers, bodyProducer))
        return defer.succeed(self.routes[uri])


def make_request(method=b"GET", uri=b"/dns-query?dns=AAABAAAB", body=b"", headers=None):
    path = uri.split(b"?", 1)[0]
    request = DummyRequest(path.lstrip(b"/").split(b"/"))
    request.method = method
    request.uri = uri
    request.content = BytesIO(body)
    for name, value in (headers or {}).items():
        request.requestHeaders.setRawHeaders(name, [value])
    return request


def render(root, request):
    """Render through the resource tree, writing synchronous bodies like Site would"""
    resource = getChildForRequest(root, request)
    result = resource.render(request)
    if result is not server.NOT_DONE_YET:
        request.write(result)
        request.finish()
    return request


def written_body(request):
    return b"".join(request.written)
