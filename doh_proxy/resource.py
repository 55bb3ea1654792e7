# doh_proxy/resource.py
"""twisted.web resources exposing the router over HTTP"""

import logging
from collections import OrderedDict

from twisted.internet import defer
from twisted.web import server
from twisted.web.error import UnsupportedMethod
from twisted.web.resource import Resource

from .constants import (
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGIN,
    CORS_MAX_AGE,
    MSG_INTERNAL_ERROR,
    MSG_INVALID_ENDPOINT,
)
from .errors import BadRequest, MethodNotAllowed, RequestError
from .messages import InboundRequest, Method, OutboundResponse
from .metrics import MetricsCollector, metrics_resource

logger = logging.getLogger(__name__)


def render_preflight(request) -> bytes:
    """CORS preflight answer"""
    request.setResponseCode(204)
    request.setHeader(b"access-control-allow-origin", CORS_ALLOW_ORIGIN.encode("ascii"))
    request.setHeader(b"access-control-allow-methods", CORS_ALLOW_METHODS.encode("ascii"))
    request.setHeader(b"access-control-allow-headers", CORS_ALLOW_HEADERS.encode("ascii"))
    request.setHeader(b"access-control-max-age", str(CORS_MAX_AGE).encode("ascii"))
    return b""


def render_text(request, status: int, message: str) -> bytes:
    request.setResponseCode(status)
    request.setHeader(b"content-type", b"text/plain; charset=utf-8")
    return message.encode("utf-8")


def inbound_from_request(request) -> InboundRequest:
    """Build the router's view of a twisted.web request"""
    method = Method.parse(request.method)

    _, sep, query = request.uri.partition(b"?")
    query_string = (sep + query).decode("latin-1")

    headers = tuple(
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, values in request.requestHeaders.getAllRawHeaders()
        for value in values
    )

    body = None
    if method is Method.POST:
        request.content.seek(0)
        body = request.content.read()

    return InboundRequest(method=method, query_string=query_string, headers=headers, body=body)


class InvalidEndpointResource(Resource):
    """Everything outside /dns-query"""

    isLeaf = True

    def render(self, request):
        if request.method == b"OPTIONS":
            return render_preflight(request)
        return render_text(request, BadRequest.status, MSG_INVALID_ENDPOINT)


class DoHQueryResource(Resource):
    """GET/POST/OPTIONS /dns-query"""

    def __init__(self, router, metrics: MetricsCollector = None):
        super().__init__()
        self.router = router
        self.metrics = metrics or router.metrics

    def getChild(self, path, request):
        return InvalidEndpointResource()

    def render(self, request):
        try:
            return super().render(request)
        except UnsupportedMethod:
            return self._reject(request, MethodNotAllowed(request.method.decode("latin-1")))

    def render_OPTIONS(self, request):
        return render_preflight(request)

    def render_GET(self, request):
        return self._forward(request)

    def render_POST(self, request):
        return self._forward(request)

    def _reject(self, request, error: RequestError) -> bytes:
        logger.debug(f"Rejected {request.method!r} {request.uri!r}: {error.message}")
        self.metrics.record_request(request.method.decode("latin-1"), error.status)
        return render_text(request, error.status, error.message)

    def _forward(self, request):
        try:
            inbound = inbound_from_request(request)
        except RequestError as e:
            return self._reject(request, e)

        d = self.router.dispatch(inbound)
        request.notifyFinish().addErrback(self._client_gone, d)
        d.addCallback(self._write_response, request, inbound)
        d.addErrback(self._dispatch_failed, request, inbound)
        return server.NOT_DONE_YET

    @staticmethod
    def _client_gone(reason, d: defer.Deferred):
        logger.debug(f"Client went away before the answer was ready: {reason.getErrorMessage()}")
        d.cancel()

    def _write_response(self, response: OutboundResponse, request, inbound: InboundRequest):
        status_text = response.status_text.encode("latin-1") if response.status_text else None
        request.setResponseCode(response.status, status_text)

        grouped = OrderedDict()
        for name, value in response.headers:
            grouped.setdefault(name.encode("latin-1"), []).append(value.encode("latin-1"))
        for name, values in grouped.items():
            request.responseHeaders.setRawHeaders(name, values)
        request.setHeader(b"content-length", str(len(response.body)).encode("ascii"))

        logger.debug(
            f"{inbound.method.value} answered {response.status} with {len(response.body)} bytes "
            f"of {response.header('Content-Type') or 'untyped content'}"
        )
        request.write(response.body)
        request.finish()
        self.metrics.record_request(inbound.method.value, response.status)

    def _dispatch_failed(self, failure, request, inbound: InboundRequest):
        if failure.check(defer.CancelledError):
            logger.debug("Upstream work cancelled with the client request")
            return None

        if failure.check(RequestError):
            body = self._reject(request, failure.value)
        else:
            logger.error(f"Unexpected failure handling request: {failure.getTraceback()}")
            self.metrics.record_request(inbound.method.value, 500)
            body = render_text(request, 500, MSG_INTERNAL_ERROR)

        request.setHeader(b"content-length", str(len(body)).encode("ascii"))
        request.write(body)
        request.finish()


class RootResource(Resource):
    """Site root: /dns-query, optional /metrics, 400 for anything else"""

    def __init__(self, router, metrics: MetricsCollector = None):
        super().__init__()
        metrics = metrics or router.metrics
        self.putChild(b"dns-query", DoHQueryResource(router, metrics))
        if metrics.enabled:
            self.putChild(b"metrics", metrics_resource(metrics))

    def getChild(self, path, request):
        return InvalidEndpointResource()

    def render(self, request):
        return InvalidEndpointResource().render(request)


def build_site(router, metrics: MetricsCollector = None) -> server.Site:
    return server.Site(RootResource(router, metrics))
