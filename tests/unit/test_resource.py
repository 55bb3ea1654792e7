#!/usr/bin/env python3
"""Unit tests for the twisted.web resources"""

from prometheus_client import CollectorRegistry
from twisted.internet import defer
from twisted.internet.error import ConnectionDone
from twisted.internet.task import Clock
from twisted.python.failure import Failure
from twisted.trial.unittest import SynchronousTestCase

from doh_proxy.constants import (
    DOH_MEDIA_TYPE,
    MSG_INVALID_ENDPOINT,
    MSG_METHOD_NOT_ALLOWED,
    MSG_MISSING_DNS_PARAM,
)
from doh_proxy.messages import Method
from doh_proxy.metrics import MetricsCollector
from doh_proxy.resource import RootResource, inbound_from_request
from doh_proxy.router import Router
from doh_proxy.selector import WeightedSelector
from test_utils import (
    ScriptedUpstreamClient,
    make_registry,
    make_request,
    render,
    written_body,
)

DNS_QUERY = b"\xab\xcd\x01\x00\x00\x01\x00\x00\x00\x00\x00\x00"


class FirstProviderSelector(WeightedSelector):
    def select(self, providers):
        return providers[0]


class BrokenRouter:
    """Router whose dispatch fails with an unexpected error"""

    metrics = MetricsCollector(enabled=False)

    def dispatch(self, inbound):
        return defer.fail(RuntimeError("boom"))


def header(request, name):
    values = request.responseHeaders.getRawHeaders(name)
    return values[0] if values else None


class ResourceTestCase(SynchronousTestCase):
    def setUp(self):
        self.clock = Clock()
        self.metrics_registry = CollectorRegistry()
        self.metrics = MetricsCollector(enabled=True, registry=self.metrics_registry)

    def root(self, script=None):
        self.client = ScriptedUpstreamClient(script)
        router = Router(
            make_registry(),
            self.client,
            selector=FirstProviderSelector(),
            clock=self.clock,
            metrics=self.metrics,
        )
        return RootResource(router, self.metrics)


class InboundConversionTests(SynchronousTestCase):
    def test_get_keeps_raw_query_string_and_headers(self):
        request = make_request(
            uri=b"/dns-query?dns=q80BAAAB&ct=x", headers={b"accept": b"application/dns-message"}
        )

        inbound = inbound_from_request(request)

        self.assertIs(inbound.method, Method.GET)
        self.assertEqual(inbound.query_string, "?dns=q80BAAAB&ct=x")
        self.assertIn(("Accept", "application/dns-message"), inbound.headers)
        self.assertIsNone(inbound.body)

    def test_post_reads_body(self):
        request = make_request(method=b"POST", uri=b"/dns-query", body=DNS_QUERY)

        inbound = inbound_from_request(request)

        self.assertEqual(inbound.query_string, "")
        self.assertEqual(inbound.body, DNS_QUERY)


class QueryEndpointTests(ResourceTestCase):
    def test_get_is_forwarded(self):
        request = render(self.root(), make_request(uri=b"/dns-query?dns=q80BAAAB"))

        self.assertEqual(request.responseCode, 200)
        self.assertEqual(written_body(request), b"answer-from-A")
        self.assertEqual(header(request, b"content-type"), DOH_MEDIA_TYPE.encode())
        self.assertEqual(header(request, b"access-control-allow-origin"), b"*")
        self.assertEqual(header(request, b"cache-control"), b"public, max-age=300")
        self.assertEqual(header(request, b"expires"), b"Thu, 01 Jan 1970 00:05:00 GMT")
        self.assertEqual(header(request, b"content-length"), b"13")
        self.assertEqual(request.finished, 1)
        self.assertEqual(
            self.client.attempts[0].target_url, "https://a.example/dns-query?dns=q80BAAAB"
        )

    def test_post_is_forwarded_with_body(self):
        request = make_request(method=b"POST", uri=b"/dns-query", body=DNS_QUERY)

        render(self.root(), request)

        self.assertEqual(request.responseCode, 200)
        self.assertEqual(self.client.attempts[0].body, DNS_QUERY)

    def test_answer_is_logged_with_its_content_type(self):
        with self.assertLogs("doh_proxy.resource", level="DEBUG") as logs:
            render(self.root(), make_request(uri=b"/dns-query?dns=q80BAAAB"))

        expected = f"GET answered 200 with 13 bytes of {DOH_MEDIA_TYPE}"
        self.assertTrue(any(expected in line for line in logs.output), logs.output)

    def test_failover_answer_is_written(self):
        request = render(self.root({"A": "transport"}), make_request())

        self.assertEqual(request.responseCode, 200)
        self.assertEqual(written_body(request), b"answer-from-B")
        self.assertIsNone(header(request, b"expires"))

    def test_all_providers_down(self):
        script = {name: "transport" for name in "ABCD"}
        request = render(self.root(script), make_request())

        self.assertEqual(request.responseCode, 503)
        self.assertEqual(written_body(request), b"All DNS providers are unavailable")

    def test_get_without_dns_parameter(self):
        request = render(self.root(), make_request(uri=b"/dns-query?name=example.com"))

        self.assertEqual(request.responseCode, 400)
        self.assertEqual(written_body(request), MSG_MISSING_DNS_PARAM.encode())
        self.assertEqual(self.client.attempts, [])

    def test_get_without_query_string(self):
        request = render(self.root(), make_request(uri=b"/dns-query"))
        self.assertEqual(request.responseCode, 400)

    def test_unsupported_methods(self):
        for method in (b"PUT", b"DELETE", b"PATCH", b"HEAD"):
            request = render(self.root(), make_request(method=method))
            self.assertEqual(request.responseCode, 405, method)
            self.assertEqual(written_body(request), MSG_METHOD_NOT_ALLOWED.encode())
        self.assertEqual(self.client.attempts, [])

    def test_preflight(self):
        request = render(self.root(), make_request(method=b"OPTIONS", uri=b"/dns-query"))

        self.assertEqual(request.responseCode, 204)
        self.assertEqual(written_body(request), b"")
        self.assertEqual(header(request, b"access-control-allow-origin"), b"*")
        self.assertEqual(
            header(request, b"access-control-allow-methods"), b"GET, POST, OPTIONS"
        )
        self.assertEqual(
            header(request, b"access-control-allow-headers"), b"Content-Type, Accept"
        )
        self.assertEqual(header(request, b"access-control-max-age"), b"86400")
        self.assertEqual(self.client.attempts, [])

    def test_client_disconnect_cancels_upstream_work(self):
        pending = defer.Deferred()
        request = make_request()

        render(self.root({"A": pending}), request)
        self.assertEqual(request.finished, 0)
        request.processingFailed(Failure(ConnectionDone()))

        self.assertTrue(pending.called)
        self.assertEqual(request.finished, 0)
        self.assertEqual(request.written, [])
        self.assertEqual(self.client.attempted_names, ["A"])

    def test_unexpected_failure_is_a_500(self):
        root = RootResource(BrokenRouter(), MetricsCollector(enabled=False))

        request = render(root, make_request())

        self.assertEqual(request.responseCode, 500)
        self.assertEqual(request.finished, 1)

    def test_requests_are_counted(self):
        root = self.root()
        render(root, make_request())
        render(root, make_request(method=b"PUT"))

        self.assertEqual(
            self.metrics_registry.get_sample_value(
                "doh_proxy_requests_total", {"method": "GET", "status": "200"}
            ),
            1.0,
        )
        self.assertEqual(
            self.metrics_registry.get_sample_value(
                "doh_proxy_requests_total", {"method": "PUT", "status": "405"}
            ),
            1.0,
        )


class OtherPathTests(ResourceTestCase):
    def test_unknown_path(self):
        for uri in (b"/", b"/resolve?dns=AAAA", b"/dns-query/extra"):
            request = render(self.root(), make_request(uri=uri))
            self.assertEqual(request.responseCode, 400, uri)
            self.assertEqual(written_body(request), MSG_INVALID_ENDPOINT.encode())
        self.assertEqual(self.client.attempts, [])

    def test_unknown_path_with_post(self):
        request = render(self.root(), make_request(method=b"POST", uri=b"/query", body=DNS_QUERY))
        self.assertEqual(request.responseCode, 400)

    def test_preflight_anywhere(self):
        request = render(self.root(), make_request(method=b"OPTIONS", uri=b"/elsewhere"))
        self.assertEqual(request.responseCode, 204)
        self.assertEqual(header(request, b"access-control-max-age"), b"86400")

    def test_metrics_endpoint_when_enabled(self):
        root = self.root()
        render(root, make_request())

        request = render(root, make_request(uri=b"/metrics"))

        self.assertIn(b"doh_proxy_requests_total", written_body(request))

    def test_metrics_path_is_invalid_when_disabled(self):
        self.metrics = MetricsCollector(enabled=False)
        request = render(self.root(), make_request(uri=b"/metrics"))
        self.assertEqual(request.responseCode, 400)
