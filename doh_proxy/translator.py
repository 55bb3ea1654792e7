# doh_proxy/translator.py
"""Translate an inbound DoH request into a request for one upstream provider"""

from .constants import DOH_MEDIA_TYPE, HOP_BY_HOP_HEADERS, USER_AGENT
from .messages import InboundRequest, Method, UpstreamAttempt, set_header, without_headers
from .providers import Provider

# Rewritten by the HTTP client for the new host and body
CONNECTION_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length"}


def translate(
    inbound: InboundRequest, provider: Provider, user_agent: str = USER_AGENT
) -> UpstreamAttempt:
    """
    Build the upstream attempt for ``provider``.

    The query string is appended to the provider URL untouched, so a GET
    ``dns=`` payload is never decoded or re-encoded.
    """
    method = Method.parse(inbound.method)
    headers = without_headers(inbound.headers, CONNECTION_HEADERS)

    if method is Method.POST:
        headers = set_header(headers, "Content-Type", DOH_MEDIA_TYPE)
        body = inbound.body if inbound.body is not None else b""
    else:
        headers = set_header(headers, "Accept", DOH_MEDIA_TYPE)
        body = None

    headers = set_header(headers, "User-Agent", user_agent)

    return UpstreamAttempt(
        provider=provider,
        target_url=provider.url + inbound.query_string,
        method=method,
        headers=tuple(headers),
        body=body,
    )
