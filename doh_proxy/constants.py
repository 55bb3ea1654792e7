# doh_proxy/constants.py
# Version: 1.0.0
# DoH proxy constants - all hardcoded values in one place for easy configuration

"""
DoH Proxy Constants

All hardcoded values are defined here at the top of the module for easy
visibility and modification.
"""

# =============================================================================
# DOH PROTOCOL CONSTANTS
# =============================================================================
DOH_MEDIA_TYPE = "application/dns-message"
DOH_DNS_PARAM = "dns"
USER_AGENT = "DoH-Proxy-Worker/1.0"

# =============================================================================
# LISTENER SETTINGS
# =============================================================================
DEFAULT_LISTEN_PORT = 8053
DEFAULT_LISTEN_ADDRESS = "0.0.0.0"
MIN_PORT_NUMBER = 1
MAX_PORT_NUMBER = 65535

# =============================================================================
# UPSTREAM SETTINGS
# =============================================================================
# Seconds to wait for one upstream attempt; 0 waits forever
UPSTREAM_TIMEOUT = 5.0
MAX_UPSTREAM_TIMEOUT = 60.0
# Redirect hops followed before an attempt counts as a transport failure
UPSTREAM_MAX_REDIRECTS = 5
UPSTREAM_POOL_MAX_PERSISTENT = 4

# =============================================================================
# PROVIDER SETTINGS
# =============================================================================
DEFAULT_PROVIDER_WEIGHT = 10
MIN_PROVIDER_WEIGHT = 1
MAX_PROVIDER_WEIGHT = 1000

# (name, url, weight) in registry order; order decides failover order
DEFAULT_PROVIDERS = (
    ("Cloudflare", "https://cloudflare-dns.com/dns-query", 20),
    ("Google", "https://dns.google/dns-query", 15),
    ("Quad9", "https://dns.quad9.net/dns-query", 15),
    ("OpenDNS", "https://doh.opendns.com/dns-query", 10),
    # Ad-blocking resolvers
    ("AdGuard", "https://dns.adguard.com/dns-query", 10),
    ("ControlD", "https://freedns.controld.com/p2", 10),
    ("Mullvad", "https://adblock.dns.mullvad.net/dns-query", 10),
    ("NextDNS", "https://dns.nextdns.io/dns-query", 10),
)

# =============================================================================
# RESPONSE HEADERS
# =============================================================================
CACHE_TTL = 300  # public max-age on relayed answers (5 minutes)

CORS_ALLOW_ORIGIN = "*"
CORS_ALLOW_METHODS = "GET, POST, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Accept"
CORS_MAX_AGE = 86400

# Never copied between the client and upstream connections
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# =============================================================================
# CLIENT-FACING MESSAGES
# =============================================================================
MSG_INVALID_ENDPOINT = "Invalid endpoint. Use /dns-query"
MSG_METHOD_NOT_ALLOWED = "Method not allowed. Use GET or POST."
MSG_MISSING_DNS_PARAM = "Missing DNS query parameter"
MSG_ALL_UNAVAILABLE = "All DNS providers are unavailable"
MSG_INTERNAL_ERROR = "Internal proxy error"

# =============================================================================
# LOGGING
# =============================================================================
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SYSLOG_FORMAT = "doh-proxy[%(process)d]: %(levelname)s - %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 5
MAX_LOG_PAYLOAD_LENGTH = 100  # Truncate logged query strings to this length
