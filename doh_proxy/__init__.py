"""
DNS-over-HTTPS Forwarding Proxy
Relays DoH queries to a weighted pool of upstream resolvers with failover
"""

from .version import __author__, __version__

__all__ = ["__author__", "__version__"]
