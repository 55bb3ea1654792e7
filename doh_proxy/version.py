# doh_proxy/version.py

__version__ = "1.0.0"
__author__ = "DoH Proxy Team"
