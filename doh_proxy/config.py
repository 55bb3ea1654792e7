# doh_proxy/config.py
"""Layered configuration: built-in defaults overlaid by the config file"""

import configparser
import os
import sys
from typing import Any, Optional

from .constants import (
    CACHE_TTL,
    DEFAULT_LISTEN_ADDRESS,
    DEFAULT_LISTEN_PORT,
    UPSTREAM_TIMEOUT,
    USER_AGENT,
)
from .errors import ConfigurationError


class DoHProxyConfig:
    """Configuration manager for the DoH proxy"""

    DEFAULT_CONFIG_PATH = "/etc/doh-proxy/doh-proxy.cfg"
    DEFAULT_CONFIG = {
        "doh-proxy": {
            "listen-port": str(DEFAULT_LISTEN_PORT),
            "listen-address": DEFAULT_LISTEN_ADDRESS,
            "user": "doh-proxy",
            "group": "doh-proxy",
            "pid-file": "/var/run/doh-proxy.pid",
        },
        "tls": {
            "certificate": "",
            "private-key": "",
        },
        "upstream": {
            "timeout": str(UPSTREAM_TIMEOUT),
            "user-agent": USER_AGENT,
        },
        "cache": {
            "max-age": str(CACHE_TTL),
        },
        "metrics": {
            "enabled": "false",
        },
        "log-file": {
            "log-file": "/var/log/doh-proxy.log",
            "debug-level": "INFO",
            "syslog": "false",
        },
    }

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self.config = configparser.ConfigParser(interpolation=None)
        self._load_defaults()
        self._load_config()

    def _load_defaults(self):
        """Load default configuration"""
        for section, options in self.DEFAULT_CONFIG.items():
            self.config.add_section(section)
            for key, value in options.items():
                self.config.set(section, key, value)

    def _load_config(self):
        """Load configuration from file"""
        if os.path.exists(self.config_path):
            try:
                self.config.read(self.config_path)
            except configparser.Error as e:
                raise ConfigurationError(
                    f"Error reading config file {self.config_path}: {e}",
                    "Check the file for unbalanced brackets or duplicate options",
                )
        else:
            print(
                f"Warning: Config file {self.config_path} not found, using defaults",
                file=sys.stderr,
            )

    def get(self, section: str, option: str, fallback: Any = None) -> str:
        """Get configuration value"""
        try:
            return self.config.get(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return fallback

    def getint(self, section: str, option: str, fallback: int = 0) -> int:
        try:
            return self.config.getint(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def getfloat(self, section: str, option: str, fallback: float = 0.0) -> float:
        try:
            return self.config.getfloat(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def getboolean(self, section: str, option: str, fallback: bool = False) -> bool:
        try:
            return self.config.getboolean(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def upstream_timeout(self) -> float:
        """Per-attempt upstream timeout in seconds, 0 for none"""
        timeout = self.getfloat("upstream", "timeout", UPSTREAM_TIMEOUT)
        if timeout < 0:
            raise ConfigurationError(
                f"[upstream] timeout must not be negative, got {timeout}",
                "Use 0 to wait forever or a number of seconds",
            )
        return timeout

    def cache_ttl(self) -> int:
        ttl = self.getint("cache", "max-age", CACHE_TTL)
        if ttl < 0:
            raise ConfigurationError(
                f"[cache] max-age must not be negative, got {ttl}",
                f"The usual value is {CACHE_TTL} seconds",
            )
        return ttl

    def tls_files(self) -> Optional[tuple]:
        """(certificate, private_key) when both are configured"""
        certificate = self.get("tls", "certificate", "")
        private_key = self.get("tls", "private-key", "")
        if certificate and private_key:
            return certificate, private_key
        if certificate or private_key:
            raise ConfigurationError(
                "[tls] needs both certificate and private-key",
                "Set both to serve HTTPS, or neither to serve plain HTTP",
            )
        return None
