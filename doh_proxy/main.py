#!/usr/bin/env python3
"""
Main entry point for the DoH proxy
Serves /dns-query over HTTP or HTTPS on the Twisted reactor
"""

import argparse
import errno
import logging
import logging.handlers
import os
import signal
import sys

from doh_proxy.constants import (
    DEFAULT_LISTEN_ADDRESS,
    DEFAULT_LISTEN_PORT,
    LOG_FILE_BACKUP_COUNT,
    LOG_FILE_MAX_BYTES,
    LOG_FORMAT,
    MAX_PORT_NUMBER,
    MAX_UPSTREAM_TIMEOUT,
    MIN_PORT_NUMBER,
    SYSLOG_FORMAT,
    USER_AGENT,
)
from doh_proxy.errors import ConfigurationError


def setup_logging(log_file=None, log_level="INFO", syslog=False):
    """Configure the root logger and route Twisted's own log events into it"""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file and log_file.lower() != "none":
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir and not os.path.exists(log_dir):
                os.makedirs(log_dir, mode=0o755)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Could not setup file logging to {log_file}: {e}")

    if syslog:
        try:
            syslog_handler = logging.handlers.SysLogHandler(address="/dev/log")
            syslog_handler.setFormatter(logging.Formatter(SYSLOG_FORMAT))
            root_logger.addHandler(syslog_handler)
        except OSError as e:
            print(f"Warning: Could not setup syslog: {e}")

    from twisted.python import log

    log.PythonLoggingObserver(loggerName="twisted").start()


def _setup_signal_handlers(logger):
    """Stop the reactor on SIGTERM/SIGINT"""

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        from twisted.internet import reactor

        reactor.callFromThread(reactor.stop)  # type: ignore[attr-defined]

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def _get_bind_config(config, args):
    listen_port = args.port or config.getint("doh-proxy", "listen-port", DEFAULT_LISTEN_PORT)
    listen_address = args.address or config.get(
        "doh-proxy", "listen-address", DEFAULT_LISTEN_ADDRESS
    )
    user = config.get("doh-proxy", "user", "doh-proxy")
    group = config.get("doh-proxy", "group", "doh-proxy")
    return listen_port, listen_address, user, group


def _handle_bind_error(error, port, address, logger):
    """Explain common bind failures, then exit"""
    error_msg = str(error)
    code = getattr(getattr(error, "socketError", error), "errno", None)

    if code == errno.EADDRINUSE or "Address already in use" in error_msg:
        logger.error(f"Port {port} is already in use on {address}")
        logger.error("Please check if another instance is running or use a different port")
        logger.error(f"You can find the process using: sudo lsof -i :{port}")
    elif code == errno.EACCES or "Permission denied" in error_msg:
        logger.error(f"Permission denied to bind to port {port}")
        if port < 1024:
            logger.error("Ports below 1024 require root privileges")
    else:
        logger.error(f"Failed to bind to {address}:{port}: {error}")

    sys.exit(1)


def _listen(reactor, site, listen_port, listen_address, tls_files, logger):
    """Bind the site over plain TCP or TLS"""
    from twisted.internet.error import CannotListenError

    try:
        if tls_files:
            from twisted.internet import ssl

            certificate, private_key = tls_files
            context = ssl.DefaultOpenSSLContextFactory(private_key, certificate)
            port = reactor.listenSSL(listen_port, site, context, interface=listen_address)
            scheme = "https"
        else:
            port = reactor.listenTCP(listen_port, site, interface=listen_address)
            scheme = "http"
    except CannotListenError as e:
        _handle_bind_error(e, listen_port, listen_address, logger)

    actual_port = port.getHost().port
    logger.info(f"DoH proxy listening on {scheme}://{listen_address}:{actual_port}/dns-query")
    if listen_port == 0:
        # Write to stdout for test scripts to capture
        print(f"ACTUAL_PORT={actual_port}", flush=True)
    return port


def _setup_security_context(config, args, logger):
    """Callback run once the reactor is up: PID file, then privilege drop"""
    from doh_proxy.security import create_pid_file, drop_privileges

    def setup_security():
        user = config.get("doh-proxy", "user", "doh-proxy")
        group = config.get("doh-proxy", "group", "doh-proxy")

        pid_file = _pid_file_path(config, args)
        if pid_file:
            try:
                create_pid_file(pid_file)
            except OSError as e:
                logger.warning(f"Could not create PID file {pid_file}: {e}")

        if user and group:
            try:
                drop_privileges(user, group)
            except (KeyError, OSError) as e:
                logger.error(f"Failed to drop privileges: {e}")
                logger.warning(f"Continuing to run as uid {os.getuid()}")

    return setup_security


def _pid_file_path(config, args):
    return args.pidfile or config.get("doh-proxy", "pid-file")


def start_server(config, args, logger, site):
    """Bind, run the reactor until stopped, then clean up"""
    from twisted.internet import reactor

    from doh_proxy.security import remove_pid_file

    listen_port, listen_address, _, _ = _get_bind_config(config, args)

    _setup_signal_handlers(logger)
    _listen(reactor, site, listen_port, listen_address, config.tls_files(), logger)

    reactor.callWhenRunning(_setup_security_context(config, args, logger))
    logger.info("DoH proxy started successfully")
    # Twisted's own signal handlers would replace the ones installed above
    reactor.run(installSignalHandlers=False)  # type: ignore[attr-defined]

    pid_file = _pid_file_path(config, args)
    if pid_file:
        remove_pid_file(pid_file)
    logger.info("DoH proxy stopped")


def _validate_port(value):
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port number: {value}")
    if port < MIN_PORT_NUMBER or port > MAX_PORT_NUMBER:
        raise argparse.ArgumentTypeError(
            f"Port must be between {MIN_PORT_NUMBER} and {MAX_PORT_NUMBER}"
        )
    return port


def _validate_timeout(value):
    try:
        timeout = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid timeout: {value}")
    if not 0 <= timeout <= MAX_UPSTREAM_TIMEOUT:
        raise argparse.ArgumentTypeError(
            f"Timeout must be between 0 (no timeout) and {MAX_UPSTREAM_TIMEOUT} seconds"
        )
    return timeout


def _parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        description="DNS-over-HTTPS forwarding proxy with weighted upstream selection "
        "and failover across providers.",
        epilog="Providers are configured as [provider:NAME] sections with url and weight.",
    )
    parser.add_argument(
        "-c", "--config", default="/etc/doh-proxy/doh-proxy.cfg", help="Configuration file path"
    )
    parser.add_argument("-l", "--logfile", help="Log file path (overrides config)")
    parser.add_argument(
        "-L", "--loglevel", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level"
    )
    parser.add_argument("-p", "--port", type=_validate_port, help="Listen port (overrides config)")
    parser.add_argument("-a", "--address", help="Listen address (overrides config)")
    parser.add_argument(
        "-t",
        "--timeout",
        type=_validate_timeout,
        help="Per-attempt upstream timeout in seconds, 0 disables (overrides config)",
    )
    parser.add_argument("--pidfile", help="PID file path")
    parser.add_argument(
        "--metrics", action="store_true", default=None, help="Serve Prometheus metrics on /metrics"
    )
    parser.add_argument("-v", "--version", action="store_true", help="Show version")

    return parser.parse_args(argv)


def _handle_version_check(args):
    if args.version:
        from doh_proxy import __version__

        print(f"DoH Proxy version {__version__}")
        sys.exit(0)


def _load_configuration(config_path):
    from doh_proxy.config_human import HumanFriendlyConfig

    print(f"Loading configuration from: {config_path}")
    return HumanFriendlyConfig(config_path)


def _get_logging_config(config, args):
    log_file = args.logfile or config.get("log-file", "log-file")
    log_level = args.loglevel or config.get("log-file", "debug-level", "INFO")
    syslog = config.getboolean("log-file", "syslog", False)
    return log_file, log_level, syslog


def _get_router_config(config, args):
    timeout = args.timeout if args.timeout is not None else config.upstream_timeout()
    metrics_enabled = args.metrics if args.metrics is not None else config.getboolean(
        "metrics", "enabled", False
    )
    return {
        "registry": config.build_registry(),
        "timeout": timeout,
        "cache_ttl": config.cache_ttl(),
        "user_agent": config.get("upstream", "user-agent", USER_AGENT),
        "metrics_enabled": metrics_enabled,
    }


def _validate_config(config, logger):
    """Log provider section issues before the registry is built"""
    for issue in config.validate_config():
        severity, _, message = issue.partition(": ")
        if severity == "Error":
            logger.error(message)
        elif severity == "Warning":
            logger.warning(message)
        else:
            logger.info(message)


def _log_configuration(router_config, logger):
    registry = router_config["registry"]
    logger.info("Configuration loaded:")
    logger.info("  Providers (failover order):")
    for provider in registry:
        share = 100.0 * provider.weight / registry.total_weight
        logger.info(
            f"    - {provider.name}: {provider.url} (weight {provider.weight}, {share:.1f}%)"
        )
    timeout = router_config["timeout"]
    logger.info(f"  Upstream timeout: {f'{timeout}s' if timeout else 'none'}")
    logger.info(f"  Cache max-age: {router_config['cache_ttl']}s")
    logger.info(f"  Metrics: {'enabled' if router_config['metrics_enabled'] else 'disabled'}")


def _initialize_router(router_config):
    """Build the router and the twisted.web site in front of it"""
    from doh_proxy import __version__
    from doh_proxy.metrics import MetricsCollector
    from doh_proxy.resource import build_site
    from doh_proxy.router import Router
    from doh_proxy.upstream import UpstreamClient

    metrics = MetricsCollector(enabled=router_config["metrics_enabled"])
    metrics.set_info(__version__, len(router_config["registry"]))

    router = Router(
        registry=router_config["registry"],
        client=UpstreamClient(timeout=router_config["timeout"]),
        cache_ttl=router_config["cache_ttl"],
        user_agent=router_config["user_agent"],
        metrics=metrics,
    )
    return build_site(router, metrics)


def main(argv=None):
    args = _parse_arguments(argv)
    _handle_version_check(args)

    try:
        config = _load_configuration(args.config)

        log_file, log_level, syslog = _get_logging_config(config, args)
        setup_logging(log_file, log_level, syslog)
        logger = logging.getLogger("doh_proxy")
        logger.info("Starting DoH proxy")

        _validate_config(config, logger)
        router_config = _get_router_config(config, args)
        _log_configuration(router_config, logger)

        site = _initialize_router(router_config)
        start_server(config, args, logger, site)

    except ConfigurationError as e:
        print(f"Configuration Error: {e.message}", file=sys.stderr)
        if e.suggestion:
            print(f"Suggestion: {e.suggestion}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
