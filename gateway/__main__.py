import argparse
import sys

import structlog
import uvicorn

from config.logging import configure_logging

from .api import create_app
from .config import GatewaySettings
from .service import Gateway

logger = structlog.get_logger()


def main(argv=None):
    """Main entry point for the daemon gateway."""
    parser = argparse.ArgumentParser(description="Caching gateway for cryptocurrency daemon nodes")
    parser.add_argument("--bind-ip", help="Address to listen on")
    parser.add_argument("--bind-port", type=int, help="Port to listen on")
    parser.add_argument("--default-host", help="Daemon used when a request names no node")
    parser.add_argument("--default-port", type=int, help="Port of the default daemon")
    parser.add_argument("--cache-timeout", type=int, help="Default cache TTL in seconds")
    parser.add_argument("--timeout", type=float, help="Upstream request timeout in seconds")
    parser.add_argument("--no-refresh", action="store_true", help="Disable background refresh jobs")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, ...)")
    parser.add_argument("--console-logs", action="store_true", help="Human readable logs instead of JSON")

    args = parser.parse_args(argv)

    overrides = {
        "bind_ip": args.bind_ip,
        "bind_port": args.bind_port,
        "default_host": args.default_host,
        "default_port": args.default_port,
        "cache_timeout": args.cache_timeout,
        "timeout": args.timeout,
        "log_level": args.log_level,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if args.no_refresh:
        overrides["refresh_enabled"] = False
    if args.console_logs:
        overrides["log_json"] = False

    settings = GatewaySettings(**overrides)
    configure_logging(settings.log_level, settings.log_json)

    app = create_app(Gateway(settings))
    logger.info("gateway_listening", bind_ip=settings.bind_ip, bind_port=settings.bind_port)

    try:
        uvicorn.run(app, host=settings.bind_ip, port=settings.bind_port, log_config=None)
    except KeyboardInterrupt:
        logger.info("gateway_shutdown", reason="keyboard_interrupt")
    return 0


if __name__ == "__main__":
    sys.exit(main())
