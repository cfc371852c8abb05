"""authgate entry point.

Changes:
  - 2026-02-20: ``serve`` subcommand with --host/--port/--dev/--log-level.
"""

import argparse
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from authgate.config import get_settings
from authgate.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return get_version("authgate")
    except PackageNotFoundError:
        from authgate import __version__

        return __version__


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="authgate - OAuth 2.0 / OpenID Connect authorization server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  authgate serve                     Start the server on the configured host/port
  authgate serve --port 9000         Start on another port
  authgate serve --dev               Start with auto-reload (dev mode)
""",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_package_version()}",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the authorization server")
    serve.add_argument("--host", default=None, help="Bind address (default: settings.host)")
    serve.add_argument(
        "--port", type=int, default=None, help="Port to listen on (default: settings.port)"
    )
    serve.add_argument("--dev", action="store_true", help="Auto-reload on source changes")
    serve.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level",
    )

    args = parser.parse_args()
    if args.command != "serve":
        parser.print_help()
        return

    setup_logging(level=args.log_level)
    settings = get_settings()
    host = args.host or settings.host
    port = args.port or settings.port

    from authgate.api.serve import run_api_server

    try:
        run_api_server(host=host, port=port, dev=args.dev, log_level=args.log_level.lower())
    except KeyboardInterrupt:
        logger.info("authgate stopped.")


if __name__ == "__main__":
    main()
