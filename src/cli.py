#!/usr/bin/env python3
"""
CryptoEscrow Command Line Interface.

Commands:
    - serve: Start the API server
    - check: Verify installation and configuration
    - info: Display configuration and system information

Usage:
    escrow serve [--host HOST] [--port PORT] [--debug] [--config FILE]
    escrow check [--config FILE]
    escrow info [--config FILE]
    escrow --version
"""

import argparse
import os
import sys

# Ensure src is in path when running from source
if os.path.exists(os.path.join(os.path.dirname(__file__), "escrow_ledger.py")):
    sys.path.insert(0, os.path.dirname(__file__))

__version__ = "0.1.0"


def _load_config(args):
    """Resolve configuration: .env, then ESCROW_* variables over an optional YAML file."""
    from dotenv import load_dotenv

    from escrow_config import EscrowConfig

    load_dotenv()
    if getattr(args, "config", None):
        os.environ["ESCROW_CONFIG_FILE"] = args.config
    return EscrowConfig.from_env()


def cmd_serve(args):
    """Start the CryptoEscrow API server."""
    from api import create_app
    from escrow_service import EscrowService
    from monitoring import configure_logging

    config = _load_config(args)
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = args.port or int(os.getenv("PORT", 5000))
    debug = args.debug or os.getenv("FLASK_DEBUG", "").lower() == "true"

    flask_app = create_app(EscrowService.create(config))
    print(f"Starting CryptoEscrow API server on {host}:{port}")

    if args.production:
        try:
            import gunicorn.app.base
        except ImportError:
            print("Error: gunicorn not installed. Install with: pip install crypto-escrow[production]")
            sys.exit(1)

        class StandaloneApplication(gunicorn.app.base.BaseApplication):
            """Serve an already-built Flask app through gunicorn."""

            def __init__(self, app, options=None):
                self.options = options or {}
                self.application = app
                super().__init__()

            def load_config(self):
                for key, value in self.options.items():
                    if key in self.cfg.settings and value is not None:
                        self.cfg.set(key.lower(), value)

            def load(self):
                return self.application

        # The escrow core is in-memory, so a single worker process owns it
        options = {
            "bind": f"{host}:{port}",
            "workers": 1,
            "threads": args.threads or int(os.getenv("THREADS", 4)),
            "worker_class": "gthread",
            "timeout": 120,
            "accesslog": "-",
            "errorlog": "-",
        }
        StandaloneApplication(flask_app, options).run()
    else:
        flask_app.run(host=host, port=port, debug=debug)


def cmd_check(args):
    """Check installation and configuration."""
    print("CryptoEscrow Installation Check")
    print("=" * 40)

    checks = []

    try:
        import flask  # noqa: F401
        checks.append(("Flask", "OK"))
    except ImportError as e:
        checks.append(("Flask", f"FAIL: {e}"))

    try:
        import yaml  # noqa: F401
        checks.append(("PyYAML", "OK"))
    except ImportError as e:
        checks.append(("PyYAML", f"FAIL: {e}"))

    try:
        import gunicorn  # noqa: F401
        checks.append(("gunicorn (production mode)", "OK"))
    except ImportError:
        checks.append(("gunicorn (production mode)", "SKIP (not installed)"))

    from escrow_exceptions import EscrowError

    service = None
    try:
        from escrow_service import EscrowService

        service = EscrowService.create(_load_config(args))
        checks.append(("Configuration", "OK"))
    except (EscrowError, OSError) as e:
        checks.append(("Configuration", f"FAIL: {e}"))

    if service is not None:
        enrolled = len(service.pool.list_profiles(enrolled_only=True))
        checks.append((f"Arbitrators ({enrolled} enrolled)", "OK" if enrolled else "WARN (disputes will fail)"))
        if not service.config.require_auth:
            checks.append(("API authentication", "WARN (disabled, caller headers are trusted)"))
        elif service.config.api_keys:
            checks.append((f"API keys ({len(service.config.api_keys)} configured)", "OK"))
        else:
            checks.append(("API keys", "WARN (none configured, mutating endpoints will refuse)"))

    print()
    all_ok = True
    for name, status in checks:
        icon = "✓" if status == "OK" else ("○" if "SKIP" in status or "WARN" in status else "✗")
        print(f"  {icon} {name}: {status}")
        if "FAIL" in status:
            all_ok = False

    print()
    if all_ok:
        print("All checks passed!")
        return 0
    print("Some checks failed. See above for details.")
    return 1


def cmd_info(args):
    """Display configuration and system information."""
    import platform

    print("CryptoEscrow System Information")
    print("=" * 40)
    print(f"Version: {__version__}")
    print(f"Python: {platform.python_version()}")
    print(f"Platform: {platform.platform()}")

    print()
    print("Configuration:")
    config = _load_config(args)
    for key, value in config.to_dict().items():
        print(f"  {key}: {value}")
    print(f"  arbitrators in roster: {len(config.arbitrators)}")
    print(f"  api keys configured: {len(config.api_keys)}")

    print()
    print("Environment:")
    print(f"  ESCROW_CONFIG_FILE: {os.getenv('ESCROW_CONFIG_FILE', 'not set')}")
    print(f"  LOG_LEVEL: {os.getenv('LOG_LEVEL', 'INFO (default)')}")
    print(f"  LOG_FORMAT: {os.getenv('LOG_FORMAT', 'console (default)')}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="escrow",
        description="CryptoEscrow - buyer/seller escrow with weighted arbitrator selection",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (default: 5000)")
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    serve_parser.add_argument("--config", help="YAML configuration file")
    serve_parser.add_argument("--production", action="store_true", help="Use gunicorn for production")
    serve_parser.add_argument("--threads", type=int, help="Worker threads (production mode)")

    check_parser = subparsers.add_parser("check", help="Check installation and configuration")
    check_parser.add_argument("--config", help="YAML configuration file")

    info_parser = subparsers.add_parser("info", help="Display system information")
    info_parser.add_argument("--config", help="YAML configuration file")

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "check":
        sys.exit(cmd_check(args))
    elif args.command == "info":
        sys.exit(cmd_info(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
