"""HostCA command-line entry point.

Usage::

    hostca -c /etc/hostca/config.yaml --validate-only
    hostca -c config.yaml cert generate web01.example.com --dns_alt_names web,www
    hostca -c config.yaml cert sign web01.example.com
    hostca -c config.yaml cert clean web01.example.com
    hostca -c config.yaml cert list --all
    hostca -c config.yaml auth check fileserver.list web01.example.com 10.0.0.5
    python -m hostca -c config.yaml cert list

Exit status is 0 on success, 23 when this host holds a CA certificate
it has no key for, and 1 for every other failure.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


def _get_version() -> str:
    from hostca import __version__

    return __version__


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"true", "yes", "1"}:
        return True
    if lowered in {"false", "no", "0"}:
        return False
    msg = f"expected true or false, got {value!r}"
    raise argparse.ArgumentTypeError(msg)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hostca",
        description="HostCA: certificate authority and access control for managed hosts",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # cert
    cert_parser = subparsers.add_parser("cert", help="Certificate management")
    cert_sub = cert_parser.add_subparsers(dest="cert_command")

    generate = cert_sub.add_parser("generate", help="Generate and sign a certificate")
    generate.add_argument("name", help="Certificate (host) name")
    generate.add_argument(
        "--autosign",
        type=_parse_bool,
        default=None,
        metavar="true|false",
        help="Accepted for compatibility; the CA operator always signs.",
    )
    generate.add_argument(
        "--dns_alt_names",
        "--dns-alt-names",
        dest="dns_alt_names",
        default="",
        metavar="NAMES",
        help="Comma-separated DNS alternative names.",
    )

    sign = cert_sub.add_parser("sign", help="Sign a pending certificate request")
    sign.add_argument("name", help="Certificate (host) name")

    clean = cert_sub.add_parser("clean", help="Remove all files for a certificate")
    clean.add_argument("name", help="Certificate (host) name")

    list_parser = cert_sub.add_parser("list", help="List certificate requests")
    list_parser.add_argument(
        "--all",
        action="store_true",
        default=False,
        help="Include signed certificates, not only pending requests.",
    )
    list_parser.add_argument("names", nargs="*", help="Only show these names")

    # auth
    auth_parser = subparsers.add_parser("auth", help="Authorization rules")
    auth_sub = auth_parser.add_subparsers(dest="auth_command")
    check = auth_sub.add_parser("check", help="Evaluate the rules for one caller")
    check.add_argument("namespace", help="Dotted operation namespace")
    check.add_argument("hostname", help="Caller hostname")
    check.add_argument("ip", help="Caller IP address")

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"Error: {message}", file=sys.stderr)  # noqa: T201


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, runs a subcommand."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- resolve config path ---
    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(EXIT_FAILURE)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    try:
        from hostca.config import ConfigValidationError, HostcaConfig

        config = HostcaConfig(config_file=config_path)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(EXIT_FAILURE)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(EXIT_FAILURE)

    # -- replace bootstrap logging with structured logging ---
    from hostca.logging import configure_logging

    configure_logging(config.settings.logging)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(EXIT_OK)

    # -- dispatch subcommand ---
    from hostca.auth.rules import AuthConfigError
    from hostca.ca.errors import CAError

    try:
        if args.command == "cert":
            from hostca.cli.commands.cert import run_cert

            status = run_cert(config, args)
        elif args.command == "auth":
            from hostca.cli.commands.auth import run_auth

            status = run_auth(config, args)
        else:
            parser.print_help(sys.stderr)
            status = EXIT_FAILURE
    except CAError as exc:
        if args.debug:
            log.exception("Command failed")
        _print_error(exc.detail)
        sys.exit(exc.exit_code)
    except AuthConfigError as exc:
        _print_error(f"invalid authorization rules: {exc}")
        sys.exit(EXIT_FAILURE)

    sys.exit(status)


def _print_settings_summary(config) -> None:
    """Print a short summary of the loaded configuration."""
    settings = config.settings
    autosign = settings.ca.autosign
    if isinstance(autosign, tuple):
        autosign = ", ".join(autosign) or "(no patterns)"
    lines = [
        f"Configuration OK: {config.source}",
        f"  ssldir:        {settings.ca.ssldir}",
        f"  CA name:       {settings.ca.ca_name}",
        f"  key:           {settings.ca.key_type} ({settings.ca.key_size} bits)",
        f"  autosign:      {autosign}",
        f"  auth rules:    {settings.auth.rules_file or '(none; remote callers denied)'}",
        f"  log level:     {settings.logging.level} ({settings.logging.format})",
    ]
    print("\n".join(lines))  # noqa: T201
