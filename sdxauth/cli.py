"""Command-line interface for sdxauth."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import SdxAuthException
from .types import ProviderId


if TYPE_CHECKING:
    from .auth.flow import AuthOrchestrator
    from .auth.token_store import TokenStore
    from .config import SdxAuthSettings
    from .types import DeviceAuthorization


_PROVIDER_CHOICES = [p.value for p in ProviderId]


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Parameters
    ----------
    argv : list[str], optional
        Arguments (default: ``sys.argv[1:]``).

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="sdxauth",
        description="Sign in to CILogon, ORCID and FABRIC and manage the resulting tokens",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log flows, polling and refresh activity",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # config command
    config_parser = subparsers.add_parser("config", help="Show or export configuration")
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    # login command
    login_parser = subparsers.add_parser("login", help="Sign in with a provider")
    login_parser.add_argument("provider", choices=_PROVIDER_CHOICES)
    login_parser.add_argument(
        "--popup",
        action="store_true",
        help="Use the browser authorization-code flow for CILogon instead of the device flow",
    )

    subparsers.add_parser("status", help="Show stored tokens and their expiry")

    refresh_parser = subparsers.add_parser("refresh", help="Refresh a provider's token now")
    refresh_parser.add_argument("provider", choices=_PROVIDER_CHOICES)

    logout_parser = subparsers.add_parser("logout", help="Revoke and forget tokens")
    logout_parser.add_argument("provider", nargs="?", choices=_PROVIDER_CHOICES)
    logout_parser.add_argument("--all", action="store_true", help="Log out of every provider")

    claims_parser = subparsers.add_parser("claims", help="Print the claims of a stored token")
    claims_parser.add_argument("provider", choices=_PROVIDER_CHOICES)

    handoff_parser = subparsers.add_parser("handoff", help="Send a token to the SDX backend")
    handoff_parser.add_argument("provider", choices=_PROVIDER_CHOICES)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0
    if args.command == "config":
        return handle_config(args)

    from .config import get_settings
    from .log import configure, enable_debug

    settings = get_settings()
    configure(settings.log)
    if args.verbose:
        enable_debug()

    handlers = {
        "login": handle_login,
        "status": handle_status,
        "refresh": handle_refresh,
        "logout": handle_logout,
        "claims": handle_claims,
        "handoff": handle_handoff,
    }
    try:
        return handlers[args.command](args, settings)
    except SdxAuthException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        return 1


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import SdxAuthSettings

    if args.sources:
        return show_config_sources()

    settings = SdxAuthSettings()
    if args.toml:
        output = settings.to_toml()
    elif args.env:
        output = settings.to_env()
    else:
        output = settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def show_config_sources() -> int:
    """Show configuration file sources and their status.

    Returns
    -------
    int
        Exit code.
    """
    sources = [
        ("Built-in defaults", None),
        ("pyproject.toml [tool.sdxauth]", Path("pyproject.toml")),
        ("./sdxauth.toml", Path("sdxauth.toml")),
        ("~/.config/sdxauth/config.toml", Path("~/.config/sdxauth/config.toml").expanduser()),
    ]
    env_file = os.environ.get("SDXAUTH_CONFIG_FILE")
    if env_file:
        sources.append(("SDXAUTH_CONFIG_FILE", Path(env_file)))

    print("Configuration Sources (in order of precedence):\n")
    print(f"{'Source':<40} {'Status':<15} {'Path'}")
    print("-" * 80)

    for name, path in sources:
        if path is None:
            print(f"{name:<40} {'Active':<15}")
            continue
        status = "Found" if path.exists() else "Not found"
        print(f"{name:<40} {status:<15} {path}")

    env_vars = sorted(k for k in os.environ if k.startswith("SDXAUTH_"))
    status = f"{len(env_vars)} vars" if env_vars else "No vars"
    shown = ", ".join(env_vars[:3]) + ("..." if len(env_vars) > 3 else "")
    print(f"{'Environment variables':<40} {status:<15} {shown}")

    print("\nNote: Later sources override earlier ones.")
    return 0


def _token_store(settings: SdxAuthSettings) -> TokenStore:
    from .auth.token_store import get_token_store

    return get_token_store(
        settings.store.backend,
        path=settings.store.path,
        service_name=settings.store.service_name,
        key_prefix=settings.store.key_prefix,
    )


def _orchestrator(settings: SdxAuthSettings, **kwargs: object) -> AuthOrchestrator:
    from .auth.flow import AuthOrchestrator
    from .backend import BackendClient

    return AuthOrchestrator.from_settings(
        settings,
        _token_store(settings),
        backend=BackendClient(settings.backend),
        **kwargs,  # type: ignore[arg-type]
    )


def _print_device_code(authorization: DeviceAuthorization) -> None:
    print(f"\nTo sign in, visit {authorization.verification_uri}")
    print(f"and enter the code: {authorization.user_code}")
    if authorization.verification_uri_complete:
        print(f"(or open {authorization.verification_uri_complete})")
    print(f"The code expires in {authorization.expires_in // 60} minutes.\n")


def handle_login(args: argparse.Namespace, settings: SdxAuthSettings) -> int:
    """Handle the login command."""
    provider = ProviderId(args.provider)
    uses_popup = provider is ProviderId.ORCID or (provider is ProviderId.CILOGON and args.popup)
    mode = "popup" if provider is ProviderId.CILOGON and args.popup else None

    async def run() -> int:
        from .auth.callback_server import SystemBrowserContext
        from .auth.popup import PopupChannel, PopupSizing

        context = SystemBrowserContext() if uses_popup else None
        popup = None
        if context is not None:
            context.start()
            popup = PopupChannel(
                context,
                timeout=settings.popup.timeout_seconds,
                closed_check_interval=settings.popup.closed_check_interval_seconds,
            )
        orchestrator = _orchestrator(
            settings,
            popup=popup,
            popup_sizing=PopupSizing(settings.popup.width, settings.popup.height),
            on_device_code=_print_device_code,
        )
        try:
            result = await orchestrator.login(provider, mode=mode)
        finally:
            await orchestrator.close()
            if context is not None:
                context.close()

        if not result.success or result.token is None:
            print(f"{provider.label} login failed: {result.error}", file=sys.stderr)
            return 1
        store = orchestrator.store
        print(
            f"Signed in with {provider.label}; token valid for "
            f"{store.format_time_until_expiry(result.token)}"
        )
        if result.token.placeholder:
            print("Warning: this is an unverified placeholder token.", file=sys.stderr)
        return 0

    return asyncio.run(run())


def handle_status(args: argparse.Namespace, settings: SdxAuthSettings) -> int:
    """Handle the status command."""
    store = _token_store(settings)
    status = store.load_refresh_status()

    print(f"{'Provider':<10} {'Status':<10} {'Expires in':<12} {'Refreshable':<12} Last error")
    print("-" * 70)
    for provider in ProviderId:
        record = store.get(provider)
        if record is None:
            print(f"{provider.label:<10} {'none':<10}")
            continue
        state = "valid" if store.is_valid(record) else "expired"
        if record.placeholder:
            state += "*"
        refreshable = "yes" if store.can_refresh(record) else "no"
        error = status.last_error.get(provider.value) or ""
        print(
            f"{provider.label:<10} {state:<10} {store.format_time_until_expiry(record):<12} "
            f"{refreshable:<12} {error}"
        )
    if any(r.placeholder for r in store.all_tokens().values()):
        print("\n* unverified placeholder token")
    return 0


def handle_refresh(args: argparse.Namespace, settings: SdxAuthSettings) -> int:
    """Handle the refresh command."""
    provider = ProviderId(args.provider)

    async def run() -> int:
        orchestrator = _orchestrator(settings)
        monitor = orchestrator.refresh_monitor()
        try:
            refreshed = await monitor.manual_refresh(provider)
        finally:
            await orchestrator.close()
        if not refreshed:
            error = monitor.status.last_error.get(provider.value) or "refresh failed"
            print(f"{provider.label}: {error}", file=sys.stderr)
            return 1
        print(f"{provider.label} token refreshed")
        return 0

    return asyncio.run(run())


def handle_logout(args: argparse.Namespace, settings: SdxAuthSettings) -> int:
    """Handle the logout command."""
    if bool(args.all) == bool(args.provider):
        print("Error: give either a provider or --all", file=sys.stderr)
        return 2

    async def run() -> int:
        orchestrator = _orchestrator(settings)
        try:
            if args.all:
                await orchestrator.logout_all()
                print("Logged out of all providers")
            else:
                provider = ProviderId(args.provider)
                revoked = await orchestrator.logout(provider)
                suffix = " (token revoked)" if revoked else ""
                print(f"Logged out of {provider.label}{suffix}")
        finally:
            await orchestrator.close()
        return 0

    return asyncio.run(run())


def handle_claims(args: argparse.Namespace, settings: SdxAuthSettings) -> int:
    """Handle the claims command."""
    from .auth.jwt_claims import decode_claims

    provider = ProviderId(args.provider)
    record = _token_store(settings).get(provider)
    if record is None:
        print(f"No {provider.label} token stored", file=sys.stderr)
        return 1
    claims = decode_claims(record.id_token)
    if claims is None:
        print(f"The {provider.label} token is not a decodable JWT", file=sys.stderr)
        return 1
    print(json.dumps(claims, indent=2, sort_keys=True))
    return 0


def handle_handoff(args: argparse.Namespace, settings: SdxAuthSettings) -> int:
    """Handle the handoff command."""
    provider = ProviderId(args.provider)

    async def run() -> int:
        orchestrator = _orchestrator(settings)
        try:
            response = await orchestrator.send_to_backend(provider)
        finally:
            await orchestrator.close()
        print(json.dumps(response, indent=2))
        return 0

    return asyncio.run(run())


if __name__ == "__main__":
    sys.exit(main())
