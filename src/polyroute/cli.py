"""CLI bootstrap entry point for polyroute.

Each run is a fresh process, so breaker state starts closed every time;
breaker status and reset are library calls on a long-lived RequestRouter.
"""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

from .ai.types import Provider, parse_provider, provider_display_name
from .config import ConfigStore
from .constants import DEFAULT_LOGS_DIR, DEFAULT_SETTINGS_FILE, DISPLAY_NEVER
from .errors import PolyrouteError
from .logging import (
    build_run_log_path,
    log_event,
    sanitize_error_message,
    setup_logging,
)
from .router import RequestRouter
from .time_utils import format_local
from .timeouts import format_timeout

__all__ = ["build_parser", "main"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="polyroute",
        description="polyroute - resilient multi-provider AI requests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-s",
        "--settings",
        default=DEFAULT_SETTINGS_FILE,
        help=f"Path to settings file (default: {DEFAULT_SETTINGS_FILE})",
    )
    parser.add_argument("-l", "--log", help="Path to log file (optional)")

    commands = parser.add_subparsers(dest="command", metavar="command")
    commands.add_parser("models", help="List models and whether each is configured")

    health = commands.add_parser("health", help="Probe providers concurrently")
    health.add_argument("providers", nargs="*", help="Providers to probe (default: all)")

    ask = commands.add_parser("ask", help="Send one prompt")
    ask.add_argument("-m", "--model", help="Model id (default: settings default_model)")
    ask.add_argument("text", nargs="+", help="Prompt text")
    return parser


def _print_models(router: RequestRouter, default_model_id: str) -> None:
    for model in router.list_models():
        mark = "*" if router.is_configured(model.id) else " "
        suffix = " (default)" if model.id == default_model_id else ""
        print(f"[{mark}] {model.id:<20} {provider_display_name(model.provider):<16} {model.display_name}{suffix}")
    missing = router.missing_credentials()
    if missing:
        names = ", ".join(p.value for p in Provider if p in missing)
        print(f"\nNot configured: {names}")


async def _run_health(router: RequestRouter, providers: list[Provider]) -> None:
    records = await router.probe_all(providers or None)
    for provider, record in records.items():
        checked = format_local(record.last_checked_at) or DISPLAY_NEVER
        line = f"{provider.value:<10} {record.status.value:<10} {record.latency_ms:>8.1f} ms  {checked}"
        if record.error:
            line += f"  {record.error}"
        print(line)


async def _run_ask(router: RequestRouter, text: str, model_id: str | None) -> None:
    response = await router.complete(text, model_id)
    print(response.content)
    usage = response.usage
    print(
        f"\n[{response.model_used} via {provider_display_name(response.provider)}"
        f" | tokens: {usage.prompt_tokens} in / {usage.completion_tokens} out]"
    )


def _dispatch(args: argparse.Namespace, store: ConfigStore, router: RequestRouter) -> None:
    if args.command == "models":
        _print_models(router, store.settings.default_model)
    elif args.command == "health":
        providers = [parse_provider(name) for name in args.providers]
        asyncio.run(_run_health(router, providers))
    elif args.command == "ask":
        asyncio.run(_run_ask(router, " ".join(args.text), args.model))


def main() -> None:
    """Main entry point for the polyroute CLI."""
    parser = build_parser()
    args = parser.parse_args()
    app_started = time.perf_counter()

    if not args.command:
        parser.print_usage()
        print("Error: a command is required (models, health, ask)")
        sys.exit(1)

    try:
        settings_path = str(Path(args.settings).expanduser())
        effective_log_path = args.log or build_run_log_path(DEFAULT_LOGS_DIR)
        setup_logging(effective_log_path)

        store = ConfigStore.from_file(settings_path)
        log_event(
            "app_start",
            level=logging.INFO,
            command=args.command,
            settings_file=settings_path,
            log_file=effective_log_path,
            default_model=store.settings.default_model,
            timeout=format_timeout(store.settings.timeout),
            retry_attempts=store.settings.retry_attempts,
        )

        _dispatch(args, store, RequestRouter(store))
        log_event(
            "app_stop",
            level=logging.INFO,
            reason="normal",
            uptime_ms=round((time.perf_counter() - app_started) * 1000, 1),
        )

    except KeyboardInterrupt:
        log_event(
            "app_stop",
            level=logging.INFO,
            reason="keyboard_interrupt",
            uptime_ms=round((time.perf_counter() - app_started) * 1000, 1),
        )
        print("\nInterrupted")
        sys.exit(0)
    except (PolyrouteError, ValueError, FileNotFoundError) as e:
        message = sanitize_error_message(str(e))
        print(f"Error: {message}")
        log_event(
            "app_stop",
            level=logging.ERROR,
            reason="error",
            error_type=type(e).__name__,
            error=message,
            uptime_ms=round((time.perf_counter() - app_started) * 1000, 1),
        )
        sys.exit(1)
    except Exception as e:
        print(f"Error: {sanitize_error_message(str(e))}")
        log_event(
            "app_stop",
            level=logging.ERROR,
            reason="fatal_error",
            error_type=type(e).__name__,
            error=str(e),
            uptime_ms=round((time.perf_counter() - app_started) * 1000, 1),
        )
        logging.error("Fatal error: %s", sanitize_error_message(str(e)), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
