"""The ``pipe`` command line: cache management and hub account commands."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from importlib.metadata import PackageNotFoundError, version

from . import auth, cache
from .auth import AuthClient, AuthError, Credentials
from .cache import CacheError
from .helpers import UsageError, friendly_error
from .hubclient import HubClient

log = logging.getLogger(__name__)

DEFAULT_API_URL = "https://hub.getpipe.dev"
_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_api_url() -> str:
    """The hub URL: PIPEHUB_URL when set, else the default."""
    url = os.environ.get("PIPEHUB_URL", "")
    if url:
        log.debug("API URL from environment: url=%s", url)
        return url
    log.debug("API URL default: url=%s", DEFAULT_API_URL)
    return DEFAULT_API_URL


def new_hub_client(creds: Credentials | None, api_url: str) -> HubClient:
    """A hub client from stored credentials, or an unauthenticated one."""
    if creds is None:
        log.debug("creating unauthenticated hub client: baseURL=%s", api_url)
        return HubClient(api_url, "")
    base_url = creds.api_base_url or api_url
    log.debug("creating authenticated hub client: baseURL=%s", base_url)
    return HubClient(base_url, creds.api_key)


def cache_list_command() -> None:
    """Print a table of cached step results."""
    entries = cache.list_entries()
    if not entries:
        print("no cached entries")
        return
    width = max(len("STEP"), *(len(e.step_id) for e in entries))
    print(f"{'STEP':<{width}}  {'CACHED AT':<20}  {'EXPIRES AT':<20}  TYPE")
    for entry in entries:
        cached_at = entry.cached_at.astimezone().strftime(_TIME_FORMAT)
        expires_at = (
            entry.expires_at.astimezone().strftime(_TIME_FORMAT)
            if entry.expires_at is not None
            else "never"
        )
        print(f"{entry.step_id:<{width}}  {cached_at:<20}  {expires_at:<20}  {entry.run_type}")


def cache_clear_command(step_id: str | None = None) -> None:
    """Clear one cache entry, or all of them when no step is given."""
    if step_id is not None:
        cache.clear(step_id)
        print(f'cleared cache for "{step_id}"')
        return
    cache.clear_all()
    print("cleared all cache entries")


def _load_credentials() -> Credentials | None:
    try:
        return auth.load_credentials()
    except (OSError, ValueError) as exc:
        raise AuthError(f"reading credentials: {exc}") from exc


def logout_command(api_url: str) -> None:
    """Revoke credentials on the server, then remove them locally."""
    creds = _load_credentials()
    if creds is None:
        log.info("not logged in")
        return
    client = AuthClient(creds.api_base_url or api_url)
    try:
        client.logout(creds.api_key)
    except AuthError as exc:
        log.warning(
            "failed to revoke credentials on server, continuing with local logout: error=%s",
            exc,
        )
    try:
        auth.delete_credentials()
    except OSError as exc:
        raise AuthError(f"removing credentials: {exc}") from exc
    log.info("logged out successfully")


def whoami_command(api_url: str) -> None:
    """Print the user the stored credentials belong to."""
    creds = _load_credentials()
    if creds is None:
        log.info("not logged in")
        return
    client = AuthClient(creds.api_base_url or api_url)
    try:
        result = client.validate(creds.api_key)
    except AuthError:
        log.warning('credentials are invalid, run "pipe login" to re-authenticate')
        return
    print(f"Logged in as {result.username}")


def _program_version() -> str:
    try:
        return version("pipekit")
    except PackageNotFoundError:
        return "dev"


def _no_args(extra: list[str], usage: str) -> None:
    if extra:
        raise UsageError(f"unknown arguments — usage: {usage}")


def _build_parser() -> tuple[argparse.ArgumentParser, argparse.ArgumentParser]:
    parser = argparse.ArgumentParser(
        prog="pipe",
        description="A lightweight pipeline runner. pipe runs local automation "
        "pipelines defined in YAML.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="increase output verbosity (-v verbose, -vv debug)",
    )
    parser.add_argument("--version", action="version", version=f"pipe-{_program_version()}")
    commands = parser.add_subparsers(dest="command", title="commands")

    cache_parser = commands.add_parser("cache", help="Manage step cache entries")
    cache_commands = cache_parser.add_subparsers(dest="cache_command")
    cache_list = cache_commands.add_parser("list", help="List cached step results")
    cache_list.add_argument("extra", nargs="*", help=argparse.SUPPRESS)
    cache_clear = cache_commands.add_parser("clear", help="Clear one or all cache entries")
    cache_clear.add_argument("step_id", nargs="*", metavar="step-id")

    logout = commands.add_parser("logout", help="Log out of Pipe Hub")
    logout.add_argument("extra", nargs="*", help=argparse.SUPPRESS)
    whoami = commands.add_parser("whoami", help="Show the currently authenticated user")
    whoami.add_argument("extra", nargs="*", help=argparse.SUPPRESS)
    return parser, cache_parser


def _configure_logging(verbosity: int) -> None:
    logger = logging.getLogger("pipekit")
    for handler in [h for h in logger.handlers if getattr(h, "_pipe_cli", False)]:
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler._pipe_cli = True  # type: ignore[attr-defined]
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-5.5s %(message)s", "%H:%M:%S %m/%d/%Y")
    )
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbosity >= 2 else logging.INFO)
    if verbosity >= 2:
        log.debug("debug logging enabled")


def _dispatch(args: argparse.Namespace, parser, cache_parser) -> None:
    match args.command:
        case None:
            parser.print_help()
        case "cache":
            match args.cache_command:
                case None:
                    cache_parser.print_help()
                case "list":
                    _no_args(args.extra, "pipe cache list")
                    cache_list_command()
                case "clear":
                    if len(args.step_id) > 1:
                        raise UsageError(
                            "too many arguments — usage: pipe cache clear [step-id]"
                        )
                    cache_clear_command(args.step_id[0] if args.step_id else None)
        case "logout":
            _no_args(args.extra, "pipe logout")
            logout_command(resolve_api_url())
        case "whoami":
            _no_args(args.extra, "pipe whoami")
            whoami_command(resolve_api_url())


def main(argv: list[str] | None = None) -> int:
    """Run the command line and return its exit status."""
    parser, cache_parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 1
    _configure_logging(args.verbose)
    try:
        _dispatch(args, parser, cache_parser)
    except (UsageError, AuthError, CacheError, OSError, ValueError) as exc:
        log.error("%s", friendly_error(exc))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())