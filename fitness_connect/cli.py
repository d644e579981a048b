"""fitness-connect command line.

Commands:
    register {withings,strava}          One-time OAuth2 authorization
    sync [--days N] [--dry-run]         Push the latest weight from Withings to Strava
    weight [--days N]                   Show the latest Withings weight
    athlete-profile                     Show the Strava athlete profile
    athlete-stats                       Show the Strava athlete totals
    athlete                             Profile and totals, fetched concurrently

Exit codes:
    0  success (including "already up to date" and "nothing to sync")
    1  configuration or local storage error
    3  authorization failure (re-register the named provider)
    4  source unavailable / provider error while reading
    5  push to the target failed
    6  timed out
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import httpx

from fitness_connect.auth.oauth import ClientCredentials, OAuth2Authenticator
from fitness_connect.auth.store import FileCredentialStore
from fitness_connect.base import Measurement
from fitness_connect.config import Settings, get_settings
from fitness_connect.config_loader import (
    ProviderCatalog,
    ProviderConfigError,
    get_provider_catalog,
)
from fitness_connect.errors import (
    AuthExpired,
    CredentialNotFound,
    FitnessConnectError,
    ProviderError,
)
from fitness_connect.models.athlete import ActivityTotals, AthleteProfile, AthleteStats
from fitness_connect.providers import get_gateway, get_oauth_provider
from fitness_connect.sync.markers import FileMarkerStore
from fitness_connect.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger("fitness_connect.cli")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_AUTH = 3
EXIT_UNAVAILABLE = 4
EXIT_TIMEOUT = 6


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser(catalog: ProviderCatalog) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fitness-connect",
        description="Sync your latest Withings weight to your Strava profile.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    register = sub.add_parser("register", help="Authorize access to a provider (one-time).")
    register.add_argument(
        "provider",
        choices=sorted(catalog.providers),
        help=", ".join(
            f"{pid} ({spec.display_name})" for pid, spec in sorted(catalog.providers.items())
        ),
    )

    sync = sub.add_parser("sync", help="Push the latest source measurement to the target.")
    sync.add_argument(
        "--days",
        type=positive_int,
        default=None,
        help=f"Look this many days back (default: {catalog.sync.lookback_days}).",
    )
    sync.add_argument("--dry-run", action="store_true", help="Fetch and compare, but do not push.")
    sync.add_argument("--timeout", type=float, default=None, help="Give up after this many seconds.")

    weight = sub.add_parser("weight", help="Show the latest source measurement without syncing.")
    weight.add_argument("--days", type=positive_int, default=None, help="Look this many days back.")

    sub.add_parser("athlete-profile", help="Show the target athlete profile.")
    sub.add_parser("athlete-stats", help="Show the target athlete totals.")
    sub.add_parser("athlete", help="Show the athlete profile and totals.")
    return parser


def configure_logging(settings: Settings, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_authenticator(
    settings: Settings, catalog: ProviderCatalog, http_client: httpx.AsyncClient
) -> OAuth2Authenticator:
    providers = {}
    clients = {}
    for provider_id, spec in catalog.providers.items():
        providers[provider_id] = get_oauth_provider(provider_id)(
            spec, http_client=http_client, timeout=settings.http_timeout_seconds
        )
        client_id, client_secret, redirect_uri = settings.client_settings(provider_id)
        if client_id and client_secret:
            clients[provider_id] = ClientCredentials(
                client_id=client_id,
                client_secret=client_secret,
                redirect_uri=redirect_uri or spec.redirect_uri,
            )

    store = FileCredentialStore(
        settings.credentials_dir.expanduser(), overrides=settings.credential_overrides()
    )
    return OAuth2Authenticator(
        store=store,
        providers=providers,
        clients=clients,
        skew=catalog.sync.token_skew,
    )


def build_orchestrator(
    settings: Settings,
    catalog: ProviderCatalog,
    http_client: httpx.AsyncClient,
    authenticator: OAuth2Authenticator,
) -> SyncOrchestrator:
    policy = catalog.sync

    def gateway(provider_id: str):
        return get_gateway(provider_id)(
            catalog.provider(provider_id),
            http_client=http_client,
            timeout=settings.http_timeout_seconds,
        )

    return SyncOrchestrator(
        authenticator=authenticator,
        source=gateway(policy.source),
        target=gateway(policy.target),
        marker_store=FileMarkerStore(settings.resolved_marker_file()),
        policy=policy,
    )


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def _print_measurement(measurement: Measurement | None, provider_id: str, days: int) -> None:
    if measurement is None:
        print(f"No measurement from {provider_id} in the last {days} day(s).")
        return
    print(
        f"Latest {measurement.metric_kind.value} from {provider_id}: "
        f"{measurement.value:.2f} {measurement.unit} "
        f"(observed {measurement.observed_at.isoformat()})"
    )


def _print_profile(profile: AthleteProfile) -> None:
    print(f"Athlete: {profile.full_name} (id {profile.id})")
    location = ", ".join(p for p in (profile.city, profile.state, profile.country) if p)
    if location:
        print(f"  Location: {location}")
    if profile.weight is not None:
        print(f"  Weight:   {profile.weight:.2f} kg")
    if profile.ftp is not None:
        print(f"  FTP:      {profile.ftp} W")
    if profile.follower_count is not None:
        print(f"  Followers: {profile.follower_count}, following: {profile.friend_count or 0}")


def _totals_line(label: str, totals: ActivityTotals) -> str:
    hours = totals.moving_time / 3600
    return (
        f"  {label:<12} {totals.count:>5} activities  {totals.distance_km:>9.1f} km  "
        f"{hours:>7.1f} h  {totals.elevation_gain:>8.0f} m"
    )


def _print_stats(stats: AthleteStats) -> None:
    print("Totals:")
    for period in ("recent", "ytd", "all"):
        for sport in ("ride", "run", "swim"):
            totals = getattr(stats, f"{period}_{sport}_totals")
            if totals.count:
                print(_totals_line(f"{period} {sport}", totals))
    if stats.biggest_ride_distance:
        print(f"  Longest ride: {stats.biggest_ride_distance / 1000:.1f} km")
    if stats.biggest_climb_elevation_gain:
        print(f"  Biggest climb: {stats.biggest_climb_elevation_gain:.0f} m")


def _report_error(exc: FitnessConnectError) -> None:
    print(f"Error: {exc}", file=sys.stderr)
    if exc.help:
        print(f"Hint: {exc.help}", file=sys.stderr)


def _exit_code_for(exc: FitnessConnectError) -> int:
    if isinstance(exc, (AuthExpired, CredentialNotFound)):
        return EXIT_AUTH
    if isinstance(exc, ProviderError):
        return EXIT_UNAVAILABLE
    return EXIT_CONFIG


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run(
    args: argparse.Namespace,
    settings: Settings,
    catalog: ProviderCatalog,
    http_client: httpx.AsyncClient,
) -> int:
    logger.debug("Running command %r", args.command)
    authenticator = build_authenticator(settings, catalog, http_client)

    if args.command == "register":
        client_id, client_secret, redirect_uri = settings.client_settings(args.provider)
        credential = await authenticator.register(
            args.provider, client_id or "", client_secret or "", redirect_uri
        )
        name = catalog.provider(args.provider).display_name
        print(f"Registered {name}; token valid until {credential.expires_at.isoformat()}.")
        return EXIT_OK

    orchestrator = build_orchestrator(settings, catalog, http_client, authenticator)

    if args.command == "sync":
        run = orchestrator.run(dry_run=args.dry_run, days=args.days)
        outcome = await (asyncio.wait_for(run, args.timeout) if args.timeout else run)
        stream = sys.stdout if outcome.ok else sys.stderr
        print(outcome.message, file=stream)
        return outcome.exit_code

    if args.command == "weight":
        days = args.days if args.days is not None else catalog.sync.lookback_days
        measurement = await orchestrator.fetch_latest(days=days)
        _print_measurement(measurement, orchestrator.source_id, days)
    elif args.command == "athlete-profile":
        _print_profile(await orchestrator.athlete_profile())
    elif args.command == "athlete-stats":
        _print_stats(await orchestrator.athlete_stats())
    elif args.command == "athlete":
        profile, stats = await orchestrator.athlete_overview()
        _print_profile(profile)
        _print_stats(stats)
    return EXIT_OK


def main(
    argv: list[str] | None = None,
    settings: Settings | None = None,
    catalog: ProviderCatalog | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Console entry point; returns the process exit code."""
    try:
        catalog = catalog or get_provider_catalog()
    except (ProviderConfigError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    args = build_parser(catalog).parse_args(argv)
    settings = settings or get_settings()
    configure_logging(settings, args.verbose)

    async def _with_client() -> int:
        async with httpx.AsyncClient(
            timeout=settings.http_timeout_seconds, transport=transport
        ) as http_client:
            return await _run(args, settings, catalog, http_client)

    try:
        return asyncio.run(_with_client())
    except asyncio.TimeoutError:
        print(f"Error: timed out after {args.timeout}s", file=sys.stderr)
        return EXIT_TIMEOUT
    except FitnessConnectError as exc:
        _report_error(exc)
        return _exit_code_for(exc)
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
