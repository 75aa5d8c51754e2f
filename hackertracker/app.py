import argparse
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from . import __version__
from .backlog import BacklogDrainer
from .broker import Broker, LocalBroker, RedisBroker
from .config import Settings
from .env import load_env
from .errors import MalformedSnapshotError, TrackerError
from .fetchers import HackerOneClient, LeaderboardFetcher, ProgramsFetcher, ReportsFetcher, ThanksFetcher
from .logger import configure_logger, get_logger
from .models import Participant
from .notifiers import DiscordWebhook, LogNotifier
from .pipeline import Poller, ProgramsRefresh
from .publisher import Publisher
from .resources import PROGRAMS_KEY, REPORTS, REPUTATION, RESOURCES, THANKS, ResourceType, get_resource
from .scheduler import Scheduler
from .storage import RedisStore, SnapshotStore, SqlStore
from .subscriber import DeliveryPath, Subscriber

logger = get_logger()


def build_settings(args: argparse.Namespace) -> Settings:
    load_env(Path(args.env_file) if getattr(args, "env_file", None) else None)
    try:
        settings = Settings.from_env().with_overrides(
            team_handle=getattr(args, "team", None),
            store_backend=getattr(args, "store", None),
            database_url=getattr(args, "database_url", None),
            broker_backend=getattr(args, "broker", None),
            redis_url=getattr(args, "redis_url", None),
            log_level=getattr(args, "log_level", None),
            log_dir=Path(args.log_dir) if getattr(args, "log_dir", None) else None,
        )
    except ValueError as e:
        raise SystemExit(f"Invalid configuration: {e}")
    configure_logger(level=settings.log_level, log_dir=settings.log_dir)
    return settings


def build_store(settings: Settings) -> SnapshotStore:
    if settings.store_backend == "redis":
        return RedisStore(settings.redis_url, timeout=settings.request_timeout)
    return SqlStore(settings.database_url, timeout=settings.request_timeout)


def build_broker(settings: Settings) -> Broker:
    if settings.broker_backend == "local":
        return LocalBroker()
    return RedisBroker(settings.redis_url, timeout=settings.request_timeout)


def build_client(settings: Settings) -> HackerOneClient:
    client = HackerOneClient(
        session_token=settings.session_token,
        timeout=settings.request_timeout,
    )
    if settings.session_token:
        client.authenticate()
    else:
        logger.warning("SESSION_TOKEN not set, polling anonymously")
    return client


def leaderboard_users(store: SnapshotStore) -> List[str]:
    """Distinct user names on the stored reputation leaderboard."""
    names = set()
    for raw in store.load_members(REPUTATION.snapshot_key):
        try:
            names.add(Participant.from_json(raw).user_name)
        except (ValueError, TypeError) as e:
            raise MalformedSnapshotError(f"{REPUTATION.snapshot_key} holds an unreadable entry: {e}") from e
    return sorted(name for name in names if name)


def build_pollers(
    settings: Settings,
    store: SnapshotStore,
    publisher: Publisher,
    client: HackerOneClient,
) -> List[Poller]:
    pollers = []
    if settings.reputation_polling:
        fetcher = LeaderboardFetcher(
            client,
            team_handle=settings.team_handle,
            programs=lambda: store.load_members(PROGRAMS_KEY),
        )
        pollers.append(Poller(REPUTATION, fetcher, store, publisher, scope=settings.team_handle))
    if settings.reports_polling:
        fetcher = ReportsFetcher(
            client,
            team_handle=settings.team_handle,
            page_size=settings.reports_page_size,
        )
        pollers.append(Poller(REPORTS, fetcher, store, publisher, scope=settings.team_handle))
    if settings.thanks_polling:
        fetcher = ThanksFetcher(
            client,
            users=lambda: leaderboard_users(store),
            team_handle=settings.team_handle,
        )
        pollers.append(Poller(THANKS, fetcher, store, publisher, scope=settings.team_handle))
    return pollers


def build_notifier(settings: Settings, dry_run: bool = False):
    if dry_run:
        return LogNotifier()
    if not settings.discord_webhook_url:
        raise SystemExit("DISCORD_WEBHOOK_URL not set. Set env var or pass --dry-run.")
    try:
        notifier = DiscordWebhook(settings.discord_webhook_url, timeout=settings.request_timeout)
        notifier.verify()
    except (ValueError, TrackerError) as e:
        raise SystemExit(str(e))
    return notifier


def _run_subscriber(subscriber: Subscriber, on_exit: Optional[Callable[[], None]] = None) -> None:
    try:
        subscriber.run()
    except TrackerError as e:
        logger.critical(f"{subscriber.resource.name}: notifier stopped", error_type=type(e).__name__, error=str(e))
    finally:
        if on_exit is not None:
            on_exit()


def start_subscribers(
    settings: Settings,
    broker: Broker,
    store: SnapshotStore,
    notifier,
    resources: List[ResourceType],
    on_exit: Optional[Callable[[], None]] = None,
) -> List[Tuple[Subscriber, threading.Thread]]:
    """Run one subscriber thread per resource; ``on_exit`` is called when any of them ends."""
    deliver = DeliveryPath(notifier)
    started = []
    for resource in resources:
        subscriber = Subscriber(resource, broker, store, deliver, max_backlog=settings.max_backlog)
        thread = threading.Thread(
            target=_run_subscriber,
            args=(subscriber, on_exit),
            name=f"notify-{resource.name}",
            daemon=True,
        )
        thread.start()
        started.append((subscriber, thread))
    return started


def wait_until_listening(started: List[Tuple[Subscriber, threading.Thread]], poll: float = 0.5) -> bool:
    """Block until every subscriber has replayed its backlog and subscribed.

    Returns False as soon as a subscriber thread ends before listening.
    """
    for subscriber, thread in started:
        while not subscriber.listening.wait(poll):
            if not thread.is_alive():
                return False
    return True


def enabled_resources(settings: Settings) -> List[ResourceType]:
    enabled = {
        REPUTATION.name: settings.reputation_polling,
        REPORTS.name: settings.reports_polling,
        THANKS.name: settings.thanks_polling,
    }
    return [resource for resource in RESOURCES.values() if enabled[resource.name]]


def cmd_poll(args: argparse.Namespace) -> None:
    settings = build_settings(args)
    store = build_store(settings)
    broker = build_broker(settings)
    try:
        client = build_client(settings)
    except TrackerError as e:
        raise SystemExit(f"Could not authenticate: {e}")

    publisher = Publisher(broker, store)
    scheduler = Scheduler()

    if settings.tracks_all_programs:
        programs = ProgramsRefresh(ProgramsFetcher(client), store)
        if not store.load_members(PROGRAMS_KEY):
            # Leaderboard ticks need the directory; fill it before they start.
            programs.run_tick()
        scheduler.add(programs, settings.programs_interval)
    else:
        try:
            found = client.team_exists(settings.team_handle)
        except TrackerError as e:
            raise SystemExit(f"Could not look up team {settings.team_handle}: {e}")
        if not found:
            raise SystemExit(f"Team {settings.team_handle} not found")

    intervals = {
        REPUTATION.name: settings.reputation_interval,
        REPORTS.name: settings.reports_interval,
        THANKS.name: settings.thanks_interval,
    }
    for poller in build_pollers(settings, store, publisher, client):
        scheduler.add(poller, intervals[poller.name])

    if not scheduler.jobs:
        raise SystemExit("Nothing to poll: REPUTATION_POLLING, REPORTS_POLLING and THANKS_POLLING are all off")

    notifier_down = threading.Event()
    if settings.broker_backend == "local":
        # In-process broker: the notifier has to live in this process too.
        notifier = build_notifier(settings, dry_run=args.dry_run)

        def on_notifier_exit() -> None:
            notifier_down.set()
            scheduler.stop()

        started = start_subscribers(settings, broker, store, notifier, enabled_resources(settings), on_exit=on_notifier_exit)
        # Ticks wait for the replay: anything published before the subscription
        # exists would only reach the backlog that the replay then clears.
        if not wait_until_listening(started):
            broker.close()
            store.close()
            raise SystemExit("Notifier stopped while replaying the backlog")

    logger.info(
        "Starting poller",
        team=settings.team_handle or "(all programs)",
        store=settings.store_backend,
        broker=settings.broker_backend,
    )
    try:
        scheduler.run_forever()
        failed = notifier_down.is_set()
    finally:
        broker.close()
        store.close()
        logger.log_metrics_summary()
    if failed:
        raise SystemExit("A notifier stopped; exiting so the process can be restarted")


def cmd_notify(args: argparse.Namespace) -> None:
    settings = build_settings(args)
    if settings.broker_backend == "local":
        raise SystemExit("notify needs a shared broker; use BROKER=redis or run 'poll' with BROKER=local")

    store = build_store(settings)
    broker = build_broker(settings)
    notifier = build_notifier(settings, dry_run=args.dry_run)

    notifier_down = threading.Event()
    started = start_subscribers(
        settings, broker, store, notifier, enabled_resources(settings), on_exit=notifier_down.set
    )
    logger.info("Notifier started", resources=[thread.name for _, thread in started])
    try:
        while not notifier_down.wait(1.0):
            pass
        raise SystemExit("A notifier stopped; exiting so the process can be restarted")
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping notifier")
    finally:
        broker.close()
        store.close()
        logger.log_metrics_summary()


def cmd_tick(args: argparse.Namespace) -> None:
    settings = build_settings(args)
    resource = get_resource(args.resource)
    store = build_store(settings)
    broker = build_broker(settings)
    try:
        client = build_client(settings)
        if settings.tracks_all_programs and not store.load_members(PROGRAMS_KEY):
            ProgramsRefresh(ProgramsFetcher(client), store).run_tick()
    except TrackerError as e:
        raise SystemExit(f"Could not prepare tick: {e}")

    pollers: Dict[str, Poller] = {
        p.name: p for p in build_pollers(settings, store, Publisher(broker, store), client)
    }
    poller = pollers.get(resource.name)
    if poller is None:
        raise SystemExit(f"{resource.name} polling is disabled")

    try:
        result = poller.run_tick()
    finally:
        broker.close()
        store.close()

    if result.ok:
        status = "first run" if result.first_run else f"{result.changes} changes"
        print(f"{resource.name}: ok ({status})")
        for item_id in result.item_ids:
            print(f"Queue item: {item_id}")
    else:
        print(f"{resource.name}: failed ({type(result.error).__name__}: {result.error})")
        raise SystemExit(1)


def cmd_drain(args: argparse.Namespace) -> None:
    settings = build_settings(args)
    resource = get_resource(args.resource)
    store = build_store(settings)
    notifier = build_notifier(settings, dry_run=args.dry_run)
    try:
        count = BacklogDrainer(
            resource,
            store,
            DeliveryPath(notifier),
            limit=settings.max_backlog,
        ).drain()
    except TrackerError as e:
        raise SystemExit(f"Drain failed: {e}")
    finally:
        store.close()
    print(f"{resource.name}: replayed {count} queue items")


def _format_ms(value: Optional[int]) -> str:
    if value is None:
        return "never"
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def cmd_show(args: argparse.Namespace) -> None:
    settings = build_settings(args)
    store = build_store(settings)
    try:
        resources = [get_resource(args.resource)] if args.resource else list(RESOURCES.values())
        for resource in resources:
            snapshot = store.load_members(resource.snapshot_key)
            backlog = store.read_backlog(resource.backlog_key, settings.max_backlog)
            print(f"{resource.name}:")
            print(f"  last run: {_format_ms(store.get_marker(resource.marker_key))}")
            print(f"  snapshot: {len(snapshot)} entries")
            print(f"  backlog:  {len(backlog)} items")
        if settings.tracks_all_programs:
            print(f"programs: {len(store.load_members(PROGRAMS_KEY))} handles")
    except TrackerError as e:
        raise SystemExit(str(e))
    finally:
        store.close()


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--env-file", help="Path to .env file (default: ./.env)")
    parser.add_argument("--store", choices=["sql", "redis"], help="Snapshot store backend (or set STORE_BACKEND)")
    parser.add_argument("--database-url", help="SQLAlchemy URL or SQLite path (or set DATABASE_URL)")
    parser.add_argument("--broker", choices=["redis", "local"], help="Pub/sub broker (or set BROKER)")
    parser.add_argument("--redis-url", help="Redis URL (or set REDIS_URL)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR (or set LOG_LEVEL)")
    parser.add_argument("--log-dir", help="Also write a dated log file here (or set LOG_DIR)")


def main():
    parser = argparse.ArgumentParser(
        prog="hackertracker",
        description="Poll HackerOne leaderboards and disclosed reports, publish the changes",
    )
    parser.add_argument("--version", action="store_true", help="Show version")
    subparsers = parser.add_subparsers(dest="command")

    pol = subparsers.add_parser("poll", help="Run the poll loops until interrupted")
    _add_common(pol)
    pol.add_argument("--team", help="Program handle to track (or set TEAM_HANDLE; default: all programs)")
    pol.add_argument("--dry-run", action="store_true", help="Log embeds instead of posting them (BROKER=local only)")
    pol.set_defaults(func=cmd_poll)

    ntf = subparsers.add_parser("notify", help="Replay the backlog, then deliver live changes to Discord")
    _add_common(ntf)
    ntf.add_argument("--dry-run", action="store_true", help="Log embeds instead of posting them")
    ntf.set_defaults(func=cmd_notify)

    tck = subparsers.add_parser("tick", help="Run a single poll tick for one resource type")
    _add_common(tck)
    tck.add_argument("--resource", required=True, choices=sorted(RESOURCES), help="Resource type")
    tck.add_argument("--team", help="Program handle to track (or set TEAM_HANDLE)")
    tck.set_defaults(func=cmd_tick)

    drn = subparsers.add_parser("drain", help="Replay and clear one resource type's backlog")
    _add_common(drn)
    drn.add_argument("--resource", required=True, choices=sorted(RESOURCES), help="Resource type")
    drn.add_argument("--dry-run", action="store_true", help="Log embeds instead of posting them")
    drn.set_defaults(func=cmd_drain)

    shw = subparsers.add_parser("show", help="Show stored snapshot, run time and backlog sizes")
    _add_common(shw)
    shw.add_argument("--resource", choices=sorted(RESOURCES), help="Resource type (default: all)")
    shw.set_defaults(func=cmd_show)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
