import asyncio
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path

import click
from dotenv import load_dotenv

from .config import CompanionConfig
from .logging_config import setup_logging
from .notifications.fanout import NotificationFanoutService
from .notifications.models import EventKind, FanoutEvent
from .notifications.push import ExpoPushTransport
from .notifications.rate_limiter import RateLimiter
from .notifications.verifier import AdminBroadcastVerifier
from .store.memory import InMemoryBackendStore
from .store.migrations import normalize_broadcast_timestamps
from .sync.cache_store import OfflineCacheStore
from .sync.offline_login import OfflineLoginResolver
from .sync.status import SyncSnapshot, describe_sync_status, get_staleness_label
from .sync.storage import DuckDBKeyValueStore
from .web import run_server

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


@click.group()
@click.option('--log-level', envvar='COMPANION_LOG_LEVEL', default='INFO', show_default=True, help='Logging level')
@click.pass_context
def main(ctx, log_level):
    """
    Tour companion maintenance and diagnostics commands.
    """
    setup_logging(log_level)
    try:
        ctx.obj = CompanionConfig.from_env()
    except ValueError as e:
        raise click.ClickException(str(e))


@main.command('sync-status')
@click.option('--online/--offline', default=True, show_default=True, help='Network reachability')
@click.option('--backend-unreachable', is_flag=True, default=False, help='Backend probe failed')
@click.option('--degraded', is_flag=True, default=False, help='Backend reports degraded service')
@click.option('--pending', type=int, default=0, show_default=True, help='Queued writes not yet sent')
@click.option('--syncing', type=int, default=0, show_default=True, help='Writes in flight')
@click.option('--failed', type=int, default=0, show_default=True, help='Writes that failed permanently')
@click.option('--last-sync', default=None, help='ISO timestamp of the last successful sync')
@click.option('--as-json', is_flag=True, default=False, help='Print the full status as JSON')
def sync_status(online, backend_unreachable, degraded, pending, syncing, failed, last_sync, as_json):
    """
    Derive the unified sync status from probe values.
    """
    snapshot = SyncSnapshot.from_dict({
        "network": {"isOnline": online},
        "backend": {"isReachable": not backend_unreachable, "isDegraded": degraded},
        "queue": {"pending": pending, "syncing": syncing, "failed": failed},
    })
    status = describe_sync_status(snapshot, last_sync)

    if as_json:
        click.echo(json.dumps(status.to_dict(), indent=2))
        return

    descriptor = status.descriptor
    click.echo(f"{descriptor.label} ({descriptor.state_key.value}): {descriptor.description}")
    if descriptor.show_last_sync:
        click.echo(get_staleness_label(last_sync)["label"])
    if status.failed:
        click.echo(f"{status.failed} item(s) failed to sync")


@main.command('offline-login')
@click.option('--cache-db', envvar='COMPANION_CACHE_DB_PATH', type=click.Path(dir_okay=False), required=True, help='DuckDB offline cache file')
@click.option('--reference', required=True, help='Booking reference or driver code')
@click.option('--email', default='', help='Email supplied at login')
@click.option('--tour-id', default=None, help='Tour to consult when no session identity is cached')
@click.pass_obj
def offline_login(config, cache_db, reference, email, tour_id):
    """
    Resolve a login against a local offline cache.
    """
    with DuckDBKeyValueStore(Path(cache_db), config.cache_namespace) as storage:
        resolver = OfflineLoginResolver(
            OfflineCacheStore(storage),
            cache_ttl=timedelta(days=config.offline_cache_ttl_days),
        )
        result = resolver.resolve(reference, email, tour_id=tour_id)

    click.echo(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        raise click.ClickException(result.message or result.reason.value)


@main.command('normalize-broadcasts')
@click.option('--snapshot', envvar='COMPANION_BACKEND_SNAPSHOT_PATH', type=click.Path(exists=True, dir_okay=False), required=True, help='Backend JSON snapshot')
@click.option('--days', type=int, default=14, show_default=True, help='Only touch broadcasts from the last N days')
@click.option('--apply', 'apply_changes', is_flag=True, default=False, help='Write changes (dry run otherwise)')
def normalize_broadcasts(snapshot, days, apply_changes):
    """
    Convert legacy string timestamps of recent admin broadcasts to epoch milliseconds.
    """
    store = InMemoryBackendStore.from_json_file(snapshot)
    report = normalize_broadcast_timestamps(store, days=days, dry_run=not apply_changes, show_progress=sys.stderr.isatty())

    if apply_changes and report.normalized:
        store.save_json_file(snapshot)
        logger.info(f"Wrote {report.normalized} normalized timestamps to {snapshot}")

    click.echo(json.dumps(report.to_dict(), indent=2))


@main.command('notify')
@click.option('--snapshot', envvar='COMPANION_BACKEND_SNAPSHOT_PATH', type=click.Path(exists=True, dir_okay=False), required=True, help='Backend JSON snapshot')
@click.option('--tour-id', required=True, help='Tour the event belongs to')
@click.option('--message-id', default=None, help='Chat message to fan out')
@click.option('--itinerary', is_flag=True, default=False, help='Fan out an itinerary update instead of a chat message')
@click.option('--expo-access-token', envvar='EXPO_ACCESS_TOKEN', default=None, help='Expo access token')
@click.option('--write-back', is_flag=True, default=False, help='Persist removed push tokens to the snapshot')
@click.pass_obj
def notify(config, snapshot, tour_id, message_id, itinerary, expo_access_token, write_back):
    """
    Replay a chat message or itinerary change from a snapshot through the notification fan-out.
    """
    if not itinerary and not message_id:
        raise click.UsageError("--message-id is required unless --itinerary is given")

    store = InMemoryBackendStore.from_json_file(snapshot)

    if itinerary:
        event = FanoutEvent(kind=EventKind.ITINERARY_UPDATE, tour_id=tour_id)
    else:
        payload = store.read(("chats", tour_id, "messages", message_id))
        if payload is None:
            raise click.ClickException(f"Message {message_id} not found in tour {tour_id}")
        event = FanoutEvent(kind=EventKind.CHAT_MESSAGE, tour_id=tour_id,
                            message_id=message_id, payload=payload)

    transport = ExpoPushTransport(
        push_url=config.expo_push_url,
        timeout_seconds=config.push_timeout_seconds,
        chunk_size=config.push_chunk_size,
        access_token=expo_access_token,
    )

    async def run():
        service = NotificationFanoutService(
            roster=store,
            token_registry=store,
            transport=transport,
            rate_limiter=RateLimiter(config.rate_limit_sweep_interval_seconds),
            verifier=AdminBroadcastVerifier(store),
            config=config,
        )
        outcome = await service.handle(event)
        await service.drain_cleanup()
        return outcome

    result = asyncio.run(run())

    if write_back:
        store.save_json_file(snapshot)

    click.echo(json.dumps(result.to_dict(), indent=2))


main.add_command(run_server, name='serve')


if __name__ == '__main__':
    main()
