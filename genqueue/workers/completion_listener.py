"""
Completion Listener - keeps a client's workspace in sync with finished jobs.

Two signal sources feed the same workspace state:

    job change feed --> CompletionListener --+--> EventBus --> WorkspaceSync --> WorkspaceState
                                             |
    other producers ------------------------+

The change feed runs under a bounded retry policy; once it gives up, the
AssetPoller takes over. Adding an asset id is idempotent, so both paths can
deliver the same asset without duplicating it.

Run with: python -m genqueue.workers.completion_listener --user-id <uuid>

Environment Variables:
    DATABASE_URL: PostgreSQL URL (the change feed needs LISTEN/NOTIFY)
"""

import argparse
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from genqueue.core.config import DATABASE_URL
from genqueue.db import SessionLocal, WorkspaceAsset
from genqueue.workers.change_feed import PostgresChangeFeed, SubscriptionError

logger = logging.getLogger(__name__)

GENERATION_COMPLETED = "generation-completed"
GENERATION_BATCH_COMPLETED = "generation-batch-completed"
JOB_STATUS_UPDATE = "job-status-update"

POLL_INTERVAL = 5.0


def log_notify(title: str, description: str = None):
    """Default notifier: the user-facing toast becomes a log line."""
    logger.info(f"{title} - {description}" if description else title)


class EventBus:
    """Named in-process events with synchronous listeners."""

    def __init__(self):
        self._listeners = defaultdict(list)

    def add_listener(self, event: str, listener: Callable[[dict], None]):
        self._listeners[event].append(listener)

    def remove_listener(self, event: str, listener: Callable[[dict], None]):
        if listener in self._listeners[event]:
            self._listeners[event].remove(listener)

    def dispatch(self, event: str, detail: dict):
        for listener in list(self._listeners[event]):
            listener(detail)


class WorkspaceState:
    """Asset ids currently shown in the workspace."""

    def __init__(self, asset_ids: Iterable[str] = ()):
        self.asset_ids = set(asset_ids)

    def add(self, asset_ids: Iterable[str]) -> List[str]:
        """Add ids, returning only the ones that were not present yet."""
        added = []
        for asset_id in asset_ids:
            if asset_id and asset_id not in self.asset_ids:
                self.asset_ids.add(asset_id)
                added.append(asset_id)
        return added

    def __contains__(self, asset_id):
        return asset_id in self.asset_ids

    def __len__(self):
        return len(self.asset_ids)


class WorkspaceSync:
    """Merges completion events into the workspace state."""

    def __init__(self, bus: EventBus, workspace: WorkspaceState, notify=log_notify):
        self.bus = bus
        self.workspace = workspace
        self.notify = notify

    def attach(self):
        self.bus.add_listener(GENERATION_COMPLETED, self.on_generation_completed)
        self.bus.add_listener(GENERATION_BATCH_COMPLETED, self.on_batch_completed)
        self.bus.add_listener(JOB_STATUS_UPDATE, self.on_job_status_update)

    def detach(self):
        self.bus.remove_listener(GENERATION_COMPLETED, self.on_generation_completed)
        self.bus.remove_listener(GENERATION_BATCH_COMPLETED, self.on_batch_completed)
        self.bus.remove_listener(JOB_STATUS_UPDATE, self.on_job_status_update)

    def on_generation_completed(self, detail: dict):
        asset_id = (detail or {}).get("assetId")
        if not asset_id:
            logger.warning(f"generation-completed event without assetId: {detail}")
            return
        if not self.workspace.add([asset_id]):
            return
        asset_type = detail.get("type") or "asset"
        logger.info(f"Added {asset_type} {asset_id} to workspace")
        self.notify("Generation Complete!", f"Your {asset_type} is ready.")

    def on_batch_completed(self, detail: dict):
        detail = detail or {}
        asset_ids = detail.get("assetIds")
        if not isinstance(asset_ids, list) or not asset_ids:
            logger.warning(f"generation-batch-completed event without assetIds: {detail}")
            return

        self.workspace.add(asset_ids)
        completed = detail.get("totalCompleted", len(asset_ids))
        expected = detail.get("totalExpected", len(asset_ids))
        if completed == expected:
            message = f"All {completed} images added to workspace!"
        else:
            message = f"{completed}/{expected} images added to workspace!"
        self.notify(message, "Your generated images are now available in the workspace")

    def on_job_status_update(self, detail: dict):
        # Assets arrive through the completion events; this is bookkeeping only
        logger.debug(f"Job {detail.get('jobId')} is {detail.get('status')}")


@dataclass
class RetryPolicy:
    """Linear backoff: retry n waits base_delay * n, capped at max_delay."""
    max_retries: int = 2
    base_delay: float = 2.0
    max_delay: float = 10.0

    def delay(self, retry: int) -> float:
        return min(self.base_delay * retry, self.max_delay)

    def schedule(self) -> List[float]:
        return [self.delay(n) for n in range(1, self.max_retries + 1)]


class RealtimeSubscription:
    """Runs a change feed, re-subscribing on failure until the policy is exhausted."""

    def __init__(self, feed, on_change, policy: RetryPolicy = None, sleep=asyncio.sleep):
        self.feed = feed
        self.on_change = on_change
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def run(self) -> bool:
        """True if the feed was stopped cleanly, False once retries are exhausted."""
        retry = 0
        while True:
            try:
                await self.feed.listen(self.on_change)
                return True
            except SubscriptionError as e:
                if retry >= self.policy.max_retries:
                    logger.error(f"Realtime subscription gave up after {retry} retries: {e}")
                    return False
                retry += 1
                delay = self.policy.delay(retry)
                logger.warning(f"Realtime subscription failed ({e}), retry {retry} in {delay:.0f}s")
                await self._sleep(delay)


def job_filter(user_id: str = None, **metadata) -> Callable[[dict], bool]:
    """Predicate over change rows: owner and top-level metadata values must match."""
    def _matches(row: dict) -> bool:
        if user_id and row.get("user_id") != user_id:
            return False
        row_meta = row.get("metadata") or {}
        return all(row_meta.get(key) == value for key, value in metadata.items())
    return _matches


@dataclass
class ResolvedAssets:
    asset_ids: List[str] = field(default_factory=list)
    asset_type: str = "image"


def db_asset_resolver(session_factory=SessionLocal) -> Callable[[dict], ResolvedAssets]:
    """Look up the workspace assets a completed job produced."""
    def _resolve(row: dict) -> ResolvedAssets:
        db = session_factory()
        try:
            assets = (
                db.query(WorkspaceAsset)
                .filter(WorkspaceAsset.job_id == row["id"])
                .order_by(WorkspaceAsset.asset_index)
                .all()
            )
        finally:
            db.close()
        if assets:
            return ResolvedAssets([a.id for a in assets], assets[0].asset_type)
        # Legacy jobs link their single output directly
        if row.get("image_id"):
            return ResolvedAssets([row["image_id"]], "image")
        if row.get("video_id"):
            return ResolvedAssets([row["video_id"]], "video")
        return ResolvedAssets()
    return _resolve


class CompletionListener:
    """Turns job changes into workspace events. Each job is announced once."""

    def __init__(
        self,
        bus: EventBus,
        resolve_assets: Callable[[dict], ResolvedAssets],
        predicate: Optional[Callable[[dict], bool]] = None,
        notify=log_notify,
    ):
        self.bus = bus
        self.resolve_assets = resolve_assets
        self.predicate = predicate
        self.notify = notify
        self._announced = set()

    async def on_change(self, row: dict):
        if self.predicate and not self.predicate(row):
            return

        job_id = row.get("id")
        status = row.get("status")
        self.bus.dispatch(JOB_STATUS_UPDATE, {"jobId": job_id, "status": status})

        if job_id in self._announced:
            return
        if status == "failed":
            self._announced.add(job_id)
            meta = row.get("metadata") or {}
            self.notify("Generation Failed", meta.get("last_webhook_error") or row.get("error_message"))
            return
        if status != "completed":
            return

        self._announced.add(job_id)
        try:
            resolved = await asyncio.to_thread(self.resolve_assets, row)
        except Exception:
            self._announced.discard(job_id)
            logger.error(f"[{job_id}] Could not resolve assets", exc_info=True)
            return

        if not resolved.asset_ids:
            # Let a later change for the same job try again
            self._announced.discard(job_id)
            logger.warning(f"[{job_id}] Completed but no assets found yet")
            return

        if len(resolved.asset_ids) == 1:
            self.bus.dispatch(GENERATION_COMPLETED, {
                "assetId": resolved.asset_ids[0],
                "type": resolved.asset_type,
                "jobId": job_id,
            })
        else:
            expected = (row.get("metadata") or {}).get("num_images") or len(resolved.asset_ids)
            self.bus.dispatch(GENERATION_BATCH_COMPLETED, {
                "assetIds": resolved.asset_ids,
                "type": resolved.asset_type,
                "jobId": job_id,
                "totalCompleted": len(resolved.asset_ids),
                "totalExpected": expected,
            })


def db_workspace_fetcher(user_id: str, session_factory=SessionLocal) -> Callable[[], List[str]]:
    """Ids of the user's unexpired workspace assets."""
    def _fetch() -> List[str]:
        db = session_factory()
        try:
            rows = (
                db.query(WorkspaceAsset.id)
                .filter(
                    WorkspaceAsset.user_id == user_id,
                    WorkspaceAsset.expires_at > datetime.utcnow(),
                )
                .order_by(WorkspaceAsset.created_at)
                .all()
            )
            return [asset_id for (asset_id,) in rows]
        finally:
            db.close()
    return _fetch


class AssetPoller:
    """Polling fallback: periodically merges the stored asset list into the workspace."""

    def __init__(self, fetch_asset_ids: Callable[[], List[str]], workspace: WorkspaceState,
                 interval: float = POLL_INTERVAL, notify=log_notify):
        self.fetch_asset_ids = fetch_asset_ids
        self.workspace = workspace
        self.interval = interval
        self.notify = notify

    async def poll_once(self) -> List[str]:
        asset_ids = await asyncio.to_thread(self.fetch_asset_ids)
        added = self.workspace.add(asset_ids)
        if added:
            self.notify(f"{len(added)} new assets added to workspace")
        return added

    async def run(self, stop: asyncio.Event):
        while not stop.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Asset poll failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass


async def run_listener(user_id: str, database_url: str = DATABASE_URL,
                       poll_interval: float = POLL_INTERVAL, **metadata):
    bus = EventBus()
    workspace = WorkspaceState()
    sync = WorkspaceSync(bus, workspace)
    sync.attach()

    poller = AssetPoller(db_workspace_fetcher(user_id), workspace, interval=poll_interval)
    await poller.poll_once()
    logger.info(f"Workspace starts with {len(workspace)} assets")

    listener = CompletionListener(
        bus,
        db_asset_resolver(),
        predicate=job_filter(user_id=user_id, **metadata),
    )
    subscription = RealtimeSubscription(PostgresChangeFeed(database_url), listener.on_change)
    try:
        if not await subscription.run():
            logger.info(f"Falling back to polling every {poll_interval:.0f}s")
            await poller.run(asyncio.Event())
    finally:
        sync.detach()


def main():
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
    )
    parser = argparse.ArgumentParser(description="Follow job completions for one user")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--character-id", help="Only follow jobs for this character")
    parser.add_argument("--poll-interval", type=float, default=POLL_INTERVAL)
    args = parser.parse_args()

    metadata = {"character_id": args.character_id} if args.character_id else {}

    logger.info("=" * 60)
    logger.info("Completion Listener Starting")
    logger.info("=" * 60)
    logger.info(f"  USER_ID: {args.user_id}")
    logger.info(f"  FILTER: {metadata or 'none'}")
    logger.info("=" * 60)

    try:
        asyncio.run(run_listener(args.user_id, poll_interval=args.poll_interval, **metadata))
    except KeyboardInterrupt:
        logger.info("Completion Listener stopped")


if __name__ == "__main__":
    main()
