"""
Cron-driven refresh jobs: one APScheduler job per endpoint, keyed by path.

max_instances=1 keeps refreshes of one endpoint strictly sequential (an overrun
skips the next fire instead of overlapping); each endpoint gets its own worker
thread so a slow query never delays another endpoint's refresh.
"""
import logging
from datetime import datetime
from functools import partial

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from querycache.config import EndpointConfig
from querycache.services.cache.blobs import EncryptedBlobStore
from querycache.services.cache.store import CacheStore
from querycache.services.query import QueryExecutor
from querycache.services.refresh.worker import RefreshWorker

logger = logging.getLogger(__name__)


def next_fire_time(trigger: CronTrigger) -> datetime | None:
    """Next time the trigger fires after now; None if it never fires again."""
    now = datetime.now(trigger.timezone)
    return trigger.get_next_fire_time(None, now)


def build_workers(
    endpoints: list[EndpointConfig],
    store: CacheStore,
    blobs: EncryptedBlobStore,
    executor: QueryExecutor,
) -> tuple[dict[str, RefreshWorker], dict[str, CronTrigger]]:
    workers: dict[str, RefreshWorker] = {}
    triggers: dict[str, CronTrigger] = {}
    for e in endpoints:
        trigger = CronTrigger.from_crontab(e.schedule)
        triggers[e.path] = trigger
        workers[e.path] = RefreshWorker(
            e,
            store,
            blobs,
            executor,
            next_fire_time=partial(next_fire_time, trigger),
        )
    return workers, triggers


def build_scheduler(workers: dict[str, RefreshWorker], triggers: dict[str, CronTrigger]) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(
        executors={"default": ThreadPoolExecutor(max_workers=max(1, len(workers)))},
        job_defaults={"coalesce": True, "max_instances": 1},
    )
    for path, worker in workers.items():
        trigger = triggers[path]
        scheduler.add_job(worker.run, trigger, id=path, name=f"refresh {path}")
        logger.debug("Scheduled %s, next at %s", path, next_fire_time(trigger))
    return scheduler
