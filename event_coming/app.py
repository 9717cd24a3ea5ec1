"""
Event Coming — application wiring.

Builds the stores, adapters and services from settings and runs the
scheduler sweep worker until interrupted.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass

from event_coming.adapters.redis_cache import RedisCache
from event_coming.adapters.whatsapp_notifier import WhatsAppNotifier
from event_coming.config import (
    ETAConfig,
    EventCacheConfig,
    LocationCacheConfig,
    SchedulerConfig,
    settings,
)
from event_coming.core.eta import ETAEngine
from event_coming.core.event_cache import EventStateCache
from event_coming.core.location_cache import LocationCache
from event_coming.core.location_service import LocationService
from event_coming.core.participant_service import ParticipantService
from event_coming.core.scheduler import SchedulerService
from event_coming.core.worker import SchedulerWorker
from event_coming.data.db import EventDB, LocationDB, ParticipantDB, SchedulerDB

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the outer layers (HTTP, webhooks) talk to."""

    cache: RedisCache
    scheduler: SchedulerService
    worker: SchedulerWorker
    locations: LocationService
    eta: ETAEngine
    event_cache: EventStateCache
    participants: ParticipantService


def build_services() -> Services:
    db_path = settings.DATABASE_PATH
    events = EventDB(db_path)
    participants = ParticipantDB(db_path)
    tasks = SchedulerDB(db_path)
    history = LocationDB(db_path)

    cache = RedisCache.from_url(settings.REDIS_URL)
    notifier = WhatsAppNotifier.from_settings()
    scheduler_config = SchedulerConfig.from_settings()

    location_cache = LocationCache(cache, history, LocationCacheConfig.from_settings())
    event_cache = EventStateCache(cache, EventCacheConfig.from_settings())
    scheduler = SchedulerService(tasks, events, participants, notifier, scheduler_config)

    return Services(
        cache=cache,
        scheduler=scheduler,
        worker=SchedulerWorker(scheduler, scheduler_config),
        locations=LocationService(participants, events, location_cache),
        eta=ETAEngine(location_cache, participants, ETAConfig.from_settings()),
        event_cache=event_cache,
        participants=ParticipantService(participants, event_cache),
    )


async def run_worker() -> None:
    services = build_services()
    await services.cache.ping()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, services.worker.stop)

    try:
        await services.worker.run()
    finally:
        await services.cache.close()


def main() -> None:
    """Entry point: configure logging and run the sweep worker."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(settings.LOG_LEVEL)
    logger.info("Starting Event Coming scheduler worker...")
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
