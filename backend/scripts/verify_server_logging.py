# backend/scripts/verify_server_logging.py
import asyncio
import logging
import sys
from typing import Optional

from config.settings import get_settings
from services.event_queue import EventQueue
from services.server_logger import ServerEventLogger
from storage.models import LogLevel, ProcessSource
from storage.partition_store import JsonPartitionStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SOURCES = [
    ProcessSource.AUTH_SERVER,
    ProcessSource.API_ROUTER,
    ProcessSource.DATABASE_CONNECTOR,
    ProcessSource.SYSTEM_MONITOR,
]


async def run_check(log_dir: str, iterations: int = 50, delay: float = 0.01) -> bool:
    """Push iterations x 4 events through a fresh queue and look for them on disk"""
    store = JsonPartitionStore(log_dir)
    queue = EventQueue(store)
    server_logger = ServerEventLogger(queue)
    queue.start()

    expected = iterations * len(SOURCES)
    logger.info(f"📤 Generating {expected} events...")

    pushed_ids = set()
    days = set()
    try:
        for i in range(iterations):
            for source in SOURCES:
                record = server_logger.log(
                    source,
                    LogLevel.INFO,
                    f"Test event {i} from {source.value}",
                    context={"iteration": i}
                )
                if record is not None:
                    pushed_ids.add(record.id)
                    days.add(record.partition_key)
            await asyncio.sleep(delay)

        logger.info("⏳ All events pushed to queue. Waiting for processing...")
        await queue.join()
    finally:
        await queue.stop()

    # Usually one day; two if the run crossed midnight
    events = []
    for day in sorted(days):
        events.extend(await store.read_partition(day))

    found = [e for e in events if e.get("id") in pushed_ids]
    logger.info(f"📊 Test events found: {len(found)}/{expected}")

    if len(found) >= expected:
        logger.info("✅ SUCCESS: All test events appear to be recorded.")
        return True

    logger.error("❌ FAILURE: Missing events.")
    return False


async def main(log_dir: Optional[str] = None):
    log_dir = log_dir or get_settings().SERVER_LOG_DIR
    ok = await run_check(log_dir)
    if not ok:
        sys.exit(1)

if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
