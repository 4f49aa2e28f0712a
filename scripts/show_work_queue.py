"""
Print an agent's work queue as the console would show it.

Usage:
    python scripts/show_work_queue.py --admin-id 42
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dispatch_console.services.realtime import EventSource
from dispatch_console.services.record_store import get_record_store
from dispatch_console.services.scheduler_service import SchedulerService
from dispatch_console.services.work_queue import WorkQueueAggregator

LOGGER = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


async def main(admin_id: str) -> None:
    store = await get_record_store()
    aggregator = WorkQueueAggregator(
        admin_id,
        store=store,
        events=EventSource(),
        scheduler=SchedulerService(),
    )
    await aggregator.refresh_placed()
    await aggregator.refresh_scheduled()

    snapshot = aggregator.snapshot()
    counts = snapshot.counts
    print(f"Agent {admin_id}: {snapshot.total} items (placed={counts.placed}, scheduled={counts.scheduled})")
    for item in snapshot.items:
        if item.kind == "placed_order":
            print(f"  [placed]    {item.order_id}  {item.customer_name} ({item.customer_phone})  {item.address}")
        elif item.kind == "scheduled_order":
            print(f"  [scheduled] {item.order_id}  {item.scheduled_time}  {item.customer_name}  {item.address}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--admin-id", required=True)
    args = parser.parse_args()
    asyncio.run(main(args.admin_id))
