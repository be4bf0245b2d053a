"""
Periodic job that advances today's web orders through the delivery states.

The tick is a plain function taking the clock as an argument so it can be
driven directly; `run_scheduler` is the asyncio loop the app lifespan starts.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi.concurrency import run_in_threadpool

from config import SCHEDULER_INTERVAL_MINUTES
from database import require_db
from order_status import (
    ACTIVE_STATUSES,
    delivery_datetime,
    minutes_to_delivery,
    next_status,
)

logger = logging.getLogger(__name__)


def advance_order_statuses(now: Optional[datetime] = None) -> List[dict]:
    """Evaluate every unlocked order due today and persist the transitions.

    Each write is conditional on the status that was read, so an admin
    override landing in between is never clobbered.
    """
    db = require_db()
    now = now or datetime.now()
    day_start = datetime(now.year, now.month, now.day)
    query = {
        "delivery_date": {"$gte": day_start, "$lt": day_start + timedelta(days=1)},
        "status": {"$in": [s.value for s in ACTIVE_STATUSES]},
        "status_locked": {"$ne": True},
    }

    transitions = []
    for order in db["order"].find(query):
        try:
            delivery_at = delivery_datetime(order["delivery_date"], order["delivery_time"])
        except (KeyError, ValueError):
            logger.warning("Order %s has no usable delivery time, skipping", order["_id"])
            continue

        minutes_left = minutes_to_delivery(delivery_at, now)
        new_status = next_status(order["status"], minutes_left)
        if new_status is None:
            continue

        res = db["order"].update_one(
            {"_id": order["_id"], "status": order["status"], "status_locked": {"$ne": True}},
            {"$set": {"status": new_status.value, "updated_at": now}},
        )
        if res.modified_count == 0:
            logger.info("Order %s was changed concurrently, leaving it", order["_id"])
            continue

        logger.info("Order %s: %s -> %s (%d min to delivery)", order["_id"], order["status"], new_status.value,
                    minutes_left)
        transitions.append({
            "order_id": str(order["_id"]),
            "from": order["status"],
            "to": new_status.value,
            "minutes_left": minutes_left,
        })

    logger.info("Order status tick at %s advanced %d order(s)", now.strftime("%Y-%m-%d %H:%M"), len(transitions))
    return transitions


def seconds_until_next_tick(now: datetime, interval_minutes: int) -> float:
    """Seconds until the next wall-clock multiple of the interval (e.g. :00 and :30)."""
    midnight = datetime(now.year, now.month, now.day)
    step = interval_minutes * 60
    elapsed = (now - midnight).total_seconds()
    return step - (elapsed % step)


async def run_scheduler(interval_minutes: int = SCHEDULER_INTERVAL_MINUTES):
    logger.info("Order status scheduler running every %d minutes", interval_minutes)
    while True:
        await asyncio.sleep(seconds_until_next_tick(datetime.now(), interval_minutes))
        try:
            await run_in_threadpool(advance_order_statuses)
        except Exception:
            logger.exception("Order status update failed")
