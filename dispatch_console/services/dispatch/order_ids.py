from __future__ import annotations

import random
import re
from datetime import datetime
from typing import Optional

ORDER_ID_PATTERN = re.compile(r"^ORD-\d{6}-\d{6}-\d{4}$")


def generate_order_id(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    """`ORD-{YYMMDD}-{HHMMSS}-{4 random digits}`"""
    now = now or datetime.now()
    suffix = (rng or random).randint(0, 9999)
    return f"ORD-{now:%y%m%d}-{now:%H%M%S}-{suffix:04d}"


def generate_distinct_order_id(previous_order_id: Optional[str], now: Optional[datetime] = None) -> str:
    order_id = generate_order_id(now)
    while order_id == previous_order_id:
        order_id = generate_order_id(now)
    return order_id


def is_valid_order_id(value: str) -> bool:
    return bool(ORDER_ID_PATTERN.match(value or ""))
