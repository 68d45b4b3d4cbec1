"""Pending order batch kept in three Redis keys, mutated only by server-side Lua."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import redis.asyncio as aioredis

from order_notify.application.ports.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

# KEYS: orders list, total, last-updated
# ARGV: order json, amount, expiry seconds, last-updated iso, max list length
ADD_ORDER_LUA = """
local orders_key = KEYS[1]
local total_key  = KEYS[2]
local last_key   = KEYS[3]

local order_json = ARGV[1]
local order_amount = ARGV[2]
local expiry = tonumber(ARGV[3]) or 120
local last_iso = ARGV[4] or ""
local max_len = tonumber(ARGV[5]) or 1000

redis.call('RPUSH', orders_key, order_json)
redis.call('LTRIM', orders_key, -max_len, -1)

local total = redis.call('INCRBYFLOAT', total_key, order_amount)
redis.call('SET', last_key, last_iso)
redis.call('EXPIRE', orders_key, expiry)
redis.call('EXPIRE', total_key, expiry)
redis.call('EXPIRE', last_key, expiry)

local llen = redis.call('LLEN', orders_key)
return { tostring(llen), tostring(total) }
"""

# KEYS: orders list, total, last-updated
# ARGV: channel, max orders to send
# Returns nil when the batch is empty, else {count, total, orders_json, last_updated}.
FLUSH_PUBLISH_LUA = """
local orders_key = KEYS[1]
local total_key  = KEYS[2]
local last_key   = KEYS[3]

local channel = ARGV[1]
local n = tonumber(ARGV[2]) or 10

local len = redis.call('LLEN', orders_key)
if not len or tonumber(len) == 0 then
  return nil
end

local orders = {}
if n > 0 then
  orders = redis.call('LRANGE', orders_key, -n, -1)
end
local total = redis.call('GET', total_key) or "0"
local last_updated = redis.call('GET', last_key) or ""

local orders_json = table.concat(orders, ",")

local message = '{"type":"batch","count":' .. tostring(len)
message = message .. ',"totalRevenue":' .. tostring(total)
message = message .. ',"orders":[' .. orders_json .. ']'
message = message .. ',"timestamp":"' .. tostring(last_updated) .. '"}'
redis.call('PUBLISH', channel, message)

redis.call('DEL', orders_key, total_key, last_key)

return { tostring(len), tostring(total), orders_json, tostring(last_updated) }
"""


@dataclass(frozen=True, slots=True)
class BatchKeys:
    orders: str
    total: str
    last_updated: str

    @classmethod
    def with_prefix(cls, prefix: str) -> BatchKeys:
        return cls(f"{prefix}:orders", f"{prefix}:total", f"{prefix}:lastUpdated")


@dataclass(frozen=True, slots=True)
class AddOrderResult:
    length: int
    total: float


@dataclass(frozen=True, slots=True)
class FlushResult:
    count: int
    total: float
    orders: list[dict[str, Any]]
    last_updated: datetime | None


class AtomicBatchStore:
    def __init__(self, redis: aioredis.Redis, *, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._add_order = redis.register_script(ADD_ORDER_LUA)
        self._flush_publish = redis.register_script(FLUSH_PUBLISH_LUA)

    async def add_order(
        self,
        keys: BatchKeys,
        order: dict[str, Any],
        amount: float,
        *,
        expiry_seconds: int = 120,
        max_list_len: int = 1000,
    ) -> AddOrderResult:
        """Append ``order``, trim, accumulate ``amount`` and refresh TTLs in one step.

        Duplicates are not detected here; the poller's processed-set owns that.
        """
        length, total = await self._add_order(
            keys=[keys.orders, keys.total, keys.last_updated],
            args=[
                json.dumps(order),
                repr(float(amount)),
                str(expiry_seconds),
                self._clock.now().isoformat(),
                str(max_list_len),
            ],
        )
        return AddOrderResult(length=int(length), total=float(total))

    async def flush_and_publish(
        self,
        keys: BatchKeys,
        channel: str,
        *,
        max_orders_to_send: int = 10,
    ) -> FlushResult | None:
        """Drain the batch and publish it on ``channel``; ``None`` when there is nothing to send.

        ``count`` is the full batch length, ``orders`` only the newest
        ``max_orders_to_send`` entries in insertion order.
        """
        res = await self._flush_publish(
            keys=[keys.orders, keys.total, keys.last_updated],
            args=[channel, str(max_orders_to_send)],
        )
        if not res:
            return None

        count, total, orders_json, last_updated = res
        return FlushResult(
            count=int(count),
            total=float(total),
            orders=json.loads(f"[{orders_json}]"),
            last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
        )
