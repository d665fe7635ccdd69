from decimal import Decimal, InvalidOperation
from typing import Optional

from redis.asyncio import Redis

from beacon.domain.errors import CorruptAggregateError


def format_decimal(value: Decimal) -> str:
    """Plain positional notation; never exponent form."""
    return format(value, "f")


class AggregateRepository:
    """Redis-backed access to the aggregate keys.

    Notes:
        - Only GET/SET/SETNX/INCR are used; PING lives in the keep-alive loop.
        - The read-modify-write helpers are not atomic; callers must be the
          sole writer of the keys they touch.
    """

    def __init__(self, redis: Redis):
        self.r = redis

    async def get_decimal(self, key: str) -> Optional[Decimal]:
        raw = await self.r.get(key)
        if raw is None:
            return None
        try:
            return Decimal(raw)
        except InvalidOperation:
            raise CorruptAggregateError(key, raw) from None

    async def set_decimal(self, key: str, value: Decimal) -> None:
        await self.r.set(key, format_decimal(value))

    async def set_if_absent(self, key: str, value: Decimal) -> bool:
        return bool(await self.r.setnx(key, format_decimal(value)))

    async def increment(self, key: str) -> int:
        """Native INCR; a missing key starts at 1."""
        return int(await self.r.incr(key))

    async def add_decimal(self, key: str, value: Decimal) -> Decimal:
        """Add ``value`` to the decimal stored at ``key`` and return the total."""
        if await self.set_if_absent(key, value):
            return value
        current = await self.get_decimal(key)
        total = (current or Decimal(0)) + value
        await self.set_decimal(key, total)
        return total

    async def raise_max(self, key: str, value: Decimal) -> Decimal:
        """Store ``value`` if it beats the current maximum; return the maximum."""
        current = await self.get_decimal(key)
        if current is None or value > current:
            await self.set_decimal(key, value)
            return value
        return current
