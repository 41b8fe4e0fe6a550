from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from travel_bookings import settings

_redis: Redis | None = None

# Present in every filled entry, so a listing without bookings is still a hit.
_FILLED = "_filled"


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis


def _availability_key(listing_id: UUID) -> str:
    return f"listing:{listing_id}:booked"


async def get_availability_cache(listing_id: UUID) -> dict[str, int] | None:
    """Booked slots per ISO visit date, or None on a miss."""
    try:
        entry = await get_redis().hgetall(_availability_key(listing_id))
    except Exception:
        logger.warning("Redis read failed, skipping availability cache", exc_info=True)
        return None
    if _FILLED not in entry:
        logger.debug("Availability cache miss: listing_id={}", listing_id)
        return None
    logger.debug("Availability cache hit: listing_id={}", listing_id)
    return {day: int(slots) for day, slots in entry.items() if day != _FILLED}


async def set_availability_cache(listing_id: UUID, booked: dict[str, int]) -> None:
    key = _availability_key(listing_id)
    try:
        async with get_redis().pipeline(transaction=True) as pipe:
            pipe.delete(key)
            pipe.hset(key, mapping={_FILLED: 1, **booked})
            pipe.expire(key, settings.availability_cache_ttl)
            await pipe.execute()
    except Exception:
        logger.warning("Redis write failed, skipping availability cache", exc_info=True)


async def invalidate_availability_cache(listing_id: UUID) -> None:
    try:
        await get_redis().delete(_availability_key(listing_id))
    except Exception:
        logger.warning(
            "Redis invalidate failed for listing {} availability", listing_id, exc_info=True
        )
