from fastapi import APIRouter
from redis.exceptions import RedisError

from ytstream.core.state import state

router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint"""
    return {
        "status": "running",
        "service": "ytstream API",
        "version": state.version,
        "latest_version": state.latest_version,
        "redis_enabled": state.redis is not None,
    }


@router.get("/health")
async def health_check():
    """Lightweight health check"""
    redis_status = "disabled"
    if state.redis:
        try:
            await state.redis.ping()
            redis_status = "connected"
        except (RedisError, OSError):
            redis_status = "disconnected"

    return {
        "status": "healthy",
        "version": state.version,
        "redis": redis_status,
    }
