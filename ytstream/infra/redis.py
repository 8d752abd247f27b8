from typing import Optional
import redis.asyncio as aioredis
from rich.console import Console
from ytstream.config.settings import config
from ytstream.core.state import state

console = Console()


async def init_redis() -> Optional[aioredis.Redis]:
    """Connect the response cache; the API keeps working without it"""
    try:
        redis_client = await aioredis.from_url(
            config.redis.url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=config.redis.socket_timeout
        )
        await redis_client.ping()
        state.redis = redis_client
        console.print("[green]✓ Redis connected[/green]")
    except Exception as e:
        console.print(f"[yellow]⚠ Redis connection failed: {str(e)}[/yellow]")
        state.redis = None
    return state.redis


def get_redis() -> Optional[aioredis.Redis]:
    """Get Redis client from state"""
    return state.redis


async def close_redis() -> None:
    """Close Redis connection"""
    if state.redis:
        await state.redis.close()
        state.redis = None
        console.print("[dim]✓ Redis connection closed[/dim]")
