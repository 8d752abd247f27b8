import asyncio
import logging
import os
import time
from typing import Optional, Set

import httpx

from ytstream.config.settings import config
from ytstream.core.state import state
from ytstream.infra.http import get_http_client

logger = logging.getLogger(__name__)

PYPI_URL = "https://pypi.org/pypi/{package}/json"
MAX_WARNINGS = 5

_tasks: Set["asyncio.Task"] = set()


def update_check_disabled() -> bool:
    return bool(os.getenv("YTSTREAM_NO_UPDATE")) or not config.update_check.enabled


def _due() -> bool:
    return not state.last_update_check or time.time() - state.last_update_check >= config.update_check.interval


async def check_for_updates(client: Optional[httpx.AsyncClient] = None) -> Optional[str]:
    """Compare the installed version with the latest release on PyPI"""
    if update_check_disabled() or not _due():
        return None
    state.last_update_check = time.time()

    package = config.update_check.package
    client = client or get_http_client()
    try:
        resp = await client.get(PYPI_URL.format(package=package))
        resp.raise_for_status()
        latest = resp.json()["info"]["version"]
    except (httpx.HTTPError, ValueError, KeyError) as e:
        logger.warning(
            f"Error checking for updates: {e}. "
            "You can disable this check by setting the `YTSTREAM_NO_UPDATE` env variable."
        )
        return None

    state.latest_version = latest
    if latest != state.version and state.update_warnings < MAX_WARNINGS:
        state.update_warnings += 1
        logger.warning(
            f"{package} is out of date! Installed {state.version}, latest is {latest}. "
            f"Update with \"pip install -U {package}\"."
        )
    return latest


def schedule_update_check() -> None:
    """Fire-and-forget check from inside a running loop"""
    if update_check_disabled() or not _due():
        return
    task = asyncio.get_running_loop().create_task(check_for_updates())
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
