#!/usr/bin/env python3
"""
Scheduler for the YouTube channel monitor
Asks the API server to refresh every monitored channel on a fixed interval
"""

import argparse
import asyncio
import aiohttp
import logging

from config import Config

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = Config.BASE_URL
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=15 * 60)  # a full refresh can take minutes
MAX_BACKOFF_SECONDS = 15 * 60

async def make_request(endpoint: str, method: str = "GET", data: dict = None, session: aiohttp.ClientSession = None):
    """Call the API server and return its JSON body; non-2xx responses raise"""
    url = f"{BASE_URL}{endpoint}"
    owns_session = session is None
    if owns_session:
        session = aiohttp.ClientSession(timeout=REQUEST_TIMEOUT)

    try:
        async with session.request(method, url, json=data) as response:
            response.raise_for_status()
            return await response.json()
    finally:
        if owns_session:
            await session.close()

async def refresh_channels(force_update: bool = False, session: aiohttp.ClientSession = None):
    """Refresh all channels, returning the batch summary or None on failure"""
    try:
        logger.info("🔄 Refreshing all channels...")
        result = await make_request("/refresh", "POST", {"force_update": force_update}, session=session)
    except Exception as e:
        logger.error(f"❌ Error refreshing channels: {e}")
        return None

    logger.info(f"✅ {result.get('success', 0)} updated, {result.get('skipped_cached', 0)} cached, "
                f"{result.get('failed', 0)} failed")
    for error in result.get("errors", []):
        logger.warning(f"⚠️ {error.get('channel_name')}: {error.get('message')}")
    return result

async def health_check(session: aiohttp.ClientSession = None):
    try:
        result = await make_request("/health", session=session)
    except Exception as e:
        logger.error(f"❌ Health check failed: {e}")
        return False
    logger.debug(f"🏥 Health check: {result}")
    return result.get("status") == "healthy"

async def run(interval_minutes: int = None, force_update: bool = False, once: bool = False):
    """Refresh loop; waits with growing backoff while the server is unhealthy"""
    interval = (interval_minutes or Config.REFRESH_INTERVAL_MINUTES) * 60
    backoff = 60

    logger.info(f"🚀 Scheduler started against {BASE_URL}, refreshing every {interval // 60} minutes")
    async with aiohttp.ClientSession(timeout=REQUEST_TIMEOUT) as session:
        while True:
            if not await health_check(session):
                if once:
                    return None
                logger.warning(f"⚠️ Server not healthy, retrying in {backoff}s")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF_SECONDS)
                continue

            backoff = 60
            result = await refresh_channels(force_update, session=session)
            if once:
                return result
            await asyncio.sleep(interval)

def main(argv=None):
    parser = argparse.ArgumentParser(description="Periodically refresh monitored channels through the API")
    parser.add_argument("--interval", type=int, help="Minutes between refreshes")
    parser.add_argument("--force", action="store_true", help="Refresh channels even when their cache is fresh")
    parser.add_argument("--once", action="store_true", help="Run a single refresh and exit")
    args = parser.parse_args(argv)

    try:
        asyncio.run(run(args.interval, args.force, args.once))
    except KeyboardInterrupt:
        logger.info("⏹️ Scheduler stopped")

if __name__ == "__main__":
    main()
