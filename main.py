"""
eregs main entry point.
Warms the procedure cache and keeps the daily expiry sweep running.
"""

import asyncio
import sys

from loguru import logger

from eregs.services.client import close_eregulations_client, get_eregulations_client
from eregs.services.errors import ServiceError
from eregs.settings import global_settings


async def main() -> None:
    """Main function"""
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level.upper())
    logger.info("Starting eregs cache warmer...")

    client = get_eregulations_client()
    try:
        procedures = await client.list_procedures()
        leaves = sum(1 for record in procedures if record.is_leaf_resource)
        logger.info(
            f"Procedure index ready: {len(procedures)} records, {leaves} procedures"
        )
        logger.info(f"Health: {client.get_health_status()}")

        # Keep running so the sweeper can do its job
        logger.info("eregs is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(60)

    except ServiceError as e:
        logger.error(f"Could not load procedures: {e}")
    finally:
        logger.info("Closing client...")
        await close_eregulations_client()
        logger.info("eregs stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
