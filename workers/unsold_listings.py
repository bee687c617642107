"""Worker that closes ended listings which never received a bid."""

import asyncio
import logging
from typing import Optional

from config import settings_conf
from auctions import AuctionEngine, engine as auction_engine

# Configure logging
logger = logging.getLogger(__name__)

async def close_unsold_listings(engine: Optional[AuctionEngine] = None) -> int:
    """Run one sweep, returning the number of listings closed."""
    engine = engine or auction_engine
    return await engine.close_expired_unsold()

async def close_unsold_listings_task(
    interval: Optional[int] = None,
    engine: Optional[AuctionEngine] = None
):
    """Background task closing unsold listings every ``interval`` seconds."""
    interval = interval or settings_conf['unsold_sweep_interval']
    logger.info(f"Started unsold listing sweep (every {interval} seconds)")
    while True:
        await asyncio.sleep(interval)
        try:
            await close_unsold_listings(engine)
        except Exception as e:
            # Keep the task alive; the next sweep retries
            logger.error(f"Error in unsold listing sweep: {e}")
