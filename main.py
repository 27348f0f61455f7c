"""Headless runner: keeps the stored seller's orders and catalogs refreshed."""
import asyncio
import logging
import signal

from config import load_config, SettingsError
from session import build_session

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

async def main() -> int:
    try:
        settings = load_config()
    except SettingsError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    session = build_session(settings)
    identity = await session.restore()
    if identity is None:
        logger.error("No stored private key; set one through the API first")
        return 1

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, session.stop)

    logger.info(f"Running auto refresh for {identity.address}")
    try:
        await session.run_auto_refresh()
    finally:
        for error in session.errors.active():
            logger.warning(f"Unresolved error: {error}")
        logger.info("Shutdown complete.")
    return 0

if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
