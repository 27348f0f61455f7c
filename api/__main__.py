"""Command line interface for running the API server."""
import logging

import uvicorn

from config import load_config, SettingsError

from . import create_app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

def main():
    try:
        settings = load_config()
    except SettingsError as e:
        logger.error(f"Cannot start API: {e}")
        raise SystemExit(1)

    logger.info(f"Starting API on {settings['api_host']}:{settings['api_port']}")
    uvicorn.run(
        create_app(cors_origins=settings['api_cors_origins']),
        host=settings['api_host'],
        port=settings['api_port'],
        log_level="info"
    )

if __name__ == "__main__":
    main()
