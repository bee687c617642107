"""Command line interface for running the API server."""
import logging
import uvicorn

from config import settings_conf

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

def main():
    """Run the API server; the app's lifespan opens and closes the record store."""
    host = settings_conf['api_host']
    port = settings_conf['api_port']
    logger.info(f"Starting API on {host}:{port} with {settings_conf['store_backend']} store")
    uvicorn.run(
        "api:app",
        host=host,
        port=port,
        log_level="info"
    )

if __name__ == "__main__":
    main()
