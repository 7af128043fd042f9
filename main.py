from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import argparse
import logging
import threading

from chat_activity_monitor.api import router as api_router
from chat_activity_monitor.ingestor import BulkIngestor
from chat_activity_monitor.store import EventStore
from chat_activity_monitor.transport import DiscordRestSource
from chat_activity_monitor.visualization import create_dash_app
from chat_activity_monitor import config


parser = argparse.ArgumentParser(description="Chat Activity Monitor entry point.")
parser.add_argument(
    "--skip-initial-scan",
    action="store_true",
    help="Do not backfill the target guild on startup.",
)
args, _ = parser.parse_known_args()
SKIP_INITIAL_SCAN = args.skip_initial_scan or config.SKIP_INITIAL_SCAN

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = EventStore(config.STORE_PATH)
    store.load()
    source = DiscordRestSource()
    ingestor = BulkIngestor(store, source)
    app.state.store = store
    app.state.source = source
    app.state.ingestor = ingestor
    logger.info("Event store initialized")

    def initial_scan():
        try:
            ingestor.scan_guild(config.TARGET_GUILD_ID)
        except Exception as e:
            logger.error(f"Initial scan error: {e}")

    try:
        if SKIP_INITIAL_SCAN:
            logger.info("Skipping initial guild scan as per configuration")
        elif not config.TARGET_GUILD_ID:
            logger.warning(
                "No target guild configured. Set the TARGET_GUILD_ID environment variable."
            )
        else:
            # Start background backfill thread
            thread = threading.Thread(target=initial_scan, daemon=True)
            thread.start()
            logger.info("Started initial guild scan")
        yield
    finally:
        store.close()
        logger.info("Application shutdown.")


app = FastAPI(
    title="Chat Activity Monitor",
    description="Tracks community chat messages and reports moderator activity",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=config.API_PREFIX)
create_dash_app(app)

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
