# equiplend/db/database.py
import logging

import motor.motor_asyncio
from beanie import init_beanie

from equiplend.core import config
from equiplend.db.memory import MemoryStore
from equiplend.db.mongo import DOCUMENT_MODELS, MongoStore
from equiplend.db.store import Store

logger = logging.getLogger(__name__)


async def init_db() -> Store:
    """Open the configured store. For MongoDB, Beanie creates the collections and indexes."""
    if config.STORE_BACKEND == "memory":
        logger.warning("Using in-memory store. Data is lost on restart.")
        return MemoryStore()

    logger.info("Connecting to MongoDB...")
    client = motor.motor_asyncio.AsyncIOMotorClient(config.MONGODB_URL, tz_aware=True)
    database = client[config.DATABASE_NAME]
    logger.info(f"Using database: {config.DATABASE_NAME}")

    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    logger.info("Beanie initialization complete for all models.")
    return MongoStore(client, config.DATABASE_NAME)
