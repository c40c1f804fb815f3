"""
Database initialization script

Run once per environment to create the verigate collections and indexes:
    pip install -e . && python scripts/init_db.py

Uses the same settings (.env) as the service.
"""

import asyncio

from verigate.core.config import settings
from verigate.core.logging import setup_logging, get_logger
from verigate.db.mongo import (
    RATE_LIMITS,
    RECOVERY_PASSWORDS,
    VERIFICATION_SESSIONS,
    close_mongo_connection,
    connect_to_mongo,
    get_database,
)
from verigate.db.indexes import create_indexes

logger = get_logger("scripts.init_db")

COLLECTIONS = [VERIFICATION_SESSIONS, RATE_LIMITS, RECOVERY_PASSWORDS]


async def main():
    logger.info(f"Initializing database {settings.MONGODB_DB_NAME}")
    await connect_to_mongo()

    try:
        await create_indexes()

        db = get_database()
        for collection_name in COLLECTIONS:
            indexes = await db[collection_name].index_information()
            names = [name for name in indexes if name != "_id_"]
            count = await db[collection_name].count_documents({})
            logger.info(f"{collection_name}: {count} documents, indexes {names}")

        logger.info("Database initialization complete")

    finally:
        await close_mongo_connection()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
