"""
verigate/db/mongo.py

Purpose: MongoDB connection setup

- Initializes Motor client with connection pooling
- Collections: verification_sessions, rate_limits, recovery_passwords
- Health checks and retry logic
- Proper connection lifecycle management
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError
from typing import Optional
import asyncio
from verigate.core.config import settings
from verigate.core.logging import get_logger

logger = get_logger(__name__)

VERIFICATION_SESSIONS = "verification_sessions"
RATE_LIMITS = "rate_limits"
RECOVERY_PASSWORDS = "recovery_passwords"

# Global MongoDB client
_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo():
    """
    Establishes connection to MongoDB with retry logic.
    Called during application startup.
    """
    global _client, _database

    if _client is not None:
        logger.warning("MongoDB client already initialized")
        return

    max_retries = 3
    retry_delay = 2

    for attempt in range(1, max_retries + 1):
        try:
            logger.info(
                f"Attempting to connect to MongoDB (attempt {attempt}/{max_retries})"
            )

            _client = AsyncIOMotorClient(
                settings.MONGODB_URL,
                maxPoolSize=50,
                minPoolSize=10,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000,
                retryWrites=True,
                retryReads=True,
                tz_aware=True,
            )

            _database = _client[settings.MONGODB_DB_NAME]

            # Verify connection
            await _client.admin.command("ping")

            logger.info(f"Connected to MongoDB: {settings.MONGODB_DB_NAME}")
            return

        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.error(
                f"Failed to connect to MongoDB (attempt {attempt}/{max_retries}): {e}"
            )
            _client = None
            _database = None

            if attempt < max_retries:
                logger.info(f"Retrying in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.critical("Failed to connect to MongoDB after all retries")
                raise ConnectionError("Could not establish MongoDB connection") from e


async def close_mongo_connection():
    """
    Closes the MongoDB connection.
    Called during application shutdown.
    """
    global _client, _database

    if _client:
        logger.info("Closing MongoDB connection")
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


async def check_database_health() -> bool:
    """
    Checks if the database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        if _client is None:
            logger.error("MongoDB client not initialized")
            return False

        await _client.admin.command("ping")
        return True

    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        return False


def get_database() -> AsyncIOMotorDatabase:
    """
    Returns the MongoDB database instance.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _database is None:
        raise RuntimeError(
            "Database not initialized. Call connect_to_mongo() during startup."
        )
    return _database


def get_verification_sessions_collection() -> AsyncIOMotorCollection:
    """
    Local verification sessions, one document per registration session.

    Fields:
    - session_id: str (encoded registration session id, unique)
    - push_challenge: str | None
    - requested_information: list[str]
    - submitted_information: list[str]
    - allowed_to_request_code: bool
    - created_timestamp / updated_timestamp: int (epoch millis)
    - remote_expiration_seconds: int
    - expires_at: datetime (TTL)
    """
    return get_database()[VERIFICATION_SESSIONS]


def get_rate_limits_collection() -> AsyncIOMotorCollection:
    """
    Sliding-window rate limit buckets keyed by "<limiter>:<key>".
    """
    return get_database()[RATE_LIMITS]


def get_recovery_passwords_collection() -> AsyncIOMotorCollection:
    """
    Registration recovery passwords keyed by account number.
    """
    return get_database()[RECOVERY_PASSWORDS]
