"""
verigate/db/indexes.py

Purpose: Database index management

- Unique session id so a registration session maps to exactly one local record
- TTL indexes so stale sessions and limiter buckets expire on their own
"""

from verigate.db.mongo import (
    get_verification_sessions_collection,
    get_rate_limits_collection,
    get_recovery_passwords_collection,
)
from verigate.core.logging import get_logger

logger = get_logger(__name__)


async def create_indexes():
    """
    Creates all necessary database indexes.
    This function is idempotent - safe to run multiple times.
    """
    try:
        sessions = get_verification_sessions_collection()
        rate_limits = get_rate_limits_collection()
        recovery_passwords = get_recovery_passwords_collection()

        logger.info("Creating database indexes...")

        # ==============================================
        # VERIFICATION SESSIONS
        # ==============================================

        await sessions.create_index("session_id", unique=True, name="session_id_unique")
        logger.debug("Created unique index on verification_sessions.session_id")

        # Expire once the registration service session has expired
        await sessions.create_index(
            "expires_at",
            expireAfterSeconds=0,
            name="session_ttl_idx"
        )
        logger.debug("Created TTL index on verification_sessions.expires_at")

        # ==============================================
        # RATE LIMITS
        # ==============================================

        await rate_limits.create_index("bucket_key", unique=True, name="bucket_key_unique")
        logger.debug("Created unique index on rate_limits.bucket_key")

        await rate_limits.create_index(
            "expires_at",
            expireAfterSeconds=0,
            name="rate_limit_ttl_idx"
        )
        logger.debug("Created TTL index on rate_limits.expires_at")

        # ==============================================
        # RECOVERY PASSWORDS
        # ==============================================

        await recovery_passwords.create_index("number", unique=True, name="number_unique")
        logger.debug("Created unique index on recovery_passwords.number")

        logger.info("All database indexes created successfully")

    except Exception as e:
        logger.error(f"Error creating indexes: {str(e)}", exc_info=True)
        raise
