"""
verigate/services/session_service.py

Purpose: Local verification session storage

- Insert-once records keyed by encoded session id
- Last-write-wins updates
- Every read and write bounded by SESSION_STORE_TIMEOUT_SECONDS
"""

import asyncio
from typing import Optional, Protocol

from pymongo.errors import DuplicateKeyError, PyMongoError

from verigate.core.config import settings
from verigate.core.logging import get_logger, LogContext
from verigate.db.mongo import get_verification_sessions_collection
from verigate.flow.states import VerificationSession
from verigate.utils.time_utils import expiration_datetime

logger = get_logger(__name__)


class SessionStoreError(Exception):
    """Raised when the session store cannot complete a read or write."""
    pass


class SessionStoreTimeoutError(SessionStoreError):
    """Raised when a session store call exceeds its time budget."""
    pass


class SessionAlreadyExistsError(SessionStoreError):
    """Raised when inserting a record for a session id that already has one."""
    pass


class VerificationSessionStore(Protocol):
    async def insert(self, encoded_session_id: str, session: VerificationSession) -> None: ...

    async def update(self, encoded_session_id: str, session: VerificationSession) -> None: ...

    async def find(self, encoded_session_id: str) -> Optional[VerificationSession]: ...


class MongoVerificationSessionStore:
    """
    MongoDB-backed session store.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._timeout = timeout if timeout is not None else settings.SESSION_STORE_TIMEOUT_SECONDS

    async def _bounded(self, operation, description: str):
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Session store {description} timed out after {self._timeout}s")
            raise SessionStoreTimeoutError(f"session store {description} timed out") from e
        except DuplicateKeyError:
            raise
        except PyMongoError as e:
            logger.error(f"Session store {description} failed: {e}")
            raise SessionStoreError(f"session store {description} failed") from e

    def _document(self, encoded_session_id: str, session: VerificationSession) -> dict:
        doc = session.to_document()
        doc["session_id"] = encoded_session_id
        doc["expires_at"] = expiration_datetime(session.remote_expiration_seconds)
        return doc

    async def insert(self, encoded_session_id: str, session: VerificationSession) -> None:
        """
        Creates the record for a new registration session.

        Raises:
            SessionAlreadyExistsError: If a record already exists for the id
        """
        with LogContext(session_id=encoded_session_id):
            collection = get_verification_sessions_collection()
            try:
                await self._bounded(
                    collection.insert_one(self._document(encoded_session_id, session)),
                    "insert",
                )
            except DuplicateKeyError as e:
                logger.error("Verification session already exists")
                raise SessionAlreadyExistsError(encoded_session_id) from e

            logger.debug("Verification session stored")

    async def update(self, encoded_session_id: str, session: VerificationSession) -> None:
        """
        Overwrites the stored record. Concurrent updates resolve last-write-wins.
        """
        with LogContext(session_id=encoded_session_id):
            collection = get_verification_sessions_collection()
            result = await self._bounded(
                collection.replace_one(
                    {"session_id": encoded_session_id},
                    self._document(encoded_session_id, session),
                ),
                "update",
            )

            if result.matched_count == 0:
                logger.warning("Update for a verification session with no stored record")
            else:
                logger.debug("Verification session updated")

    async def find(self, encoded_session_id: str) -> Optional[VerificationSession]:
        collection = get_verification_sessions_collection()
        doc = await self._bounded(
            collection.find_one({"session_id": encoded_session_id}),
            "read",
        )
        if not doc:
            return None
        return VerificationSession.from_document(doc)


# Global session store instance
_session_store: Optional[MongoVerificationSessionStore] = None


def get_session_store() -> MongoVerificationSessionStore:
    """Get or create the global session store instance."""
    global _session_store
    if _session_store is None:
        _session_store = MongoVerificationSessionStore()
    return _session_store
