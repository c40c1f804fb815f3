"""
verigate/services/recovery_service.py

Purpose: Registration recovery password cache

- Recovery passwords let an account re-register without a new code
- Once a number is verified through a session, its cached password is void
"""

from typing import Optional, Protocol

from verigate.core.logging import get_logger
from verigate.db.mongo import get_recovery_passwords_collection

logger = get_logger(__name__)


class RecoveryPasswordStore(Protocol):
    async def remove_for_number(self, number: str) -> None: ...


class MongoRecoveryPasswordStore:

    async def remove_for_number(self, number: str) -> None:
        """
        Deletes the recovery password for a number. Safe to repeat.
        """
        recovery_passwords = get_recovery_passwords_collection()
        result = await recovery_passwords.delete_one({"number": number})
        if result.deleted_count:
            logger.info("Removed registration recovery password for verified number")


_recovery_store: Optional[MongoRecoveryPasswordStore] = None


def get_recovery_store() -> MongoRecoveryPasswordStore:
    global _recovery_store
    if _recovery_store is None:
        _recovery_store = MongoRecoveryPasswordStore()
    return _recovery_store
