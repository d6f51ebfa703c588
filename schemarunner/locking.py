"""
Cross-process migration lock.

LockingOrchestrator adds retry-on-contention and two-phase verification
(acquire, then confirm ownership) on top of a pluggable LockStore. Storage
errors are never swallowed: a lock failure must block execution.
"""

import asyncio
from typing import Optional

from .config.logging_config import get_logger
from .config.settings import LockingConfig
from .core.errors import OwnershipVerificationError
from .hooks import MigrationHooks
from .interfaces import LockStore
from .models import LockStatus

logger = get_logger(__name__)


class LockingOrchestrator:
    """Acquires and releases the migration lock for one executor."""

    def __init__(self, store: LockStore, config: LockingConfig, hooks: Optional[MigrationHooks] = None):
        self.store = store
        self.config = config
        self.hooks = hooks or MigrationHooks()

    async def _current_owner(self) -> str:
        status = await self.store.get_lock_status()
        if status is not None and status.locked_by:
            return status.locked_by
        return "unknown"

    async def acquire_lock(self, executor_id: str) -> bool:
        """Try to take the lock, retrying up to ``retry_attempts`` times.

        Returns False when another executor keeps holding the lock. Raises
        OwnershipVerificationError when the store reports success but the
        ownership check fails; that is never retried.
        """
        await self.hooks.on_before_acquire_lock(executor_id, self.config.timeout)
        logger.info("Attempting to acquire lock", executor_id=executor_id)

        try:
            for attempt in range(self.config.retry_attempts + 1):
                await self.store.check_and_release_expired_lock()

                if await self.store.acquire_lock(executor_id):
                    if not await self.store.verify_lock_ownership(executor_id):
                        logger.error("Lock ownership verification failed", executor_id=executor_id)
                        await self.hooks.on_ownership_verification_failed(executor_id)
                        raise OwnershipVerificationError(executor_id)

                    status = await self.store.get_lock_status()
                    logger.info("Lock acquired", executor_id=executor_id, attempt=attempt + 1)
                    await self.hooks.on_lock_acquired(executor_id, status)
                    return True

                current_owner = await self._current_owner()
                if attempt < self.config.retry_attempts:
                    logger.warning(
                        "Lock held by another executor, retrying",
                        executor_id=executor_id,
                        current_owner=current_owner,
                        attempt=attempt + 1,
                        retry_attempts=self.config.retry_attempts,
                        delay=self.config.retry_delay,
                    )
                    await self.hooks.on_acquire_retry(executor_id, attempt + 1, current_owner)
                    await asyncio.sleep(self.config.retry_delay)
                else:
                    logger.error(
                        "Failed to acquire lock",
                        executor_id=executor_id,
                        current_owner=current_owner,
                        attempts=attempt + 1,
                    )
                    await self.hooks.on_lock_acquisition_failed(executor_id, current_owner)
        except OwnershipVerificationError:
            raise
        except Exception as e:
            logger.error("Lock acquisition error", executor_id=executor_id, error=str(e))
            await self.hooks.on_lock_error("acquire", e, executor_id)
            raise
        return False

    async def release_lock(self, executor_id: str) -> None:
        """Release the lock held by ``executor_id``.

        Ownership is not re-verified here; the store must refuse to release
        a lock held by someone else.
        """
        try:
            await self.hooks.on_before_release_lock(executor_id)
            logger.info("Releasing lock", executor_id=executor_id)
            await self.store.release_lock(executor_id)
            logger.info("Lock released", executor_id=executor_id)
            await self.hooks.on_lock_released(executor_id)
        except Exception as e:
            logger.error("Failed to release lock", executor_id=executor_id, error=str(e))
            await self.hooks.on_lock_error("release", e, executor_id)
            raise

    async def get_lock_status(self) -> Optional[LockStatus]:
        try:
            return await self.store.get_lock_status()
        except Exception as e:
            logger.error("Failed to get lock status", error=str(e))
            await self.hooks.on_lock_error("status", e)
            raise

    async def force_release_lock(self) -> None:
        """Clear the lock regardless of owner. Operator recovery only."""
        try:
            status = await self.store.get_lock_status()
            if status is not None and status.is_locked:
                logger.warning("Force-releasing lock", locked_by=status.locked_by)
            await self.store.force_release_lock()
            logger.info("Lock force-released")
            await self.hooks.on_force_release_lock(status)
        except Exception as e:
            logger.error("Failed to force-release lock", error=str(e))
            await self.hooks.on_lock_error("force_release", e)
            raise

    async def check_and_release_expired_lock(self) -> None:
        try:
            await self.store.check_and_release_expired_lock()
        except Exception as e:
            logger.error("Failed to clean up expired lock", error=str(e))
            await self.hooks.on_lock_error("cleanup", e)
            raise

    async def init_lock_storage(self) -> None:
        try:
            logger.debug("Initializing lock storage")
            await self.store.init_lock_storage()
        except Exception as e:
            logger.error("Failed to initialize lock storage", error=str(e))
            await self.hooks.on_lock_error("init", e)
            raise

    async def ensure_lock_storage_accessible(self) -> bool:
        try:
            accessible = await self.store.ensure_lock_storage_accessible()
        except Exception as e:
            logger.error("Failed to check lock storage accessibility", error=str(e))
            await self.hooks.on_lock_error("accessibility_check", e)
            raise
        if not accessible:
            logger.warning("Lock storage is not accessible")
        return accessible
