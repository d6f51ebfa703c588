"""
Transaction management for migration execution.

Two interchangeable managers share one contract:

- ImperativeTransactionManager for databases with explicit
  begin/commit/rollback primitives.
- CallbackTransactionManager for databases whose only primitive is
  "run this callback inside a transaction".

Both implement the commit-retry loop: a commit failure classified as
retryable is retried up to ``TransactionConfig.retries`` times with a
constant or exponential delay. Exhausted or non-retryable failures roll the
transaction back and propagate.
"""

import asyncio
from abc import ABC, abstractmethod
from functools import partial
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from .config.logging_config import get_logger
from .config.settings import TransactionConfig
from .core.errors import CommitRetryableError, RetryConfig
from .hooks import MigrationHooks
from .interfaces import is_callback_transactional, is_imperative_transactional
from .models import IsolationLevel, MigrationScript, TransactionContext, TransactionMode

logger = get_logger(__name__)

ScriptBody = Callable[[MigrationScript], Awaitable[Any]]


class TransactionManager(ABC):
    """Wraps script execution in database transactions."""

    RETRYABLE_MARKERS: Sequence[str] = ()

    def __init__(
        self,
        db: Any,
        config: TransactionConfig,
        hooks: Optional[MigrationHooks] = None,
        dry_run: bool = False,
    ):
        self.db = db
        self.config = config
        self.hooks = hooks or MigrationHooks()
        self.dry_run = dry_run
        self.retry_config = RetryConfig(
            max_attempts=config.retries + 1,
            initial_delay=config.retry_delay,
            exponential=config.retry_backoff,
        )

    @property
    def mode(self) -> TransactionMode:
        return self.config.mode

    @abstractmethod
    async def begin(self, context: TransactionContext) -> Any:
        """Open a transaction and return a handle for commit/rollback."""

    @abstractmethod
    async def commit(self, handle: Any, context: TransactionContext) -> None:
        """Commit, retrying retryable failures. Rolls back before raising."""

    @abstractmethod
    async def rollback(
        self, handle: Any, context: TransactionContext, reason: Optional[BaseException] = None
    ) -> None:
        pass

    @abstractmethod
    async def _run_group(
        self, context: TransactionContext, scripts: List[MigrationScript], body: ScriptBody
    ) -> None:
        """Execute one transaction's worth of scripts."""

    def is_retryable(self, error: BaseException) -> bool:
        """Classify a commit failure. Backend specific, message based."""
        if isinstance(error, CommitRetryableError):
            return True
        message = str(error).lower()
        return any(marker in message for marker in self.RETRYABLE_MARKERS)

    def new_context(self, mode: TransactionMode, scripts: List[MigrationScript]) -> TransactionContext:
        context = TransactionContext.create(mode, scripts, self.config.isolation)
        context.metadata["timeout"] = self.config.timeout
        context.metadata["dry_run"] = self.dry_run
        return context

    async def run(
        self,
        scripts: Sequence[MigrationScript],
        body: ScriptBody,
        mode: Optional[TransactionMode] = None,
    ) -> None:
        """Execute ``body`` for every script, grouped into transactions by mode.

        PER_MIGRATION opens one transaction per script, PER_BATCH one for the
        whole batch, NONE runs the bodies without wrapping.
        """
        mode = mode or self.mode
        scripts = list(scripts)

        if mode is TransactionMode.NONE:
            for script in scripts:
                await body(script)
            return

        if mode is TransactionMode.PER_MIGRATION:
            groups = [[script] for script in scripts]
        else:
            groups = [scripts] if scripts else []

        for group in groups:
            await self._run_group(self.new_context(mode, group), group, body)

    async def _wait_before_retry(
        self, context: TransactionContext, error: BaseException
    ) -> None:
        delay = self.retry_config.calculate_delay(context.attempt)
        logger.warning(
            "Commit failed, retrying",
            transaction_id=context.transaction_id,
            attempt=context.attempt,
            max_attempts=self.retry_config.max_attempts,
            delay=delay,
            error=str(error),
        )
        await self.hooks.on_commit_retry(context, context.attempt, error)
        await asyncio.sleep(delay)
        context.attempt += 1

    def _can_retry(self, context: TransactionContext, error: BaseException) -> bool:
        return self.is_retryable(error) and context.attempt <= self.config.retries

    def _log_commit_failure(self, context: TransactionContext, error: BaseException) -> None:
        if self.is_retryable(error):
            logger.error(
                "Commit failed after retries",
                transaction_id=context.transaction_id,
                attempts=context.attempt,
                error=str(error),
            )
        else:
            logger.error(
                "Commit failed with non-retryable error",
                transaction_id=context.transaction_id,
                error=str(error),
            )

    @staticmethod
    def _mark_dry_run(scripts: List[MigrationScript]) -> None:
        for script in scripts:
            script.dry_run = True


class ImperativeTransactionManager(TransactionManager):
    """Manager for databases exposing begin_transaction/commit/rollback."""

    RETRYABLE_MARKERS = (
        "deadlock",
        "lock timeout",
        "lock wait timeout",
        "serialization",
        "could not serialize",
        "connection lost",
        "connection closed",
        "connection reset",
    )

    async def begin(self, context: TransactionContext) -> Any:
        await self.hooks.before_transaction_begin(context)
        if context.isolation is not None:
            await self._apply_isolation(context.isolation)
        await self.db.begin_transaction()
        logger.debug("Transaction started", transaction_id=context.transaction_id, mode=context.mode.value)
        await self.hooks.after_transaction_begin(context)
        return self.db

    async def _apply_isolation(self, level: IsolationLevel) -> None:
        setter = getattr(self.db, "set_isolation_level", None)
        if setter is None:
            logger.debug("Database does not support isolation levels, ignoring", isolation=level.value)
            return
        try:
            await setter(level)
        except NotImplementedError:
            logger.debug("Isolation level not supported by backend, ignoring", isolation=level.value)
            return
        logger.debug("Isolation level set", isolation=level.value)

    async def commit(self, handle: Any, context: TransactionContext) -> None:
        await self.hooks.before_commit(context)
        while True:
            try:
                await handle.commit()
                break
            except Exception as e:
                if self._can_retry(context, e):
                    await self._wait_before_retry(context, e)
                    continue
                self._log_commit_failure(context, e)
                await self.rollback(handle, context, e)
                raise

        logger.debug(
            "Transaction committed",
            transaction_id=context.transaction_id,
            attempt=context.attempt,
        )
        await self.hooks.after_commit(context)

    async def rollback(
        self, handle: Any, context: TransactionContext, reason: Optional[BaseException] = None
    ) -> None:
        await self.hooks.before_rollback(context, reason)
        try:
            await handle.rollback()
        except Exception as e:
            logger.error("Rollback failed", transaction_id=context.transaction_id, error=str(e))
            raise
        logger.debug("Transaction rolled back", transaction_id=context.transaction_id)
        await self.hooks.after_rollback(context)

    async def _run_group(
        self, context: TransactionContext, scripts: List[MigrationScript], body: ScriptBody
    ) -> None:
        handle = await self.begin(context)
        try:
            for script in scripts:
                await body(script)
        except Exception as e:
            await self.rollback(handle, context, e)
            raise

        if self.dry_run:
            await self.rollback(handle, context, None)
            self._mark_dry_run(scripts)
            return
        await self.commit(handle, context)


class _DryRunAbort(Exception):
    """Raised inside the transaction callback so the backend aborts it."""


class _CallbackTransaction:
    """Buffered unit of work executed inside one backend transaction."""

    def __init__(self) -> None:
        self.operations: List[Callable[[], Awaitable[Any]]] = []
        self.failure: Optional[BaseException] = None

    async def execute(self, tx: Any, abort: bool = False) -> None:
        self.failure = None
        for operation in self.operations:
            try:
                await operation()
            except Exception as e:
                self.failure = e
                raise
        if abort:
            raise _DryRunAbort()


class CallbackTransactionManager(TransactionManager):
    """Manager for databases exposing ``run_in_transaction(callback)``.

    Begin and commit events are synthesized around the callback boundary.
    Because the backend commits when the callback returns, a retried commit
    replays the buffered unit of work inside a fresh transaction; the aborted
    attempt leaves nothing behind.
    """

    RETRYABLE_MARKERS = (
        "conflict",
        "contention",
        "deadlock",
        "timeout",
        "lock wait",
    )

    async def begin(self, context: TransactionContext) -> _CallbackTransaction:
        await self.hooks.before_transaction_begin(context)
        if context.isolation is not None:
            logger.debug(
                "Callback transactions do not support isolation levels, ignoring",
                isolation=context.isolation.value,
            )
        handle = _CallbackTransaction()
        logger.debug("Callback transaction prepared", transaction_id=context.transaction_id)
        await self.hooks.after_transaction_begin(context)
        return handle

    async def commit(self, handle: _CallbackTransaction, context: TransactionContext) -> None:
        await self.hooks.before_commit(context)
        while True:
            try:
                await self.db.run_in_transaction(handle.execute)
                break
            except Exception as e:
                if handle.failure is e:
                    # The unit of work itself failed; the backend already aborted.
                    await self.rollback(handle, context, e)
                    raise
                if self._can_retry(context, e):
                    await self._wait_before_retry(context, e)
                    continue
                self._log_commit_failure(context, e)
                await self.rollback(handle, context, e)
                raise

        logger.debug(
            "Transaction committed",
            transaction_id=context.transaction_id,
            operations=len(handle.operations),
            attempt=context.attempt,
        )
        handle.operations.clear()
        await self.hooks.after_commit(context)

    async def rollback(
        self, handle: _CallbackTransaction, context: TransactionContext, reason: Optional[BaseException] = None
    ) -> None:
        await self.hooks.before_rollback(context, reason)
        discarded = len(handle.operations)
        handle.operations.clear()
        logger.debug("Transaction operations discarded", transaction_id=context.transaction_id, operations=discarded)
        await self.hooks.after_rollback(context)

    async def _run_group(
        self, context: TransactionContext, scripts: List[MigrationScript], body: ScriptBody
    ) -> None:
        handle = await self.begin(context)
        handle.operations.extend(partial(body, script) for script in scripts)

        if not self.dry_run:
            await self.commit(handle, context)
            return

        try:
            await self.db.run_in_transaction(partial(handle.execute, abort=True))
        except _DryRunAbort:
            await self.rollback(handle, context, None)
            self._mark_dry_run(scripts)
        except Exception as e:
            await self.rollback(handle, context, e)
            raise


def create_transaction_manager(
    handler: Any,
    config: TransactionConfig,
    hooks: Optional[MigrationHooks] = None,
    dry_run: bool = False,
) -> Optional[TransactionManager]:
    """Select the manager once, by capability detection.

    Returns None when the mode is NONE or the database exposes no
    transaction primitive. A manager supplied by the handler wins.
    """
    custom = getattr(handler, "transaction_manager", None)
    if custom is not None:
        return custom
    if config.mode is TransactionMode.NONE:
        return None

    db = handler.db
    if is_imperative_transactional(db):
        logger.debug("Using imperative transaction manager", mode=config.mode.value)
        return ImperativeTransactionManager(db, config, hooks, dry_run)
    if is_callback_transactional(db):
        logger.debug("Using callback transaction manager", mode=config.mode.value)
        return CallbackTransactionManager(db, config, hooks, dry_run)

    logger.warning("Database does not support transactions", mode=config.mode.value)
    return None
