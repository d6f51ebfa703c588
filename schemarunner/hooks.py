"""
Lifecycle hooks.

MigrationHooks defines every hook the engine fires, all as no-op
coroutines; subclasses override the ones they care about. Hooks are called
in registration order and any exception aborts the rest of the chain and
propagates to the caller, including from error-path hooks such as
``on_error``.
"""

from typing import List, Optional

from .models import LockStatus, MigrationResult, MigrationScript, TransactionContext


class MigrationHooks:
    """Base class for lifecycle hooks."""

    # Process
    async def on_start(self, total_scripts: int, pending_scripts: int) -> None:
        pass

    async def on_complete(self, result: MigrationResult) -> None:
        pass

    async def on_error(self, error: BaseException) -> None:
        pass

    # Per script
    async def on_before_migrate(self, script: MigrationScript) -> None:
        pass

    async def on_after_migrate(self, script: MigrationScript, result: Optional[str]) -> None:
        pass

    async def on_migration_error(self, script: MigrationScript, error: BaseException) -> None:
        pass

    # Backup
    async def on_before_backup(self) -> None:
        pass

    async def on_after_backup(self, backup_path: str) -> None:
        pass

    async def on_before_restore(self) -> None:
        pass

    async def on_after_restore(self) -> None:
        pass

    # Transactions
    async def before_transaction_begin(self, context: TransactionContext) -> None:
        pass

    async def after_transaction_begin(self, context: TransactionContext) -> None:
        pass

    async def before_commit(self, context: TransactionContext) -> None:
        pass

    async def after_commit(self, context: TransactionContext) -> None:
        pass

    async def on_commit_retry(self, context: TransactionContext, attempt: int, error: BaseException) -> None:
        pass

    async def before_rollback(self, context: TransactionContext, reason: Optional[BaseException]) -> None:
        pass

    async def after_rollback(self, context: TransactionContext) -> None:
        pass

    # Locking
    async def on_before_acquire_lock(self, executor_id: str, timeout: float) -> None:
        pass

    async def on_lock_acquired(self, executor_id: str, status: Optional[LockStatus]) -> None:
        pass

    async def on_acquire_retry(self, executor_id: str, attempt: int, current_owner: str) -> None:
        pass

    async def on_lock_acquisition_failed(self, executor_id: str, current_owner: str) -> None:
        pass

    async def on_ownership_verification_failed(self, executor_id: str) -> None:
        pass

    async def on_before_release_lock(self, executor_id: str) -> None:
        pass

    async def on_lock_released(self, executor_id: str) -> None:
        pass

    async def on_lock_error(self, operation: str, error: BaseException, executor_id: Optional[str] = None) -> None:
        pass

    async def on_force_release_lock(self, status: Optional[LockStatus]) -> None:
        pass


class CompositeHooks(MigrationHooks):
    """Ordered broadcast over several hook implementations."""

    def __init__(self, hooks: Optional[List[MigrationHooks]] = None):
        self._hooks: List[MigrationHooks] = list(hooks or [])

    def add_hook(self, hook: MigrationHooks) -> None:
        self._hooks.append(hook)

    def remove_hook(self, hook: MigrationHooks) -> bool:
        try:
            self._hooks.remove(hook)
            return True
        except ValueError:
            return False

    def get_hooks(self) -> List[MigrationHooks]:
        return list(self._hooks)

    def __len__(self) -> int:
        return len(self._hooks)

    async def _broadcast(self, name: str, *args, **kwargs) -> None:
        for hook in self._hooks:
            method = getattr(hook, name, None)
            if method is not None:
                await method(*args, **kwargs)

    async def on_start(self, total_scripts, pending_scripts):
        await self._broadcast("on_start", total_scripts, pending_scripts)

    async def on_complete(self, result):
        await self._broadcast("on_complete", result)

    async def on_error(self, error):
        await self._broadcast("on_error", error)

    async def on_before_migrate(self, script):
        await self._broadcast("on_before_migrate", script)

    async def on_after_migrate(self, script, result):
        await self._broadcast("on_after_migrate", script, result)

    async def on_migration_error(self, script, error):
        await self._broadcast("on_migration_error", script, error)

    async def on_before_backup(self):
        await self._broadcast("on_before_backup")

    async def on_after_backup(self, backup_path):
        await self._broadcast("on_after_backup", backup_path)

    async def on_before_restore(self):
        await self._broadcast("on_before_restore")

    async def on_after_restore(self):
        await self._broadcast("on_after_restore")

    async def before_transaction_begin(self, context):
        await self._broadcast("before_transaction_begin", context)

    async def after_transaction_begin(self, context):
        await self._broadcast("after_transaction_begin", context)

    async def before_commit(self, context):
        await self._broadcast("before_commit", context)

    async def after_commit(self, context):
        await self._broadcast("after_commit", context)

    async def on_commit_retry(self, context, attempt, error):
        await self._broadcast("on_commit_retry", context, attempt, error)

    async def before_rollback(self, context, reason):
        await self._broadcast("before_rollback", context, reason)

    async def after_rollback(self, context):
        await self._broadcast("after_rollback", context)

    async def on_before_acquire_lock(self, executor_id, timeout):
        await self._broadcast("on_before_acquire_lock", executor_id, timeout)

    async def on_lock_acquired(self, executor_id, status):
        await self._broadcast("on_lock_acquired", executor_id, status)

    async def on_acquire_retry(self, executor_id, attempt, current_owner):
        await self._broadcast("on_acquire_retry", executor_id, attempt, current_owner)

    async def on_lock_acquisition_failed(self, executor_id, current_owner):
        await self._broadcast("on_lock_acquisition_failed", executor_id, current_owner)

    async def on_ownership_verification_failed(self, executor_id):
        await self._broadcast("on_ownership_verification_failed", executor_id)

    async def on_before_release_lock(self, executor_id):
        await self._broadcast("on_before_release_lock", executor_id)

    async def on_lock_released(self, executor_id):
        await self._broadcast("on_lock_released", executor_id)

    async def on_lock_error(self, operation, error, executor_id=None):
        await self._broadcast("on_lock_error", operation, error, executor_id)

    async def on_force_release_lock(self, status):
        await self._broadcast("on_force_release_lock", status)
