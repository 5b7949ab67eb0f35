"""
pygpasswd Transaction Manager
=============================
One logical transaction over the group database and, when present, the
shadow group database.

State machine:
  IDLE → LOCKED → LOADED → MUTATED → COMMITTED
                 ↘        ↘        ↘
                  ABORTED  ABORTED  ABORTED

Invariants:
  - Locks: group first, then shadow; released in reverse order, each
    exactly once, on every exit path (commit, abort, error, signal)
  - Migration-on-read happens in load(), before any mutation, once
  - Abort never leaves a partial write behind: a store already rewritten
    by this transaction is put back from the bytes read before writing
  - finalize() is idempotent and is the only teardown path; the signal
    handler calls it too
  - Once teardown starts, handled signals are ignored until the saved
    handlers are put back, so a second signal cannot cut it short
"""

import signal
import threading
from enum import Enum
from typing import Callable, List, Optional, Tuple

from monitoring.logger import get_logger
from storage.database import GroupDatabase, ShadowDatabase
from storage.records import GroupRecord, ShadowRecord
from transactions.errors import (
    GpasswdError, GroupNotFound, Interrupted, LockError, WriteError,
)
from concurrency.lock_manager import LockResult

logger = get_logger(__name__)

# Signals that abort an open transaction
HANDLED_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGHUP", "SIGINT", "SIGQUIT", "SIGTERM", "SIGTSTP")
    if hasattr(signal, name)
)


class TransactionState(Enum):
    IDLE = "IDLE"
    LOCKED = "LOCKED"
    LOADED = "LOADED"
    MUTATED = "MUTATED"
    COMMITTED = "COMMITTED"
    ABORTED = "ABORTED"


TERMINAL_STATES = (TransactionState.COMMITTED, TransactionState.ABORTED)


class GroupTransaction:
    """
    Lock, load, mutate and commit one group's record(s).

    Usage:
        txn = GroupTransaction(GroupDatabase(path), ShadowDatabase(spath))
        try:
            txn.lock()
            txn.load("wheel")
            txn.group.members.add("alice")
            txn.mark_mutated()
            txn.commit()
        finally:
            txn.finalize()
    """

    def __init__(self, group_db: GroupDatabase,
                 shadow_db: Optional[ShadowDatabase] = None, *,
                 first_member_is_admin: bool = False,
                 handle_signals: bool = True):
        self.group_db = group_db
        self.shadow_db = shadow_db
        self.first_member_is_admin = first_member_is_admin
        self.handle_signals = handle_signals

        self.state = TransactionState.IDLE
        self.name: Optional[str] = None
        self.group: Optional[GroupRecord] = None
        self.shadow: Optional[ShadowRecord] = None
        self.migrated = False

        self._locked: List = []                   # acquisition order
        self._written: List[Tuple[object, bytes]] = []  # (db, bytes before write)
        self._commit_hooks: List[Callable[[], None]] = []
        self._rollback_hooks: List[Callable[[], None]] = []
        self._cleanups: List[Callable[[], None]] = []
        self._saved_handlers = {}
        self._finalized = False

    @property
    def shadow_active(self) -> bool:
        return self.shadow_db is not None

    # ─── Lifecycle ───────────────────────────────────────────────────────

    def lock(self) -> None:
        """IDLE → LOCKED. Raises LockError, releasing what was taken."""
        self._require(TransactionState.IDLE)
        self._install_signal_handlers()
        try:
            self._lock_one(self.group_db)
            if self.shadow_db is not None:
                self._lock_one(self.shadow_db)
        except GpasswdError:
            self.abort()
            raise
        self.state = TransactionState.LOCKED

    def load(self, name: str) -> None:
        """
        LOCKED → LOADED. Reads the group (and shadow) entry for `name`.
        Synthesizes the shadow entry if the shadow database lacks one.
        """
        self._require(TransactionState.LOCKED)
        try:
            self.group = self._read(self.group_db, name)
            if self.group is None:
                raise GroupNotFound(name, self.group_db.label)

            if self.shadow_db is not None:
                self.shadow = self._read(self.shadow_db, name)
                if self.shadow is None:
                    self.shadow = ShadowRecord.migrated_from(
                        self.group, self.first_member_is_admin)
                    self.migrated = True
                    logger.info("shadow_entry_synthesized",
                                admins=list(self.shadow.admins))
        except GpasswdError:
            self.abort()
            raise
        self.name = name
        self.state = TransactionState.LOADED

    def mark_mutated(self) -> None:
        """LOADED → MUTATED. Called once the engine has applied its change."""
        self._require(TransactionState.LOADED)
        self.state = TransactionState.MUTATED

    def commit(self) -> None:
        """
        LOADED/MUTATED → COMMITTED.
          1. Rewrite the group database, then the shadow database
          2. Release locks (shadow first)
          3. Run commit hooks (cache invalidation); failures are logged only
        A write failure aborts: earlier writes are put back, locks released,
        WriteError raised.
        """
        self._require(TransactionState.LOADED, TransactionState.MUTATED)
        try:
            self._persist(self.group_db, self.group)
            if self.shadow_db is not None:
                self._persist(self.shadow_db, self.shadow)
        except GpasswdError:
            self.abort()
            raise

        self.state = TransactionState.COMMITTED
        self._ignore_signals()
        self._written = []
        logger.info("transaction_committed", migrated=self.migrated)
        self._release_locks()
        self._restore_signal_handlers()

        for hook in self._commit_hooks:
            try:
                hook()
            except Exception as e:
                # Already durable: nothing to undo
                logger.warning("commit_hook_failed", error=str(e))

    def abort(self) -> None:
        """
        Any non-terminal state → ABORTED.
          1. Put back any store this transaction already rewrote
          2. Discard the in-memory records
          3. Run rollback hooks, release locks
        """
        if self.state in TERMINAL_STATES:
            return
        previous = self.state
        self.state = TransactionState.ABORTED
        self._ignore_signals()
        compensation_error = self._compensate()
        self.group = None
        self.shadow = None

        for hook in self._rollback_hooks:
            try:
                hook()
            except Exception as e:
                logger.warning("rollback_hook_failed", error=str(e))

        self._release_locks()
        self._restore_signal_handlers()
        logger.info("transaction_aborted", previous_state=previous.value)
        if compensation_error is not None:
            raise compensation_error

    def finalize(self) -> None:
        """
        Idempotent teardown for every exit path. Runs registered cleanups
        (terminal restore) first, then aborts if the transaction did not
        reach a terminal state, then makes sure no lock is left held.
        """
        if self._finalized:
            return
        self._finalized = True
        self._ignore_signals()

        cleanups, self._cleanups = self._cleanups, []
        for cleanup in reversed(cleanups):
            try:
                cleanup()
            except Exception as e:
                logger.warning("cleanup_failed", error=str(e))

        try:
            self.abort()
        finally:
            self._release_locks()
            self._restore_signal_handlers()

    def register_hook(self, commit_fn=None, rollback_fn=None) -> None:
        """Register a callback for commit/rollback."""
        if commit_fn:
            self._commit_hooks.append(commit_fn)
        if rollback_fn:
            self._rollback_hooks.append(rollback_fn)

    def add_cleanup(self, fn: Callable[[], None]) -> None:
        """Register teardown that must run before locks are released."""
        self._cleanups.append(fn)

    # ─── Query ───────────────────────────────────────────────────────────

    def is_active(self) -> bool:
        return self.state not in TERMINAL_STATES and self.state != TransactionState.IDLE

    def held_locks(self) -> List[str]:
        return [db.path for db in self._locked]

    # ─── Internal ────────────────────────────────────────────────────────

    def _require(self, *states: TransactionState) -> None:
        if self.state not in states:
            expected = "/".join(s.value for s in states)
            raise RuntimeError(
                f"Transaction is {self.state.value}, expected {expected}")

    def _lock_one(self, db) -> None:
        result = db.lock()
        if result != LockResult.GRANTED:
            logger.warning("lock_failed", path=db.path, result=result.value)
            raise LockError(f"cannot lock the {db.label}; try again later")
        self._locked.append(db)

    def _release_locks(self) -> None:
        while self._locked:
            db = self._locked[-1]
            if not db.unlock():
                logger.warning("unlock_failed", path=db.path)
            self._locked.pop()

    @staticmethod
    def _read(db, name: str):
        db.open_read()
        try:
            return db.locate(name)
        finally:
            db.close()

    def _persist(self, db, record) -> None:
        db.open_write()
        before = db.original_bytes
        try:
            db.update(record)
        except GpasswdError:
            db.close()
            raise
        self._written.append((db, before))
        try:
            db.close()
        except WriteError:
            # close() failed before replacing the file: nothing to put back
            self._written.pop()
            raise

    def _compensate(self) -> Optional[WriteError]:
        """Restore stores rewritten by this transaction, newest first."""
        failure = None
        while self._written:
            db, before = self._written.pop()
            try:
                db.restore(before)
                logger.warning("write_rolled_back", path=db.path)
            except WriteError as e:
                logger.error("rollback_failed", path=db.path, error=e.message)
                failure = WriteError(
                    f"{e.message}; the group databases may be inconsistent")
        return failure

    def _install_signal_handlers(self) -> None:
        if not self.handle_signals:
            return
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in HANDLED_SIGNALS:
            self._saved_handlers[signum] = signal.signal(signum, self._on_signal)

    def _ignore_signals(self) -> None:
        """Hold off further signals until teardown restores the handlers."""
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in self._saved_handlers:
            signal.signal(signum, signal.SIG_IGN)

    def _restore_signal_handlers(self) -> None:
        saved, self._saved_handlers = self._saved_handlers, {}
        for signum, handler in saved.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)

    def _on_signal(self, signum, frame) -> None:
        self._ignore_signals()
        logger.warning("signal_received", signum=signum, state=self.state.value)
        self.finalize()
        raise Interrupted(signum)
