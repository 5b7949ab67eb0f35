"""
pygpasswd Transaction Tests
===========================
  ✔ lock → load → mutate → commit lifecycle
  ✔ locks released on every exit path, group lock taken first
  ✔ migration-on-read synthesizes the shadow entry exactly once
  ✔ no-op commit leaves both files byte-identical
  ✔ a failed shadow write puts the group file back
  ✔ finalize is idempotent; signals abort and release
"""

import os
import shutil
import signal
import sys
import tempfile
import time
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from concurrency.lock_manager import FileLock
from storage.database import GroupDatabase, ShadowDatabase
from transactions.errors import (
    GroupNotFound, Interrupted, LockError, WriteError,
)
from transactions.transaction import GroupTransaction, TransactionState


GROUP = "root:x:0:\nwheel:x:10:alice,bob\nstaff:x:50:carol\n"
GSHADOW = "root:*::\nstaff:!:carol:carol\n"


class _FailingShadowDatabase(ShadowDatabase):
    """Shadow database whose rewrite always fails."""

    def _write(self, content, backup=True):
        raise WriteError(f"cannot rewrite the {self.label}: disk full")


class _UnrestorableGroupDatabase(GroupDatabase):
    def restore(self, content):
        raise WriteError(f"cannot rewrite the {self.label}: read-only filesystem")


class _SignalOnUnlockShadowDatabase(ShadowDatabase):
    """Delivers SIGTERM to this process the first time it is unlocked."""

    sent = False

    def unlock(self):
        if not self.sent:
            self.sent = True
            os.kill(os.getpid(), signal.SIGTERM)
        return super().unlock()


class _SignalOnRestoreGroupDatabase(GroupDatabase):
    def restore(self, content):
        os.kill(os.getpid(), signal.SIGINT)
        super().restore(content)


class TransactionTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp(prefix="pygpasswd_txn_")
        self.group_path = os.path.join(self.tmp_dir, "group")
        self.gshadow_path = os.path.join(self.tmp_dir, "gshadow")
        with open(self.group_path, "w") as f:
            f.write(GROUP)
        with open(self.gshadow_path, "w") as f:
            f.write(GSHADOW)

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def _read(self, path):
        with open(path, "rb") as f:
            return f.read()

    def _txn(self, shadow=True, group_cls=GroupDatabase, shadow_cls=ShadowDatabase,
             **kwargs):
        kwargs.setdefault("handle_signals", False)
        shadow_db = shadow_cls(self.gshadow_path) if shadow else None
        return GroupTransaction(group_cls(self.group_path), shadow_db, **kwargs)

    def _lock_files(self):
        return [p for p in os.listdir(self.tmp_dir) if p.endswith(".lock")]


# ═══════════════════════════════════════════════════════════════════════════
# 1. Lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class TestLifecycle(TransactionTestCase):

    def test_happy_path(self):
        txn = self._txn()
        try:
            txn.lock()
            self.assertEqual(txn.state, TransactionState.LOCKED)
            self.assertEqual(txn.held_locks(), [self.group_path, self.gshadow_path])
            txn.load("staff")
            self.assertEqual(txn.state, TransactionState.LOADED)
            txn.shadow.members.add("alice")
            txn.mark_mutated()
            txn.commit()
            self.assertEqual(txn.state, TransactionState.COMMITTED)
        finally:
            txn.finalize()
        self.assertIn("staff:!:carol:carol,alice\n", self._read(self.gshadow_path).decode())
        self.assertEqual(self._lock_files(), [])
        self.assertEqual(txn.held_locks(), [])

    def test_out_of_order_calls_rejected(self):
        txn = self._txn()
        with self.assertRaises(RuntimeError):
            txn.load("wheel")
        with self.assertRaises(RuntimeError):
            txn.commit()
        txn.finalize()

    def test_is_active(self):
        txn = self._txn()
        self.assertFalse(txn.is_active())
        txn.lock()
        self.assertTrue(txn.is_active())
        txn.finalize()
        self.assertFalse(txn.is_active())
        self.assertEqual(txn.state, TransactionState.ABORTED)

    def test_unknown_group_aborts_and_releases(self):
        txn = self._txn()
        txn.lock()
        with self.assertRaises(GroupNotFound) as ctx:
            txn.load("nosuch")
        self.assertEqual(ctx.exception.message,
                         "group 'nosuch' does not exist in the group file")
        self.assertEqual(txn.state, TransactionState.ABORTED)
        self.assertEqual(self._lock_files(), [])
        txn.finalize()

    def test_abort_discards_changes(self):
        txn = self._txn()
        txn.lock()
        txn.load("wheel")
        txn.group.members.add("dave")
        txn.mark_mutated()
        txn.abort()
        self.assertIsNone(txn.group)
        self.assertIsNone(txn.shadow)
        self.assertEqual(self._read(self.group_path), GROUP.encode())
        self.assertEqual(self._lock_files(), [])

    def test_noop_commit_byte_identical(self):
        txn = self._txn()
        try:
            txn.lock()
            txn.load("staff")
            txn.commit()
        finally:
            txn.finalize()
        self.assertEqual(self._read(self.group_path), GROUP.encode())
        self.assertEqual(self._read(self.gshadow_path), GSHADOW.encode())

    def test_without_shadow(self):
        txn = self._txn(shadow=False)
        try:
            txn.lock()
            self.assertEqual(txn.held_locks(), [self.group_path])
            txn.load("wheel")
            self.assertFalse(txn.shadow_active)
            self.assertIsNone(txn.shadow)
            txn.group.members.remove("bob")
            txn.mark_mutated()
            txn.commit()
        finally:
            txn.finalize()
        self.assertIn("wheel:x:10:alice\n", self._read(self.group_path).decode())
        self.assertEqual(self._read(self.gshadow_path), GSHADOW.encode())


# ═══════════════════════════════════════════════════════════════════════════
# 2. Locking
# ═══════════════════════════════════════════════════════════════════════════

class TestLocking(TransactionTestCase):

    def test_group_locked_elsewhere(self):
        other = FileLock(self.group_path)
        other.acquire()
        try:
            txn = self._txn()
            with self.assertRaises(LockError) as ctx:
                txn.lock()
            self.assertEqual(ctx.exception.exit_status, 4)
            self.assertIn("group file", ctx.exception.message)
            self.assertEqual(txn.state, TransactionState.ABORTED)
        finally:
            other.release()

    def test_shadow_locked_elsewhere_releases_group(self):
        other = FileLock(self.gshadow_path)
        other.acquire()
        try:
            txn = self._txn()
            with self.assertRaises(LockError) as ctx:
                txn.lock()
            self.assertIn("shadow group file", ctx.exception.message)
            self.assertFalse(os.path.exists(self.group_path + ".lock"))
            self.assertEqual(txn.held_locks(), [])
        finally:
            other.release()

    def test_concurrent_transaction_blocked(self):
        first = self._txn()
        first.lock()
        try:
            with self.assertRaises(LockError):
                self._txn().lock()
        finally:
            first.finalize()
        second = self._txn()
        second.lock()
        second.finalize()


# ═══════════════════════════════════════════════════════════════════════════
# 3. Migration-on-read
# ═══════════════════════════════════════════════════════════════════════════

class TestMigration(TransactionTestCase):

    def test_missing_shadow_entry_synthesized(self):
        txn = self._txn(first_member_is_admin=True)
        try:
            txn.lock()
            txn.load("wheel")
            self.assertTrue(txn.migrated)
            self.assertEqual(list(txn.shadow.admins), ["alice"])
            self.assertEqual(list(txn.shadow.members), ["alice", "bob"])
            self.assertEqual(txn.group.password, "x")
            txn.shadow.members.add("dave")
            txn.mark_mutated()
            txn.commit()
        finally:
            txn.finalize()
        shadow_text = self._read(self.gshadow_path).decode()
        self.assertTrue(shadow_text.endswith("wheel:x:alice:alice,bob,dave\n"))
        self.assertEqual(shadow_text.count("wheel:"), 1)

    def test_migration_without_policy_has_no_admins(self):
        txn = self._txn()
        txn.lock()
        txn.load("wheel")
        self.assertEqual(list(txn.shadow.admins), [])
        txn.finalize()

    def test_migration_not_repeated(self):
        txn = self._txn()
        try:
            txn.lock()
            txn.load("wheel")
            txn.commit()
        finally:
            txn.finalize()
        again = self._txn()
        again.lock()
        again.load("wheel")
        self.assertFalse(again.migrated)
        again.finalize()

    def test_migrated_password_moves_to_shadow(self):
        with open(self.group_path, "w") as f:
            f.write("legacy:$1$abc$def:70:alice\n")
        txn = self._txn()
        try:
            txn.lock()
            txn.load("legacy")
            txn.commit()
        finally:
            txn.finalize()
        self.assertEqual(self._read(self.group_path), b"legacy:x:70:alice\n")
        self.assertIn("legacy:$1$abc$def::alice\n", self._read(self.gshadow_path).decode())


# ═══════════════════════════════════════════════════════════════════════════
# 4. Failure handling
# ═══════════════════════════════════════════════════════════════════════════

class TestFailureHandling(TransactionTestCase):

    def test_shadow_write_failure_restores_group(self):
        txn = self._txn(shadow_cls=_FailingShadowDatabase)
        txn.lock()
        txn.load("wheel")
        txn.group.members.add("dave")
        txn.shadow.members.add("dave")
        txn.mark_mutated()
        with self.assertRaises(WriteError) as ctx:
            txn.commit()
        self.assertEqual(ctx.exception.exit_status, 10)
        self.assertEqual(txn.state, TransactionState.ABORTED)
        self.assertEqual(self._read(self.group_path), GROUP.encode())
        self.assertEqual(self._read(self.gshadow_path), GSHADOW.encode())
        self.assertEqual(self._lock_files(), [])
        txn.finalize()

    def test_rollback_leaves_backup_with_last_good_content(self):
        txn = self._txn(shadow_cls=_FailingShadowDatabase)
        txn.lock()
        txn.load("wheel")
        txn.group.members.add("dave")
        txn.mark_mutated()
        with self.assertRaises(WriteError):
            txn.commit()
        txn.finalize()
        self.assertEqual(self._read(self.group_path + "-"), GROUP.encode())

    def test_failed_restore_reports_inconsistency(self):
        txn = self._txn(group_cls=_UnrestorableGroupDatabase,
                        shadow_cls=_FailingShadowDatabase)
        txn.lock()
        txn.load("wheel")
        txn.group.members.add("dave")
        txn.mark_mutated()
        with self.assertRaises(WriteError) as ctx:
            txn.commit()
        self.assertIn("inconsistent", ctx.exception.message)
        self.assertEqual(self._lock_files(), [])

    def test_commit_hooks_run_after_release(self):
        seen = []
        txn = self._txn()

        def hook():
            seen.append(self._lock_files())

        txn.register_hook(commit_fn=hook)
        try:
            txn.lock()
            txn.load("staff")
            txn.commit()
        finally:
            txn.finalize()
        self.assertEqual(seen, [[]])

    def test_failing_commit_hook_is_not_fatal(self):
        txn = self._txn()

        def hook():
            raise RuntimeError("nscd went away")

        txn.register_hook(commit_fn=hook)
        txn.lock()
        txn.load("staff")
        txn.commit()
        self.assertEqual(txn.state, TransactionState.COMMITTED)
        txn.finalize()

    def test_rollback_hooks_run_on_abort(self):
        calls = []
        txn = self._txn()
        txn.register_hook(commit_fn=lambda: calls.append("commit"),
                          rollback_fn=lambda: calls.append("rollback"))
        txn.lock()
        txn.finalize()
        self.assertEqual(calls, ["rollback"])


# ═══════════════════════════════════════════════════════════════════════════
# 5. Teardown and signals
# ═══════════════════════════════════════════════════════════════════════════

class TestTeardown(TransactionTestCase):

    def test_finalize_idempotent(self):
        cleanups = []
        txn = self._txn()
        txn.add_cleanup(lambda: cleanups.append(1))
        txn.lock()
        txn.finalize()
        txn.finalize()
        self.assertEqual(cleanups, [1])
        self.assertEqual(self._lock_files(), [])

    def test_cleanups_run_in_reverse_before_release(self):
        order = []
        txn = self._txn()
        txn.add_cleanup(lambda: order.append(("first", self._lock_files())))
        txn.add_cleanup(lambda: order.append(("second", self._lock_files())))
        txn.lock()
        txn.finalize()
        self.assertEqual([name for name, _ in order], ["second", "first"])
        self.assertTrue(all(locks for _, locks in order))

    def test_finalize_after_commit_keeps_result(self):
        txn = self._txn()
        txn.lock()
        txn.load("wheel")
        txn.group.members.add("dave")
        txn.mark_mutated()
        txn.commit()
        txn.finalize()
        self.assertEqual(txn.state, TransactionState.COMMITTED)
        self.assertIn("wheel:x:10:alice,bob,dave\n", self._read(self.group_path).decode())

    def test_signal_aborts_and_releases(self):
        before = signal.getsignal(signal.SIGTERM)
        txn = self._txn(handle_signals=True)
        txn.lock()
        txn.load("wheel")
        txn.group.members.add("dave")
        txn.mark_mutated()
        with self.assertRaises(Interrupted) as ctx:
            os.kill(os.getpid(), signal.SIGTERM)
            for _ in range(100):
                time.sleep(0.01)
        self.assertEqual(ctx.exception.signum, signal.SIGTERM)
        self.assertEqual(ctx.exception.exit_status, 128 + signal.SIGTERM)
        self.assertEqual(txn.state, TransactionState.ABORTED)
        self.assertEqual(self._lock_files(), [])
        self.assertEqual(self._read(self.group_path), GROUP.encode())
        self.assertEqual(signal.getsignal(signal.SIGTERM), before)

    def test_handlers_restored_after_commit(self):
        before = signal.getsignal(signal.SIGHUP)
        txn = self._txn(handle_signals=True)
        txn.lock()
        self.assertNotEqual(signal.getsignal(signal.SIGHUP), before)
        txn.load("staff")
        txn.commit()
        self.assertEqual(signal.getsignal(signal.SIGHUP), before)
        txn.finalize()

    def test_second_signal_during_teardown_is_ignored(self):
        before = signal.getsignal(signal.SIGTERM)
        txn = self._txn(handle_signals=True, shadow_cls=_SignalOnUnlockShadowDatabase)
        txn.lock()
        txn.load("wheel")
        with self.assertRaises(Interrupted) as ctx:
            os.kill(os.getpid(), signal.SIGHUP)
            for _ in range(100):
                time.sleep(0.01)
        self.assertTrue(txn.shadow_db.sent)
        self.assertEqual(ctx.exception.signum, signal.SIGHUP)
        self.assertEqual(self._lock_files(), [])
        self.assertEqual(txn.held_locks(), [])
        self.assertEqual(signal.getsignal(signal.SIGTERM), before)

    def test_signal_during_rollback_does_not_interrupt_it(self):
        txn = self._txn(handle_signals=True, group_cls=_SignalOnRestoreGroupDatabase,
                        shadow_cls=_FailingShadowDatabase)
        txn.lock()
        txn.load("wheel")
        txn.group.members.add("dave")
        txn.mark_mutated()
        with self.assertRaises(WriteError):
            txn.commit()
        self.assertEqual(self._read(self.group_path), GROUP.encode())
        self.assertEqual(self._lock_files(), [])
        txn.finalize()

    def test_interrupted_unlock_is_retried(self):
        txn = self._txn()
        txn.lock()
        shadow_unlock = txn.shadow_db.unlock
        calls = []

        def interrupted_once():
            calls.append(1)
            if len(calls) == 1:
                raise Interrupted(signal.SIGTERM)
            return shadow_unlock()

        txn.shadow_db.unlock = interrupted_once
        with self.assertRaises(Interrupted):
            txn.abort()
        self.assertIn(self.gshadow_path, txn.held_locks())
        txn.finalize()
        self.assertEqual(len(calls), 2)
        self.assertEqual(self._lock_files(), [])


if __name__ == "__main__":
    unittest.main()
