"""
pygpasswd Session
=================
One invocation of the command: wires all components together and owns
the single finalize-and-exit routine.

Owns:
  - Settings (resolved once), identity store, PermissionResolver
  - MutationEngine (+ PasswordPrompter and TerminalModes for password entry)
  - GroupTransaction over GroupDatabase / ShadowDatabase

Flow:
  parse → caller → pre-lock checks → lock → load → authorize → mutate
  → commit → nscd flush
Every path ends in finalize(), which releases any database lock still
held, and returns an exit status; nothing below run() exits the process.
"""

from typing import List, Optional

from catalog.identity import current_caller, make_identity_store
from catalog.resolver import PermissionResolver
from cli.options import parse_args, usage_text
from cli.renderer import Renderer
from cli.settings import Settings
from cli.terminal import TerminalModes
from execution.context import MutationKind, MutationRequest
from execution.executor import MutationEngine
from execution.password import PasswordHasher, PasswordPrompter
from monitoring.logger import bind_audit_context, get_logger
from storage.database import GroupDatabase, ShadowDatabase
from storage.nscd import flush_cache
from transactions.errors import EXIT_FAILURE, EXIT_SUCCESS, GpasswdError, UsageError
from transactions.transaction import GroupTransaction

logger = get_logger(__name__)

CACHE_DATABASE = "group"


class Session:
    """
    Usage:
        with Session(Settings.load()) as session:
            status = session.run(sys.argv[1:])
    """

    def __init__(self, settings: Settings, *, prog: str = "pygpasswd",
                 identity=None, renderer: Renderer = None,
                 prompter: PasswordPrompter = None,
                 terminal: TerminalModes = None,
                 uid: Optional[int] = None,
                 handle_signals: bool = True,
                 cache_flush=flush_cache):
        self.settings = settings
        self.prog = prog
        self.renderer = renderer or Renderer(prog)
        self.shadow_active = settings.resolve_shadow()
        self.resolver = PermissionResolver(settings.first_member_is_admin)
        self.uid = uid
        self.handle_signals = handle_signals

        self._identity = identity
        self._prompter = prompter
        self._terminal = terminal
        self._cache_flush = cache_flush
        self.txn: Optional[GroupTransaction] = None
        self._closed = False

    # ─── Entry Point ────────────────────────────────────────────────

    def run(self, argv: List[str]) -> int:
        """Run one command line. Returns the process exit status."""
        try:
            request = parse_args(argv, self.prog)
        except UsageError as e:
            self.renderer.render_usage(usage_text(self.prog), e)
            return e.exit_status

        close_error = None
        try:
            status = self.execute(request)
        except GpasswdError as e:
            status = self._report(e)
        except Exception as e:
            logger.exception("command_crashed", error=str(e))
            self.renderer.render_error(e)
            status = EXIT_FAILURE
        finally:
            close_error = self.close()

        if close_error is not None:
            status = self._report(close_error)
        return status

    def execute(self, request: MutationRequest) -> int:
        """Carry out a parsed request. Raises GpasswdError on failure."""
        identity = self._get_identity()
        caller = current_caller(identity, self.uid)
        bind_audit_context(self.prog, request.group, caller.name)

        self.resolver.check_request(caller, request)
        prompter = terminal = None
        if request.kind == MutationKind.CHANGE_PASSWORD:
            prompter = self._get_prompter()
            terminal = self._get_terminal()
        engine = MutationEngine(identity, self.renderer,
                                prompter=prompter, terminal=terminal)
        prepared = engine.prepare(request, self.shadow_active)

        txn = self.begin()
        txn.lock()
        txn.load(request.group)
        self.resolver.authorize(caller, request, txn.group, txn.shadow,
                                shadow_active=self.shadow_active)
        engine.apply(txn, prepared, caller)
        txn.commit()
        return EXIT_SUCCESS

    def begin(self) -> GroupTransaction:
        """Create the transaction for this invocation."""
        if self.txn is not None:
            raise RuntimeError("Session already has a transaction")
        shadow_db = None
        if self.shadow_active:
            shadow_db = ShadowDatabase(self.settings.gshadow_path,
                                       lock_timeout=self.settings.lock_timeout)
        self.txn = GroupTransaction(
            GroupDatabase(self.settings.group_path,
                          lock_timeout=self.settings.lock_timeout),
            shadow_db,
            first_member_is_admin=self.settings.first_member_is_admin,
            handle_signals=self.handle_signals,
        )
        self.txn.register_hook(commit_fn=self._flush_cache)
        return self.txn

    # ─── Lifecycle ──────────────────────────────────────────────────

    def close(self) -> Optional[GpasswdError]:
        """
        Finalize the transaction, if any. Safe to call repeatedly.
        Returns the error if putting back a partial write failed.
        """
        if self._closed:
            return None
        self._closed = True
        if self.txn is not None:
            try:
                self.txn.finalize()
            except GpasswdError as e:
                return e
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ─── Internal ───────────────────────────────────────────────────

    def _report(self, error: GpasswdError) -> int:
        logger.warning("command_failed", error=error.message,
                       error_kind=type(error).__name__,
                       exit_status=error.exit_status)
        self.renderer.render_error(error)
        return error.exit_status

    def _flush_cache(self) -> None:
        self._cache_flush(CACHE_DATABASE, self.settings.nscd_path)

    def _get_identity(self):
        if self._identity is None:
            self._identity = make_identity_store(self.settings.passwd_path)
        return self._identity

    def _get_prompter(self) -> PasswordPrompter:
        if self._prompter is None:
            hasher = PasswordHasher(self.settings.crypt_scheme,
                                    self.settings.crypt_rounds)
            self._prompter = PasswordPrompter(
                hasher, retries=self.settings.password_retries)
        return self._prompter

    def _get_terminal(self) -> TerminalModes:
        if self._terminal is None:
            self._terminal = TerminalModes()
        return self._terminal
