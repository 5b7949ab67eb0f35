"""
pygpasswd Error Kinds
=====================
Every failure the command can report, each carrying the process exit
status it maps to. Session.run() is the only place these are turned into
an exit; everything below it raises.

Exit statuses follow the shadow suite where it has one:
  0   success
  1   permission denied, lookup failures, membership/password failures
  2   usage error
  3   bad argument / bad configuration
  4   cannot lock a database
  10  cannot rewrite a database
  128+N  terminated by signal N
"""

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_BAD_ARG = 3
EXIT_LOCK = 4
EXIT_WRITE = 10


class GpasswdError(Exception):
    """Base class. `exit_status` is what the process exits with."""
    exit_status = EXIT_FAILURE

    def __init__(self, message: str, exit_status: int = None):
        super().__init__(message)
        self.message = message
        if exit_status is not None:
            self.exit_status = exit_status


class UsageError(GpasswdError):
    exit_status = EXIT_USAGE


class BadArgument(GpasswdError):
    exit_status = EXIT_BAD_ARG


class ConfigError(GpasswdError):
    exit_status = EXIT_BAD_ARG


class PermissionDenied(GpasswdError):
    def __init__(self, message: str = "Permission denied."):
        super().__init__(message)


class LookupFailure(GpasswdError):
    """Unknown group or unknown user."""
    pass


class GroupNotFound(LookupFailure):
    def __init__(self, group: str, path: str = "group file"):
        super().__init__(f"group '{group}' does not exist in the {path}")
        self.group = group


class InvalidMember(LookupFailure):
    def __init__(self, user: str):
        super().__init__(f"user '{user}' does not exist")
        self.user = user


class NotAMember(GpasswdError):
    def __init__(self, user: str, group: str):
        super().__init__(f"user '{user}' is not a member of '{group}'")
        self.user = user
        self.group = group


class NotATerminal(GpasswdError):
    def __init__(self):
        super().__init__("Not a tty")


class RetryExhausted(GpasswdError):
    def __init__(self):
        super().__init__("Try again later")


class LockError(GpasswdError):
    exit_status = EXIT_LOCK


class WriteError(GpasswdError):
    exit_status = EXIT_WRITE


class Interrupted(GpasswdError):
    """Raised out of the signal handler once locks are released."""

    def __init__(self, signum: int):
        super().__init__(f"terminated by signal {signum}", 128 + signum)
        self.signum = signum
