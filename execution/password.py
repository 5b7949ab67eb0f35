"""
pygpasswd Password Change
=========================
Interactive entry of a new group password.

Prompt1 → Prompt2 → Compare
   ↑                  │ mismatch, attempts left
   └──────────────────┘
Match → hash → store. Attempts used up → RetryExhausted.

The plaintext is kept in bytearrays and overwritten with zeros as soon as
it has been compared or hashed, whatever the outcome. (Python may still
hold transient copies made by getpass and the hash backend; those cannot
be reached from here.)
"""

import getpass
import hmac
import sys
from typing import Callable, Optional, TextIO

from passlib.context import CryptContext

from monitoring.logger import get_logger
from transactions.errors import ConfigError, GpasswdError, NotATerminal, RetryExhausted

logger = get_logger(__name__)

DEFAULT_RETRIES = 3
DEFAULT_SCHEME = "sha512_crypt"

PROMPT_NEW = "New Password: "
PROMPT_AGAIN = "Re-enter new password: "
MSG_MISMATCH = "They don't match; try again"


def zero(buf: bytearray) -> None:
    """Overwrite a secret in place."""
    for i in range(len(buf)):
        buf[i] = 0


class PasswordHasher:
    """One-way, salted crypt(3)-style hashing via passlib."""

    def __init__(self, scheme: str = DEFAULT_SCHEME, rounds: Optional[int] = None):
        settings = {}
        if rounds is not None:
            settings[f"{scheme}__rounds"] = rounds
        try:
            self._context = CryptContext(schemes=[scheme], **settings)
        except (KeyError, ValueError, TypeError) as e:
            raise ConfigError(f"unsupported password hashing scheme '{scheme}': {e}")
        self.scheme = scheme

    def hash(self, secret: bytes) -> str:
        """Hash with a freshly generated salt."""
        return self._context.hash(secret)

    def verify(self, secret: bytes, hashed: str) -> bool:
        return self._context.verify(secret, hashed)


class PasswordPrompter:
    """
    Reads a new password twice from the terminal and returns its hash.

    `prompt` defaults to getpass.getpass; tests pass a scripted callable.
    """

    def __init__(self, hasher: PasswordHasher, *,
                 retries: int = DEFAULT_RETRIES,
                 prompt: Callable[[str], str] = getpass.getpass,
                 stdin: TextIO = None, stdout: TextIO = None):
        self.hasher = hasher
        self.retries = retries
        self.prompt = prompt
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    def require_terminal(self) -> None:
        """Both input and output must be terminals."""
        if not (_isatty(self.stdin) and _isatty(self.stdout)):
            raise NotATerminal()

    def read_new_password(self) -> str:
        """Run the prompt loop. Returns the hash of the accepted password."""
        for attempt in range(self.retries):
            first = self._read(PROMPT_NEW)
            second = bytearray()
            try:
                second = self._read(PROMPT_AGAIN)
                if hmac.compare_digest(first, second):
                    return self.hasher.hash(bytes(first))
            finally:
                zero(first)
                zero(second)

            if attempt + 1 < self.retries:
                print(MSG_MISMATCH, file=self.stdout)
                logger.info("password_mismatch", attempt=attempt + 1)

        logger.warning("password_retries_exhausted", retries=self.retries)
        raise RetryExhausted()

    def _read(self, prompt: str) -> bytearray:
        try:
            text = self.prompt(prompt)
        except EOFError:
            raise GpasswdError("cannot read the new password")
        buf = bytearray(text.encode("utf-8"))
        del text
        return buf


def _isatty(stream) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False
