"""
pygpasswd Message Renderer
==========================
Everything the command says to the person running it.

  - progress lines ("Adding user alice to group wheel") → stdout
  - errors, prefixed with the program name → stderr
  - usage text → stderr
"""

import sys
from typing import TextIO

from transactions.errors import GpasswdError, Interrupted, UsageError


class Renderer:
    def __init__(self, prog: str = "pygpasswd",
                 output: TextIO = None, errors: TextIO = None):
        self.prog = prog
        self.output = output or sys.stdout
        self.errors = errors or sys.stderr

    # ─── Public API ─────────────────────────────────────────────────

    def render_message(self, message: str):
        """Render an informational line."""
        if message:
            self._print(message, self.output)

    def render_error(self, error: Exception):
        """Render an error as "<prog>: <message>"."""
        if isinstance(error, Interrupted):
            # The prompt that was interrupted left the cursor mid-line
            self._print("", self.output)
        if isinstance(error, GpasswdError):
            text = error.message
        else:
            text = f"{self._classify_error(error)}: {error}"
        self._print(f"{self.prog}: {text}", self.errors)

    def render_usage(self, usage: str, error: UsageError = None):
        if error is not None and error.message:
            self._print(f"{self.prog}: {error.message}", self.errors)
        self._print(usage, self.errors)

    # ─── Internal ───────────────────────────────────────────────────

    @staticmethod
    def _classify_error(error: Exception) -> str:
        if isinstance(error, OSError):
            return "System error"
        return "Internal error"

    @staticmethod
    def _print(text: str, stream: TextIO):
        print(text, file=stream)
        stream.flush()
