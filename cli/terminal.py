"""
Terminal mode save/restore.

Password entry turns echo off. If the command is interrupted while the
terminal is in that state, the saved modes are put back before anything
else happens during teardown.
"""

import sys
import termios


class TerminalModes:
    """Saved termios attributes of one terminal file descriptor."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdin
        self._saved = None

    def save(self) -> bool:
        """Remember the current modes. False if the stream is not a tty."""
        try:
            self._saved = termios.tcgetattr(self.stream.fileno())
        except (termios.error, OSError, ValueError, AttributeError):
            self._saved = None
            return False
        return True

    def restore(self) -> None:
        if self._saved is None:
            return
        saved, self._saved = self._saved, None
        try:
            termios.tcsetattr(self.stream.fileno(), termios.TCSANOW, saved)
        except (termios.error, OSError, ValueError):
            return
