import sys
import threading

from rich.console import Console
from rich.text import Text

# ===================== Colors =====================
CLR = {
    'reset': '\033[0m',
    'red': '\033[31m',
    'yellow': '\033[33m',
    'green': '\033[32m',
    'cyan': '\033[36m',
    'orange': '\033[38;5;214m',
    'purple': '\033[35m',
    'bold': '\033[1m',
    'highlight': '\033[7m',  # inverted colors
}

SYMBOL_GOOD = ("✔", "green")
SYMBOL_BAD = ("✗", "red")
SYMBOL_NEUTRAL = ("•", "yellow")


def colorize(text, color=None, bold=False, highlight=False, enabled=None, stream=None):
    """
    Wrap text in ANSI codes.
    - enabled=None colors only when the stream (stdout by default) is a TTY
    - enabled=False always returns the text untouched
    """
    if enabled is None:
        stream = stream or sys.stdout
        enabled = hasattr(stream, "isatty") and stream.isatty()
    if not enabled:
        return text

    parts = []
    if bold:
        parts.append(CLR['bold'])
    if color:
        parts.append(CLR.get(color, ''))
    if highlight:
        parts.append(CLR['highlight'])
    parts.append(text)
    parts.append(CLR['reset'])
    return ''.join(parts)


def center_text(text, width=60):
    return text.center(width)


# ===================== Status lines =====================
class Printer:
    """Line-oriented status sink, safe to call from many threads at once.

    Every call writes one whole line ``"<marker> <address> → <status>"`` while
    holding the lock, so concurrent probes never interleave mid-line.
    """

    def __init__(self, console=None, color=True):
        if console is None:
            console = Console(highlight=False, no_color=not color)
        self.console = console
        self.color = color
        self._lock = threading.Lock()

    def good(self, address, status):
        self._line(SYMBOL_GOOD, address, status)

    def bad(self, address, status):
        self._line(SYMBOL_BAD, address, status)

    def neutral(self, address, status):
        self._line(SYMBOL_NEUTRAL, address, status)

    def report(self, outcome):
        """Print a ping ProbeOutcome with the marker matching its kind."""
        if outcome.is_open:
            self.good(outcome.address, outcome.status)
        elif outcome.is_skipped:
            self.neutral(outcome.address, outcome.status)
        else:
            self.bad(outcome.address, outcome.status)

    def _line(self, symbol, address, status):
        marker, style = symbol
        # Text.assemble keeps "[fe80::1]:22" from being read as console markup
        line = Text.assemble((marker, style if self.color else ""), f" {address} → {status}")
        with self._lock:
            self.console.print(line, highlight=False, soft_wrap=True)
