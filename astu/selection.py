import logging
import shutil
import subprocess
import sys

import readchar

from astu.errors import SelectionAborted, SelectionError
from astu.printer import colorize

logger = logging.getLogger(__name__)

# fzf: 0 selected, 1 no match, 130 interrupted (ESC / Ctrl+C)
FZF_ABORT_CODES = (1, 130)
ABORT_KEYS = ('q', 'Q', readchar.key.ESC, readchar.key.CTRL_C)


def select_one(items, describe=str, prompt="> ", settings=None, what="item"):
    """Let the user pick a single item; raises SelectionAborted if they back out."""
    chosen = _select(items, describe, prompt, settings, what, multi=False)
    return chosen[0]


def select_many(items, describe=str, prompt="> ", settings=None, what="item"):
    """Let the user pick one or more items; raises SelectionAborted if they back out."""
    return _select(items, describe, prompt, settings, what, multi=True)


def _select(items, describe, prompt, settings, what, multi):
    items = list(items)
    if not items:
        raise SelectionAborted(what)
    labels = [_one_line(describe(item)) for item in items]

    fzf_binary = settings.fzf_binary if settings else "fzf"
    fzf_path = shutil.which(fzf_binary)
    if fzf_path:
        indexes = fzf_filter(fzf_path, labels, prompt, multi, what)
    else:
        logger.debug("'%s' not found in PATH, using the built-in picker", fzf_binary)
        color = None if settings is None or settings.color else False
        indexes = arrow_pick(labels, prompt, multi, what, color=color)
    return [items[i] for i in indexes]


def _one_line(label):
    return str(label).replace("\t", " ").replace("\n", " ")


# ===================== fzf =====================
def fzf_filter(fzf_path, labels, prompt, multi, what="item"):
    """
    Shell out to fzf and return the indexes of the chosen labels.

    Lines are fed as "<index>\\t<label>" with only the label shown, so duplicate
    labels still map back to the right item.
    """
    cmd = [fzf_path, "--height", "40%", "--reverse", "--prompt", prompt,
           "--delimiter", "\t", "--with-nth", "2.."]
    if multi:
        cmd.append("--multi")
    input_str = "\n".join(f"{i}\t{label}" for i, label in enumerate(labels))
    logger.debug("Running selector: %s", " ".join(cmd))

    proc = subprocess.run(cmd, input=input_str, stdout=subprocess.PIPE, text=True, check=False)
    if proc.returncode in FZF_ABORT_CODES:
        raise SelectionAborted(what)
    if proc.returncode != 0:
        raise SelectionError(f"{fzf_path} exited with unexpected code {proc.returncode}")

    indexes = []
    for line in proc.stdout.splitlines():
        head, sep, _ = line.partition("\t")
        if not sep:
            continue
        try:
            indexes.append(int(head))
        except ValueError:
            raise SelectionError(f"unexpected selector output: {line!r}")
    if not indexes:
        raise SelectionAborted(what)
    return indexes


# ===================== Built-in picker =====================
def arrow_pick(labels, prompt, multi, what="item", color=None, readkey=readchar.readkey, out=None):
    """Arrow-key picker (↑ ↓ move, space toggles when multi, Enter selects, q/Esc aborts)."""
    out = out or sys.stdout
    index = 0
    chosen = set()
    hint = "↑ ↓ to move, Space to toggle, Enter to select" if multi else "↑ ↓ to move, Enter to select"
    out.write(colorize(f"{prompt}({hint}):", 'cyan', bold=True, enabled=color, stream=out) + "\n")

    def render(first=False):
        if not first:
            out.write(f"\033[{len(labels)}F")
        for i, label in enumerate(labels):
            mark = ("[x] " if i in chosen else "[ ] ") if multi else ""
            text = (mark + label).ljust(60)
            if i == index:
                out.write(colorize(text, 'orange', bold=True, highlight=True, enabled=color, stream=out) + "\n")
            else:
                out.write(colorize(text, 'orange', enabled=color, stream=out) + "\n")
        out.flush()

    render(first=True)
    while True:
        key = readkey()
        if key in ABORT_KEYS:
            raise SelectionAborted(what)
        if key == readchar.key.UP:
            index = (index - 1) % len(labels)
        elif key == readchar.key.DOWN:
            index = (index + 1) % len(labels)
        elif multi and key == readchar.key.SPACE:
            chosen.symmetric_difference_update({index})
        elif key in (readchar.key.ENTER, readchar.key.CR, readchar.key.LF):
            if multi:
                return sorted(chosen) if chosen else [index]
            return [index]
        render()
