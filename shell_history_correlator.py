#!/usr/bin/env python3
"""
Shell History Correlator - commands typed around the time of an install

Parses zsh extended history, where every entry carries its start time:

    : 1739185898:0;cd ~/src/podman-setup
    : 1739185901:0;sudo apt install podman

Plain bash history has no timestamps and is not supported: such files
simply produce zero records.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from why_config import WhyConfig

logger = logging.getLogger("apt_why.shell")

MAX_NEARBY_COMMANDS = 5

EXTENDED_HISTORY_PREFIX = ": "

INSTALL_COMMAND_MARKERS = ("apt-get install", "apt install")

# Commands that say nothing about why something was installed
TRIVIAL_COMMANDS = frozenset({
    "ls", "ll", "la", "l",
    "clear",
    "exit", "logout",
    "pwd",
    "echo", "printf",
    "history",
})

DEFAULT_HISTORY_FILES = [
    ".zsh_history",
    ".zhistory",
    ".histfile",
    ".bash_history",
]


@dataclass
class ShellHistoryRecord:
    """A single timestamped interactive command."""
    epoch_seconds: int
    command_text: str


# ============================================================================
# Parsing
# ============================================================================

def parse_history_line(line: str) -> Optional[ShellHistoryRecord]:
    """
    Parse one ": <epoch>[:<extra>];<command>" line.

    Args:
        line: Raw history line

    Returns:
        ShellHistoryRecord or None if the line does not have that shape
    """
    if not line.startswith(EXTENDED_HISTORY_PREFIX):
        return None

    header, sep, command = line[len(EXTENDED_HISTORY_PREFIX):].partition(";")
    if not sep or not command:
        return None

    epoch_text = header.split(":", 1)[0]
    if not (epoch_text.isascii() and epoch_text.isdigit()):
        return None

    return ShellHistoryRecord(epoch_seconds=int(epoch_text), command_text=command)


def parse_shell_history(text: str) -> List[ShellHistoryRecord]:
    """Parse history text, skipping every line that is not an extended-history entry."""
    records = []
    skipped = 0
    for line in text.splitlines():
        record = parse_history_line(line)
        if record is None:
            skipped += 1
            continue
        records.append(record)
    if skipped:
        logger.debug("Skipped %d history lines without a timestamp", skipped)
    return records


# ============================================================================
# Correlation
# ============================================================================

def is_install_command(command: str) -> bool:
    return any(marker in command for marker in INSTALL_COMMAND_MARKERS)


def is_trivial_command(command: str) -> bool:
    parts = command.split()
    return bool(parts) and parts[0] in TRIVIAL_COMMANDS


def find_nearby(
    history: List[ShellHistoryRecord],
    target_epoch: int,
    window_seconds: int,
    show_all: bool = False,
) -> List[str]:
    """
    Commands run within `window_seconds` of `target_epoch`, nearest first.

    The install command itself is never reported, and trivial commands
    are dropped unless `show_all` is set. At most MAX_NEARBY_COMMANDS
    commands are returned.

    Args:
        history: Parsed history records, in file order
        target_epoch: Install time in epoch seconds
        window_seconds: Maximum distance from the install time
        show_all: Keep trivial commands

    Returns:
        Command strings ordered by increasing distance to the target
    """
    in_window = [
        record for record in history
        if abs(record.epoch_seconds - target_epoch) <= window_seconds
    ]
    # sorted() is stable: equal distances keep file order
    in_window = sorted(in_window, key=lambda record: abs(record.epoch_seconds - target_epoch))

    nearby = []
    for record in in_window:
        command = record.command_text
        if is_install_command(command):
            continue
        if not show_all and is_trivial_command(command):
            continue
        nearby.append(command)
        if len(nearby) == MAX_NEARBY_COMMANDS:
            break

    return nearby


# ============================================================================
# History Source
# ============================================================================

def expand_home(path: str, home_dir: str) -> Path:
    """Expand a leading "~" against the configured home directory."""
    if home_dir and (path == "~" or path.startswith("~/")):
        return Path(home_dir + path[1:])
    return Path(path)


def resolve_history_file(config: WhyConfig) -> Optional[Path]:
    """
    Locate the shell history file.

    An explicit history_file (from --history-file or $HISTFILE) wins;
    otherwise the first existing default file in the home directory.
    """
    if config.history_file:
        return expand_home(config.history_file, config.home_dir)

    if not config.home_dir:
        return None

    for name in DEFAULT_HISTORY_FILES:
        candidate = Path(config.home_dir) / name
        if candidate.is_file():
            return candidate

    return None


def load_shell_history(path: Optional[Path]) -> List[ShellHistoryRecord]:
    """Read and parse a history file; missing or unreadable files yield no records."""
    if path is None:
        logger.debug("No shell history file found")
        return []

    try:
        # zsh "metafies" non-ASCII bytes, so decoding must never fail
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            text = f.read()
    except OSError as e:
        logger.warning("Cannot read shell history %s: %s", path, e)
        return []

    records = parse_shell_history(text)
    logger.debug("Loaded %d timestamped commands from %s", len(records), path)
    return records
