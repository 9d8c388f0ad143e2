#!/usr/bin/env python3
"""
APT Transaction Log Parser

Turns the APT history log (/var/log/apt/history.log and its rotated
segments) into structured install events.

Each transaction in the log is a block of labeled lines:

    Start-Date: 2026-02-10  12:11:38
    Commandline: apt-get install -y build-essential
    Requested-By: user (1000)
    Install: build-essential:amd64 (12.12ubuntu1), gcc:amd64 (4:15.2.0-4ubuntu1, automatic)
    End-Date: 2026-02-10  12:12:00

Only completed transactions that explicitly installed something become
events. Packages pulled in automatically are dropped.

Handles .gz compressed rotated segments automatically.
"""

import gzip
import logging
import os
import re
import zlib
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger("apt_why.history")

DEFAULT_LOG_DIR = "/var/log/apt"
HISTORY_LOG_NAME = "history.log"

# Transaction block labels
START_MARKER = "Start-Date: "
END_MARKER = "End-Date: "
COMMANDLINE_LABEL = "Commandline: "
REQUESTED_BY_LABEL = "Requested-By: "
INSTALL_LABEL = "Install: "

# Entries are separated by "), " because version strings carry commas
# inside the parentheses: "gcc:amd64 (4:15.2.0-4ubuntu1, automatic)"
INSTALL_ENTRY_SEPARATOR = "), "
AUTOMATIC_MARKER = "automatic"

HISTORY_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

ROTATED_SEGMENT_PATTERN = re.compile(r'^history\.log\.(\d+)(\.gz)?$')


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class InstallEvent:
    """One completed APT transaction that explicitly installed packages."""
    timestamp_text: str
    command_line: str
    requested_by: Optional[str] = None
    installed_packages: List[str] = field(default_factory=list)

    @property
    def date(self) -> str:
        """Date portion of the raw timestamp ("2026-02-10  12:11:38" -> "2026-02-10")."""
        parts = self.timestamp_text.split()
        return parts[0] if parts else self.timestamp_text


# ============================================================================
# Parsing
# ============================================================================

def parse_install_list(pkgs_line: str) -> List[str]:
    """
    Parse the value of an "Install:" line into explicitly installed names.

    Args:
        pkgs_line: Text after the "Install: " label

    Returns:
        Package names in log order, automatic dependencies excluded
    """
    names = []
    for entry in pkgs_line.split(INSTALL_ENTRY_SEPARATOR):
        name = entry.split(":", 1)[0]
        if not name:
            continue
        if AUTOMATIC_MARKER in entry:
            continue
        names.append(name)
    return names


def parse_history_log(log_text: str) -> List[InstallEvent]:
    """
    Parse concatenated history log text into install events.

    Segments must be concatenated oldest first. Malformed or truncated
    blocks never raise; they simply produce no event.

    Args:
        log_text: Raw history log text

    Returns:
        InstallEvent list in log order
    """
    events = []
    in_transaction = False
    timestamp_text = ""
    command_line = ""
    requested_by = None
    installed = []

    for line in log_text.splitlines():
        if line.startswith(START_MARKER):
            in_transaction = True
            timestamp_text = line[len(START_MARKER):].strip()
            command_line = ""
            requested_by = None
            installed = []
            continue

        if not in_transaction:
            # Head of a rotated segment that starts mid-block
            continue

        if line.startswith(COMMANDLINE_LABEL):
            command_line = line[len(COMMANDLINE_LABEL):].strip()
        elif line.startswith(REQUESTED_BY_LABEL):
            requested_by = line[len(REQUESTED_BY_LABEL):].strip()
        elif line.startswith(INSTALL_LABEL):
            installed = parse_install_list(line[len(INSTALL_LABEL):].strip())
        elif line.startswith(END_MARKER):
            in_transaction = False
            if installed:
                events.append(InstallEvent(
                    timestamp_text=timestamp_text,
                    command_line=command_line,
                    requested_by=requested_by,
                    installed_packages=list(installed),
                ))
            else:
                logger.debug("Skipping transaction without installs at %s", timestamp_text)

    return events


def find_install_history(events: List[InstallEvent], name: str) -> List[InstallEvent]:
    """Return the events (in log order) that explicitly installed `name`."""
    return [event for event in events if name in event.installed_packages]


def normalize_timestamp(timestamp_text: str) -> Optional[int]:
    """
    Convert a history log timestamp to epoch seconds.

    APT writes local time with a double space between date and time;
    any run of whitespace is accepted.

    Args:
        timestamp_text: Raw timestamp, e.g. "2026-02-10  12:11:38"

    Returns:
        Epoch seconds or None if the text is not a recognized timestamp
    """
    collapsed = " ".join(timestamp_text.split())
    try:
        dt = datetime.strptime(collapsed, HISTORY_TIMESTAMP_FORMAT)
    except ValueError:
        return None
    try:
        return int(dt.timestamp())
    except (OverflowError, OSError, ValueError):
        return None


# ============================================================================
# Log Source
# ============================================================================

def find_history_log_segments(log_dir: str = DEFAULT_LOG_DIR) -> List[Path]:
    """
    Find history log segments, oldest first.

    logrotate numbers segments so that a higher index is older
    (history.log.12.gz is older than history.log.2.gz). The current
    history.log always comes last.

    Args:
        log_dir: Directory holding history.log

    Returns:
        Ordered list of segment paths (may be empty)
    """
    base = Path(log_dir)
    if not base.is_dir():
        return []

    rotated = []
    try:
        for entry in os.listdir(base):
            match = ROTATED_SEGMENT_PATTERN.match(entry)
            if match:
                rotated.append((int(match.group(1)), entry))
    except OSError as e:
        logger.warning("Cannot list %s: %s", base, e)
        return []

    segments = [base / entry for _, entry in sorted(rotated, reverse=True)]

    current = base / HISTORY_LOG_NAME
    if current.is_file():
        segments.append(current)

    return segments


def read_segment(path: Path) -> str:
    """Read one segment, transparently decompressing .gz files."""
    if path.suffix == ".gz":
        with gzip.open(path, "rt", encoding="utf-8", errors="replace") as f:
            return f.read()
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def read_history_logs(log_dir: str = DEFAULT_LOG_DIR) -> str:
    """
    Concatenate every readable history segment, oldest first.

    Unreadable segments are skipped with a warning; a missing log
    directory yields an empty string.
    """
    chunks = []
    for path in find_history_log_segments(log_dir):
        try:
            text = read_segment(path)
        except (OSError, EOFError, gzip.BadGzipFile, zlib.error) as e:
            logger.warning("Skipping unreadable history segment %s: %s", path, e)
            continue
        if text and not text.endswith("\n"):
            text += "\n"
        chunks.append(text)
        logger.debug("Read %d bytes from %s", len(text), path)
    return "".join(chunks)
