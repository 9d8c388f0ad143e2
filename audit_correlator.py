#!/usr/bin/env python3
"""
Audit Trail Correlator - recover the working directory of an install

sudo logs every privileged command to the journal in the form:

    user : TTY=pts/1 ; PWD=/home/user/project ; USER=root ; COMMAND=/usr/bin/apt install podman

Given an APT transaction (timestamp + command line), this module looks for
the sudo record that launched it and returns its PWD, abbreviated with "~"
when it lies under the user's home directory.

The journal is queried from 5 seconds before to 60 seconds after the
transaction: APT stamps the log when the install finishes, which is after
the shell invocation was audited.
"""

import logging
import shutil
import subprocess
from typing import Callable, List, Optional, Tuple

from apt_history_parser import normalize_timestamp

logger = logging.getLogger("apt_why.audit")

AUDIT_WINDOW_BEFORE = 5
AUDIT_WINDOW_AFTER = 60
JOURNALCTL_TIMEOUT = 30

PWD_KEY = "PWD="
COMMAND_KEY = "COMMAND="
PWD_TERMINATOR = " ;"

# Tokens of the install command line that never name a package
PACKAGE_MANAGER_TOKENS = {"apt-get", "apt", "install"}

# Source of raw audit text for an APT timestamp; None means unavailable
AuditSource = Callable[[str], Optional[str]]


# ============================================================================
# Matching
# ============================================================================

def candidate_package_tokens(command_line: str) -> List[str]:
    """
    Extract the tokens of an APT command line that may be package names.

    "apt-get install -y build-essential" -> ["build-essential"]
    """
    return [
        token for token in command_line.split()
        if not token.startswith("-") and token not in PACKAGE_MANAGER_TOKENS
    ]


def parse_audit_line(line: str) -> Optional[Tuple[str, str]]:
    """
    Split a sudo audit line into (pwd, command).

    Args:
        line: One line of journal text

    Returns:
        (pwd, command) or None if either key is missing
    """
    pwd_at = line.find(PWD_KEY)
    command_at = line.find(COMMAND_KEY)
    if pwd_at == -1 or command_at == -1:
        return None

    pwd = line[pwd_at + len(PWD_KEY):]
    end = pwd.find(PWD_TERMINATOR)
    if end != -1:
        pwd = pwd[:end]

    command = line[command_at + len(COMMAND_KEY):]
    return pwd, command


def abbreviate_home(path: str, home_dir: str) -> str:
    """Replace the home directory prefix with "~" (exactly "~" for home itself)."""
    home = home_dir.rstrip("/")
    if not home:
        return path
    if path == home:
        return "~"
    if path.startswith(home + "/"):
        return "~" + path[len(home):]
    return path


def correlate_audit(
    timestamp_text: str,
    command_line: str,
    audit_source: AuditSource,
    home_dir: str,
) -> Optional[str]:
    """
    Find the working directory an APT transaction was started from.

    The first audit line whose command mentions apt and one of the
    transaction's package tokens wins.

    Args:
        timestamp_text: Raw Start-Date of the transaction
        command_line: Raw Commandline of the transaction
        audit_source: Callable returning journal text around the timestamp
        home_dir: Home directory for "~" abbreviation

    Returns:
        Working directory or None if nothing matched
    """
    tokens = candidate_package_tokens(command_line)
    if not tokens:
        return None

    text = audit_source(timestamp_text)
    if not text:
        return None

    for line in text.splitlines():
        parsed = parse_audit_line(line)
        if parsed is None:
            continue
        pwd, command = parsed
        if "apt" not in command:
            continue
        if any(token in command for token in tokens):
            return abbreviate_home(pwd, home_dir)

    logger.debug("No audit record matched %r at %s", command_line, timestamp_text)
    return None


# ============================================================================
# Journal Source
# ============================================================================

class JournalAuditSource:
    """Fetch sudo records around an APT timestamp from the live journal."""

    def __init__(self, journalctl: str = "journalctl", timeout: int = JOURNALCTL_TIMEOUT,
                 normalize: Callable[[str], Optional[int]] = normalize_timestamp):
        self.journalctl = journalctl
        self.timeout = timeout
        self.normalize = normalize

    def build_command(self, epoch: int) -> List[str]:
        return [
            self.journalctl,
            "--no-pager",
            "--quiet",
            "--output=cat",
            "SYSLOG_IDENTIFIER=sudo",
            f"--since=@{epoch - AUDIT_WINDOW_BEFORE}",
            f"--until=@{epoch + AUDIT_WINDOW_AFTER}",
        ]

    def __call__(self, timestamp_text: str) -> Optional[str]:
        epoch = self.normalize(timestamp_text)
        if epoch is None:
            logger.debug("Unrecognized timestamp %r, skipping journal lookup", timestamp_text)
            return None

        if shutil.which(self.journalctl) is None:
            logger.debug("%s not found, no audit context available", self.journalctl)
            return None

        try:
            result = subprocess.run(
                self.build_command(epoch),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("journalctl timed out after %ds", self.timeout)
            return None
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("journalctl failed: %s", e)
            return None

        if result.returncode != 0:
            logger.debug("journalctl exited %d: %s", result.returncode, result.stderr.strip()[:200])
            return None

        return result.stdout
