"""Runtime configuration for apt-why correlation."""

import os
from dataclasses import dataclass
from typing import Optional

from apt_history_parser import DEFAULT_LOG_DIR

DEFAULT_WINDOW_SECONDS = 5 * 60


@dataclass
class WhyConfig:
    """
    Everything the correlators would otherwise read from the environment.

    Attributes:
        home_dir: Home directory used for "~" abbreviation and history lookup
        history_file: Explicit shell history path (overrides discovery)
        log_dir: Directory holding the APT history log
        window_seconds: Shell-history correlation window around an install
        show_all: Keep trivial commands (ls, clear, ...) in nearby output
        use_journal: Query the journal for the working directory
    """
    home_dir: str = ""
    history_file: Optional[str] = None
    log_dir: str = DEFAULT_LOG_DIR
    window_seconds: int = DEFAULT_WINDOW_SECONDS
    show_all: bool = False
    use_journal: bool = True

    @classmethod
    def from_environment(cls, **overrides) -> "WhyConfig":
        """Build a config from $HOME / $HISTFILE, then apply explicit overrides."""
        values = {
            "home_dir": os.environ.get("HOME", ""),
            "history_file": os.environ.get("HISTFILE") or None,
        }
        for key, value in overrides.items():
            if value is not None:
                values[key] = value
        return cls(**values)
