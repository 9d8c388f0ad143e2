#!/usr/bin/env python3
"""
apt-why - Explain why an APT package is installed

Reconstructs the circumstances of a package's installation by correlating:
- /var/log/apt/history.log* (which transaction installed it, by whom)
- the systemd journal sudo records (which directory it was installed from)
- zsh extended history (what was typed around that time)

For each matching transaction the report shows the date, command line,
requester, working directory, packages from the same transaction, other
packages installed the same day, and nearby shell commands.

Requirements: Python 3.8+ (standard library only)
"""

__version__ = "1.0.0"

import argparse
import csv
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from apt_history_parser import (
    InstallEvent,
    find_install_history,
    normalize_timestamp,
    parse_history_log,
    read_history_logs,
)
from audit_correlator import AuditSource, JournalAuditSource, correlate_audit
from install_cooccurrence import same_day_neighbors, siblings
from shell_history_correlator import (
    ShellHistoryRecord,
    find_nearby,
    load_shell_history,
    resolve_history_file,
)
from why_config import DEFAULT_WINDOW_SECONDS, WhyConfig

logger = logging.getLogger("apt_why")

PKG_LIST_LIMIT = 10


# ============================================================================
# Console Styling
# ============================================================================

class Style:
    """ANSI color codes for terminal output."""

    ENABLED = sys.stdout.isatty()

    RESET = '\033[0m' if ENABLED else ''
    BOLD = '\033[1m' if ENABLED else ''
    DIM = '\033[2m' if ENABLED else ''

    RED = '\033[91m' if ENABLED else ''
    GREEN = '\033[92m' if ENABLED else ''
    YELLOW = '\033[93m' if ENABLED else ''
    CYAN = '\033[96m' if ENABLED else ''
    MAGENTA = '\033[95m' if ENABLED else ''

    ERROR = RED
    WARNING = YELLOW
    INFO = CYAN
    HEADER = MAGENTA


# ============================================================================
# Report Data
# ============================================================================

@dataclass
class EventCorrelation:
    """Everything learned about one install event of the queried package."""
    event: InstallEvent
    siblings: List[str] = field(default_factory=list)
    same_day: List[str] = field(default_factory=list)
    context: Optional[str] = None
    # None when the event timestamp could not be normalized
    nearby_commands: Optional[List[str]] = None


@dataclass
class CorrelationReport:
    """Result of investigating one package name."""
    package: str
    correlations: List[EventCorrelation] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.correlations)


def no_audit_source(timestamp_text: str) -> Optional[str]:
    return None


# ============================================================================
# Orchestration
# ============================================================================

def correlate_event(
    event: InstallEvent,
    name: str,
    events: List[InstallEvent],
    history: List[ShellHistoryRecord],
    audit_source: AuditSource,
    config: WhyConfig,
    normalize: Callable[[str], Optional[int]] = normalize_timestamp,
) -> EventCorrelation:
    """Run every correlator for a single install event."""
    context = correlate_audit(event.timestamp_text, event.command_line, audit_source, config.home_dir)

    sibling_list = siblings(event, name)
    same_day = same_day_neighbors(events, event, name, set(sibling_list))

    nearby = None
    epoch = normalize(event.timestamp_text)
    if epoch is not None:
        nearby = find_nearby(history, epoch, config.window_seconds, config.show_all)
    else:
        logger.debug("Cannot normalize %r, skipping shell history", event.timestamp_text)

    return EventCorrelation(
        event=event,
        siblings=sibling_list,
        same_day=same_day,
        context=context,
        nearby_commands=nearby,
    )


def investigate(
    names: List[str],
    events: List[InstallEvent],
    history: List[ShellHistoryRecord],
    audit_source: AuditSource,
    config: WhyConfig,
    normalize: Callable[[str], Optional[int]] = normalize_timestamp,
) -> List[CorrelationReport]:
    """
    Build one CorrelationReport per queried package, in query order.

    Args:
        names: Package names to explain
        events: Parsed history log events, oldest first
        history: Parsed shell history records
        audit_source: Journal text provider for working-directory lookup
        config: Correlation settings
        normalize: Timestamp text -> epoch seconds converter

    Returns:
        List of reports; a report without correlations means no install history
    """
    reports = []
    for name in names:
        report = CorrelationReport(package=name)
        for event in find_install_history(events, name):
            report.correlations.append(
                correlate_event(event, name, events, history, audit_source, config, normalize)
            )
        if not report.found:
            logger.info("%s: no install history found", name)
        reports.append(report)
    return reports


# ============================================================================
# Output
# ============================================================================

def format_pkg_list(packages: List[str], limit: int = PKG_LIST_LIMIT) -> str:
    """Join package names, truncating long lists with a "+ N more" suffix."""
    if len(packages) <= limit:
        return ", ".join(packages)
    return f"{', '.join(packages[:limit])} + {len(packages) - limit} more"


def render_report(report: CorrelationReport) -> List[str]:
    """Render one report as console lines."""
    if not report.found:
        return [f"{Style.DIM}{report.package}: no install history found{Style.RESET}"]

    lines = [f"{Style.BOLD}{Style.CYAN}{report.package}{Style.RESET}"]
    for corr in report.correlations:
        event = corr.event
        lines.append(f"  {Style.GREEN}{event.date}{Style.RESET}  {Style.DIM}{event.command_line}{Style.RESET}")
        if event.requested_by:
            lines.append(f"     {Style.DIM}by {event.requested_by}{Style.RESET}")
        if corr.context:
            lines.append(f"     {Style.INFO}from:{Style.RESET} {corr.context}")
        if corr.siblings:
            lines.append(f"     {Style.INFO}with:{Style.RESET} {format_pkg_list(corr.siblings)}")
        if corr.same_day:
            lines.append(f"     {Style.INFO}same day:{Style.RESET} {format_pkg_list(corr.same_day)}")
        if corr.nearby_commands:
            lines.append(f"     {Style.INFO}nearby commands:{Style.RESET}")
            for command in corr.nearby_commands:
                lines.append(f"       {Style.YELLOW}${Style.RESET} {command}")
    return lines


def print_reports(reports: List[CorrelationReport], stream=None) -> None:
    stream = stream or sys.stdout
    for i, report in enumerate(reports):
        if i > 0:
            print(file=stream)
        for line in render_report(report):
            print(line, file=stream)


def export_csv(reports: List[CorrelationReport], output_path: str) -> None:
    """
    Export reports to CSV, one row per (package, install event).

    Packages without install history get a single row with empty event fields.
    """
    fieldnames = [
        "package",
        "date",
        "timestamp",
        "command_line",
        "requested_by",
        "working_dir",
        "siblings",
        "same_day",
        "nearby_commands",
    ]

    output_dir = os.path.dirname(output_path)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir, exist_ok=True)

    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for report in reports:
            if not report.found:
                writer.writerow({"package": report.package})
                continue
            for corr in report.correlations:
                writer.writerow({
                    "package": report.package,
                    "date": corr.event.date,
                    "timestamp": corr.event.timestamp_text,
                    "command_line": corr.event.command_line,
                    "requested_by": corr.event.requested_by or "",
                    "working_dir": corr.context or "",
                    "siblings": "; ".join(corr.siblings),
                    "same_day": "; ".join(corr.same_day),
                    "nearby_commands": "; ".join(corr.nearby_commands or []),
                })

    logger.info("Report exported to %s", output_path)


# ============================================================================
# Logging
# ============================================================================

def setup_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """Attach console (and optional file) handlers to the apt_why logger."""
    root = logging.getLogger("apt_why")
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    if verbose:
        console.setLevel(logging.DEBUG)
    elif quiet:
        console.setLevel(logging.ERROR)
    else:
        console.setLevel(logging.WARNING)
    console.setFormatter(logging.Formatter('[%(levelname)s] %(message)s'))
    root.addHandler(console)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding='utf-8')
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter('%(asctime)s | %(levelname)-8s | %(message)s'))
        root.addHandler(fh)

    return root


# ============================================================================
# Command Line Interface
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="apt-why",
        description="Explain why APT packages are installed using the APT history log, "
                    "the journal and shell history",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Version: {__version__}

Examples:
  # Why is podman here?
  apt-why podman

  # Several packages, wider shell-history window, keep trivial commands
  apt-why uidmap slirp4netns --window 900 --all

  # Use a copied history file and export the findings
  apt-why podman --history-file ./evidence/.zsh_history --csv why.csv

Sources:
  - /var/log/apt/history.log*  APT transactions (rotated .gz included)
  - journalctl (sudo records)  Working directory of the install
  - ~/.zsh_history             Nearby commands (zsh EXTENDED_HISTORY only)
        """
    )

    parser.add_argument(
        "packages",
        nargs="*",
        metavar="PACKAGE",
        help="Package name(s) to explain"
    )

    parser.add_argument(
        "-w", "--window",
        type=int,
        default=DEFAULT_WINDOW_SECONDS,
        metavar="SECONDS",
        help=f"Shell history window around each install (default: {DEFAULT_WINDOW_SECONDS})"
    )

    parser.add_argument(
        "-a", "--all",
        dest="show_all",
        action="store_true",
        help="Include trivial commands (ls, clear, echo, ...) in nearby commands"
    )

    parser.add_argument(
        "--history-file",
        metavar="PATH",
        help="Shell history file (default: $HISTFILE or ~/.zsh_history)"
    )

    parser.add_argument(
        "--log-dir",
        metavar="DIR",
        help="Directory holding history.log (default: /var/log/apt)"
    )

    parser.add_argument(
        "--no-journal",
        action="store_true",
        help="Do not query the journal for the working directory"
    )

    parser.add_argument(
        "--csv",
        metavar="FILE",
        help="Also export the findings to a CSV file"
    )

    parser.add_argument(
        "--log-file",
        metavar="FILE",
        help="Write a detailed debug log to FILE"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug output on stderr"
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only report errors on stderr"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)
    except OSError as e:
        print(f"{Style.ERROR}Error: cannot open log file {args.log_file}: {e}{Style.RESET}", file=sys.stderr)
        return 1

    if not args.packages:
        print(f"{Style.ERROR}Usage: apt-why <package...>{Style.RESET}", file=sys.stderr)
        return 1

    if args.window < 0:
        print(f"{Style.ERROR}Error: --window must not be negative{Style.RESET}", file=sys.stderr)
        return 1

    config = WhyConfig.from_environment(
        history_file=args.history_file,
        log_dir=args.log_dir,
        window_seconds=args.window,
        show_all=args.show_all,
        use_journal=not args.no_journal,
    )

    events = parse_history_log(read_history_logs(config.log_dir))
    logger.debug("Parsed %d install events from %s", len(events), config.log_dir)
    if not events:
        logger.warning("No install events found in %s", config.log_dir)

    history = load_shell_history(resolve_history_file(config))
    audit_source = JournalAuditSource() if config.use_journal else no_audit_source

    reports = investigate(args.packages, events, history, audit_source, config)
    print_reports(reports)

    if args.csv:
        try:
            export_csv(reports, args.csv)
        except OSError as e:
            print(f"{Style.ERROR}Error: cannot write {args.csv}: {e}{Style.RESET}", file=sys.stderr)
            return 1

    return 0


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user.", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    run()
