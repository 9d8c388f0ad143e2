"""
Co-occurrence queries over parsed APT install events.

- siblings: what came in the same transaction
- same-day neighbors: what else was installed that day, elsewhere
"""

from typing import Iterable, List

from apt_history_parser import InstallEvent


def siblings(event: InstallEvent, name: str) -> List[str]:
    """Packages installed alongside `name` in the same transaction, log order."""
    return [pkg for pkg in event.installed_packages if pkg != name]


def same_transaction(a: InstallEvent, b: InstallEvent) -> bool:
    # Two events are the same transaction when both timestamp and command match
    return a.timestamp_text == b.timestamp_text and a.command_line == b.command_line


def same_day_neighbors(
    all_events: List[InstallEvent],
    event: InstallEvent,
    name: str,
    sibling_set: Iterable[str],
) -> List[str]:
    """
    Packages installed by other transactions on the same calendar day.

    Args:
        all_events: Every parsed event
        event: The event being explained
        name: Queried package name (never reported)
        sibling_set: Packages already reported as siblings (never reported)

    Returns:
        Sorted, de-duplicated package names
    """
    excluded = set(sibling_set)
    excluded.add(name)

    neighbors = set()
    for other in all_events:
        if same_transaction(other, event):
            continue
        if other.date != event.date:
            continue
        for pkg in other.installed_packages:
            if pkg not in excluded:
                neighbors.add(pkg)

    return sorted(neighbors)
