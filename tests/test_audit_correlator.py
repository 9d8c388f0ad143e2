"""Tests for working-directory recovery from sudo audit records."""

import subprocess

import audit_correlator
from audit_correlator import (
    JournalAuditSource,
    abbreviate_home,
    candidate_package_tokens,
    correlate_audit,
    parse_audit_line,
)


HOME = "/home/user"

SUDO_LINES = """\
user : TTY=pts/1 ; PWD=/home/user ; USER=root ; COMMAND=/usr/bin/systemctl restart ssh
user : TTY=pts/1 ; PWD=/home/user/src/containers ; USER=root ; COMMAND=/usr/bin/apt install podman slirp4netns
user : TTY=pts/2 ; PWD=/tmp ; USER=root ; COMMAND=/usr/bin/apt install podman
"""


def source_returning(text):
    calls = []

    def source(timestamp_text):
        calls.append(timestamp_text)
        return text

    source.calls = calls
    return source


def test_candidate_tokens_drop_flags_and_apt_words():
    assert candidate_package_tokens("apt-get install -y build-essential") == ["build-essential"]
    assert candidate_package_tokens("apt -y install podman slirp4netns") == ["podman", "slirp4netns"]
    assert candidate_package_tokens("apt-get install --reinstall") == []


def test_parse_audit_line():
    pwd, command = parse_audit_line(SUDO_LINES.splitlines()[1])
    assert pwd == "/home/user/src/containers"
    assert command == "/usr/bin/apt install podman slirp4netns"


def test_parse_audit_line_requires_both_keys():
    assert parse_audit_line("user : TTY=pts/1 ; PWD=/home/user ; USER=root") is None
    assert parse_audit_line("pam_unix(sudo:session): session opened for user root") is None


def test_parse_audit_line_pwd_runs_to_line_end():
    assert parse_audit_line("COMMAND=/usr/bin/apt install x PWD=/srv/data") == (
        "/srv/data", "/usr/bin/apt install x PWD=/srv/data"
    )


def test_abbreviate_home():
    assert abbreviate_home("/home/user", HOME) == "~"
    assert abbreviate_home("/home/user/", HOME) == "~/"
    assert abbreviate_home("/home/user/src", HOME) == "~/src"
    assert abbreviate_home("/home/username", HOME) == "/home/username"
    assert abbreviate_home("/etc", HOME) == "/etc"
    assert abbreviate_home("/etc", "") == "/etc"


def test_first_matching_line_wins():
    source = source_returning(SUDO_LINES)
    context = correlate_audit("2026-02-10  16:40:22", "apt install podman slirp4netns", source, HOME)
    assert context == "~/src/containers"
    assert source.calls == ["2026-02-10  16:40:22"]


def test_path_outside_home_is_verbatim():
    text = "root : TTY=pts/0 ; PWD=/opt/build ; USER=root ; COMMAND=/usr/bin/apt-get install -y make\n"
    assert correlate_audit("2026-01-01  10:00:00", "apt-get install -y make", source_returning(text), HOME) == "/opt/build"


def test_command_must_mention_apt_and_a_package():
    text = (
        "user : TTY=pts/1 ; PWD=/srv/a ; USER=root ; COMMAND=/usr/bin/dpkg -i podman.deb\n"
        "user : TTY=pts/1 ; PWD=/srv/b ; USER=root ; COMMAND=/usr/bin/apt install htop\n"
    )
    assert correlate_audit("2026-01-01  10:00:00", "apt install podman", source_returning(text), HOME) is None


def test_no_candidate_tokens_skips_source():
    source = source_returning(SUDO_LINES)
    assert correlate_audit("2026-01-01  10:00:00", "apt-get install -f", source, HOME) is None
    assert source.calls == []


def test_unavailable_source_means_no_context():
    assert correlate_audit("2026-01-01  10:00:00", "apt install podman", source_returning(None), HOME) is None
    assert correlate_audit("2026-01-01  10:00:00", "apt install podman", source_returning(""), HOME) is None


def test_journal_command_window():
    source = JournalAuditSource(normalize=lambda text: 1000)
    command = source.build_command(1000)
    assert "--since=@995" in command
    assert "--until=@1060" in command
    assert "SYSLOG_IDENTIFIER=sudo" in command


def test_journal_source_unnormalizable_timestamp(monkeypatch):
    def fail_run(*args, **kwargs):
        raise AssertionError("journalctl must not run")

    monkeypatch.setattr(audit_correlator.subprocess, "run", fail_run)
    assert JournalAuditSource(normalize=lambda text: None)("garbage") is None


def test_journal_source_missing_binary(monkeypatch):
    monkeypatch.setattr(audit_correlator.shutil, "which", lambda name: None)
    assert JournalAuditSource(normalize=lambda text: 1000)("2026-01-01  10:00:00") is None


def test_journal_source_returns_stdout(monkeypatch):
    monkeypatch.setattr(audit_correlator.shutil, "which", lambda name: "/usr/bin/journalctl")

    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 0, stdout=SUDO_LINES, stderr="")

    monkeypatch.setattr(audit_correlator.subprocess, "run", fake_run)
    assert JournalAuditSource(normalize=lambda text: 1000)("2026-01-01  10:00:00") == SUDO_LINES


def test_journal_source_failures_mean_no_context(monkeypatch):
    monkeypatch.setattr(audit_correlator.shutil, "which", lambda name: "/usr/bin/journalctl")
    source = JournalAuditSource(normalize=lambda text: 1000)

    def exits_nonzero(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="No journal files were found.")

    monkeypatch.setattr(audit_correlator.subprocess, "run", exits_nonzero)
    assert source("2026-01-01  10:00:00") is None

    def times_out(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(audit_correlator.subprocess, "run", times_out)
    assert source("2026-01-01  10:00:00") is None

    def cannot_launch(cmd, **kwargs):
        raise PermissionError("denied")

    monkeypatch.setattr(audit_correlator.subprocess, "run", cannot_launch)
    assert source("2026-01-01  10:00:00") is None
