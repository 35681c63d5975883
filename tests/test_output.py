"""Tests for the output formatting system.

Covers:
- OutputFormat resolution (auto -> rich/plain based on TTY)
- NO_COLOR / TERM=dumb color disabling
- stdout vs stderr discipline
- Quiet and verbose rules, including the always-visible login link
- print_record and print_table in all three modes
- Global instance management
"""

from __future__ import annotations

import json

import pytest

from deskoauth import output as output_module
from deskoauth.output import (
    OutputFormat,
    OutputManager,
    _should_disable_color,
    get_output,
    reset_output,
    set_output,
)


@pytest.fixture()
def non_tty(monkeypatch):
    """Patch stdout.isatty() to return False."""
    monkeypatch.setattr("deskoauth.output._is_tty", lambda: False)


@pytest.fixture()
def tty(monkeypatch):
    """Patch stdout.isatty() to return True."""
    monkeypatch.setattr("deskoauth.output._is_tty", lambda: True)


# ------------------------------------------------------------------ #
# OutputFormat resolution
# ------------------------------------------------------------------ #


class TestOutputFormatResolution:
    def test_auto_resolves_to_plain_when_not_tty(self, non_tty):
        assert OutputManager(format=OutputFormat.AUTO).format == OutputFormat.PLAIN

    def test_auto_resolves_to_rich_when_tty(self, tty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        assert OutputManager(format=OutputFormat.AUTO).format == OutputFormat.RICH

    def test_no_color_flag_forces_plain(self, tty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        assert OutputManager(format=OutputFormat.AUTO, no_color=True).format == OutputFormat.PLAIN

    def test_explicit_json_stays_json(self, tty):
        assert OutputManager(format=OutputFormat.JSON).format == OutputFormat.JSON


class TestColorDisabling:
    def test_no_color_env(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "")
        assert _should_disable_color() is True

    def test_term_dumb(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        assert _should_disable_color() is True

    def test_normal_term(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm-256color")
        assert _should_disable_color() is False


# ------------------------------------------------------------------ #
# stdout vs stderr discipline
# ------------------------------------------------------------------ #


class TestStdoutStderrDiscipline:
    def test_print_data_goes_to_stdout(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).print_data("hello")
        captured = capfd.readouterr()
        assert captured.out == "hello\n"
        assert captured.err == ""

    @pytest.mark.parametrize("method", ["info", "success", "warning", "error", "suggest"])
    def test_diagnostics_go_to_stderr(self, capfd, non_tty, method):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        getattr(mgr, method)("a message")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "a message" in captured.err

    def test_link_goes_to_stderr(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).link("https://example.test/auth?x=1")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert captured.err == "https://example.test/auth?x=1\n"


class TestQuietAndVerbose:
    def test_quiet_suppresses_info_not_errors(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        mgr.info("hidden")
        mgr.success("hidden too")
        mgr.error("visible")
        mgr.warning("also visible")
        err = capfd.readouterr().err
        assert "hidden" not in err
        assert "Error: visible" in err
        assert "Warning: also visible" in err

    def test_quiet_keeps_link(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True).link("https://x")
        assert "https://x" in capfd.readouterr().err

    def test_debug_only_when_verbose(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).debug("quiet")
        OutputManager(format=OutputFormat.PLAIN, no_color=True, verbose=True).debug("loud")
        err = capfd.readouterr().err
        assert "quiet" not in err
        assert "[debug] loud" in err


# ------------------------------------------------------------------ #
# Records and tables
# ------------------------------------------------------------------ #


class TestPrintRecord:
    def test_json(self, capfd, non_tty):
        OutputManager(format=OutputFormat.JSON).print_record({"user": "alice", "refresh_token": None})
        assert json.loads(capfd.readouterr().out) == {"user": "alice", "refresh_token": None}

    def test_plain_skips_none(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).print_record(
            {"user": "alice", "refresh_token": None, "result": "LoggedIn"}
        )
        assert capfd.readouterr().out == "user\talice\nresult\tLoggedIn\n"

    def test_rich_table(self, capfd, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        OutputManager(format=OutputFormat.RICH).print_record({"user": "alice"}, title="Login")
        out = capfd.readouterr().out
        assert "Login" in out
        assert "alice" in out


class TestPrintTable:
    def test_json(self, capfd, non_tty):
        OutputManager(format=OutputFormat.JSON).print_table(["Name", "Server"], [["work", "https://x"]])
        assert json.loads(capfd.readouterr().out) == [{"Name": "work", "Server": "https://x"}]

    def test_plain(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).print_table(
            ["Name", "Server"], [["work", "https://x"]]
        )
        assert capfd.readouterr().out == "Name\tServer\nwork\thttps://x\n"


# ------------------------------------------------------------------ #
# Global instance
# ------------------------------------------------------------------ #


class TestGlobalOutput:
    def test_lazy_default(self, non_tty):
        reset_output()
        assert get_output() is get_output()

    def test_set_output_used_by_helpers(self, capfd, non_tty):
        set_output(OutputManager(format=OutputFormat.PLAIN, no_color=True))
        output_module.print_data("via helper")
        output_module.error("bad")
        captured = capfd.readouterr()
        assert captured.out == "via helper\n"
        assert "Error: bad" in captured.err
