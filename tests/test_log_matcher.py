import logging
import shutil
import subprocess
from unittest.mock import Mock, patch

import pytest

from openqa_triage import log_matcher  # SUT
from openqa_triage.log_matcher import GrepSearcher, MatchResult


def completed(returncode, stderr=""):
    return Mock(returncode=returncode, stdout="", stderr=stderr)


@pytest.mark.parametrize(
    "returncode, expected",
    [(0, MatchResult.MATCHED), (1, MatchResult.NOT_MATCHED), (2, MatchResult.ERROR)],
)
def test_grep_exit_codes_are_classified(returncode, expected):
    with patch("subprocess.run", return_value=completed(returncode, "grep: exceeded PCRE's backtracking limit")) as run:
        assert log_matcher.matches("/tmp/log", "foo.*bar") == expected
    cmd = run.call_args[0][0]
    assert cmd[0] == "grep"
    assert "-z" in cmd and "-P" in cmd
    assert cmd[-2:] == ["foo.*bar", "/tmp/log"]
    assert run.call_args[1]["timeout"] == log_matcher.DEFAULT_TIMEOUT


def test_timeout_is_distinguishable_from_no_match(caplog):
    caplog.set_level(logging.WARNING, logger="openqa_triage")
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("grep", 2)):
        assert log_matcher.matches("/tmp/log", "(a+)+$", timeout=2) == MatchResult.TIMED_OUT
    assert "timed out after 2s" in caplog.text


def test_custom_searcher_is_used():
    searcher = Mock()
    searcher.search.return_value = MatchResult.NOT_MATCHED
    assert log_matcher.matches("/tmp/log", "foo", timeout=1, searcher=searcher) == MatchResult.NOT_MATCHED
    searcher.search.assert_called_once_with("/tmp/log", "foo", timeout=1)


@pytest.mark.skipif(shutil.which("grep") is None, reason="grep not available")
def test_grep_finds_pattern_in_log_file(tmp_path):
    log = tmp_path / "autoinst-log.txt"
    log.write_text("[info] Download of foo.iso failed with: 404\nsome more\nResult: setup failure\n")
    searcher = GrepSearcher(options=("-q", "-E", "-z", "-o"))
    assert searcher.search(str(log), "failed with: 40[0-9]") == MatchResult.MATCHED
    assert searcher.search(str(log), "Result: passed") == MatchResult.NOT_MATCHED


def grep_supports_pcre():
    if shutil.which("grep") is None:
        return False
    return subprocess.run(["grep", "-q", "-P", "x"], input="x\n", text=True, capture_output=True).returncode == 0


@pytest.mark.skipif(not grep_supports_pcre(), reason="grep without PCRE support")
def test_default_grep_matches_across_line_breaks(tmp_path):
    log = tmp_path / "autoinst-log.txt"
    log.write_text("foo\nbar\n")
    searcher = GrepSearcher()
    assert searcher.search(str(log), r"foo\nbar") == MatchResult.MATCHED
    assert searcher.search(str(log), r"Download.*404[\S\s]*setup failure") == MatchResult.NOT_MATCHED
    log.write_text("[info] Download of foo.iso failed: 404\nsome more\nResult: setup failure\n")
    assert searcher.search(str(log), r"Download.*404[\S\s]*setup failure") == MatchResult.MATCHED


@pytest.mark.skipif(not grep_supports_pcre(), reason="grep without PCRE support")
def test_default_grep_reports_invalid_pattern_as_error(tmp_path, caplog):
    caplog.set_level(logging.WARNING, logger="openqa_triage")
    log = tmp_path / "autoinst-log.txt"
    log.write_text("foo\nbar\n")
    assert log_matcher.matches(str(log), "foo(") == MatchResult.ERROR
    assert "grep failed with exit code 2" in caplog.text
