"""Search job logs for failure signatures within a time budget."""

import enum
import logging
import subprocess

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5


class MatchResult(enum.Enum):
    MATCHED = "matched"
    NOT_MATCHED = "not matched"
    TIMED_OUT = "timed out"
    ERROR = "error"


class GrepSearcher(object):

    """
    Search a log file with 'grep' using Perl compatible regular expressions.

    The whole file is treated as one record so patterns can span multiple
    lines. Only the existence of a match is checked.
    """

    def __init__(self, grep="grep", options=("-q", "-P", "-z", "-o")):
        self.grep = grep
        self.options = list(options)

    def search(self, log_path, pattern, timeout=DEFAULT_TIMEOUT):
        cmd = [self.grep] + self.options + ["--", pattern, log_path]
        try:
            p = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            log.warning("grep was killed, possibly timed out after %ss: '%s'" % (timeout, pattern))
            return MatchResult.TIMED_OUT
        if p.returncode == 0:
            return MatchResult.MATCHED
        if p.returncode == 1:
            return MatchResult.NOT_MATCHED
        log.warning(
            "grep failed with exit code %s for pattern '%s' on %s: %s"
            % (p.returncode, pattern, log_path, p.stderr.strip())
        )
        return MatchResult.ERROR


_default_searcher = GrepSearcher()


def matches(log_path, pattern, timeout=DEFAULT_TIMEOUT, searcher=None):
    """Return the 'MatchResult' of searching 'pattern' in the log file at 'log_path'."""
    return (searcher or _default_searcher).search(log_path, pattern, timeout=timeout)
