"""Command line and configuration handling shared by the scripts."""

import logging
import os.path
from configparser import ConfigParser

from openqa_triage.browser import add_load_save_args

CONFIG_PATH = os.path.expanduser("~") + "/.openqa_triagerc"
CONFIG_USAGE = """
Optional configuration file format:
[notification]
# sender of emails about unreviewed issues
from = openqa-label-known-issues <noreply@example.org>
# used for job groups without 'MAILTO: <address>' in their description
address = maintainers@example.org
"""

VERBOSE_TO_LOG = {0: logging.CRITICAL, 1: logging.ERROR, 2: logging.WARN, 3: logging.INFO, 4: logging.DEBUG}


def set_log_level(log, verbose):
    """Set the level of the script logger and of all library loggers."""
    level = logging.DEBUG if verbose > 4 else VERBOSE_TO_LOG[verbose]
    log.setLevel(level)
    logging.getLogger("openqa_triage").setLevel(level)


def add_common_args(parser):
    parser.add_argument(
        "-v",
        "--verbose",
        help="Increase verbosity level, specify multiple times to increase verbosity",
        action="count",
        default=1,
    )
    parser.add_argument(
        "-n", "--dry-run", action="store_true", help="Only do read-only actions, print what would be changed or sent"
    )
    parser.add_argument("--host", help="openQA host to act upon", default="https://openqa.opensuse.org")
    parser.add_argument(
        "--client-cmd",
        help="Command used to call the openQA API for changes, e.g. posting comments",
        default="openqa-cli api",
    )
    parser.add_argument("--config-path", help="Path to the configuration file", default=CONFIG_PATH)
    add_load_save_args(parser)


def read_config(path):
    config = ConfigParser()
    if not config.read(path):
        logging.getLogger(__name__).debug("No configuration file '%s', using defaults%s" % (path, CONFIG_USAGE))
    return config


def read_ids(stream):
    """Yield the first word of every non-empty line in 'stream'."""
    for line in stream:
        words = line.split()
        if words:
            yield words[0]


def job_id_from_url(url):
    """Return the job id from a test URL like 'https://openqa.example.org/tests/42#step/foo/1'."""
    last = url.split("#")[0].rstrip("/").split("/")[-1]
    return last[1:] if last.startswith("t") and last[1:].isdigit() else last
