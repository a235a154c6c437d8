"""
Handling of failures which do not match any known issue.

Such failures are reported for review together with the part of the job log
most likely showing the error. Optionally the maintainers of the job group
are informed by email.
"""

import logging
import re
import sys
from collections import namedtuple

from openqa_triage.browser import DownloadError
from openqa_triage.notification import compose

log = logging.getLogger(__name__)

DELIMITER = "```"
COMMENT_MARKER = "# "
NO_EXCERPT = "(No log excerpt found)"
REASON_LENGTH = 50
ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
MAILTO_RE = re.compile(r"MAILTO: (\S+)")

ExcerptStrategy = namedtuple("ExcerptStrategy", ["pattern", "before", "after"])

# likely termination points of a test run, the first one found in a log wins
EXCERPT_STRATEGIES = [
    ExcerptStrategy(
        re.compile(r"Backend process died, backend errors are reported below in the following lines"), 0, 12
    ),
    ExcerptStrategy(re.compile(r"sending magic and exit"), 10, 0),
    ExcerptStrategy(re.compile(r"killing command server.*because test execution ended through exception"), 5, 0),
    ExcerptStrategy(re.compile(r"EXIT 1"), 5, 0),
    ExcerptStrategy(re.compile(r"Result: died|isotovideo failed"), 10, 0),
]

Report = namedtuple("Report", ["testurl", "reason", "header", "excerpt", "group_id", "mailto"])


class ReviewList(object):

    """Unknown issues collected over one batch run."""

    def __init__(self):
        self.entries = []

    def add(self, testurl, reason):
        self.entries.append((testurl, (reason or "")[:REASON_LENGTH]))

    def __len__(self):
        return len(self.entries)

    def print_summary(self, output=sys.stdout):
        if not self.entries:
            return
        print("\n[%s] Unknown issues to be reviewed:" % len(self.entries), file=output)
        for testurl, reason in self.entries:
            print(" - %s %s" % (testurl, reason), file=output)


def context_search(lines, strategy):
    """Return the lines matching the strategy together with their context, like 'grep -B/-A'."""
    ranges = []
    for i, line in enumerate(lines):
        if not strategy.pattern.search(line):
            continue
        start, end = max(i - strategy.before, 0), min(i + strategy.after + 1, len(lines))
        if ranges and start <= ranges[-1][1]:
            ranges[-1] = (ranges[-1][0], max(end, ranges[-1][1]))
        else:
            ranges.append((start, end))
    found = []
    for start, end in ranges:
        if found:
            found.append("--")
        found += lines[start:end]
    return found


def excerpt_block(text, strategies=EXCERPT_STRATEGIES):
    # only "\n" separates lines, like for grep
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    for strategy in strategies:
        found = context_search(lines, strategy)
        if found:
            return "\n".join(ANSI_ESCAPE_RE.sub("", COMMENT_MARKER + line) for line in found[:-1])
    return NO_EXCERPT


def log_excerpt(text):
    """Return the part of the log likely showing the error, wrapped as code block."""
    return "%s\n%s\n%s" % (DELIMITER, excerpt_block(text), DELIMITER)


def mailto_from_description(description, default=None):
    m = MAILTO_RE.search(description or "")
    return m.group(1) if m else default


def log_url(testurl):
    return testurl + "/file/autoinst-log.txt"


def header(testurl):
    return "[%s](%s): Unknown issue, to be reviewed -> %s" % (testurl, testurl, log_url(testurl))


class UnknownIssueHandler(object):

    """Report unknown issues for review and notify job group maintainers."""

    def __init__(
        self,
        client,
        review_list,
        mail_sender=None,
        email_unreviewed=False,
        from_email=None,
        notification_address=None,
        renderer=None,
        output=sys.stdout,
    ):
        self.client = client
        self.review_list = review_list
        self.mail_sender = mail_sender
        self.email_unreviewed = email_unreviewed
        self.from_email = from_email
        self.notification_address = notification_address
        self.renderer = renderer
        self.output = output

    def handle(self, job, testurl, log_text):
        reason = job.get("reason")
        self.review_list.add(testurl, reason)
        report_header = header(testurl)
        excerpt = "\nLikely the error is within this log excerpt, last lines before shutdown:\n\n"
        excerpt += log_excerpt(log_text)
        print(report_header + "\n" + excerpt, file=self.output)
        report = Report(testurl, reason, report_header, excerpt, job.get("group_id"), None)
        if not self.email_unreviewed or report.group_id is None:
            return report
        try:
            return self.notify(job["id"], report)
        except DownloadError as e:
            log.error("Could not retrieve data to notify about %s, not sending email: %s" % (testurl, e))
            return report

    def notify(self, job_id, report):
        group = self.client.job_group(report.group_id)
        mailto = mailto_from_description(group.get("description"), self.notification_address)
        report = report._replace(mailto=mailto)
        job = self.client.job(job_id)
        if not mailto:
            log.debug("No notification address for job group %s" % report.group_id)
            return report
        if job.get("clone_id") is not None:
            log.info("Job %s was already restarted as %s, not sending email" % (job_id, job["clone_id"]))
            return report
        body = "%s\n\nName: %s\nResult: %s\nReason: %s\n%s" % (
            report.header, job.get("name"), job.get("result"), report.reason or "(none)", report.excerpt
        )
        subject = "Unreviewed issue (Group %s %s)" % (report.group_id, group.get("name"))
        self.mail_sender.send(compose(body, mailto, self.from_email, subject, renderer=self.renderer), mailto)
        return report
