#!/usr/bin/env python

"""
Label failed openQA jobs with known issues.

The log of every given job is searched for known failure signatures. These
are read from issues in the issue tracker with a subject containing
'auto_review:"<regex>"', from an optional YAML rule catalog and from a
built-in list of issues without tickets. The first matching rule is applied:
the job is commented with the label, optionally restarted and optionally its
result is forced to another one.

Jobs not matching any rule are reported as unknown issues to be reviewed
together with a log excerpt and optionally the maintainers of the job group
are notified by email. After all jobs are processed a summary of all unknown
issues is printed.
"""

import argparse
import logging
import sys
import tempfile

from openqa_triage.browser import Browser, DownloadError
from openqa_triage.client import CommandError, OpenQAClient
from openqa_triage.common import add_common_args, job_id_from_url, read_config, read_ids, set_log_level
from openqa_triage.labeler import KNOWN_ISSUES, MIN_SEARCH_TERM, IssueLabeler, load_rules, rules_from_issues
from openqa_triage.log_matcher import DEFAULT_TIMEOUT
from openqa_triage.notification import MailSender, MarkdownRenderer
from openqa_triage.unknown_issue import ReviewList, UnknownIssueHandler

logging.basicConfig()
log = logging.getLogger(sys.argv[0] if __name__ == "__main__" else __name__)

ISSUE_QUERY = (
    "https://progress.opensuse.org/projects/openqav3/issues.json?limit=200&subproject_id=*&subject=~auto_review%3A"
)
FROM_EMAIL = "openqa-label-known-issues <noreply@opensuse.org>"


class LabelKnownIssues(object):

    """Label jobs with known issues and collect unknown ones for review."""

    def __init__(self, args, client=None, issue_browser=None, output=sys.stdout):
        """Construct object and set up collaborators from the forwarded arguments."""
        set_log_level(log, args.verbose)
        log.debug("args: %s" % args)
        self.args = args
        self.output = output
        config = read_config(args.config_path)
        self.client = client or OpenQAClient(args, args.host, output=output)
        self.issue_browser = issue_browser
        if self.issue_browser is None and args.issue_query:
            self.issue_browser = Browser(args, args.issue_query)
        self.rules = self.read_rules()
        self.labeler = IssueLabeler(self.client, force_result=args.force_result, grep_timeout=args.grep_timeout)
        self.review_list = ReviewList()
        self.handler = UnknownIssueHandler(
            self.client,
            self.review_list,
            mail_sender=MailSender(dry_run=args.dry_run, output=output),
            email_unreviewed=args.email_unreviewed,
            from_email=args.from_email or config.get("notification", "from", fallback=FROM_EMAIL),
            notification_address=args.notification_address or config.get("notification", "address", fallback=None),
            renderer=MarkdownRenderer() if args.email_unreviewed else None,
            output=output,
        )

    def read_rules(self):
        """Return all rules in order of evaluation."""
        rules = []
        if self.issue_browser is not None:
            try:
                issues = self.issue_browser.get_json(self.args.issue_query)["issues"]
                rules += rules_from_issues(issues, self.args.min_search_term)
            except (DownloadError, KeyError) as e:
                log.warning("Could not read known issues from '%s', skipping them: %s" % (self.args.issue_query, e))
        if self.args.rules:
            rules += load_rules(self.args.rules)
        rules += KNOWN_ISSUES
        log.info("Using %s rules for labeling" % len(rules))
        return rules

    def searchable_log(self, job, log_text):
        if not job.get("reason"):
            return log_text
        return "Reason: %s\n%s" % (job["reason"], log_text)

    def investigate_issue(self, testurl):
        """Label the job behind 'testurl' or handle it as unknown issue."""
        job_id = job_id_from_url(testurl)
        if "/" not in testurl:
            testurl = "%s/tests/%s" % (self.client.host, job_id)
        job = self.client.job(job_id)
        try:
            log_text = self.client.get_page("/tests/%s/file/autoinst-log.txt" % job_id)
        except DownloadError as e:
            if e.status_code != 404:
                raise
            print("'%s' does not have autoinst-log.txt, cannot label" % testurl, file=self.output)
            return None
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", prefix="openqa_log_", suffix=".txt") as out:
            out.write(self.searchable_log(job, log_text))
            out.flush()
            outcome = self.labeler.label(job_id, out.name, self.rules)
        if outcome.matched:
            print("%s : Labeled with '%s'" % (testurl, outcome.rule.label), file=self.output)
            return outcome
        return self.handler.handle(job, testurl, log_text)

    def run(self, testurls):
        """Process all test URLs, print the summary of unknown issues and return an exit code."""
        rc = 0
        for testurl in testurls:
            try:
                self.investigate_issue(testurl)
            except (DownloadError, CommandError) as e:
                log.error("Failed to label %s: %s" % (testurl, e))
                rc = 1
        self.review_list.print_summary(self.output)
        return rc


def parse_args(argv=None, multi=False):
    parser = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    if not multi:
        parser.add_argument(
            "testurls", nargs="+", help="URLs of the jobs to label, e.g. https://openqa.opensuse.org/tests/42"
        )
    add_common_args(parser)
    parser.add_argument("--rules", help="Path to a YAML file with additional rules for known issues", default=None)
    parser.add_argument(
        "--issue-query",
        help="URL of the issue tracker query returning issues with 'auto_review' search terms, empty to disable",
        default=ISSUE_QUERY,
    )
    parser.add_argument(
        "--min-search-term",
        type=int,
        help="Minimum length of search terms from the issue tracker, shorter ones are ignored",
        default=MIN_SEARCH_TERM,
    )
    parser.add_argument(
        "--grep-timeout",
        type=int,
        help="Timeout for searching one pattern in a log in seconds",
        default=DEFAULT_TIMEOUT,
    )
    parser.add_argument(
        "--force-result", action="store_true", help="Force the result of jobs matching rules which specify one"
    )
    parser.add_argument(
        "--email-unreviewed",
        action="store_true",
        help="Send an email about unknown issues to the address specified with 'MAILTO: <address>' "
        "in the job group description",
    )
    parser.add_argument("--from-email", help="Sender of the emails, overrides the configuration file", default=None)
    parser.add_argument(
        "--notification-address",
        help="Address to notify for job groups without MAILTO in their description, overrides the configuration file",
        default=None,
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    return LabelKnownIssues(args).run(args.testurls)


def main_multi(argv=None, stdin=None):
    args = parse_args(argv, multi=True)
    return LabelKnownIssues(args).run(read_ids(stdin or sys.stdin))


if __name__ == "__main__":
    sys.exit(main())
