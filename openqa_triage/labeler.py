"""
Label failed openQA jobs based on known issues.

A known issue is described by a rule: a search pattern applied to the log of
a job, the label to post as comment, whether the job should be restarted and
optionally a result the job should be forced to. Rules are evaluated in order
and the first matching one is applied.
"""

import logging
import re
from collections import namedtuple

import yaml

from openqa_triage import log_matcher
from openqa_triage.log_matcher import MatchResult

log = logging.getLogger(__name__)

MIN_SEARCH_TERM = 16

Rule = namedtuple("Rule", ["pattern", "label", "restart", "force_result"], defaults=(False, None))

LabelOutcome = namedtuple("LabelOutcome", ["matched", "rule"])
UNMATCHED = LabelOutcome(False, None)


# issues that are not worth a ticket but still have a clear cause
KNOWN_ISSUES = [
    Rule(
        r"([dD]ownload.*failed.*404)[\S\s]*Result: setup failure",
        "label:non_existing asset, candidate for removal or wrong settings",
    ),
    Rule(r"File .*\.yaml.* does not exist at .*scheduler\.pm", "label:missing_schedule_file"),
    Rule(r"Compilation failed in require at .*isotovideo line", "label:schedule_compilation_error"),
    Rule(r"qemu-img: Could not open .*: No such file or directory", "label:missing_asset"),
    Rule(
        r"fatal: Remote branch .* not found",
        "label:remote_branch_not_found, probably wrong custom git URL specified with branch",
    ),
    Rule(r"fatal: repository not found", "label:remote_repo_not_found, probably wrong custom git URL specified"),
    Rule(
        r"(?s)Cloning git URL.*to use as test distribution.*(No scripts in|needledir not found)",
        "label:remote_repo_invalid, probably wrong custom git URL specified",
    ),
    Rule(
        r"(?s)Cloning git URL.*to use as test distribution.*(SCHEDULE.*not set|loadtest.*does not exist)",
        "label:remote_repo_schedule_not_found, probably wrong custom git URL + PRODUCTDIR specified",
    ),
    Rule(r"\[error\] Failed to download", "label:download_error potentially out-of-space worker?", True),
]


class InvalidRuleError(Exception):

    """An entry of a rule catalog could not be understood."""

    pass


def load_rules(path):
    """Load a rule catalog from the YAML file at 'path'."""
    with open(path, "r") as f:
        entries = yaml.safe_load(f) or []
    rules = []
    for entry in entries:
        try:
            rules.append(
                Rule(entry["pattern"], entry["label"], bool(entry.get("restart", False)), entry.get("force_result"))
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise InvalidRuleError("Invalid entry %r in rule catalog %s: %s" % (entry, path, e))
    log.debug("Loaded %s rules from %s" % (len(rules), path))
    return rules


def rule_from_issue(issue, min_search_term=MIN_SEARCH_TERM):
    """
    Parse an issue tracker entry into a rule.

    The search pattern is taken from the subject in the form
    'auto_review:"<pattern>"' and can be followed by ':retry' to restart
    matching jobs and ':force_result:<result>' to override their result.
    Returns None if the subject has no or a too short search term.
    """
    subject = issue["subject"]
    if "auto_review:" not in subject:
        return None
    after = subject.split('"', 1)[1] if '"' in subject else ""
    search = after.rsplit('"', 1)[0]
    if len(search) < min_search_term:
        log.debug("Ignoring too short search term '%s' of issue %s" % (search, issue["id"]))
        return None
    remainder = after.rsplit('"', 1)[1] if '"' in after else ""
    force_result = re.search(r":force_result:(\w+)", remainder)
    return Rule(
        search,
        "poo#%s %s" % (issue["id"], subject),
        ":retry" in remainder,
        force_result.group(1) if force_result else None,
    )


def rules_from_issues(issues, min_search_term=MIN_SEARCH_TERM):
    rules = [rule_from_issue(i, min_search_term) for i in issues]
    return [r for r in rules if r]


def force_result_comment(rule):
    """Return the comment body for 'rule' including the directive to override the job result."""
    return "label:force_result:%s:%s\n%s" % (rule.force_result, rule.label, rule.label)


class IssueLabeler(object):

    """Apply the first matching rule of a catalog to a job."""

    def __init__(self, client, force_result=False, grep_timeout=log_matcher.DEFAULT_TIMEOUT, searcher=None):
        self.client = client
        self.force_result = force_result
        self.grep_timeout = grep_timeout
        self.searcher = searcher

    def match(self, log_path, rule):
        result = log_matcher.matches(log_path, rule.pattern, timeout=self.grep_timeout, searcher=self.searcher)
        if result in (MatchResult.TIMED_OUT, MatchResult.ERROR):
            log.warning(
                "Searching for '%s' in %s %s, treating as not matching" % (rule.pattern, log_path, result.value)
            )
        return result is MatchResult.MATCHED

    def comment(self, job_id, rule):
        if self.force_result and rule.force_result:
            text = force_result_comment(rule)
        else:
            text = rule.label
        log.info("Labeling job %s with '%s'" % (job_id, rule.label))
        self.client.comment(job_id, text)

    def restart(self, job_id):
        log.info("Restarting job %s" % job_id)
        self.client.restart(job_id)

    def apply(self, job_id, rule):
        self.comment(job_id, rule)
        if rule.restart:
            self.restart(job_id)

    def label(self, job_id, log_path, rules):
        """Label the job with the first rule matching its log, returns a 'LabelOutcome'."""
        for rule in rules:
            if not self.match(log_path, rule):
                continue
            self.apply(job_id, rule)
            return LabelOutcome(True, rule)
        return UNMATCHED
