#!/usr/bin/env python

"""
Investigate failed openQA jobs.

Based on https://progress.opensuse.org/projects/openqav3/wiki/Wiki#Further-decision-steps-working-on-test-issues
a failed job is retriggered with alternate parameters to find out what
changed since the last good run:

* 'retry': the same job again, to find out about sporadic issues
* 'last_good_tests': the same job with the test code of the last good job,
  to find out about changes in the test software itself
* 'last_good_build': the same job on the build of the last good job,
  to find out about product changes

The investigation jobs are triggered outside of any job group and a comment
with links to them is posted on the investigated job.
"""

import argparse
import json
import logging
import sys

from openqa_triage.browser import DownloadError
from openqa_triage.client import CommandError, OpenQAClient
from openqa_triage.common import add_common_args, read_ids, set_log_level

logging.basicConfig()
log = logging.getLogger(sys.argv[0] if __name__ == "__main__" else __name__)

COMMENT_MARKER = "Automatic investigation jobs"
INVESTIGATE_RESULTS = ("failed",)
DEFAULT_TESTS_REPO = "https://github.com/os-autoinst/os-autoinst-distri-opensuse.git"


class Investigator(object):

    """Trigger investigation jobs for one failed job at a time."""

    def __init__(self, client, output=sys.stdout):
        self.client = client
        self.output = output

    def skip_reason(self, job):
        """Return why 'job' should not be investigated or None."""
        if job.get("result") not in INVESTIGATE_RESULTS:
            return "job result is '%s'" % job.get("result")
        if ":investigate:" in job.get("test", ""):
            return "job is already an investigation job"
        if job.get("clone_id") is not None:
            return "job has been cloned as %s" % job["clone_id"]
        if any(COMMENT_MARKER in c.get("text", "") for c in self.client.comments(job["id"])):
            return "job has already been investigated"
        return None

    def last_good(self, job_id):
        investigation = self.client.browser.get_json("/tests/%s/investigation_ajax" % job_id, cache=False)
        last_good = investigation.get("last_good")
        return last_good if isinstance(last_good, int) else None

    def test_git_hash(self, job_id):
        return self.client.browser.get_json("/tests/%s/file/vars.json" % job_id, cache=False).get("TEST_GIT_HASH")

    def variants(self, job):
        """Return the investigation variants for 'job' as list of (name, settings) tuples."""
        settings = job.get("settings", {})
        build = settings.get("BUILD", job.get("build", ""))
        variants = [("retry", {})]
        last_good_id = self.last_good(job["id"])
        if last_good_id is None:
            log.info("No last good job found for %s, only retrying" % job["id"])
            return variants
        last_good = self.client.job(last_good_id)
        last_good_hash = self.test_git_hash(last_good_id)
        if last_good_hash and last_good_hash != self.test_git_hash(job["id"]):
            repo = settings.get("CASEDIR") or DEFAULT_TESTS_REPO
            casedir = "%s#%s" % (repo.split("#")[0], last_good_hash)
            variants.append(("last_good_tests:" + last_good_hash, {"CASEDIR": casedir}))
        last_good_build = last_good.get("settings", {}).get("BUILD")
        if last_good_build and last_good_build != build:
            variants.append(("last_good_build:" + last_good_build, {"BUILD": last_good_build}))
        return variants

    def clone(self, job, name, overrides):
        """Trigger one investigation job, returns the id of the new job or None in dry-run mode."""
        settings = dict(job.get("settings", {}))
        settings.update(
            {
                "TEST": "%s:investigate:%s" % (settings.get("TEST", job.get("test")), name.split(":")[0]),
                "BUILD": "%s:investigate" % settings.get("BUILD", job.get("build", "")),
                "_GROUP_ID": 0,
                "OPENQA_INVESTIGATE_ORIGIN": "%s/t%s" % (self.client.host, job["id"]),
            }
        )
        if "BUILD" in overrides:
            overrides = dict(overrides, BUILD="%s:investigate" % overrides["BUILD"])
        settings.update(overrides)
        out = self.client.post("jobs", **settings)
        if not out:
            return None
        try:
            return json.loads(out)["id"]
        except (ValueError, KeyError, TypeError) as e:
            raise CommandError(["-X", "POST", "jobs"], 0, "unexpected response (%s): %s" % (e, out))

    def comment(self, job, triggered):
        lines = ["%s for job %s:" % (COMMENT_MARKER, job.get("name")), ""]
        for name, new_id in triggered:
            lines.append("* **%s**: %s/t%s" % (name, self.client.host, new_id))
        self.client.comment(job["id"], "\n".join(lines))

    def investigate(self, job_id):
        """Investigate the job, returns an exit code."""
        try:
            job = self.client.job(job_id)
            reason = self.skip_reason(job)
            if reason:
                print("Skipping investigation of %s/t%s: %s" % (self.client.host, job_id, reason), file=self.output)
                return 0
            triggered = []
            try:
                for name, overrides in self.variants(job):
                    triggered.append((name, self.clone(job, name, overrides)))
            finally:
                # links to already created jobs are posted even if a later clone failed
                if triggered:
                    self.comment(job, triggered)
        except (DownloadError, CommandError) as e:
            log.error("Investigation of job %s failed: %s" % (job_id, e))
            return 1
        return 0


def investigate_multi(job_ids, investigate):
    """Call 'investigate' for every job id, returns the worst exit code."""
    rc = 0
    for job_id in job_ids:
        rc = max(rc, investigate(job_id))
    return rc


def parse_args(argv=None, multi=False):
    parser = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    if not multi:
        parser.add_argument("job_ids", nargs="+", help="ids of the jobs to investigate")
    add_common_args(parser)
    return parser.parse_args(argv)


def _investigator(args):
    set_log_level(log, args.verbose)
    log.debug("args: %s" % args)
    return Investigator(OpenQAClient(args, args.host))


def main(argv=None):
    args = parse_args(argv)
    investigator = _investigator(args)
    return investigate_multi(args.job_ids, investigator.investigate)


def main_multi(argv=None, stdin=None):
    args = parse_args(argv, multi=True)
    investigator = _investigator(args)
    return investigate_multi(read_ids(stdin or sys.stdin), investigator.investigate)


if __name__ == "__main__":
    sys.exit(main())
