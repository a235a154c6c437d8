"""Access to the job management API of an openQA instance."""

import logging
import shlex
import subprocess
import sys

from openqa_triage.browser import Browser

log = logging.getLogger(__name__)


class CommandError(Exception):

    """A mutating call on the openQA instance failed."""

    def __init__(self, cmd, returncode, output=""):
        super().__init__("Command '%s' failed with exit code %s: %s" % (" ".join(cmd), returncode, output.strip()))
        self.cmd = cmd
        self.returncode = returncode


class OpenQAClient(object):

    """
    Read and write access to one openQA host.

    Reads use the REST API over HTTP. Mutating requests are delegated to the
    'openqa-cli' command line client which takes care of authentication with
    the credentials configured for the host.
    """

    def __init__(self, args, host, browser=None, output=sys.stdout):
        self.host = host.rstrip("/")
        self.dry_run = getattr(args, "dry_run", False)
        self.client_cmd = shlex.split(getattr(args, "client_cmd", None) or "openqa-cli api")
        self.browser = browser or Browser(args, self.host + "/")
        self.output = output

    def get_json(self, route):
        return self.browser.get_json("/api/v1/" + route, cache=False)

    def get_page(self, url):
        return self.browser.get_page(url, cache=False)

    def job(self, job_id):
        return self.get_json("jobs/%s" % job_id)["job"]

    def job_group(self, group_id):
        return self.get_json("job_groups/%s" % group_id)[0]

    def comments(self, job_id):
        return self.get_json("jobs/%s/comments" % job_id)

    def post(self, route, **params):
        """Call the API route as POST request, returns the response output."""
        cmd = self.client_cmd + ["--host", self.host, "-X", "POST", route]
        cmd += ["%s=%s" % (k, v) for k, v in sorted(params.items())]
        if self.dry_run:
            print("Would call '%s'" % " ".join(shlex.quote(c) for c in cmd), file=self.output)
            return ""
        log.debug("Calling '%s'" % " ".join(cmd))
        try:
            return subprocess.run(cmd, check=True, capture_output=True, text=True).stdout
        except subprocess.CalledProcessError as e:
            raise CommandError(cmd, e.returncode, e.stderr or e.stdout or "")
        except OSError as e:
            raise CommandError(cmd, 127, str(e))

    def comment(self, job_id, text):
        return self.post("jobs/%s/comments" % job_id, text=text)

    def restart(self, job_id):
        return self.post("jobs/%s/restart" % job_id)
