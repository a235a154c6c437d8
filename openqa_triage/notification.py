"""Compose and send notification emails about unreviewed issues."""

import logging
import shutil
import subprocess
import sys
from email.charset import QP, Charset
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

log = logging.getLogger(__name__)

BOUNDARY = "=-=-="
MARKDOWN_COMMANDS = ("Markdown.pl", "markdown")
SENDMAIL = "/usr/sbin/sendmail"


class MarkdownRenderer(object):

    """Render Markdown to HTML with an external command, if one is installed."""

    def __init__(self, commands=MARKDOWN_COMMANDS):
        self.cmd = next((c for c in (shutil.which(c) for c in commands) if c), None)
        if not self.cmd:
            log.warning("None of %s found, not able to send HTML emails" % ", ".join(commands))

    def render(self, text):
        if not self.cmd:
            return ""
        return subprocess.run([self.cmd], input=text, capture_output=True, text=True, check=True).stdout


_default_renderer = None


def default_renderer():
    global _default_renderer
    if _default_renderer is None:
        _default_renderer = MarkdownRenderer()
    return _default_renderer


def _utf8_part(text, subtype):
    charset = Charset("utf-8")
    charset.body_encoding = QP
    return MIMEText(text, subtype, charset)


def compose(plain_text, to, from_address, subject, renderer=None):
    """Return a multipart email with 'plain_text' as text and rendered as HTML."""
    html = (renderer or default_renderer()).render(plain_text)
    msg = MIMEMultipart("alternative", boundary=BOUNDARY)
    msg["From"] = from_address or ""
    msg["To"] = to
    msg["Subject"] = subject
    msg.attach(_utf8_part(plain_text, "plain"))
    msg.attach(_utf8_part(html, "html"))
    return msg


class MailSender(object):

    """Hand over messages to the local mail transport or print them in dry-run mode."""

    def __init__(self, dry_run=False, sendmail=SENDMAIL, output=sys.stdout):
        self.dry_run = dry_run
        self.sendmail = sendmail
        self.output = output

    def send(self, msg, to):
        if self.dry_run:
            print("Would send email to %s:\n%s" % (to, msg.as_string()), file=self.output)
            return
        cmd = [self.sendmail, "-t", to]
        log.debug("Sending email to %s with '%s'" % (to, " ".join(cmd)))
        try:
            subprocess.run(cmd, input=msg.as_string(), capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            log.warning("Sending email to %s failed with exit code %s: %s" % (to, e.returncode, e.stderr.strip()))
        except OSError as e:
            log.warning("Sending email to %s failed, could not call '%s': %s" % (to, self.sendmail, e))
