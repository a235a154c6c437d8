"""
Read access to openQA and issue tracker instances.

Responses can be saved to and loaded from a cache directory which allows
offline reproduction of a run, e.g. for tests.
"""

import json
import logging
import os.path
from urllib.parse import urljoin

import requests

log = logging.getLogger(__name__)


class DownloadError(Exception):

    """Content could not be retrieved or decoded."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class CacheNotFoundError(DownloadError):

    """Requested page is not available in the load directory."""

    pass


def add_load_save_args(parser):
    parser.add_argument(
        "--save", action="store_true", help="Save downloaded webpages and JSON documents to the directory '--save-dir'"
    )
    parser.add_argument(
        "--save-dir", default="/tmp/openqa_triage_dump", help="Directory to save downloaded content to"
    )
    parser.add_argument(
        "--load",
        action="store_true",
        help="Load previously saved content instead of downloading it, see '--save' and '--load-dir'",
    )
    parser.add_argument("--load-dir", default=".", help="Directory to load previously saved content from")


class Browser(object):

    """Download pages and JSON documents from one root URL, optionally caching them."""

    def __init__(self, args, root_url, headers=None, timeout=30):
        """Construct a browser object with options from the command line arguments."""
        self.save = getattr(args, "save", False)
        self.save_dir = getattr(args, "save_dir", ".")
        self.load = getattr(args, "load", False)
        self.load_dir = getattr(args, "load_dir", ".")
        self.root_url = root_url
        self.headers = headers or {}
        self.timeout = timeout
        self.cache = {}

    def url(self, url):
        return urljoin(self.root_url, url)

    def get_json(self, url, cache=True):
        return self.get_page(url, as_json=True, cache=cache)

    def get_page(self, url, as_json=False, cache=True):
        """Return content of 'url', decoded as JSON if requested."""
        if cache and url in self.cache:
            log.debug("Using in-memory cache for %s" % url)
            return self.cache[url]
        filename = self._cache_filename(url)
        if self.load:
            path = os.path.join(self.load_dir, filename)
            log.debug("Loading content for %s from %s" % (url, path))
            try:
                with open(path, "r", encoding="utf-8") as f:
                    raw = f.read()
            except OSError as e:
                raise CacheNotFoundError("Could not load '%s' from cache: %s" % (url, e))
        else:
            raw = self._get(self.url(url))
        content = self._decode_content(url, raw, as_json=as_json)
        if self.save:
            path = os.path.join(self.save_dir, filename)
            log.debug("Saving content of %s to %s" % (url, path))
            os.makedirs(self.save_dir, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(raw)
        if cache:
            self.cache[url] = content
        return content

    def _cache_filename(self, url):
        return url.replace("://", "_").replace("/", ":")

    def _decode_content(self, url, raw, as_json=False):
        if not as_json:
            return raw
        try:
            return json.loads(raw)
        except ValueError as e:
            raise DownloadError("Unable to decode JSON for '%s': %s" % (url, e))

    def _get(self, absolute_url):
        try:
            r = requests.get(absolute_url, headers=self.headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise DownloadError("Request to '%s' failed: %s" % (absolute_url, e))
        if r.status_code != 200:
            raise DownloadError(
                "Request to '%s' was not successful, status code: %s" % (absolute_url, r.status_code), r.status_code
            )
        return r.text
