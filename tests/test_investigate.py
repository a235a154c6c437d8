import io
import json
from unittest.mock import Mock, patch

from openqa_triage import investigate  # SUT
from openqa_triage.browser import DownloadError
from openqa_triage.client import CommandError
from openqa_triage.investigate import Investigator

HOST = "https://openqa.opensuse.org"


def job_factory(job_id=101, **kwargs):
    job = {
        "id": job_id,
        "name": "sle-15-SP5-Online-x86_64-Build42.1-create_hdd_gnome@64bit",
        "test": "create_hdd_gnome",
        "result": "failed",
        "clone_id": None,
        "settings": {"TEST": "create_hdd_gnome", "BUILD": "42.1", "DISTRI": "sle"},
    }
    job.update(kwargs)
    return job


def client_factory(job, last_good=None, comments=None):
    client = Mock()
    client.host = HOST
    jobs = {job["id"]: job}
    if last_good:
        jobs[last_good["id"]] = last_good
    client.job.side_effect = lambda job_id: jobs[int(job_id)]
    client.comments.return_value = comments or []
    pages = {
        "/tests/101/investigation_ajax": {"last_good": last_good["id"] if last_good else "not found"},
        "/tests/101/file/vars.json": {"TEST_GIT_HASH": "bad0"},
        "/tests/90/file/vars.json": {"TEST_GIT_HASH": "good1"},
    }
    client.browser.get_json.side_effect = lambda url, cache=True: pages[url]
    new_ids = iter(range(201, 210))
    client.post.side_effect = lambda route, **settings: json.dumps({"id": next(new_ids)})
    return client


def test_multi_driver_exits_with_worst_return_code():
    codes = {"101": 3, "102": 0}
    assert investigate.investigate_multi(investigate.read_ids(io.StringIO("101\n102\n")), codes.get) == 3
    assert investigate.investigate_multi(["102"], codes.get) == 0
    assert investigate.investigate_multi([], codes.get) == 0


def test_failed_job_is_retried_and_compared_against_last_good():
    last_good = job_factory(90, result="passed", settings={"TEST": "create_hdd_gnome", "BUILD": "41.3"})
    client = client_factory(job_factory(), last_good)
    assert Investigator(client, output=io.StringIO()).investigate("101") == 0
    clones = [c[1] for c in client.post.call_args_list]
    assert [c["TEST"] for c in clones] == [
        "create_hdd_gnome:investigate:retry",
        "create_hdd_gnome:investigate:last_good_tests",
        "create_hdd_gnome:investigate:last_good_build",
    ]
    assert all(c["_GROUP_ID"] == 0 for c in clones)
    assert clones[0]["BUILD"] == "42.1:investigate"
    assert clones[1]["CASEDIR"] == investigate.DEFAULT_TESTS_REPO + "#good1"
    assert clones[2]["BUILD"] == "41.3:investigate"
    job_id, text = client.comment.call_args[0]
    assert job_id == 101
    assert text.startswith(investigate.COMMENT_MARKER)
    assert "* **retry**: %s/t201" % HOST in text
    assert "* **last_good_build:41.3**: %s/t203" % HOST in text


def test_only_retry_without_last_good_job():
    client = client_factory(job_factory())
    assert Investigator(client, output=io.StringIO()).investigate(101) == 0
    assert client.post.call_count == 1


def test_jobs_not_worth_investigating_are_skipped():
    comment = {"text": investigate.COMMENT_MARKER + " for job foo:\n\n* **retry**: %s/t100" % HOST}
    for job, comments in (
        (job_factory(result="passed"), None),
        (job_factory(test="create_hdd_gnome:investigate:retry"), None),
        (job_factory(clone_id=102), None),
        (job_factory(), [comment]),
    ):
        output = io.StringIO()
        client = client_factory(job, comments=comments)
        assert Investigator(client, output=output).investigate(101) == 0
        assert "Skipping investigation" in output.getvalue()
        client.post.assert_not_called()
        client.comment.assert_not_called()


def test_remote_failures_yield_non_zero_exit_code():
    client = client_factory(job_factory())
    client.job.side_effect = DownloadError("Request to '%s/api/v1/jobs/101' failed" % HOST)
    assert Investigator(client, output=io.StringIO()).investigate(101) == 1


def test_main_investigates_all_given_jobs():
    with patch.object(Investigator, "investigate", side_effect=[0, 2]) as investigate_mock:
        assert investigate.main(["--dry-run", "101", "102"]) == 2
    assert [c[0][0] for c in investigate_mock.call_args_list] == ["101", "102"]


def test_unparseable_clone_response_fails_only_that_job():
    client = client_factory(job_factory())
    responses = iter(["Error: 403 - Forbidden\n", json.dumps({"id": 201})])
    client.post.side_effect = lambda route, **settings: next(responses)
    investigator = Investigator(client, output=io.StringIO())
    assert investigate.investigate_multi(["101", "101"], investigator.investigate) == 1
    assert client.post.call_count == 2
    client.comment.assert_called_once()
    assert "%s/t201" % HOST in client.comment.call_args[0][1]


def test_clone_response_without_id_is_a_command_error():
    client = client_factory(job_factory())
    client.post.side_effect = lambda route, **settings: json.dumps({"error": "no such setting"})
    assert Investigator(client, output=io.StringIO()).investigate(101) == 1
    client.comment.assert_not_called()


def test_already_triggered_jobs_are_commented_when_a_later_clone_fails():
    last_good = job_factory(90, result="passed", settings={"TEST": "create_hdd_gnome", "BUILD": "41.3"})
    client = client_factory(job_factory(), last_good)
    responses = iter([json.dumps({"id": 201})])

    def post(route, **settings):
        try:
            return next(responses)
        except StopIteration:
            raise CommandError(["openqa-cli", "api", "-X", "POST", "jobs"], 1, "Error: 500")

    client.post.side_effect = post
    assert Investigator(client, output=io.StringIO()).investigate(101) == 1
    assert client.post.call_count == 2
    job_id, text = client.comment.call_args[0]
    assert job_id == 101
    assert "* **retry**: %s/t201" % HOST in text
    assert "last_good_tests" not in text
