"""Tests for the Jenkins HTTP client."""

import base64

import httpx
import pytest

from buildlens.exceptions import UpstreamUnavailableError
from buildlens.jenkins.client import (
    JOB_TREE,
    JenkinsClient,
    JenkinsConfig,
    JenkinsJob,
    job_path,
    running_builds_of,
)

JOBS_PAYLOAD = {
    "jobs": [
        {
            "name": "api-service",
            "color": "blue",
            "lastBuild": {"number": 41, "timestamp": 1748858400000, "building": False},
        },
        {
            "name": "deploy",
            "color": "red_anime",
            "lastBuild": {"number": 7, "timestamp": 1748862000000, "building": True},
        },
        {"name": "docs", "color": "notbuilt", "lastBuild": None},
        {"color": "blue"},
    ]
}


def make_client(handler, **config) -> JenkinsClient:
    config.setdefault("base_url", "http://jenkins.test")
    return JenkinsClient(JenkinsConfig(**config), transport=httpx.MockTransport(handler))


class TestJobPath:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("", ""),
            (None, ""),
            ("api", "job/api/"),
            ("team/api", "job/team/job/api/"),
            ("/team//api/", "job/team/job/api/"),
            ("my job", "job/my%20job/"),
        ],
    )
    def test_job_path(self, name, expected):
        assert job_path(name) == expected


class TestFetchJobs:
    def test_parses_jobs(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["tree"] = request.url.params.get("tree")
            return httpx.Response(200, json=JOBS_PAYLOAD)

        with make_client(handler) as client:
            jobs = client.fetch_jobs()

        assert seen == {"path": "/api/json", "tree": JOB_TREE}
        assert [job.name for job in jobs] == ["api-service", "deploy", "docs"]
        assert jobs[0] == JenkinsJob("api-service", "blue", 41, 1748858400000, False)
        assert jobs[1].building is True
        assert jobs[2].last_build_number is None
        assert jobs[2].last_build_at is None
        assert jobs[0].last_build_at.year == 2025

    def test_folder_path(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json={"jobs": []})

        with make_client(handler, folder="platform") as client:
            client.fetch_jobs()
            client.fetch_jobs("team/api")

        assert paths == ["/job/platform/api/json", "/job/team/job/api/api/json"]

    def test_error_status_raises(self):
        with make_client(lambda request: httpx.Response(503)) as client:
            with pytest.raises(UpstreamUnavailableError) as exc_info:
                client.fetch_jobs()

        assert exc_info.value.status_code == 503

    def test_invalid_json_raises(self):
        with make_client(lambda request: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(UpstreamUnavailableError):
                client.fetch_jobs()

    def test_basic_auth_when_configured(self):
        headers = {}

        def handler(request: httpx.Request) -> httpx.Response:
            headers.update(request.headers)
            return httpx.Response(200, json={"jobs": []})

        with make_client(handler, user="ci", api_token="s3cret") as client:
            client.fetch_jobs()

        expected = base64.b64encode(b"ci:s3cret").decode()
        assert headers["authorization"] == f"Basic {expected}"


class TestDegradedCalls:
    def test_list_jobs_on_error_status(self, caplog):
        with make_client(lambda request: httpx.Response(500)) as client:
            assert client.list_jobs() == []

        assert "Continuing with empty list" in caplog.text

    def test_list_jobs_on_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(handler) as client:
            assert client.list_jobs() == []

    def test_list_jobs_on_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with make_client(handler) as client:
            assert client.list_jobs() == []
            assert client.running_builds() == {}

    def test_running_builds(self):
        with make_client(lambda request: httpx.Response(200, json=JOBS_PAYLOAD)) as client:
            assert client.running_builds() == {"deploy": 1748862000000}


class TestTriggerBuild:
    def test_trigger(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.method, request.url.path))
            return httpx.Response(201)

        with make_client(handler) as client:
            assert client.trigger_build("team/api") is True

        assert requests == [("POST", "/job/team/job/api/build")]

    def test_trigger_failure_is_logged(self, caplog):
        with make_client(lambda request: httpx.Response(404)) as client:
            assert client.trigger_build("missing") is False

        assert "Error triggering new build for missing" in caplog.text


def test_running_builds_of_uses_color_or_flag():
    jobs = [
        JenkinsJob("a", "blue_anime", last_build_timestamp=5),
        JenkinsJob("b", "blue", building=True),
        JenkinsJob("c", "red"),
    ]

    assert running_builds_of(jobs) == {"a": 5, "b": 0}
