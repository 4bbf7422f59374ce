"""Tests for the playarr-jobs CLI (HTTP calls monkeypatched)."""

import pytest
import requests
from typer.testing import CliRunner

import cli

runner = CliRunner()


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=""):
        self.status_code = status_code
        self._json = json_data
        self.text = text

    def json(self):
        if self._json is None:
            raise ValueError("no JSON")
        return self._json


class FakeApi:
    """Stand-in for requests.request keyed by (method, path below /api/v1)."""

    def __init__(self):
        self.calls = []
        self.responses = {}

    def __getitem__(self, index):
        return self.calls[index]

    def request(self, method, url, params=None, timeout=None):
        self.calls.append((method, url, timeout, params))
        response = self.responses.get((method, url.split("/api/v1", 1)[1]))
        if isinstance(response, Exception):
            raise response
        return response or FakeResponse(404, {"error": "not found", "code": "JOB_001"})


@pytest.fixture
def api(monkeypatch):
    fake = FakeApi()
    monkeypatch.setattr(cli.requests, "request", fake.request)
    return fake


def invoke(*args):
    return runner.invoke(cli.app, ["--url", "http://playarr:3000", *args])


def test_list_prints_jobs(api):
    api.responses[("GET", "/jobs")] = FakeResponse(200, {"jobs": [
        {"name": "syncProviderDetails", "status": "completed", "interval": 60.0,
         "last_execution": "2024-01-01T00:00:00+00:00", "execution_count": 3, "running": False},
        {"name": "syncTitleDetails", "status": "idle", "execution_count": 0, "running": True},
    ], "total": 2})

    result = invoke("list")

    assert result.exit_code == cli.EXIT_OK
    assert "syncProviderDetails" in result.stdout
    assert "running" in result.stdout
    assert api[0][:2] == ("GET", "http://playarr:3000/api/v1/jobs")


def test_list_json(api):
    api.responses[("GET", "/jobs")] = FakeResponse(200, {"jobs": [], "total": 0})
    result = invoke("list", "--json")
    assert result.exit_code == cli.EXIT_OK
    assert '"total": 0' in result.stdout


def test_status(api):
    api.responses[("GET", "/jobs/purgeSourceHealth")] = FakeResponse(
        200, {"name": "purgeSourceHealth", "status": "idle", "running": False})
    result = invoke("status", "purgeSourceHealth")
    assert result.exit_code == cli.EXIT_OK
    assert "purgeSourceHealth" in result.stdout


def test_trigger_waits_without_timeout(api):
    api.responses[("POST", "/jobs/purgeSourceHealth/trigger")] = FakeResponse(
        200, {"job": "purgeSourceHealth", "status": "completed", "result": {"decisions_expired": 2}})

    result = invoke("trigger", "purgeSourceHealth")

    assert result.exit_code == cli.EXIT_OK
    assert "decisions_expired" in result.stdout
    assert api[0][2] is None
    assert api[0][3] is None


def test_trigger_for_one_provider(api):
    api.responses[("POST", "/jobs/syncIPTVProviderTitles/trigger")] = FakeResponse(
        200, {"job": "syncIPTVProviderTitles", "status": "completed", "provider_id": "p1",
              "result": {"providers_processed": 1, "results": []}})

    result = invoke("trigger", "syncIPTVProviderTitles", "--provider", "p1")

    assert result.exit_code == cli.EXIT_OK
    assert "for provider p1" in result.stdout
    assert api[0][3] == {"provider_id": "p1"}


def test_trigger_scope_rejected(api):
    api.responses[("POST", "/jobs/purgeSourceHealth/trigger")] = FakeResponse(
        400, {"error": "Job 'purgeSourceHealth' cannot be limited to one provider",
              "code": "JOB_009"})
    assert invoke("trigger", "purgeSourceHealth", "-p", "p1").exit_code == cli.EXIT_USAGE


def test_abort(api):
    api.responses[("POST", "/jobs/syncTitleDetails/abort")] = FakeResponse(
        202, {"job": "syncTitleDetails", "status": "aborting"})
    result = invoke("abort", "syncTitleDetails")
    assert result.exit_code == cli.EXIT_OK


@pytest.mark.parametrize("status_code, exit_code", [
    (404, cli.EXIT_NOT_FOUND),
    (409, cli.EXIT_CONFLICT),
    (400, cli.EXIT_USAGE),
    (500, cli.EXIT_FAILURE),
])
def test_error_status_maps_to_exit_code(api, status_code, exit_code):
    api.responses[("POST", "/jobs/syncTitleDetails/trigger")] = FakeResponse(
        status_code, {"error": "nope"})
    assert invoke("trigger", "syncTitleDetails").exit_code == exit_code


def test_unknown_job(api):
    assert invoke("status", "nope").exit_code == cli.EXIT_NOT_FOUND


def test_non_json_error_body(api):
    api.responses[("GET", "/jobs")] = FakeResponse(502, text="Bad Gateway")
    assert invoke("list").exit_code == cli.EXIT_FAILURE


def test_unreachable_server(api):
    api.responses[("GET", "/jobs")] = requests.ConnectionError("refused")
    assert invoke("list").exit_code == cli.EXIT_FAILURE


def test_url_from_environment(api, monkeypatch):
    monkeypatch.setenv("PLAYARR_API_URL", "http://other:9000/")
    api.responses[("GET", "/jobs")] = FakeResponse(200, {"jobs": [], "total": 0})

    result = runner.invoke(cli.app, ["list"])

    assert result.exit_code == cli.EXIT_OK
    assert api[0][1] == "http://other:9000/api/v1/jobs"
