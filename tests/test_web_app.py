from unittest.mock import Mock, patch

import pytest
import requests
from fastapi.testclient import TestClient

from portalscraper import AuthenticationError, CanonicalEvent, Config, SessionError
from portalscraper.web import ServerManager, server
from portalscraper.web.portalscraper_api import get_config
from portalscraper.web.portalscraper_client import (
    error_message,
    filter_events,
    post_email,
    post_scrape,
)

PORTAL = Config(
    base_url="https://portal.example.com",
    login_url="https://portal.example.com/login",
    events_url="https://portal.example.com/events",
)


@pytest.fixture
def client():
    server.dependency_overrides[get_config] = lambda: PORTAL
    try:
        yield TestClient(server)
    finally:
        server.dependency_overrides.clear()


def test_health(client) -> None:
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


@pytest.mark.parametrize("body", [{}, {"email": "a@b.c"}, {"password": "pw"}, {"email": "", "password": "pw"}])
def test_scrape_requires_credentials(client, body) -> None:
    resp = client.post("/api/scrape", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing email or password"}


@patch("portalscraper.web.portalscraper_api.EventScraper")
def test_scrape_returns_events(scraper_cls: Mock, client) -> None:
    scraper_cls.return_value.run.return_value = [
        CanonicalEvent(id=1, title="Quiz", start_iso="2025-12-01T19:00:00"),
    ]

    resp = client.post("/api/scrape", json={"email": "a@b.c", "password": "pw", "max": 5, "headless": "false"})

    assert resp.status_code == 200
    (event,) = resp.json()["events"]
    assert event["title"] == "Quiz"
    assert event["startISO"] == "2025-12-01T19:00:00"
    scraper_cls.return_value.run.assert_called_once_with(5)
    run_cfg, creds = scraper_cls.call_args[0]
    assert run_cfg.headless is False
    assert creds.email == "a@b.c"
    # request overrides stay off the shared config
    assert PORTAL.headless is True


@patch("portalscraper.web.portalscraper_api.EventScraper")
def test_scrape_auth_failure_is_401(scraper_cls: Mock, client) -> None:
    scraper_cls.return_value.run.side_effect = AuthenticationError("email-input-missing")

    resp = client.post("/api/scrape", json={"email": "a@b.c", "password": "pw"})

    assert resp.status_code == 401
    assert resp.json() == {"error": "Login failed: email-input-missing"}


@patch("portalscraper.web.portalscraper_api.EventScraper")
def test_scrape_other_failure_is_500(scraper_cls: Mock, client) -> None:
    scraper_cls.return_value.run.side_effect = SessionError("browser crashed")

    resp = client.post("/api/scrape", json={"email": "a@b.c", "password": "pw"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "browser crashed"}


def test_scrape_without_portal_urls_is_500() -> None:
    server.dependency_overrides[get_config] = lambda: Config()
    try:
        resp = TestClient(server).post("/api/scrape", json={"email": "a@b.c", "password": "pw"})
    finally:
        server.dependency_overrides.clear()
    assert resp.status_code == 500
    assert "error" in resp.json()


@patch("portalscraper.web.portalscraper_api.EventScraper")
def test_malformed_body_is_400_with_error(scraper_cls: Mock, client) -> None:
    resp = client.post("/api/scrape", json={"email": "a@b.c", "password": "x", "max": "ten"})

    assert resp.status_code == 400
    body = resp.json()
    assert set(body) == {"error"}
    assert body["error"].startswith("Invalid request: max:")
    scraper_cls.assert_not_called()


def test_non_json_email_body_is_400(client) -> None:
    resp = client.post("/api/email", content=b"not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert "error" in resp.json()


def test_email_endpoint_returns_html(client) -> None:
    resp = client.post(
        "/api/email",
        json={"events": [{"title": "Quiz", "description": "Teams"}], "title": "Weekly", "template": "insider"},
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert "<title>Weekly</title>" in resp.text
    assert "Quiz" in resp.text


def _ok(payload=None, text: str = "") -> Mock:
    resp = Mock()
    resp.json.return_value = payload
    resp.text = text
    resp.raise_for_status.return_value = None
    return resp


def test_post_scrape_sends_credentials_and_max() -> None:
    with patch(
        "portalscraper.web.portalscraper_client.requests.post",
        return_value=_ok({"events": [{"id": 1}]}),
    ) as post:
        events = post_scrape("http://127.0.0.1:5174/", "a@b.c", "pw", max_events=3)

    assert events == [{"id": 1}]
    assert post.call_args[0][0] == "http://127.0.0.1:5174/api/scrape"
    assert post.call_args[1]["json"] == {"email": "a@b.c", "password": "pw", "max": 3}


def test_post_scrape_omits_unset_max() -> None:
    with patch("portalscraper.web.portalscraper_client.requests.post", return_value=_ok({})) as post:
        assert post_scrape("http://h", "a", "b") == []
    assert "max" not in post.call_args[1]["json"]


def test_post_email_returns_body() -> None:
    with patch("portalscraper.web.portalscraper_client.requests.post", return_value=_ok(text="<html/>")) as post:
        assert post_email("http://h", [{"id": 1}], "T", "interest") == "<html/>"
    assert post.call_args[1]["json"]["template"] == "interest"


def test_error_message_prefers_error_field() -> None:
    resp = Mock(status_code=401)
    resp.json.return_value = {"error": "Login failed: email-input-missing"}
    err = requests.HTTPError("401", response=resp)
    assert error_message(err) == "HTTP 401: Login failed: email-input-missing"


def test_error_message_without_json_body() -> None:
    resp = Mock(status_code=502, text="Bad Gateway")
    resp.json.side_effect = ValueError("no json")
    assert error_message(requests.HTTPError("502", response=resp)) == "Bad Gateway"


def test_filter_events_keeps_original_indexes() -> None:
    events = [
        {"title": "Wine Tasting", "date": "Saturday, November 29"},
        {"title": "Quiz", "date": "Monday, December 1", "description": "Bring a team"},
        {"title": "Yoga", "date": "Tuesday, December 2", "summary": "Mats provided"},
    ]

    assert filter_events(events, "") == list(enumerate(events))
    assert [i for i, _ in filter_events(events, "DECEMBER")] == [1, 2]
    assert [i for i, _ in filter_events(events, "team")] == [1]
    assert [i for i, _ in filter_events(events, "mats")] == [2]
    assert filter_events(events, "nothing here") == []


def test_server_manager_command_and_probe() -> None:
    sm = ServerManager(port=5999)
    try:
        cmd = sm.command()
        assert cmd[1:4] == ["-m", "uvicorn", "portalscraper.web:server"]
        assert cmd[-2:] == ["--port", "5999"]
        assert sm.base_url() == "http://127.0.0.1:5999"
        assert sm.is_managed_running() is False

        with patch("portalscraper.web.portalscraper_mgr.requests.get", return_value=Mock(ok=True)) as get:
            assert sm.is_http_up() is True
        get.assert_called_once_with("http://127.0.0.1:5999/api/health", timeout=1.2)

        with patch(
            "portalscraper.web.portalscraper_mgr.requests.get",
            side_effect=requests.ConnectionError("refused"),
        ):
            assert sm.is_http_up() is False
    finally:
        sm.stop()


def test_server_manager_skips_start_when_api_is_up() -> None:
    sm = ServerManager(port=5999)
    with patch.object(sm, "is_http_up", return_value=True), patch.object(sm, "start") as start:
        sm.ensure_running()
    start.assert_not_called()

    sm._append_log("hello")
    assert sm.tail_logs().endswith("hello")
    sm.clear_logs()
    assert sm.tail_logs() == ""
