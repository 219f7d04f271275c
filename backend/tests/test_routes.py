import asyncio
import hashlib
import hmac
import json
from dataclasses import replace
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.core.dependencies import (
    get_github_service,
    get_grading_service,
    get_instructions_provider,
    get_result_store,
)
from app.core.errors import ScoringError
from app.main import app
from app.models.records import GradingRequest
from app.services.grading_service import GradingService
from app.services.instructions_provider import NotionInstructionsProvider, StaticInstructionsProvider

from conftest import REPO_URL, ScriptedScorer

SCENARIO = {
    "repoName": REPO_URL,
    "branchName": "module-02",
    "studentName": "alice",
    "customInstructions": "grade for correctness",
}


@pytest.fixture
def api(store, workspaces, scorer):
    service = GradingService(store=store, workspaces=workspaces, scorer=scorer)
    env = SimpleNamespace(
        store=store, workspaces=workspaces, scorer=scorer, service=service,
        settings=replace(get_settings(), github_webhook_secret=None),
        instructions=StaticInstructionsProvider("grade for correctness"),
    )
    app.dependency_overrides[get_grading_service] = lambda: env.service
    app.dependency_overrides[get_result_store] = lambda: env.store
    app.dependency_overrides[get_instructions_provider] = lambda: env.instructions
    app.dependency_overrides[get_settings] = lambda: env.settings
    app.dependency_overrides[get_github_service] = lambda: None
    env.client = TestClient(app)
    yield env
    app.dependency_overrides.clear()


def test_root_and_health(api):
    assert api.client.get("/").json()["status"] == "success"

    health = api.client.get("/grade/health").json()
    assert health["success"] is True
    assert health["status"] == "operational"


def test_grade_then_cached_scenario(api):
    first = api.client.post("/grade", json=SCENARIO)

    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["source"] == "openai"
    assert body["student"] == "alice"
    assert body["branch"] == "module-02"
    assert body["repository"] == REPO_URL
    assert body["summary"] == {"totalScore": 85, "maxScore": 100, "percentage": 85.0, "status": "Good"}
    assert body["results"]["completeness"]["score"] == 40
    assert api.store.get(body["reviewId"]).status.value == "COMPLETED"

    repeat = dict(SCENARIO)
    del repeat["customInstructions"]
    second = api.client.post("/grade", json=repeat)

    assert second.status_code == 200
    cached = second.json()
    assert cached["source"] == "database"
    assert cached["reviewId"] == body["reviewId"]
    assert cached["results"] == body["results"]
    assert cached["timestamp"] == cached["createdAt"]
    assert len(api.scorer.calls) == 1
    assert len(api.workspaces.acquired) == 1


def test_anonymous_submission_reports_unknown_student(api):
    payload = {k: v for k, v in SCENARIO.items() if k != "studentName"}

    body = api.client.post("/grade", json=payload).json()

    assert body["student"] == "Unknown"
    assert api.store.get(body["reviewId"]).student_identifier is None


@pytest.mark.parametrize("payload, error", [
    ({"branchName": "module-02"}, "Invalid or missing repoName"),
    ({"repoName": REPO_URL}, "Invalid or missing branchName (Module)"),
    ({"repoName": REPO_URL, "branchName": "module-02"}, "customInstructions required for new grading"),
    ({"repoName": "https://example.com/x", "branchName": "m", "customInstructions": "x"},
     "Invalid GitHub URL format"),
])
def test_validation_failures_return_400(api, payload, error):
    response = api.client.post("/grade", json=payload)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == error
    assert "timestamp" in body
    assert api.workspaces.acquired == []


def test_malformed_body_returns_400(api):
    response = api.client.post("/grade", json={"repoName": 42, "branchName": ["x"]})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"


def test_pipeline_failure_returns_500(api):
    api.service.scorer = ScriptedScorer(error=ScoringError("AI service timed out"))

    response = api.client.post("/grade", json=SCENARIO)

    assert response.status_code == 500
    body = response.json()
    assert body == {
        "success": False,
        "error": "Grading failed",
        "message": "AI service timed out",
        "timestamp": body["timestamp"],
    }
    assert not api.workspaces.acquired[0].exists()


def test_unexpected_failure_returns_500(api):
    api.service.scorer = ScriptedScorer(error=RuntimeError("boom"))

    response = api.client.post("/grade", json=SCENARIO)

    assert response.status_code == 500
    assert response.json()["message"] == "boom"


def test_review_read_api(api):
    graded = api.client.post("/grade", json=SCENARIO).json()

    listing = api.client.get("/grade/reviews", params={"repoName": REPO_URL}).json()
    assert listing["success"] is True
    (row,) = listing["data"]
    assert row["id"] == graded["reviewId"]
    assert row["score"] == "85/100"
    assert json.loads(row["reviewContent"])["summary"]["status"] == "Good"

    single = api.client.get(f"/grade/reviews/{graded['reviewId']}")
    assert single.status_code == 200
    assert single.json()["data"]["studentName"] == "alice"

    missing = api.client.get("/grade/reviews/does-not-exist")
    assert missing.status_code == 404
    assert missing.json()["success"] is False


def _push_event(branch="module-02", **overrides):
    payload = {
        "ref": f"refs/heads/{branch}",
        "repository": {"html_url": REPO_URL, "full_name": "org/repo"},
        "pusher": {"name": "alice"},
        "sender": {"login": "alice-gh"},
    }
    payload.update(overrides)
    return payload


def test_push_webhook_grades_in_background(api):
    response = api.client.post("/webhook/github", json=_push_event(),
                               headers={"X-GitHub-Event": "push"})

    assert response.status_code == 200
    assert response.json()["status"] == "queued"
    assert response.json()["branch"] == "module-02"
    assert len(api.scorer.calls) == 1
    assert api.scorer.calls[0]["instructions"] == "grade for correctness"
    record = api.store.list_recent()[0]
    assert (record.repository_reference, record.branch_name, record.student_identifier) == \
        (REPO_URL, "module-02", "alice")


def test_pull_request_webhook_uses_head_branch_and_author(api):
    payload = {
        "action": "synchronize",
        "pull_request": {
            "head": {"ref": "feature/login", "repo": {"html_url": "https://github.com/bob/repo"}},
            "user": {"login": "bob"},
        },
        "repository": {"html_url": REPO_URL},
    }

    response = api.client.post("/webhook/github", json=payload,
                               headers={"X-GitHub-Event": "pull_request"})

    assert response.json()["status"] == "queued"
    record = api.store.list_recent()[0]
    assert record.repository_reference == "https://github.com/bob/repo"
    assert record.branch_name == "feature/login"
    assert record.student_identifier == "bob"


@pytest.mark.parametrize("event, payload", [
    ("push", _push_event(ref="refs/tags/v1.0")),
    ("push", _push_event(deleted=True)),
    ("pull_request", {"action": "closed", "pull_request": {}}),
    ("issues", {"action": "opened"}),
])
def test_non_gradable_events_are_acknowledged(api, event, payload):
    response = api.client.post("/webhook/github", json=payload, headers={"X-GitHub-Event": event})

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    assert api.scorer.calls == []


@pytest.mark.parametrize("event, body", [
    ("push", b"{not json"),
    ("push", b"[]"),
    ("push", json.dumps({"repository": {"html_url": REPO_URL}}).encode()),
    ("push", json.dumps({"ref": "refs/heads/main"}).encode()),
    ("pull_request", json.dumps({"action": "opened", "pull_request": {"head": {}}}).encode()),
])
def test_malformed_webhook_payloads_return_400(api, event, body):
    response = api.client.post("/webhook/github", content=body,
                               headers={"X-GitHub-Event": event, "Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert api.scorer.calls == []


def test_form_encoded_webhook_payload(api):
    from urllib.parse import urlencode

    body = urlencode({"payload": json.dumps(_push_event())})
    response = api.client.post("/webhook/github", content=body, headers={
        "X-GitHub-Event": "push", "Content-Type": "application/x-www-form-urlencoded",
    })

    assert response.json()["status"] == "queued"


def test_ping_event(api):
    response = api.client.post("/webhook/github", json={"zen": "Keep it logically awesome."},
                               headers={"X-GitHub-Event": "ping"})

    assert response.json()["status"] == "pong"


def test_webhook_signature_is_enforced_when_secret_set(api):
    api.settings = replace(api.settings, github_webhook_secret="s3cret")
    body = json.dumps(_push_event()).encode()
    signature = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

    rejected = api.client.post("/webhook/github", content=body, headers={
        "X-GitHub-Event": "push", "Content-Type": "application/json", "X-Hub-Signature-256": "sha256=bad",
    })
    accepted = api.client.post("/webhook/github", content=body, headers={
        "X-GitHub-Event": "push", "Content-Type": "application/json", "X-Hub-Signature-256": signature,
    })

    assert rejected.status_code == 401
    assert accepted.status_code == 200
    assert len(api.scorer.calls) == 1


def test_webhook_without_instructions_skips_grading(api):
    api.instructions = StaticInstructionsProvider(None)

    response = api.client.post("/webhook/github", json=_push_event(),
                               headers={"X-GitHub-Event": "push"})

    assert response.json()["status"] == "queued"
    assert api.scorer.calls == []
    assert api.store.list_recent() == []


def test_unknown_provider_returns_404(api):
    response = api.client.post("/webhook/bitbucket", json={}, headers={"X-Event-Key": "repo:push"})

    assert response.status_code == 404


def test_github_listing_requires_org(api):
    assert api.client.get("/api/github/prs").status_code == 503
    assert api.client.get("/api/github/repos").status_code == 503


def test_notion_health_without_notion_configured(api):
    body = api.client.get("/api/notion/health").json()

    assert body["success"] is True
    assert body["configured"] is False
    assert body["connected"] is False


def test_notion_health_reports_connection(api):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"object": "user"}))
    api.instructions = NotionInstructionsProvider("secret", "page-123", transport=transport)

    body = api.client.get("/api/notion/health").json()

    assert body["configured"] is True
    assert body["connected"] is True


def test_webhook_falls_back_to_cached_review_when_notion_returns_garbage(api):
    asyncio.run(api.service.grade(GradingRequest(REPO_URL, "module-02", "alice", "grade for correctness")))
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>oops</html>"))
    api.instructions = NotionInstructionsProvider("secret", "page-123", transport=transport)

    response = api.client.post("/webhook/github", json=_push_event(),
                               headers={"X-GitHub-Event": "push"})

    assert response.json()["status"] == "queued"
    assert len(api.scorer.calls) == 1
    assert len(api.store.list_recent()) == 1
