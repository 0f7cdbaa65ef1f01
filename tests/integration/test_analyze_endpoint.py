from __future__ import annotations

import base64
import json
from typing import Any, Dict

import httpx
from fastapi.testclient import TestClient

from playfix.llm.chat_client import NO_CONTENT
from playfix.llm.suggestion import DISABLED_MESSAGE
from playfix.service import analyzer
from playfix.service.analyzer import SKIPPED_NO_BLOCKS, SKIPPED_NO_GITHUB
from playfix.service.app import create_app
from playfix.settings import Settings


ORIGINAL = "\n".join(
    [
        "import { test, expect } from '@playwright/test';",
        "import { LoginPage } from '../pages/login.page';",
        "",
        "test('logs in', async ({ page }) => {",
        "  const login = new LoginPage(page);",
        "  await login.goto();",
        "  await page.click('#sign-in');",
        "  await expect(page).toHaveURL(/dashboard/);",
        "});",
    ]
)
FIXED = ORIGINAL.replace("page.click('#sign-in')", "page.getByRole('button', { name: 'Sign in' }).click()")
TIMEOUT_ERROR = json.dumps({"message": 'page.click: Timeout 30000ms exceeded.\nwaiting for selector "#sign-in"', "stack": "at tests/login.spec.ts:7"})


def _repo(tmp_path):
    repo = tmp_path / "repo"
    (repo / "tests").mkdir(parents=True)
    (repo / "pages").mkdir()
    (repo / "tests" / "login.spec.ts").write_text(ORIGINAL, encoding="utf-8")
    (repo / "pages" / "login.page.ts").write_text("export class LoginPage { constructor(p) {} goto() {} }\n", encoding="utf-8")
    return repo


def _fields(spec_path, **kw) -> Dict[str, str]:
    base = {
        "testTitle": "logs in",
        "testFile": str(spec_path),
        "lineNumber": "7",
        "status": "failed",
        "duration": "30512",
        "retries": "0",
        "error": TIMEOUT_ERROR,
        "stdout": "",
        "stderr": "",
    }
    base.update(kw)
    return base


def test_analyze_without_integrations_returns_heuristics_and_audits(tmp_path) -> None:
    repo = _repo(tmp_path)
    audit_path = tmp_path / "audit.jsonl"
    s = Settings(audit_log_path=str(audit_path), upload_dir=str(tmp_path / "uploads"), repo_root=str(repo))
    client = TestClient(create_app(s))

    spec = repo / "tests" / "login.spec.ts"
    r = client.post(
        "/analyze",
        data=_fields(spec),
        files=[
            ("sourceCode", ("login.spec.ts", ORIGINAL.encode("utf-8"), "text/plain")),
            ("screenshots", ("failure.png", b"\x89PNG", "image/png")),
        ],
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Analysis processed successfully."
    assert "Heuristic: Potential Selector Timeout." in body["analysis"]["suggestions"]
    assert body["llmSuggestionRaw"] == DISABLED_MESSAGE
    assert body["llmFixBlocks"] == []
    assert body["prUrl"] == SKIPPED_NO_GITHUB
    assert body["receivedData"]["testFile"] == str(spec)
    assert body["receivedData"]["lineNumber"] == "7"
    assert sorted(a["kind"] for a in body["attachments"]) == ["screenshot", "source-code"]

    records = [json.loads(ln) for ln in audit_path.read_text(encoding="utf-8").splitlines()]
    types = [rec["event_type"] for rec in records]
    assert types[0] == "http.request"
    assert "event.received" in types
    assert "heuristics.applied" in types
    assert types[-1] == "http.response"
    ctx = next(rec for rec in records if rec["event_type"] == "context.extracted")
    assert ctx["payload"]["imported_files"] == ["../pages/login.page"]
    assert len({rec["correlation_id"] for rec in records}) == 1


def test_missing_test_file_is_a_client_error(tmp_path) -> None:
    s = Settings(audit_log_path=str(tmp_path / "audit.jsonl"), upload_dir=str(tmp_path / "uploads"))
    client = TestClient(create_app(s))
    r = client.post("/analyze", data={"testTitle": "x", "status": "failed"})
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Missing required field: testFile"
    assert "message" in body


def test_unparsable_error_and_unreadable_file_degrade(tmp_path) -> None:
    s = Settings(audit_log_path=str(tmp_path / "audit.jsonl"), upload_dir=str(tmp_path / "uploads"))
    client = TestClient(create_app(s))
    r = client.post("/analyze", data=_fields(tmp_path / "nope.spec.ts", error="{not json", lineNumber="abc"))
    assert r.status_code == 200
    err = r.json()["receivedData"]["error"]
    assert err["parseError"].startswith("Failed to parse error JSON")
    assert err["rawErrorString"] == "{not json"


def test_too_many_screenshots_is_rejected(tmp_path) -> None:
    s = Settings(audit_log_path=str(tmp_path / "audit.jsonl"), upload_dir=str(tmp_path / "uploads"), max_screenshots=2)
    client = TestClient(create_app(s))
    files = [("screenshots", (f"{i}.png", b"x", "image/png")) for i in range(3)]
    r = client.post("/analyze", data=_fields(tmp_path / "a.spec.ts"), files=files)
    assert r.status_code == 413
    assert r.json()["code"] == "LIMIT_EXCEEDED"


def test_unexpected_error_returns_json_500(tmp_path, monkeypatch) -> None:
    def _explode(self, report):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(analyzer.AnalysisPipeline, "analyze", _explode)
    audit_path = tmp_path / "audit.jsonl"
    s = Settings(audit_log_path=str(audit_path), upload_dir=str(tmp_path / "uploads"))
    client = TestClient(create_app(s), raise_server_exceptions=False)
    r = client.post("/analyze", data=_fields(tmp_path / "a.spec.ts"))
    assert r.status_code == 500
    assert r.json() == {"message": "An unexpected server error occurred.", "error": "kaboom", "code": None}
    assert "error.unhandled" in audit_path.read_text(encoding="utf-8")


def test_health_and_banner(tmp_path) -> None:
    s = Settings(audit_log_path=str(tmp_path / "audit.jsonl"), upload_dir=str(tmp_path / "uploads"))
    client = TestClient(create_app(s))
    assert "POST /analyze" in client.get("/").text
    h = client.get("/health").json()
    assert h["ok"] is True and h["llm_configured"] is False and h["github_configured"] is False


def _network(state: Dict[str, Any]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        path = request.url.path
        method = request.method.upper()

        if host == "llm.test":
            prompt = json.loads(request.content.decode("utf-8"))["messages"][1]["content"]
            state["prompt"] = prompt
            reply = f"```typescript tests/login.spec.ts\n{FIXED}\n```"
            return httpx.Response(200, json={"choices": [{"message": {"content": reply}}]})

        assert host == "api.github.test"
        if method == "GET" and path == "/repos/acme/web":
            return httpx.Response(200, json={"default_branch": "main"})
        if method == "GET" and path == "/repos/acme/web/git/ref/heads/main":
            return httpx.Response(200, json={"object": {"sha": "BASESHA"}})
        if method == "POST" and path == "/repos/acme/web/git/refs":
            state["branch"] = json.loads(request.content.decode("utf-8"))["ref"]
            return httpx.Response(201, json={})
        if method == "GET" and path == "/repos/acme/web/contents/tests/login.spec.ts":
            b64 = base64.b64encode(ORIGINAL.encode("utf-8")).decode("ascii")
            return httpx.Response(200, json={"sha": "FILESHA", "content": b64})
        if method == "PUT" and path == "/repos/acme/web/contents/tests/login.spec.ts":
            state["put"] = json.loads(request.content.decode("utf-8"))
            return httpx.Response(200, json={"content": {"sha": "NEW"}})
        if method == "POST" and path == "/repos/acme/web/pulls":
            state["pr"] = json.loads(request.content.decode("utf-8"))
            return httpx.Response(201, json={"number": 9, "title": state["pr"]["title"], "html_url": "https://github.com/acme/web/pull/9"})
        return httpx.Response(404, json={"message": f"unhandled {method} {path}"})

    return httpx.MockTransport(handler)


def test_analyze_end_to_end_opens_pull_request(tmp_path) -> None:
    repo = _repo(tmp_path)
    state: Dict[str, Any] = {}
    s = Settings(
        audit_log_path=str(tmp_path / "audit.jsonl"),
        upload_dir=str(tmp_path / "uploads"),
        repo_root=str(repo),
        llm_api_key="k",
        llm_endpoint="https://llm.test/v1/chat/completions",
        github_token="t",
        github_owner="acme",
        github_repo="web",
        github_api_base="https://api.github.test",
    )
    client = TestClient(create_app(s, transport=_network(state)))

    r = client.post("/analyze", data=_fields(repo / "tests" / "login.spec.ts"))
    assert r.status_code == 200, r.text
    body = r.json()

    assert body["prUrl"] == "https://github.com/acme/web/pull/9"
    assert body["llmFixBlocks"] == [{"language": "typescript", "filePath": "tests/login.spec.ts", "code": FIXED}]
    assert body["publish"]["status"] == "created"
    assert body["publish"]["files_changed"] == ["tests/login.spec.ts"]

    assert "**File:** tests/login.spec.ts" in state["prompt"]
    assert "--- Content of imported file: ../pages/login.page ---" in state["prompt"]
    assert state["branch"].startswith("refs/heads/fix/llm-logs-in-")
    assert state["put"]["sha"] == "FILESHA"
    assert state["put"]["message"] == "Fix: Apply LLM patch to login.spec.ts"
    assert base64.b64decode(state["put"]["content"]).decode("utf-8") == FIXED
    assert state["pr"]["base"] == "main"
    assert "- `tests/login.spec.ts`" in state["pr"]["body"]


def test_malformed_llm_reply_still_answers(tmp_path) -> None:
    repo = _repo(tmp_path)
    replies = [
        {"choices": [{"message": "hi"}]},
        {"choices": {"0": {"message": {"content": "x"}}}},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=replies.pop(0))

    s = Settings(
        audit_log_path=str(tmp_path / "audit.jsonl"),
        upload_dir=str(tmp_path / "uploads"),
        repo_root=str(repo),
        llm_api_key="k",
        llm_endpoint="https://llm.test/v1/chat/completions",
        github_token="t",
        github_owner="acme",
        github_repo="web",
        github_api_base="https://api.github.test",
    )
    client = TestClient(create_app(s, transport=httpx.MockTransport(handler)))

    for _ in range(2):
        r = client.post("/analyze", data=_fields(repo / "tests" / "login.spec.ts"))
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["llmSuggestionRaw"] == NO_CONTENT
        assert body["llmFixBlocks"] == []
        assert body["prUrl"] == SKIPPED_NO_BLOCKS
    assert replies == []
