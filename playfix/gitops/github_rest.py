from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from playfix.gitops.backend import RemoteFile
from playfix.models import PullRequestResult
from playfix.settings import Settings


@dataclass(frozen=True)
class GitHubRestClient:
    """
    Minimal GitHub REST wrapper over the endpoints remediation needs:
    repository, refs, contents and pulls.

    Notes:
    - No git pushes; everything works over HTTPS with a token.
    - Errors surface as `httpx.HTTPStatusError` (no automatic retries).
    - Mockable in tests through `transport`.
    """

    token: str
    repo: str  # owner/name
    api_base: str = "https://api.github.com"
    timeout_s: float = 15.0
    transport: httpx.BaseTransport | None = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
        }

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout_s, transport=self.transport)

    def _url(self, suffix: str) -> str:
        return f"{self.api_base.rstrip('/')}/repos/{self.repo}{suffix}"

    def get_repo_default_branch(self) -> str:
        with self._client() as c:
            r = c.get(self._url(""), headers=self._headers())
            r.raise_for_status()
            data = r.json()
        return str(data.get("default_branch") or "main")

    def get_branch_head_sha(self, *, branch: str) -> str:
        with self._client() as c:
            r = c.get(self._url(f"/git/ref/heads/{branch}"), headers=self._headers())
            r.raise_for_status()
            data = r.json()
        return str((data.get("object") or {}).get("sha"))

    def create_branch(self, *, new_branch: str, from_sha: str) -> None:
        payload = {"ref": f"refs/heads/{new_branch}", "sha": from_sha}
        with self._client() as c:
            r = c.post(self._url("/git/refs"), headers=self._headers(), json=payload)
            # 422 "Reference already exists" is a name collision: surface it, never reuse the branch.
            r.raise_for_status()

    def delete_branch(self, *, branch: str) -> None:
        with self._client() as c:
            r = c.delete(self._url(f"/git/refs/heads/{branch}"), headers=self._headers())
            r.raise_for_status()

    def get_file(self, *, path: str, ref: str) -> Optional[RemoteFile]:
        with self._client() as c:
            r = c.get(self._url(f"/contents/{path.lstrip('/')}"), headers=self._headers(), params={"ref": ref})
            if r.status_code == 404:
                return None
            r.raise_for_status()
            data = r.json()
        if not isinstance(data, dict):
            # Directory listing: not a file we can replace.
            raise ValueError(f"path is not a file: {path}")
        raw = str(data.get("content") or "")
        text = base64.b64decode(raw).decode("utf-8", errors="replace") if raw else ""
        return RemoteFile(path=path, content=text, sha=str(data["sha"]) if data.get("sha") else None)

    def upsert_file(
        self,
        *,
        path: str,
        content_text: str,
        branch: str,
        message: str,
        known_sha: Optional[str] = None,
    ) -> None:
        b64 = base64.b64encode(content_text.encode("utf-8")).decode("ascii")
        payload: Dict[str, Any] = {"message": message, "content": b64, "branch": branch}
        if known_sha:
            payload["sha"] = known_sha
        with self._client() as c:
            r = c.put(self._url(f"/contents/{path.lstrip('/')}"), headers=self._headers(), json=payload)
            r.raise_for_status()

    def create_pull_request(self, *, title: str, body: str, head: str, base: str) -> PullRequestResult:
        payload = {"title": title, "body": body, "head": head, "base": base}
        with self._client() as c:
            r = c.post(self._url("/pulls"), headers=self._headers(), json=payload)
            r.raise_for_status()
            data = r.json()
        return PullRequestResult(
            mode="github",
            pr_number=int(data["number"]),
            pr_title=str(data.get("title") or title),
            pr_url=str(data["html_url"]),
            branch_name=head,
            base_branch=base,
        )


@dataclass(frozen=True)
class GitHubBackend:
    """`SourceControlBackend` over the hosted API."""

    client: GitHubRestClient

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.BaseTransport | None = None) -> "GitHubBackend":
        if not settings.github_configured:
            raise ValueError("PLAYFIX_GITHUB_TOKEN, PLAYFIX_GITHUB_OWNER and PLAYFIX_GITHUB_REPO are required")
        return cls(
            client=GitHubRestClient(
                token=str(settings.github_token),
                repo=settings.github_full_repo,
                api_base=settings.github_api_base,
                timeout_s=settings.github_timeout_s,
                transport=transport,
            )
        )

    def default_branch(self) -> str:
        return self.client.get_repo_default_branch()

    def branch_head_sha(self, branch: str) -> str:
        return self.client.get_branch_head_sha(branch=branch)

    def create_branch(self, name: str, from_sha: str) -> None:
        self.client.create_branch(new_branch=name, from_sha=from_sha)

    def read_file(self, path: str, ref: str) -> Optional[RemoteFile]:
        return self.client.get_file(path=path, ref=ref)

    def write_file(self, *, path: str, content: str, branch: str, message: str, sha: Optional[str]) -> bool:
        self.client.upsert_file(path=path, content_text=content, branch=branch, message=message, known_sha=sha)
        return True

    def delete_branch(self, name: str) -> None:
        self.client.delete_branch(branch=name)

    def open_pull_request(self, *, title: str, body: str, head: str, base: str) -> PullRequestResult:
        return self.client.create_pull_request(title=title, body=body, head=head, base=base)
