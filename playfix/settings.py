from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PLAYFIX_", extra="ignore", frozen=True)

    # OpenAI-compatible chat completions endpoint (full URL, e.g. https://api.openai.com/v1/chat/completions)
    llm_api_key: str | None = None
    llm_endpoint: str | None = None
    llm_model: str = "gpt-4"
    # Full-file replies are slow; keep a multi-minute ceiling.
    llm_timeout_s: float = 180.0
    llm_max_tokens: int = 3500
    llm_temperature: float = 1.0

    github_token: str | None = None
    github_owner: str | None = None
    github_repo: str | None = None
    github_api_base: str = "https://api.github.com"
    github_timeout_s: float = 15.0

    # Used to relativize failing-file paths in prompts (the oracle must answer with repo-relative paths).
    repo_root: str = "."

    upload_dir: str = "var/uploads"
    max_upload_bytes: int = 500 * 1024 * 1024
    max_screenshots: int = 10

    host: str = "0.0.0.0"
    port: int = 3001

    audit_log_path: str = "var/audit/playfix_audit.jsonl"

    # Context extraction
    context_lines: int = 5
    import_max_chars: int = 10_000

    # Destructive-change guard. Observed values, not tuned ones.
    guard_min_original_lines: int = 10
    guard_shrink_ratio: float = 0.5
    guard_collapse_max_lines: int = 3

    # Offline batch remediator (local git + gh CLI)
    batch_remote: str = "origin"
    batch_git_user_name: str | None = None
    batch_git_user_email: str | None = None

    # pytest plugin: failing tests are uploaded only when an endpoint is set
    collector_endpoint: str | None = None
    collector_timeout_s: float = 300.0

    @property
    def llm_configured(self) -> bool:
        return bool(self.llm_api_key and self.llm_endpoint)

    @property
    def github_configured(self) -> bool:
        return bool(self.github_token and self.github_owner and self.github_repo)

    @property
    def github_full_repo(self) -> str:
        return f"{self.github_owner}/{self.github_repo}"
