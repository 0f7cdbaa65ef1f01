from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class AttachmentKind(str, Enum):
    trace = "trace"
    video = "video"
    screenshot = "screenshot"
    source_code = "source-code"


class Attachment(BaseModel):
    """
    One uploaded artifact of a failing test. Stored under the server upload dir
    with a random-prefixed name; there is no identity beyond the request.
    """

    model_config = ConfigDict(frozen=True)

    kind: AttachmentKind
    filename: str
    stored_path: str
    content_type: Optional[str] = None
    size_bytes: int = 0


class ErrorPayload(BaseModel):
    """
    Error record sent by the runner as a JSON string. When the string does not
    parse, `parse_error` + `raw_error` are filled instead and processing continues.
    """

    model_config = ConfigDict(frozen=True)

    message: Optional[str] = None
    stack: Optional[str] = None
    parse_error: Optional[str] = None
    raw_error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        if self.parse_error is not None:
            return {"parseError": self.parse_error, "rawErrorString": self.raw_error}
        return self.model_dump(include={"message", "stack"}, exclude_none=True)


class FailureReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    test_title: str = ""
    test_file: str
    line_number: Optional[int] = None
    raw_line_number: Optional[str] = None
    status: str = "failed"
    duration_ms: Optional[float] = None
    retries: int = 0
    error: ErrorPayload = Field(default_factory=ErrorPayload)
    stdout: str = ""
    stderr: str = ""
    attachments: List[Attachment] = Field(default_factory=list)


class CodeContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    imports: str
    snippet: str


class FixCandidate(BaseModel):
    """
    Complete replacement content for one repo-relative file, as proposed by the oracle.
    Wire format: {"language", "filePath", "code"}.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    language: str
    file_path: str = Field(alias="filePath")
    code: str


class HeuristicAnalysis(BaseModel):
    suggestions: List[str] = Field(default_factory=list)
    category: Optional[str] = None


class LlmSuggestion(BaseModel):
    raw: str
    candidates: List[FixCandidate] = Field(default_factory=list)


class PullRequestResult(BaseModel):
    mode: Literal["github", "local"]
    pr_number: Optional[int] = None
    pr_title: str
    pr_url: str
    branch_name: str
    base_branch: str


class SkippedCandidate(BaseModel):
    file_path: str
    reason: str


class PublishStatus(str, Enum):
    created = "created"
    skipped = "skipped"
    no_changes = "no_changes"
    failed = "failed"


class PublishOutcome(BaseModel):
    status: PublishStatus
    # PR url when created, otherwise a human readable reason.
    message: str
    branch: Optional[str] = None
    files_changed: List[str] = Field(default_factory=list)
    skipped: List[SkippedCandidate] = Field(default_factory=list)
    pr: Optional[PullRequestResult] = None


class AnalyzeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    received_data: Dict[str, Any] = Field(alias="receivedData")
    analysis: HeuristicAnalysis
    llm_suggestion_raw: str = Field(alias="llmSuggestionRaw")
    llm_fix_blocks: List[FixCandidate] = Field(alias="llmFixBlocks")
    pr_url: str = Field(alias="prUrl")
    publish: Optional[PublishOutcome] = None
    attachments: List[Attachment] = Field(default_factory=list)


class CiFailure(BaseModel):
    """
    One failing leaf of a CI results document (offline remediator input).
    """

    model_config = ConfigDict(frozen=True)

    file: str
    title: str
    error_message: str
    line: Optional[int] = None
