from __future__ import annotations

from typing import Any, Dict, List

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from playfix.classifier.rules import HeuristicClassifier
from playfix.context.extractor import CodeContextExtractor
from playfix.critic.patch_critic import GuardThresholds
from playfix.gitops.github_rest import GitHubBackend
from playfix.gitops.publisher import PatchPublisher
from playfix.llm.chat_client import ChatCompletionsClient
from playfix.llm.suggestion import SuggestionService
from playfix.service.analyzer import AnalysisPipeline, build_failure_report
from playfix.service.uploads import UPLOAD_FIELDS, IncomingFile, UploadLimitError, UploadStore
from playfix.settings import Settings
from playfix.telemetry.audit import AuditLogger, EventSink


TEXT_FIELDS = ("testTitle", "testFile", "lineNumber", "status", "duration", "retries", "error", "stdout", "stderr")


def build_pipeline(settings: Settings, *, on_event: EventSink | None = None, transport: httpx.BaseTransport | None = None) -> AnalysisPipeline:
    """
    Wire the components for one request. `transport` replaces the network for both the
    oracle and GitHub (tests).
    """
    client = None
    if settings.llm_configured:
        client = ChatCompletionsClient(
            api_key=str(settings.llm_api_key),
            endpoint=str(settings.llm_endpoint),
            timeout_s=settings.llm_timeout_s,
            transport=transport,
        )
    backend = GitHubBackend.from_settings(settings, transport=transport) if settings.github_configured else None
    return AnalysisPipeline(
        settings=settings,
        extractor=CodeContextExtractor(
            context_lines=settings.context_lines,
            import_max_chars=settings.import_max_chars,
            on_event=on_event,
        ),
        classifier=HeuristicClassifier(),
        suggester=SuggestionService(settings=settings, client=client, on_event=on_event),
        publisher=PatchPublisher(backend=backend, thresholds=GuardThresholds.from_settings(settings), on_event=on_event),
        on_event=on_event,
    )


def _error_response(status_code: int, message: str, error: str, code: Any = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "error": error, "code": code})


def create_app(settings: Settings | None = None, *, transport: httpx.BaseTransport | None = None) -> FastAPI:
    """
    App factory used by uvicorn (`--factory`) and tests.
    """
    s = settings or Settings()
    app = FastAPI(title="PLAYFIX", version="0.1.0")
    app.state.settings = s
    app.state.audit = AuditLogger(s.audit_log_path)
    app.state.transport = transport
    app.state.uploads = UploadStore(
        upload_dir=s.upload_dir,
        max_file_bytes=s.max_upload_bytes,
        max_screenshots=s.max_screenshots,
    )

    @app.middleware("http")
    async def _audit_requests(request: Request, call_next):
        audit: AuditLogger = request.app.state.audit
        cid = audit.new_correlation_id()
        request.state.correlation_id = cid
        audit.write(cid, "http.request", {"method": request.method, "path": request.url.path})
        response = await call_next(request)
        audit.write(cid, "http.response", {"method": request.method, "path": request.url.path, "status": response.status_code})
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, "Request could not be processed.", str(exc.detail))

    @app.exception_handler(UploadLimitError)
    async def _upload_error(request: Request, exc: UploadLimitError) -> JSONResponse:
        return _error_response(exc.status_code, "File upload error.", str(exc), code="LIMIT_EXCEEDED")

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        audit: AuditLogger = request.app.state.audit
        cid = getattr(request.state, "correlation_id", None) or audit.new_correlation_id()
        audit.write(cid, "error.unhandled", {"error": str(exc), "error_type": type(exc).__name__})
        status_code = getattr(exc, "status_code", None)
        if not isinstance(status_code, int) or status_code < 400:
            status_code = 500
        return _error_response(status_code, "An unexpected server error occurred.", str(exc), code=getattr(exc, "code", None))

    @app.get("/", response_class=PlainTextResponse)
    def root() -> str:
        return "Playwright Analysis Server is running. Use POST /analyze."

    @app.get("/health")
    def health(request: Request) -> Dict[str, Any]:
        st: Settings = request.app.state.settings
        return {
            "ok": True,
            "llm_configured": st.llm_configured,
            "github_configured": st.github_configured,
            "repo_root": st.repo_root,
        }

    @app.post("/analyze")
    async def analyze(request: Request) -> JSONResponse:
        st: Settings = request.app.state.settings
        audit: AuditLogger = request.app.state.audit
        store: UploadStore = request.app.state.uploads

        form = await request.form(max_files=sum(n for _, n in UPLOAD_FIELDS.values()) + st.max_screenshots)
        try:
            fields: Dict[str, str | None] = {}
            for name in TEXT_FIELDS:
                value = form.get(name)
                fields[name] = value if isinstance(value, str) else None

            if not fields["testFile"]:
                raise HTTPException(status_code=400, detail="Missing required field: testFile")

            incoming: List[IncomingFile] = []
            for field_name in UPLOAD_FIELDS:
                for item in form.getlist(field_name):
                    if isinstance(item, UploadFile):
                        incoming.append(
                            IncomingFile(
                                field=field_name,
                                filename=item.filename or field_name,
                                content_type=item.content_type,
                                stream=item.file,
                            )
                        )
            attachments = await run_in_threadpool(store.save_all, incoming)
        finally:
            await form.close()

        report = build_failure_report(
            test_title=fields["testTitle"],
            test_file=str(fields["testFile"]),
            line_number=fields["lineNumber"],
            status=fields["status"],
            duration=fields["duration"],
            retries=fields["retries"],
            error=fields["error"],
            stdout=fields["stdout"],
            stderr=fields["stderr"],
            attachments=attachments,
        )
        on_event = audit.bind(request.state.correlation_id)
        pipeline = build_pipeline(st, on_event=on_event, transport=request.app.state.transport)
        result = await run_in_threadpool(pipeline.analyze, report)
        return JSONResponse(status_code=200, content=result.model_dump(mode="json", by_alias=True))

    return app
