import asyncio
import base64
import binascii
import json
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Match

from homework_validator import config
from homework_validator.documents import extract_text
from homework_validator.interview.calls import bounded
from homework_validator.interview.controller import SessionController
from homework_validator.interview.errors import (
    GenerationError,
    InterviewError,
    InvalidTopicsError,
    InvariantViolation,
    ValidationError,
)
from homework_validator.interview.finalizer import build_transcript
from homework_validator.interview.models import Assessment, InterviewSettings, Modality, Phase
from homework_validator.metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL
from homework_validator.middleware.request_id import RequestIdMiddleware
from homework_validator.providers.factory import (
    get_analyze_client,
    get_question_client,
    get_speech_client,
    get_summary_client,
    get_transcribe_client,
)
from homework_validator.providers.prompts import FALLBACK_QUESTION, normalize_topics

logger = config.get_logger("homework_validator.http")

# Accepts the names the original web client used for the two modes
_MODALITY_ALIASES = {"typed": Modality.TYPED, "chat": Modality.TYPED, "spoken": Modality.SPOKEN, "voice": Modality.SPOKEN}


def build_controller() -> SessionController:
    return SessionController(
        analyze_client=get_analyze_client(),
        question_client=get_question_client(),
        summary_client=get_summary_client(),
        transcribe_client=get_transcribe_client(),
        speech_client=get_speech_client(),
    )


async def _ticker(app: FastAPI) -> None:
    while True:
        await asyncio.sleep(config.TICK_INTERVAL_SECONDS)
        try:
            await app.state.controller.tick()
        except InterviewError as e:
            logger.warning(json.dumps({"event": "tick_failed", "error": type(e).__name__, "message": e.message[:256]}))
        except Exception as e:
            logger.exception(json.dumps({"event": "tick_crashed", "error": type(e).__name__, "message": str(e)[:256]}))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app.state.controller = build_controller()  # type: ignore[attr-defined]
    app.state.ticker_task = asyncio.create_task(_ticker(app))  # type: ignore[attr-defined]
    logger.info(json.dumps({
        "event": "startup",
        "tickIntervalSeconds": config.TICK_INTERVAL_SECONDS,
        "autoAdvanceSeconds": config.AUTO_ADVANCE_SECONDS,
    }))
    try:
        yield
    finally:
        # Shutdown
        task: Optional[asyncio.Task] = getattr(app.state, "ticker_task", None)
        if task:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        app.state.controller.voice.cancel()


app = FastAPI(
    title="Homework Validator API",
    description="Timed interviews that check whether a student understands the assignment they submitted.",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.FRONT_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
    allow_credentials=False,
)
app.add_middleware(RequestIdMiddleware)


def _route_path(request: Request) -> str:
    """Route template for metric labels, so clip ids do not grow the label set."""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match is Match.FULL:
            return getattr(route, "path", request.url.path)
    return request.url.path


# HTTP metrics middleware
@app.middleware("http")
async def _http_metrics_middleware(request: Request, call_next):
    t0 = time.perf_counter()
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        path = _route_path(request)
        HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status_class=f"{status_code // 100}xx").inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(time.perf_counter() - t0)


_ERROR_STATUS = (
    (InvalidTopicsError, 422),
    (ValidationError, 400),
    (GenerationError, 502),
    (InvariantViolation, 409),
)


@app.exception_handler(InterviewError)
async def _interview_error_handler(request: Request, exc: InterviewError):
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    logger.info(json.dumps({
        "event": "request_error",
        "requestId": getattr(request.state, "request_id", None),
        "path": request.url.path,
        "status": status,
        "error": type(exc).__name__,
        "message": exc.message[:256],
    }))
    return JSONResponse({"error": exc.message or type(exc).__name__}, status_code=status)


def _controller(request: Request) -> SessionController:
    return request.app.state.controller


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _parse_modality(value: Optional[str]) -> Modality:
    key = (value or "typed").strip().lower()
    if key not in _MODALITY_ALIASES:
        raise ValidationError(f"unknown interview mode: {value}")
    return _MODALITY_ALIASES[key]


@app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
async def health():
    return {"status": "ok"}


@app.get("/metrics", tags=["meta"], include_in_schema=False)
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ---------------------------------------------------------------------------
# Interview session
# ---------------------------------------------------------------------------

@app.get("/api/session", tags=["session"], description="Current interview state.")
async def session_get(request: Request):
    return _controller(request).snapshot()


@app.post("/api/session", tags=["session"], description="Upload a document and start the interview.")
async def session_start(
    request: Request,
    file: UploadFile = File(...),
    topicCount: int = Form(config.DEFAULT_TOPIC_COUNT),
    topicDuration: int = Form(config.DEFAULT_TOPIC_SECONDS),
    modality: str = Form("typed"),
):
    controller = _controller(request)
    settings = InterviewSettings(
        modality=_parse_modality(modality),
        topic_count=topicCount,
        topic_seconds=topicDuration,
    )
    data = await file.read()
    await controller.submit_document(data, filename=file.filename, content_type=file.content_type, settings=settings)
    return controller.snapshot()


@app.post("/api/session/typing", tags=["session"], description="Student started typing an answer.")
async def session_typing(request: Request):
    controller = _controller(request)
    return {"engaged": controller.note_typing(), "session": controller.snapshot()}


@app.post("/api/session/answer", tags=["session"], description="Submit a typed answer.")
async def session_answer(
    request: Request,
    body: Dict[str, Any] = Body(..., description="JSON body with 'text'"),
):
    controller = _controller(request)
    outcome = await controller.submit_answer(str(body.get("text") or ""))
    return {"outcome": outcome.value, "session": controller.snapshot()}


@app.post("/api/session/answer/retry", tags=["session"], description="Retry the question after a failed round.")
async def session_answer_retry(request: Request):
    controller = _controller(request)
    outcome = await controller.retry_answer()
    return {"outcome": outcome.value, "session": controller.snapshot()}


@app.post("/api/session/advance", tags=["session"], description="Ask to move to the next topic.")
async def session_advance(request: Request):
    controller = _controller(request)
    return {"opened": controller.request_manual_advance(), "session": controller.snapshot()}


@app.post("/api/session/advance/confirm", tags=["session"], description="Confirm moving to the next topic.")
async def session_advance_confirm(request: Request):
    controller = _controller(request)
    return {"advanced": await controller.confirm_advance(), "session": controller.snapshot()}


@app.post("/api/session/advance/cancel", tags=["session"], description="Dismiss the manual confirmation.")
async def session_advance_cancel(request: Request):
    controller = _controller(request)
    return {"cancelled": controller.cancel_manual_confirm(), "session": controller.snapshot()}


@app.post("/api/session/reset", tags=["session"], description="Discard the session and return to upload.")
async def session_reset(request: Request):
    controller = _controller(request)
    controller.reset_session()
    return controller.snapshot()


@app.post("/api/session/modality", tags=["session"], description="Choose typed or spoken mode before the interview.")
async def session_modality(
    request: Request,
    body: Dict[str, Any] = Body(..., description="JSON body with 'modality'"),
):
    controller = _controller(request)
    controller.set_modality(_parse_modality(body.get("modality")))
    return controller.snapshot()


@app.get("/api/session/speech/{clip_id}", tags=["session"], description="Audio for a spoken question.")
async def session_speech(request: Request, clip_id: str):
    clip = await _controller(request).voice.get_clip(clip_id)
    if clip is None:
        return JSONResponse({"error": "clip not found"}, status_code=404)
    return Response(content=clip.audio, media_type=clip.media_type)


@app.post("/api/session/speech/{clip_id}/ended", tags=["session"], description="Client finished playing a question.")
async def session_speech_ended(request: Request, clip_id: str):
    controller = _controller(request)
    return {"capturing": controller.playback_finished(clip_id), "session": controller.snapshot()}


@app.post("/api/session/audio", tags=["session"], description="Submit a recorded spoken answer.")
async def session_audio(request: Request, audio: UploadFile = File(...)):
    controller = _controller(request)
    data = await audio.read()
    outcome = await controller.submit_audio(data, mime_type=audio.content_type or "audio/webm")
    return {"outcome": outcome.value, "session": controller.snapshot()}


@app.get("/api/session/result", tags=["session"], description="Final assessment and transcript.")
async def session_result(request: Request):
    session = _controller(request).session
    if session.phase is not Phase.RESULT or session.assessment is None:
        raise InvariantViolation(f"no result while {session.phase.value}")
    return {
        "assessment": session.assessment.to_dict(),
        "transcript": build_transcript(session.topics),
        "error": session.error,
    }


# ---------------------------------------------------------------------------
# Stateless collaborator endpoints
# ---------------------------------------------------------------------------

def _turns_from_payload(items: Any) -> List[Dict[str, str]]:
    """Accept {speaker: system|student} or the web client's {role: ai|student}."""
    turns: List[Dict[str, str]] = []
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict):
            continue
        speaker = item.get("speaker") or ("system" if item.get("role") == "ai" else "student")
        turns.append({"speaker": str(speaker), "text": str(item.get("text") or "")})
    return turns


@app.post("/api/analyze", tags=["ai"], description="Split an assignment into discussion topics.")
async def analyze(
    request: Request,
    body: Dict[str, Any] = Body(..., description="JSON body with 'assignmentText' or 'pdfBase64'"),
):
    text = str(body.get("assignmentText") or "")
    pdf_b64 = body.get("pdfBase64")
    if not text and not pdf_b64:
        raise ValidationError("assignmentText or pdfBase64 is required")
    if not text:
        try:
            data = base64.b64decode(str(pdf_b64), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError("pdfBase64 is not valid base64") from e
        text = extract_text(data, filename="upload.pdf", content_type="application/pdf")
    client = get_analyze_client()
    payload = await bounded(
        "analyze",
        client.analyze(text[: config.DOCUMENT_CHAR_LIMIT], request_id=_request_id(request)),
        config.ANALYZE_TIMEOUT_SECONDS,
    )
    try:
        topics = normalize_topics(payload)
    except ValueError as e:
        raise GenerationError(str(e)) from e
    if not topics:
        raise InvalidTopicsError("The document could not be split into topics.")
    return {"analysis": {"topics": topics}, "text": text}


@app.post("/api/question", tags=["ai"], description="Generate the next interviewer question.")
async def question(
    request: Request,
    body: Dict[str, Any] = Body(..., description="JSON body with 'topic', 'assignmentText', 'previousQA', 'studentAnswer'"),
):
    topic = body.get("topic")
    if not isinstance(topic, dict):
        raise ValidationError("topic is required")
    client = get_question_client()
    text = await bounded(
        "question",
        client.generate_question(
            topic,
            str(body.get("assignmentText") or body.get("excerpt") or ""),
            _turns_from_payload(body.get("previousQA")),
            latest_answer=str(body.get("studentAnswer") or ""),
            modality=_parse_modality(body.get("modality")).value,
            request_id=_request_id(request),
        ),
        config.GENERATION_TIMEOUT_SECONDS,
    )
    return {"question": text or FALLBACK_QUESTION}


@app.post("/api/summary", tags=["ai"], description="Assess a finished interview transcript.")
async def summary(
    request: Request,
    body: Dict[str, Any] = Body(..., description="JSON body with 'transcript', 'topics', 'assignmentText'"),
):
    transcript = str(body.get("transcript") or "")
    if not transcript:
        raise ValidationError("transcript is required")
    topics = body.get("topics") if isinstance(body.get("topics"), list) else []
    client = get_summary_client()
    payload = await bounded(
        "summary",
        client.summarize(transcript, topics, str(body.get("assignmentText") or ""), request_id=_request_id(request)),
        config.GENERATION_TIMEOUT_SECONDS,
    )
    try:
        assessment = Assessment.from_payload(payload)
    except ValueError:
        assessment = Assessment.placeholder("unreadable response")
    return {"summary": assessment.to_dict()}


@app.post("/api/tts", tags=["audio"], description="Synthesize speech for a question.")
async def tts(
    request: Request,
    body: Dict[str, Any] = Body(..., description="JSON body with 'text'"),
):
    text = str(body.get("text") or "")
    if not text:
        raise ValidationError("text is required")
    client = get_speech_client()
    clip = await bounded("synthesize", client.synthesize(text, request_id=_request_id(request)), config.SYNTHESIS_TIMEOUT_SECONDS)
    return Response(content=clip.audio, media_type=clip.media_type)


@app.post("/api/stt", tags=["audio"], description="Transcribe a recorded answer.")
async def stt(
    request: Request,
    audio: UploadFile = File(...),
    context: str = Form(""),
):
    data = await audio.read()
    if len(data) < config.MIN_AUDIO_BYTES:
        return {"text": ""}
    client = get_transcribe_client()
    text = await bounded(
        "transcribe",
        client.transcribe(
            data,
            context_hint=context[: config.STT_CONTEXT_CHAR_LIMIT * 2],
            mime_type=audio.content_type or "audio/webm",
            request_id=_request_id(request),
        ),
        config.TRANSCRIBE_TIMEOUT_SECONDS,
    )
    return {"text": (text or "").strip()}
