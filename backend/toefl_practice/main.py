"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the TOEFL practice backend.
Controllers are intentionally thin: they accept requests, delegate to
services and provider clients, and translate domain errors to HTTP
errors.

Endpoints implemented:
- POST /auth/register, POST /auth/login
- POST /content/generate, POST /audio/generate, POST /writing/correct
- POST /tasks/generate, POST /tasks/jobs, GET /tasks/jobs/{job_id}
- GET /tasks, GET /tasks/{task_id}, GET /tasks/{task_id}/speech
- POST /tasks/{task_id}/results, GET /results
- GET /flow and the POST /flow/... screen actions
- GET /providers/stats, GET /health, GET /
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session
import json
import logging
import os
import time
import uuid
from .database import engine, create_db_and_tables, get_session
from . import models, services
from .auth import get_current_user
from .config import settings
from .content import ContentClient
from .errors import ConfigurationError, NotFoundError, ProviderError
from .flow import FlowError, FlowStore, task_snapshot
from .playback import speech_plan
from .schemas import (
    AudioRequest,
    ContentRequest,
    PlayerAction,
    QuizSelection,
    RegisterIn,
    TokenOut,
    ResultSubmission,
    TaskGenerateRequest,
    WritingCorrectionRequest,
    WritingSubmission,
    WritingTaskRequest,
)
from .tts import SpeechClient
from .utils.jobs import GenerationJobStore
from .utils.provider_stats import get_provider_stats
from .utils.rate_limit import SlidingWindowLimiter

app = FastAPI(title="TOEFL Practice API")
logger = logging.getLogger("toefl.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

_generation_limiter = SlidingWindowLimiter(settings.GENERATION_RATE_LIMIT, settings.GENERATION_RATE_WINDOW_SECONDS)
_task_jobs = GenerationJobStore(max_jobs=settings.TASK_JOB_MAX_JOBS, ttl_seconds=settings.TASK_JOB_TTL_SECONDS)
_flows = FlowStore()

_LOGGED_PREFIXES = ("/tasks", "/content", "/audio", "/writing", "/flow")

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    logged = request.url.path.startswith(_LOGGED_PREFIXES)
    context = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "client": request.client.host if request.client else "unknown",
    }
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        context["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception("request_failed %s", json.dumps(context, ensure_ascii=True))
        raise
    response.headers["X-Request-ID"] = req_id
    if logged:
        context["status_code"] = response.status_code
        context["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
        logger.info("request_done %s", json.dumps(context, ensure_ascii=True))
    return response


def get_content_client() -> ContentClient:
    return ContentClient.from_settings()


def get_speech_client() -> SpeechClient:
    return SpeechClient.from_settings()


def _enforce_generation_rate_limit(user: models.User) -> None:
    allowed, retry_after = _generation_limiter.allow(f"user:{user.id}")
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


def _http_error(exc: Exception) -> HTTPException:
    """Map a domain exception to the HTTP error the client sees."""
    if isinstance(exc, ConfigurationError):
        logger.error("configuration missing: %s", exc)
        return HTTPException(status_code=500, detail=str(exc))
    if isinstance(exc, ProviderError):
        logger.error("provider failure: %s", exc)
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, FlowError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


_DOMAIN_ERRORS = (ConfigurationError, ProviderError, NotFoundError, ValueError)


def task_out(task: models.Task) -> dict:
    return {
        "id": task.id,
        "task_type": task.task_type,
        "title": task.title,
        "transcript": task.transcript,
        "audio_url": task.audio_url,
        "uses_browser_speech": task.task_type in services.LISTENING_TYPES and not task.audio_url,
        "questions": task.questions or [],
        "content": task.content or {},
        "created_at": task.created_at.isoformat(),
    }


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user.

    Registering an existing username is rejected with 409.
    """
    auth = services.AuthService(db)
    if auth.user_repo.get_by_username(payload.username.strip()):
        raise HTTPException(status_code=409, detail='username already registered')
    try:
        user = auth.register(payload.username, payload.password)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail='username already registered')
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'id': user.id, 'username': user.username}


@app.post('/auth/login', response_model=TokenOut)
def login(payload: RegisterIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token."""
    token = services.AuthService(db).authenticate(payload.username, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


@app.post('/content/generate')
def generate_content(payload: ContentRequest, user: models.User = Depends(get_current_user),
                     content: ContentClient = Depends(get_content_client)):
    """Return freshly generated content exactly as the model produced it."""
    _enforce_generation_rate_limit(user)
    try:
        return content.generate(payload.task_type, payload.writing_type)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@app.post('/audio/generate')
def generate_audio(payload: AudioRequest, user: models.User = Depends(get_current_user),
                   speech: SpeechClient = Depends(get_speech_client)):
    """Synthesize `text` and return `{audio_data}` as base64 MPEG."""
    _enforce_generation_rate_limit(user)
    try:
        return {'audio_data': speech.synthesize(payload.text, payload.task_type, payload.voice_id)}
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@app.post('/writing/correct')
def correct_writing(payload: WritingCorrectionRequest, user: models.User = Depends(get_current_user),
                    content: ContentClient = Depends(get_content_client)):
    """Rubric correction of a writing response.

    Responses under the minimum word count (150 integrated, 300
    independent) are rejected with 400 before the model is called.
    """
    _enforce_generation_rate_limit(user)
    try:
        return services.WritingService(content).correct(
            payload.writing_type, payload.user_response, prompt=payload.prompt,
            reading_passage=payload.reading_passage, lecture_summary=payload.lecture_summary,
        )
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@app.post('/tasks/generate')
def generate_task(payload: TaskGenerateRequest, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user),
                  content: ContentClient = Depends(get_content_client),
                  speech: SpeechClient = Depends(get_speech_client)):
    """Generate content and audio, insert the task and return it."""
    _enforce_generation_rate_limit(user)
    try:
        task = services.TaskService(db, content, speech).generate(user.id, payload.task_type)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)
    return task_out(task)


@app.post('/tasks/jobs', status_code=202)
def create_task_job(payload: TaskGenerateRequest, request: Request,
                    user: models.User = Depends(get_current_user),
                    content: ContentClient = Depends(get_content_client),
                    speech: SpeechClient = Depends(get_speech_client)):
    """Queue task generation and return a job id for polling."""
    _enforce_generation_rate_limit(user)
    user_id = user.id

    def worker(report):
        with Session(engine) as session:
            task = services.TaskService(session, content, speech).generate(user_id, payload.task_type, report)
            return task_out(task)

    created = _task_jobs.submit(
        user_id=user_id,
        task_type=payload.task_type,
        request_id=getattr(request.state, "request_id", ""),
        worker=worker,
    )
    return {**created, "status_url": f"/tasks/jobs/{created['job_id']}"}


@app.get('/tasks/jobs/{job_id}')
def get_task_job(job_id: str, user: models.User = Depends(get_current_user)):
    """Poll a generation job; the stage message follows the pipeline."""
    job = _task_jobs.get(job_id, user_id=user.id)
    if not job:
        raise HTTPException(status_code=404, detail="job not found")
    return job


@app.get('/tasks')
def list_tasks(task_type: str = None, db: Session = Depends(get_session),
               user: models.User = Depends(get_current_user)):
    """List the caller's generated tasks, newest first."""
    tasks = services.TaskService(db).task_repo.list_for_user(user.id, task_type)
    return [
        {'id': t.id, 'task_type': t.task_type, 'title': t.title, 'created_at': t.created_at.isoformat()}
        for t in tasks
    ]


@app.get('/tasks/{task_id}')
def get_task(task_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        return task_out(services.TaskService(db).get(task_id))
    except NotFoundError as e:
        raise _http_error(e)


@app.get('/tasks/{task_id}/speech')
def get_speech_plan(task_id: str, rate: float = 1.0, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    """Utterances and duration estimate for reading the task in the browser."""
    if not 0.1 <= rate <= 10.0:
        raise HTTPException(status_code=400, detail='rate must be between 0.1 and 10')
    try:
        task = services.TaskService(db).get(task_id)
        return speech_plan(task.task_type, task.transcript, rate)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@app.post('/tasks/{task_id}/results')
def submit_results(task_id: str, submission: ResultSubmission, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    """Score a complete answer list and store it as a user result."""
    try:
        return services.ResultService(db).record(user.id, task_id, submission.answers)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)


@app.get('/results')
def list_results(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.ResultService(db).history(user.id)


def _save_flow_result(db: Session, user_id: int, flow) -> bool:
    """Persist a finished flow quiz; a failed insert leaves the results screen up."""
    try:
        services.ResultService(db).record(user_id, flow.task["id"], flow.answers, flow.score)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("saving results failed for task %s", flow.task["id"])
        return False
    return True


@app.get('/flow')
def get_flow(user: models.User = Depends(get_current_user)):
    """Return the current screen and what it renders."""
    with _flows.use(user.id) as flow:
        return flow.view()


@app.post('/flow/generate')
def flow_generate(payload: TaskGenerateRequest, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user),
                  content: ContentClient = Depends(get_content_client),
                  speech: SpeechClient = Depends(get_speech_client)):
    """Generate a task from the home screen and open it in the player."""
    _enforce_generation_rate_limit(user)
    try:
        task = services.TaskService(db, content, speech).generate(user.id, payload.task_type)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)
    with _flows.use(user.id) as flow:
        try:
            flow.open_task(task_snapshot(task))
        except _DOMAIN_ERRORS as e:
            raise _http_error(e)
        return flow.view()


@app.post('/flow/tasks/{task_id}')
def flow_open_task(task_id: str, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    with _flows.use(user.id) as flow:
        try:
            flow.open_task(task_snapshot(services.TaskService(db).get(task_id)))
        except _DOMAIN_ERRORS as e:
            raise _http_error(e)
        return flow.view()


@app.post('/flow/player')
def flow_player(payload: PlayerAction, user: models.User = Depends(get_current_user)):
    """Drive the browser-speech playback clock of the open task."""
    with _flows.use(user.id) as flow:
        try:
            return flow.player_action(payload.action, payload.position)
        except ValueError as e:
            raise _http_error(e)


def _flow_step(user: models.User, step: str, *args):
    with _flows.use(user.id) as flow:
        try:
            getattr(flow, step)(*args)
        except ValueError as e:
            raise _http_error(e)
        return flow.view()


@app.post('/flow/audio-complete')
def flow_audio_complete(user: models.User = Depends(get_current_user)):
    return _flow_step(user, "audio_complete")


@app.post('/flow/back')
def flow_back(user: models.User = Depends(get_current_user)):
    return _flow_step(user, "back_to_player")


@app.post('/flow/quiz/select')
def flow_quiz_select(payload: QuizSelection, user: models.User = Depends(get_current_user)):
    return _flow_step(user, "select", payload.option)


@app.post('/flow/quiz/previous')
def flow_quiz_previous(user: models.User = Depends(get_current_user)):
    return _flow_step(user, "previous")


@app.post('/flow/quiz/next')
def flow_quiz_next(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Store the selection and advance; finishing the quiz saves the result."""
    with _flows.use(user.id) as flow:
        try:
            finished = flow.next()
        except ValueError as e:
            raise _http_error(e)
        view = flow.view()
        if finished:
            view["saved"] = _save_flow_result(db, user.id, flow)
        return view


@app.post('/flow/quiz')
def flow_quiz_complete(submission: ResultSubmission, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    """Finish the open quiz with a full answer list."""
    with _flows.use(user.id) as flow:
        try:
            flow.complete_quiz(submission.answers)
        except ValueError as e:
            raise _http_error(e)
        view = flow.view()
        view["saved"] = _save_flow_result(db, user.id, flow)
        return view


@app.post('/flow/restart')
def flow_restart(user: models.User = Depends(get_current_user)):
    return _flow_step(user, "restart")


@app.post('/flow/home')
def flow_home(user: models.User = Depends(get_current_user)):
    return _flow_step(user, "home")


@app.post('/flow/writing')
def flow_writing(payload: WritingTaskRequest, db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user),
                 content: ContentClient = Depends(get_content_client)):
    """Generate a writing task and open the writing screen."""
    _enforce_generation_rate_limit(user)
    try:
        task = services.TaskService(db, content).generate_writing(user.id, payload.writing_type)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)
    with _flows.use(user.id) as flow:
        flow.open_writing(task_snapshot(task))
        return flow.view()


@app.post('/flow/writing/submit')
def flow_writing_submit(payload: WritingSubmission, db: Session = Depends(get_session),
                        user: models.User = Depends(get_current_user),
                        content: ContentClient = Depends(get_content_client)):
    """Correct the response and show the writing results screen.

    The screen is checked before the correction is requested and again
    before it is shown; the flow is not locked while the model runs.
    """
    with _flows.use(user.id) as flow:
        try:
            task_id = flow.require_writing_task()["id"]
        except FlowError as e:
            raise _http_error(e)
    _enforce_generation_rate_limit(user)
    try:
        task = services.TaskService(db).get(task_id)
        correction = services.WritingService(content).correct_task(task, payload.response)
    except _DOMAIN_ERRORS as e:
        raise _http_error(e)
    with _flows.use(user.id) as flow:
        try:
            flow.submit_writing(payload.response, correction, task_id)
        except FlowError as e:
            raise _http_error(e)
        return flow.view()


@app.post('/flow/writing/retry')
def flow_writing_retry(user: models.User = Depends(get_current_user)):
    return _flow_step(user, "retry_writing")


@app.get('/providers/stats')
def provider_stats(user: models.User = Depends(get_current_user)):
    """Aggregate LLM/TTS call statistics from the provider event log."""
    return get_provider_stats()


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {
        "status": "ok",
        "llm_configured": bool(settings.LLM_API_KEY),
        "tts_configured": bool(settings.ELEVENLABS_API_KEY),
    }


@app.get("/", response_class=HTMLResponse)
def home():
    """Minimal homepage for quick manual testing."""
    return """
    <!DOCTYPE html>
    <html>
    <head>
      <meta charset="UTF-8" />
      <title>TOEFL Practice API</title>
      <style>
        body { font-family: Arial, sans-serif; margin: 32px; }
        a { color: #0a6; }
        .card { max-width: 640px; padding: 16px; border: 1px solid #ddd; border-radius: 8px; }
      </style>
    </head>
    <body>
      <div class="card">
        <h1>TOEFL Listening, Reading &amp; Writing Practice</h1>
        <p>AI-generated practice tasks with automatic grading and detailed feedback.</p>
        <ul>
          <li><a href="/docs">Swagger UI</a></li>
          <li><a href="/health">Health</a></li>
        </ul>
        <p>Use <code>/auth/register</code> + <code>/auth/login</code> to get a token, then
        <code>POST /flow/generate</code> with a lecture, conversation or reading task type.</p>
      </div>
    </body>
    </html>
    """
