from dotenv import load_dotenv
load_dotenv()  # Load .env file
import logging
import uuid
from typing import Any, Dict, List, Optional
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from pydantic import BaseModel, Field

# Nodebench Imports
from agentkit.agents.coordinator import CoordinatorAgent
from agentkit.agents.planner import execute_prompt, start_from_prompt
from agentkit.config import get_settings
from hub.core.db import ensure_user, get_engine, get_session, init_db
from hub.core.schemas import ExportFormat, MessageRole
from hub.observability import OperationContext, generate_correlation_id, log_exception, setup_logging
from hub.resilience import (
    ExternalServiceError,
    HubError,
    NotAuthenticatedError,
    NotAuthorizedError,
    NotFoundError,
    require_user,
)
from hub.services import (
    analytics,
    billing,
    chat_threads,
    entity_contexts,
    exporter,
    file_documents,
    gmail,
    timelines,
)

settings = get_settings()
setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
logger = logging.getLogger("server")


# Initialize Database on Startup
@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        init_db(get_engine())
        logger.info("Database initialized.")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise
    yield


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)

# Initialize Limiter
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def correlation_middleware(request: Request, call_next):
    correlation_id = request.headers.get("X-Request-ID") or generate_correlation_id()
    with OperationContext(correlation_id=correlation_id, user_id=request.headers.get("X-User-Id")):
        response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


# --- Error mapping ---

_STATUS_CODES = [
    (NotAuthenticatedError, 401),
    (NotAuthorizedError, 403),
    (NotFoundError, 404),
    (ExternalServiceError, 502),
]


@app.exception_handler(HubError)
async def hub_error_handler(request: Request, exc: HubError):
    status_code = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 400)
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())
    log_exception(logger, f"Unhandled error [ID: {error_id}] on {request.method} {request.url.path}", exc,
                  error_id=error_id, path=request.url.path)
    # Internal details stay in the log
    return JSONResponse(status_code=500, content={"detail": f"Internal server error. Error ID: {error_id}"})


# --- Types ---

class CoordinateRequest(BaseModel):
    request: str = Field(min_length=1)
    threadId: Optional[str] = None
    mode: Optional[str] = None


class PlanRequest(BaseModel):
    timelineId: str
    prompt: str = Field(min_length=1)
    provider: Optional[str] = None
    overrideGraph: Optional[Dict[str, Any]] = None


class ExecuteRequest(BaseModel):
    prompt: str = Field(min_length=1)
    provider: Optional[str] = None
    documentId: Optional[str] = None
    timelineId: Optional[str] = None


class CreateTimelineRequest(BaseModel):
    documentId: str
    name: str


class CheckoutRequest(BaseModel):
    successUrl: Optional[str] = None
    returnUrl: Optional[str] = None


class CreateFileDocumentRequest(BaseModel):
    fileId: str
    title: Optional[str] = None
    parentId: Optional[str] = None
    isPublic: bool = False


class StartThreadRequest(BaseModel):
    title: Optional[str] = None
    initialContext: Optional[str] = None


class AppendMessageRequest(BaseModel):
    role: MessageRole
    content: str
    timestamp: Optional[int] = None
    candidateDocs: Optional[List[Dict[str, Any]]] = None
    metadata: Optional[Dict[str, Any]] = None


# --- Helper: Dependencies ---

def get_db():
    with get_session() as session:
        yield session


def current_user(x_user_id: Optional[str] = Header(default=None), db=Depends(get_db)) -> Optional[str]:
    """Signed-in user from the X-User-Id header set by the auth proxy; None when anonymous."""
    if not x_user_id:
        return None
    ensure_user(db, x_user_id)
    return x_user_id


# --- Endpoints ---

@app.get("/api/health")
def health_check():
    return {"status": "ok", "service": "nodebench-backend", "version": settings.APP_VERSION}


# Agents

@app.post("/api/agents/coordinate")
@limiter.limit("5/minute")
async def coordinate(request: Request, body: CoordinateRequest, db=Depends(get_db), user_id=Depends(current_user)):
    result = await CoordinatorAgent().run(body.request, user_id=user_id, thread_id=body.threadId, session=db, mode=body.mode)
    return result.to_dict()


@app.post("/api/agents/plan")
@limiter.limit("5/minute")
async def plan_timeline(request: Request, body: PlanRequest, db=Depends(get_db), user_id=Depends(current_user)):
    return await start_from_prompt(
        db, user_id, body.timelineId, body.prompt, provider=body.provider, override_graph=body.overrideGraph
    )


@app.post("/api/agents/execute")
@limiter.limit("5/minute")
async def execute_plan(request: Request, body: ExecuteRequest, db=Depends(get_db), user_id=Depends(current_user)):
    return await execute_prompt(
        db, user_id, body.prompt, provider=body.provider, document_id=body.documentId, timeline_id=body.timelineId
    )


@app.get("/api/agents/runs")
def get_runs(timelineId: Optional[str] = None, db=Depends(get_db), user_id=Depends(current_user)):
    return timelines.list_runs(db, user_id, timeline_id=timelineId)


# Timelines

@app.post("/api/timelines")
def create_timeline(body: CreateTimelineRequest, db=Depends(get_db), user_id=Depends(current_user)):
    return {"timelineId": timelines.create_for_document(db, user_id, body.documentId, body.name)}


@app.get("/api/timelines")
def list_timelines(db=Depends(get_db), user_id=Depends(current_user)):
    return timelines.list_for_user(db, user_id)


@app.get("/api/timelines/{timeline_id}")
def get_timeline(timeline_id: str, db=Depends(get_db), user_id=Depends(current_user)):
    return timelines.get_timeline(db, user_id, timeline_id)


# Entity contexts

@app.get("/api/entity-contexts")
def list_entity_contexts(
    entityType: Optional[str] = None,
    limit: Optional[int] = None,
    db=Depends(get_db),
    user_id=Depends(current_user),
):
    return entity_contexts.list_entity_contexts(db, user_id, entity_type=entityType, limit=limit)


@app.get("/api/entity-contexts/search")
def search_entity_contexts(
    q: str,
    entityType: Optional[str] = None,
    db=Depends(get_db),
    user_id=Depends(current_user),
):
    return entity_contexts.search_entity_contexts(db, user_id, q, entity_type=entityType)


@app.get("/api/entity-contexts/stats")
def entity_context_stats(db=Depends(get_db), user_id=Depends(current_user)):
    return entity_contexts.get_entity_context_stats(db, user_id)


@app.post("/api/entity-contexts/mark-stale")
def mark_stale(db=Depends(get_db), user_id=Depends(current_user)):
    require_user(user_id)
    return entity_contexts.mark_stale_contexts(db)


@app.delete("/api/entity-contexts/{context_id}")
def delete_entity_context(context_id: str, db=Depends(get_db), user_id=Depends(current_user)):
    entity_contexts.delete_entity_context(db, user_id, context_id)
    return {"deleted": context_id}


# Billing

@app.get("/api/billing/subscription")
def get_subscription(db=Depends(get_db), user_id=Depends(current_user)):
    return billing.get_subscription(db, user_id)


@app.post("/api/billing/checkout")
def create_checkout(body: CheckoutRequest, db=Depends(get_db), user_id=Depends(current_user)):
    if body.successUrl:
        return billing.create_polar_checkout(db, user_id, body.successUrl)
    return billing.create_checkout_session(db, user_id, return_url=body.returnUrl)


@app.get("/api/billing/success")
def billing_success(session_id: str, db=Depends(get_db)):
    activated = billing.complete_checkout(db, session_id)
    origin = settings.APP_BASE_URL or ""
    return RedirectResponse(f"{origin}/?billing={'upgraded' if activated else 'pending'}", status_code=303)


# Analytics

@app.get("/api/analytics/roadmap")
def roadmap_analytics(
    start: Optional[int] = None,
    end: Optional[int] = None,
    tzOffset: int = Query(default=0, ge=-840, le=840),
    db=Depends(get_db),
    user_id=Depends(current_user),
):
    return analytics.get_roadmap_analytics(db, user_id, start_ms=start, end_ms=end, tz_offset_minutes=tzOffset)


# File documents

@app.post("/api/file-documents")
def create_file_document(body: CreateFileDocumentRequest, db=Depends(get_db), user_id=Depends(current_user)):
    document_id = file_documents.create_file_document(
        db, user_id, body.fileId, title=body.title, parent_id=body.parentId, is_public=body.isPublic
    )
    return {"documentId": document_id}


@app.get("/api/file-documents")
def list_file_documents(includeArchived: bool = False, db=Depends(get_db), user_id=Depends(current_user)):
    return file_documents.get_user_file_documents(db, user_id, include_archived=includeArchived)


@app.post("/api/file-documents/sync")
def sync_file_documents(db=Depends(get_db), user_id=Depends(current_user)):
    return {"created": file_documents.sync_files_to_documents(db, user_id)}


@app.get("/api/file-documents/{document_id}")
def get_file_document(document_id: str, db=Depends(get_db), user_id=Depends(current_user)):
    result = file_documents.get_file_document(db, user_id, document_id)
    if result is None:
        raise HTTPException(status_code=404, detail="File document not found")
    return result


# Gmail

@app.get("/api/gmail/connection")
def gmail_connection(db=Depends(get_db), user_id=Depends(current_user)):
    return gmail.get_connection(db, user_id)


@app.get("/api/gmail/inbox")
async def gmail_inbox(maxResults: Optional[int] = None, db=Depends(get_db), user_id=Depends(current_user)):
    return await gmail.fetch_inbox(db, user_id, max_results=maxResults)


@app.get("/api/gmail/oauth/start")
def gmail_oauth_start(user_id=Depends(current_user)):
    return {"url": gmail.build_authorization_url(user_id)}


@app.get("/api/gmail/oauth/callback")
async def gmail_oauth_callback(code: str, state: str, db=Depends(get_db),
                               x_user_id: Optional[str] = Header(default=None)):
    # The state was signed by /oauth/start for the user who began the flow
    return await gmail.complete_authorization(db, x_user_id or None, state, code)


# Chat threads

@app.post("/api/chat-threads")
def start_thread(body: StartThreadRequest, db=Depends(get_db), user_id=Depends(current_user)):
    thread = chat_threads.start_thread(db, user_id, title=body.title, initial_context=body.initialContext)
    return {"threadId": thread.id, "title": thread.title}


@app.get("/api/chat-threads")
def list_threads(limit: Optional[int] = None, db=Depends(get_db), user_id=Depends(current_user)):
    return chat_threads.list_threads_for_user(db, user_id, limit=limit)


@app.post("/api/chat-threads/{thread_id}/messages")
def append_message(thread_id: str, body: AppendMessageRequest, db=Depends(get_db), user_id=Depends(current_user)):
    node = chat_threads.append_message(
        db,
        user_id,
        thread_id,
        body.role,
        body.content,
        timestamp=body.timestamp,
        candidate_docs=body.candidateDocs,
        metadata=body.metadata,
    )
    return {"nodeId": node.id}


@app.get("/api/chat-threads/{thread_id}/export")
def export_thread(
    thread_id: str,
    format: ExportFormat = Query(default=ExportFormat.MARKDOWN),
    db=Depends(get_db),
    user_id=Depends(current_user),
):
    thread, messages = chat_threads.get_thread_messages(db, user_id, thread_id)
    thread_info = {
        "id": thread.id,
        "title": thread.title,
        "createdAt": thread.created_at.isoformat() if thread.created_at else None,
        "updatedAt": thread.last_modified.isoformat() if thread.last_modified else None,
    }
    content, filename, mime_type = exporter.export_thread(thread_info, messages, format)
    return Response(
        content=content,
        media_type=mime_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


if __name__ == "__main__":
    uvicorn.run("server:app", host="0.0.0.0", port=settings.PORT, reload=settings.ENVIRONMENT == "development")
