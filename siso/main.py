import logging
from contextlib import asynccontextmanager
from typing import Annotated, List

from fastapi import FastAPI, Response, Request, Depends, status, Query
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from siso import chats as chat_service
from siso import messages as message_service
from siso import users as user_service
from siso.config import settings
from siso.content import parse_content
from siso.errors import Forbidden, SisoError, StoreError
from siso.logging_utils import setup_logging, RequestLoggingMiddleware, log_request_data
from siso.metrics import record_chat_event, get_metrics, get_metrics_content_type
from siso.storage import init_db, check_db_health, get_db
from siso.utils import verify_admin_code
from siso.schemas import (
    AdminStatsRequest,
    AdminStatsResponse,
    ChatIdResponse,
    ChatResponse,
    CreateChatRequest,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    OkResponse,
    ProfileRequest,
    ProfileResponse,
    SendMessageRequest,
    SendMessageResponse,
    UserMatchResponse,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables before the first request is served."""
    init_db()
    yield


app = FastAPI(
    title="siso",
    description="Ephemeral two-party messaging with server-encrypted view-once messages",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(SisoError)
async def siso_error_handler(request: Request, exc: SisoError) -> JSONResponse:
    """Map service-layer errors to their HTTP status with a {"detail": ...} body."""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Persistence failures outside the service-layer wrappers (e.g. reads)."""
    logger.error(f"Database error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=StoreError().to_dict(),
    )


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid argument"},
    500: {"model": ErrorResponse, "description": "Storage failure"},
}


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Process is up. Never touches the database."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Ready to serve: a passphrase is configured and the database answers
    with the users, chats and messages tables in place. 503 otherwise.
    """
    if not settings.ENCRYPTION_PASSPHRASE:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="ENCRYPTION_PASSPHRASE not configured"
        )

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Chat Routes
# =============================================================================

@app.post("/chats", response_model=ChatIdResponse, responses=ERROR_RESPONSES)
def create_chat(
    body: CreateChatRequest,
    request: Request,
    db: Session = Depends(get_db)
) -> ChatIdResponse:
    """
    Find the chat between two users, creating it on first contact.

    Order-independent and idempotent: both participants get the same chatId.
    """
    chat_id, created = chat_service.create_or_get_chat(db, body.my_user_id, body.other_user_id)

    result = "created" if created else "existing"
    record_chat_event(result)
    log_request_data(request, chat_id=chat_id, result=result)

    return ChatIdResponse(chat_id=chat_id)


@app.get("/chats", response_model=List[ChatResponse], responses=ERROR_RESPONSES)
def list_chats(
    user_id: Annotated[str | None, Query(alias="userId", description="Participant id")] = None,
    db: Session = Depends(get_db)
) -> List[ChatResponse]:
    """List chats the user participates in, newest first."""
    chats = chat_service.list_chats(db, user_id)
    return [ChatResponse.model_validate(chat) for chat in chats]


@app.delete(
    "/chats/{chat_id}",
    response_model=OkResponse,
    responses={**ERROR_RESPONSES, 403: {"model": ErrorResponse, "description": "Not a participant"}},
)
def delete_chat(
    chat_id: str,
    request: Request,
    user_id: Annotated[str | None, Query(alias="userId", description="Requesting user id")] = None,
    db: Session = Depends(get_db)
) -> OkResponse:
    """
    Delete a chat and all of its messages.

    Only a participant may delete; anyone else gets 403.
    """
    try:
        deleted = chat_service.delete_chat(db, chat_id, user_id)
    except Forbidden:
        record_chat_event("forbidden")
        log_request_data(request, chat_id=chat_id, result="forbidden")
        raise

    record_chat_event("deleted")
    log_request_data(request, chat_id=chat_id, result="deleted")
    logger.info(f"DELETE /chats: removed chat with {deleted} pending messages")

    return OkResponse()


# =============================================================================
# Message Routes
# =============================================================================

@app.post(
    "/messages",
    response_model=SendMessageResponse,
    responses={**ERROR_RESPONSES, 403: {"model": ErrorResponse, "description": "Not a participant"}},
)
def send_message(
    body: SendMessageRequest,
    request: Request,
    db: Session = Depends(get_db)
) -> SendMessageResponse:
    """
    Encrypt and store a message for the other participant of a chat.

    The sender and receiver must be exactly the chat's two participants.
    """
    content = parse_content(body.content)

    chat = chat_service.get_chat(db, body.chat_id)
    if (
        chat is None
        or body.sender_id == body.receiver_id
        or not chat.has_participant(body.sender_id)
        or not chat.has_participant(body.receiver_id)
    ):
        log_request_data(request, chat_id=body.chat_id, result="forbidden")
        raise Forbidden("Sender and receiver must be the participants of this chat")

    message_id = message_service.append_message(
        db,
        chat_id=body.chat_id,
        sender_id=body.sender_id,
        receiver_id=body.receiver_id,
        content=content,
    )
    log_request_data(request, chat_id=body.chat_id, message_id=message_id, result="sent")

    return SendMessageResponse(id=message_id)


@app.get("/messages", response_model=List[MessageResponse], responses=ERROR_RESPONSES)
def fetch_inbox(
    chat_id: Annotated[str | None, Query(alias="chatId")] = None,
    user_id: Annotated[str | None, Query(alias="userId")] = None,
    db: Session = Depends(get_db)
) -> List[MessageResponse]:
    """
    Decrypted messages addressed to userId in chatId, oldest first.

    Fetching does not consume: messages are re-delivered until viewed.
    """
    inbox = message_service.list_inbox(db, chat_id, user_id)

    return [
        MessageResponse(
            id=msg.id,
            chat_id=msg.chat_id,
            sender_id=msg.sender_id,
            receiver_id=msg.receiver_id,
            content=msg.wire_content,
            kind=msg.kind,
            created_at=msg.created_at,
        )
        for msg in inbox
    ]


@app.post("/messages/{message_id}/view", response_model=OkResponse, responses=ERROR_RESPONSES)
def view_message(
    message_id: str,
    request: Request,
    db: Session = Depends(get_db)
) -> OkResponse:
    """
    Mark a message as viewed, which deletes it permanently.

    Idempotent: viewing an already-deleted message also returns ok.
    """
    message_service.consume_on_view(db, message_id)
    log_request_data(request, message_id=message_id, result="viewed")
    return OkResponse()


# =============================================================================
# User Routes
# =============================================================================

@app.post("/users/profile", response_model=OkResponse, responses=ERROR_RESPONSES)
def set_profile(
    body: ProfileRequest,
    db: Session = Depends(get_db)
) -> OkResponse:
    """Set or replace the caller's display name."""
    user_service.upsert_profile(db, body.user_id, body.display_name)
    return OkResponse()


@app.get("/users/find", response_model=List[UserMatchResponse], responses=ERROR_RESPONSES)
def find_users(
    q: Annotated[str | None, Query(description="Case-insensitive substring of the display name")] = None,
    db: Session = Depends(get_db)
) -> List[UserMatchResponse]:
    """Up to 10 users whose display name contains q, most recently updated first."""
    users = user_service.find_users(db, q)
    return [UserMatchResponse.model_validate(user) for user in users]


@app.get("/users", response_model=List[ProfileResponse], responses=ERROR_RESPONSES)
def get_profiles(
    ids: Annotated[str | None, Query(description="Comma-separated user ids")] = None,
    db: Session = Depends(get_db)
) -> List[ProfileResponse]:
    """Display names for a set of user ids; unknown ids are omitted."""
    users = user_service.get_profiles(db, user_service.parse_id_list(ids))
    return [ProfileResponse.model_validate(user) for user in users]


# =============================================================================
# Admin Route
# =============================================================================

@app.post(
    "/admin/stats",
    response_model=AdminStatsResponse,
    responses={**ERROR_RESPONSES, 403: {"model": ErrorResponse, "description": "Wrong admin code"}},
)
def admin_stats(
    body: AdminStatsRequest,
    db: Session = Depends(get_db)
) -> AdminStatsResponse:
    """
    Aggregate counts for the admin dashboard.

    Requires the configured ADMIN_CODE.
    """
    if not verify_admin_code(body.admin_code, settings.ADMIN_CODE):
        raise Forbidden("Not authorized (wrong admin code)")

    stats = user_service.get_stats(db, body.user_id)
    logger.info(f"POST /admin/stats: {stats['message_count']} messages pending")

    return AdminStatsResponse(**stats)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Prometheus text exposition of the default registry.

    Includes http_requests_total, request_latency_seconds,
    message_events_total and chat_events_total.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
