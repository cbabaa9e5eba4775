"""
services/chat/router.py
Manager ↔ cleaner chat. One dialog per pair, messages with optional
attachments, read markers per side, and a WebSocket relay fed by Redis pub/sub.
"""

import asyncio
import contextlib
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from config.database import get_db, get_db_context
from config.redis_client import RedisCache, dialog_channel, get_redis
from config.settings import settings
from services.notification.telegram import enqueue_telegram
from shared.middleware.auth import decode_token, load_active_profile, require_participant
from shared.models.models import (
    CLEANER_ROLES,
    MANAGER_ROLES,
    Dialog,
    Message,
    MessageFile,
    Profile,
)
from shared.schemas.schemas import (
    ChatFileResponse,
    ChatMessageResponse,
    DialogCreateRequest,
    DialogResponse,
    MessageResponse,
)
from shared.utils.errors import ErrorCode, api_error, forbidden, not_found
from shared.utils.storage import (
    build_chat_key,
    file_extension,
    generate_signed_url,
    media_kind,
    upload_object,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


# ── Helpers ───────────────────────────────────────────────────

def _side(user: Profile) -> str:
    if user.role in MANAGER_ROLES:
        return "manager"
    if user.role in CLEANER_ROLES:
        return "cleaner"
    raise forbidden("Only managers and cleaners can chat")


def _counterpart_id(dialog: Dialog, user: Profile) -> uuid.UUID:
    return dialog.cleaner_id if dialog.manager_id == user.id else dialog.manager_id


async def _get_dialog_for(dialog_id: UUID, user: Profile, db: AsyncSession) -> Dialog:
    dialog = await db.scalar(select(Dialog).where(Dialog.id == dialog_id))
    if not dialog:
        raise not_found("Dialog")
    if user.id not in (dialog.manager_id, dialog.cleaner_id):
        raise forbidden("Not a participant of this dialog")
    return dialog


def _message_response(message: Message, files: List[MessageFile]) -> ChatMessageResponse:
    return ChatMessageResponse(
        id=message.id,
        dialog_id=message.dialog_id,
        sender_id=message.sender_id,
        sender_role=message.sender_role,
        text=message.text,
        created_at=message.created_at,
        files=[
            ChatFileResponse(
                id=f.id,
                file_type=f.file_type,
                file_url=f.file_url,
                url=generate_signed_url(settings.S3_BUCKET_CHAT, f.file_url),
            )
            for f in files
        ],
    )


async def _files_by_message(db: AsyncSession, message_ids) -> dict:
    grouped: dict = {}
    if not message_ids:
        return grouped
    result = await db.execute(
        select(MessageFile)
        .where(MessageFile.message_id.in_(message_ids))
        .order_by(MessageFile.created_at)
    )
    for f in result.scalars().all():
        grouped.setdefault(f.message_id, []).append(f)
    return grouped


# ── Dialogs ───────────────────────────────────────────────────

@router.post("/dialogs", response_model=DialogResponse)
async def open_dialog(
    data: DialogCreateRequest,
    current_user: Profile = Depends(require_participant),
    db: AsyncSession = Depends(get_db),
):
    """Get or create the dialog between the caller and a counterpart of the other side."""
    side = _side(current_user)
    counterpart = await db.scalar(select(Profile).where(Profile.id == data.counterpart_id))
    expected_roles = CLEANER_ROLES if side == "manager" else MANAGER_ROLES
    if (
        not counterpart
        or not counterpart.is_active
        or counterpart.role not in expected_roles
        or counterpart.is_demo != current_user.is_demo
    ):
        raise not_found("Counterpart")

    if side == "manager":
        manager_id, cleaner_id = current_user.id, counterpart.id
    else:
        manager_id, cleaner_id = counterpart.id, current_user.id

    counterpart_name = counterpart.display_name
    pair = select(Dialog).where(Dialog.manager_id == manager_id, Dialog.cleaner_id == cleaner_id)
    dialog = await db.scalar(pair)
    if dialog is None:
        dialog = Dialog(manager_id=manager_id, cleaner_id=cleaner_id)
        db.add(dialog)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            dialog = await db.scalar(pair)

    return DialogResponse(
        id=dialog.id,
        manager_id=dialog.manager_id,
        cleaner_id=dialog.cleaner_id,
        counterpart_name=counterpart_name,
    )


@router.get("/dialogs", response_model=List[DialogResponse])
async def list_dialogs(
    current_user: Profile = Depends(require_participant),
    db: AsyncSession = Depends(get_db),
):
    """Caller's dialogs, most recent activity first, with unread counts."""
    side = _side(current_user)
    my_read = Dialog.manager_last_read_at if side == "manager" else Dialog.cleaner_last_read_at
    counterpart_col = Dialog.cleaner_id if side == "manager" else Dialog.manager_id

    unread = (
        select(func.count(Message.id))
        .where(
            Message.dialog_id == Dialog.id,
            Message.sender_id != current_user.id,
            or_(my_read.is_(None), Message.created_at > my_read),
        )
        .correlate(Dialog)
        .scalar_subquery()
    )
    last_at = (
        select(func.max(Message.created_at))
        .where(Message.dialog_id == Dialog.id)
        .correlate(Dialog)
        .scalar_subquery()
    )

    rows = (await db.execute(
        select(Dialog, Profile.name, Profile.email, unread.label("unread"), last_at.label("last_at"))
        .join(Profile, Profile.id == counterpart_col)
        .where(or_(Dialog.manager_id == current_user.id, Dialog.cleaner_id == current_user.id))
    )).all()

    items = [
        DialogResponse(
            id=dialog.id,
            manager_id=dialog.manager_id,
            cleaner_id=dialog.cleaner_id,
            counterpart_name=name or email,
            unread_count=unread_count or 0,
            last_message_at=last_message_at,
        )
        for dialog, name, email, unread_count, last_message_at in rows
    ]
    items.sort(key=lambda d: str(d.last_message_at or ""), reverse=True)
    return items


@router.post("/dialogs/{dialog_id}/read", response_model=MessageResponse)
async def mark_dialog_read(
    dialog_id: UUID,
    current_user: Profile = Depends(require_participant),
    db: AsyncSession = Depends(get_db),
):
    dialog = await _get_dialog_for(dialog_id, current_user, db)
    now = datetime.now(timezone.utc)
    if dialog.manager_id == current_user.id:
        dialog.manager_last_read_at = now
    else:
        dialog.cleaner_last_read_at = now
    await db.commit()
    return MessageResponse(message="Marked as read")


# ── Messages ──────────────────────────────────────────────────

@router.get("/dialogs/{dialog_id}/messages", response_model=List[ChatMessageResponse])
async def list_messages(
    dialog_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    current_user: Profile = Depends(require_participant),
    db: AsyncSession = Depends(get_db),
):
    """Oldest first within the requested page; attachments carry signed URLs."""
    dialog = await _get_dialog_for(dialog_id, current_user, db)
    result = await db.execute(
        select(Message)
        .where(Message.dialog_id == dialog.id)
        .order_by(Message.created_at.desc(), Message.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    messages = list(reversed(result.scalars().all()))
    files = await _files_by_message(db, [m.id for m in messages])
    return [_message_response(m, files.get(m.id, [])) for m in messages]


@router.post(
    "/dialogs/{dialog_id}/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    dialog_id: UUID,
    text: Optional[str] = Form(None),
    files: List[UploadFile] = File(default=[]),
    current_user: Profile = Depends(require_participant),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Store a message (text and/or attachments), publish it on the dialog's
    Redis channel for open sockets, and notify the counterpart on Telegram.
    """
    dialog = await _get_dialog_for(dialog_id, current_user, db)
    body_text = (text or "").strip() or None
    if body_text is None and not files:
        raise api_error(400, ErrorCode.VALIDATION_ERROR, "Message is empty")

    stored = []
    for upload in files:
        content = await upload.read()
        if len(content) > settings.MAX_UPLOAD_BYTES:
            raise api_error(
                400, ErrorCode.INVALID_FILE,
                f"{upload.filename}: file exceeds {settings.MAX_UPLOAD_BYTES // (1024 * 1024)} MB",
            )
        key = build_chat_key(dialog.id, file_extension(upload.filename, upload.content_type))
        await run_in_threadpool(upload_object, settings.S3_BUCKET_CHAT, key, content, upload.content_type)
        stored.append((key, media_kind(upload.content_type) or "file"))

    message = Message(
        dialog_id=dialog.id,
        sender_id=current_user.id,
        sender_role=_side(current_user),
        text=body_text,
    )
    db.add(message)
    await db.flush()
    message_files = [
        MessageFile(message_id=message.id, file_url=key, file_type=kind) for key, kind in stored
    ]
    db.add_all(message_files)
    await db.commit()
    await db.refresh(message)
    for f in message_files:
        await db.refresh(f)

    response = _message_response(message, message_files)
    try:
        await RedisCache(redis).publish(
            dialog_channel(str(dialog.id)),
            {"type": "new_message", "message": response.model_dump(mode="json")},
        )
    except Exception as e:
        logger.warning(f"Chat publish failed for dialog {dialog.id}: {e}")

    enqueue_telegram(
        _counterpart_id(dialog, current_user),
        "new_message",
        {
            "dialog_id": str(dialog.id),
            "sender_name": current_user.display_name,
            "text": (body_text or "")[:200],
            "files_count": len(stored),
        },
    )
    return response


# ── Realtime ──────────────────────────────────────────────────

async def stop_relay(task: asyncio.Task) -> None:
    """Cancel the pub/sub relay and collect its outcome."""
    task.cancel()
    try:
        with contextlib.suppress(asyncio.CancelledError):
            await task
    except (WebSocketDisconnect, RuntimeError) as e:
        # send_text on a socket the client already closed
        logger.debug(f"Relay stopped after send failure: {e}")


@router.websocket("/dialogs/{dialog_id}/ws")
async def dialog_socket(websocket: WebSocket, dialog_id: UUID, token: str = Query(...)):
    """
    Relay new messages of one dialog. Authenticates with ?token=<access token>.
    Messages are sent through the REST endpoint; inbound frames are ignored.
    """
    redis = get_redis()
    try:
        token_data = await decode_token(token, redis)
        async with get_db_context() as db:
            user = await load_active_profile(db, token_data.user_id)
            await _get_dialog_for(dialog_id, user, db)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    pubsub = redis.pubsub()
    await pubsub.subscribe(dialog_channel(str(dialog_id)))

    async def relay():
        async for event in pubsub.listen():
            if event.get("type") == "message":
                await websocket.send_text(event["data"])

    relay_task = asyncio.create_task(relay())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"Socket closed for dialog {dialog_id}")
    finally:
        await stop_relay(relay_task)
        await pubsub.unsubscribe(dialog_channel(str(dialog_id)))
        await pubsub.aclose()
