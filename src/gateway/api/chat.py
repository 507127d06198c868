"""Chat REST API endpoints.

Thin query / management surface over the chat stores:
- GET    /api/v1/chat/history/{user_id}         -> message history
- DELETE /api/v1/chat/history/{user_id}         -> clear history (admin)
- GET    /api/v1/chat/tickets/{user_id}         -> ticket list
- GET    /api/v1/chat/tickets/{user_id}/active  -> active open ticket
- GET    /api/v1/chat/stats/{user_id}           -> per-user statistics
- POST   /api/v1/chat/uploads                   -> upload an attachment
- DELETE /api/v1/chat/messages/{id}/attachments/{public_id}
- GET    /api/v1/chat/admin/conversations[/{user_id}]
- GET    /api/v1/chat/admin/tickets/pending
- POST   /api/v1/chat/admin/mark-read

Non-admin callers may only touch their own conversations.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, File, Query, UploadFile
from pydantic import BaseModel, Field, field_validator

from src.chat.attachments import UPLOAD_LIMITS, validate_upload
from src.gateway.app import current_user
from src.gateway.middleware.auth import TokenPayload  # noqa: TC001 - required at runtime for FastAPI dependencies
from src.shared.errors import (
    AuthorizationError,
    NotFoundError,
    PortUnavailableError,
    ValidationError,
)
from src.shared.types import ChatCategory, PartyRole, TicketStatus

if TYPE_CHECKING:
    from src.chat.conversations import ConversationService
    from src.ports.media_storage_port import MediaStoragePort
    from src.ports.message_store_port import MessageStorePort
    from src.ports.ticket_store_port import TicketStorePort

logger = logging.getLogger(__name__)

_UPLOAD_CHUNK_BYTES = 1024 * 1024
_MAX_UPLOAD_BYTES = max(limits.max_bytes for limits in UPLOAD_LIMITS.values())


class MarkReadRequest(BaseModel):
    """Admin marks a customer's messages as read."""

    user_id: str = Field(alias="userId", min_length=1)
    chat_category: str = Field(alias="chatCategory")
    ticket_id: str | None = Field(default=None, alias="ticketId")

    @field_validator("chat_category")
    @classmethod
    def validate_chat_category(cls, v: str) -> str:
        if v not in ChatCategory.ALL:
            msg = "chatCategory must be 'sales' or 'support'"
            raise ValueError(msg)
        return v


def _require_owner_or_admin(user: TokenPayload, user_id: str) -> None:
    if not user.is_admin and user.user_id != user_id:
        raise AuthorizationError(f"conversation of user {user_id}")


def _admin_user(user: TokenPayload = Depends(current_user)) -> TokenPayload:  # noqa: B008
    if not user.is_admin:
        raise AuthorizationError("admin:access")
    return user


async def _read_limited(file: UploadFile, limit: int, chunk_size: int = _UPLOAD_CHUNK_BYTES) -> bytes:
    """Read an upload in chunks, failing as soon as it exceeds ``limit`` bytes."""
    chunks: list[bytes] = []
    total = 0
    while chunk := await file.read(chunk_size):
        total += len(chunk)
        if total > limit:
            msg = f"File too large. Maximum size: {limit // (1024 * 1024)}MB"
            raise ValidationError(msg, field="file")
        chunks.append(chunk)
    return b"".join(chunks)


def _check_category(chat_category: str) -> str:
    if chat_category not in ChatCategory.ALL:
        msg = f"Unknown chat category: {chat_category!r}"
        raise ValidationError(msg, field="chatCategory")
    return chat_category


def create_chat_router(
    *,
    messages: MessageStorePort,
    tickets: TicketStorePort,
    conversations: ConversationService,
    media: MediaStoragePort | None = None,
) -> APIRouter:
    """Create chat API router with injected store dependencies."""
    router = APIRouter(prefix="/api/v1/chat", tags=["chat"])

    @router.get("/history/{user_id}")
    async def get_history(
        user_id: str,
        chat_category: str = Query(ChatCategory.SALES, alias="chatCategory"),
        ticket_id: str | None = Query(None, alias="ticketId"),
        user: TokenPayload = Depends(current_user),  # noqa: B008
    ) -> dict[str, Any]:
        """Message history of one conversation, oldest first."""
        _require_owner_or_admin(user, user_id)
        _check_category(chat_category)
        if chat_category == ChatCategory.SALES:
            ticket_id = None
        elif ticket_id is not None:
            ticket = await tickets.get(ticket_id)
            if ticket is None or ticket.user_id != user_id:
                raise NotFoundError("ticket", ticket_id)

        history = await messages.query(user_id, chat_category, ticket_id)
        return {
            "userId": user_id,
            "chatCategory": chat_category,
            "ticketId": ticket_id,
            "messages": [m.to_dict() for m in history],
            "count": len(history),
        }

    @router.delete("/history/{user_id}")
    async def clear_history(
        user_id: str,
        chat_category: str | None = Query(None, alias="chatCategory"),
        user: TokenPayload = Depends(_admin_user),  # noqa: B008
    ) -> dict[str, Any]:
        """Bulk-delete a user's history (one category or all)."""
        if chat_category is not None:
            _check_category(chat_category)
        deleted = await messages.delete_all(user_id, chat_category)
        logger.info(
            "History cleared user=%s category=%s by=%s count=%d",
            user_id,
            chat_category or "all",
            user.user_id,
            deleted,
        )
        return {"success": True, "deleted": deleted}

    @router.get("/tickets/{user_id}")
    async def list_tickets(
        user_id: str,
        status: str | None = Query(None),
        user: TokenPayload = Depends(current_user),  # noqa: B008
    ) -> dict[str, Any]:
        _require_owner_or_admin(user, user_id)
        if status is not None and status not in TicketStatus.ALL:
            msg = f"Unknown ticket status: {status!r}"
            raise ValidationError(msg, field="status")
        found = await tickets.list(user_id, status)
        return {"tickets": [t.to_dict() for t in found], "count": len(found)}

    @router.get("/tickets/{user_id}/active")
    async def get_active_ticket(
        user_id: str,
        user: TokenPayload = Depends(current_user),  # noqa: B008
    ) -> dict[str, Any]:
        _require_owner_or_admin(user, user_id)
        ticket = await tickets.find_active_open(user_id)
        if ticket is None:
            raise NotFoundError("active ticket", user_id)
        return ticket.to_dict()

    @router.get("/stats/{user_id}")
    async def get_stats(
        user_id: str,
        user: TokenPayload = Depends(current_user),  # noqa: B008
    ) -> dict[str, Any]:
        _require_owner_or_admin(user, user_id)
        stats = await conversations.user_stats(user_id)
        return stats.to_dict()

    @router.post("/uploads", status_code=201)
    async def upload_attachment(
        file: UploadFile = File(...),  # noqa: B008
        user: TokenPayload = Depends(current_user),  # noqa: B008
    ) -> dict[str, Any]:
        """Upload an image or video; returns the attachment record to send."""
        if media is None:
            raise PortUnavailableError("media_storage", "Media storage is not configured")
        filename = file.filename or ""
        content_type = file.content_type or "application/octet-stream"
        if file.size is not None:
            validate_upload(filename=filename, content_type=content_type, size=file.size)
        data = await _read_limited(file, _MAX_UPLOAD_BYTES)
        kind = validate_upload(filename=filename, content_type=content_type, size=len(data))
        uploaded = await media.upload(data, filename, kind, content_type)
        logger.info("Attachment uploaded user=%s public_id=%s", user.user_id, uploaded.public_id)
        return uploaded.to_dict()

    @router.delete("/messages/{message_id}/attachments/{public_id:path}")
    async def delete_attachment(
        message_id: str,
        public_id: str,
        kind: str | None = Query(None),
        user: TokenPayload = Depends(current_user),  # noqa: B008
    ) -> dict[str, Any]:
        """Detach an attachment from a message and delete it from the media host."""
        message = await messages.get(message_id)
        if message is None:
            raise NotFoundError("message", message_id)
        _require_owner_or_admin(user, message.user_id)
        attachment = next((a for a in message.attachments if a.public_id == public_id), None)
        if attachment is None:
            raise NotFoundError("attachment", public_id)

        removed = await messages.remove_attachment(message_id, public_id)
        deleted = False
        if media is not None:
            deleted = await media.delete(public_id, kind or attachment.kind)
        return {"success": removed, "removed": removed, "deleted": deleted}

    # -- Admin --

    @router.get("/admin/conversations")
    async def admin_active_conversations(
        chat_category: str = Query("all", alias="chatCategory"),
        _: TokenPayload = Depends(_admin_user),  # noqa: B008
    ) -> dict[str, Any]:
        summaries = await conversations.active_conversations(chat_category)
        return {
            "chatCategory": chat_category,
            "conversations": [s.to_dict() for s in summaries],
            "count": len(summaries),
        }

    @router.get("/admin/tickets/pending")
    async def admin_pending_tickets(
        _: TokenPayload = Depends(_admin_user),  # noqa: B008
    ) -> dict[str, Any]:
        pending = await conversations.pending_tickets()
        return {"tickets": [s.to_dict() for s in pending], "count": len(pending)}

    @router.get("/admin/conversations/{user_id}")
    async def admin_conversation(
        user_id: str,
        chat_category: str = Query(ChatCategory.SALES, alias="chatCategory"),
        ticket_id: str | None = Query(None, alias="ticketId"),
        _: TokenPayload = Depends(_admin_user),  # noqa: B008
    ) -> dict[str, Any]:
        conversation = await conversations.conversation_detail(user_id, chat_category, ticket_id)
        return conversation.to_dict()

    @router.post("/admin/mark-read")
    async def admin_mark_read(
        body: MarkReadRequest,
        _: TokenPayload = Depends(_admin_user),  # noqa: B008
    ) -> dict[str, Any]:
        count = await messages.mark_read(
            body.user_id,
            body.chat_category,
            body.ticket_id,
            sender_role=PartyRole.CUSTOMER,
        )
        return {"success": True, "count": count}

    return router
