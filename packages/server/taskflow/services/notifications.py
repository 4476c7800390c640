"""
Notification sink: in-app feed plus best-effort email.

The feed row is the notification; email is a courtesy copy relayed over
HTTP and never affects whether ``notify`` succeeds.
"""

from __future__ import annotations

import html
import uuid
from typing import Callable, Optional, Protocol

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from taskflow.core.errors import CollaboratorUnavailable
from taskflow.models.notification import Notification
from taskflow.models.user import User
from taskflow_shared.schemas.common import NotificationKind
from taskflow_shared.schemas.notifications import NotificationMetadata

log = structlog.get_logger()

# How far back to look when matching an earlier notification
LOOKBACK_LIMIT = 100


class NotificationSink(Protocol):
    async def notify(
        self,
        target_id: str,
        kind: NotificationKind,
        title: str,
        body: str,
        task_id: Optional[uuid.UUID],
        metadata: Optional[NotificationMetadata] = None,
    ) -> uuid.UUID: ...

    async def find_latest(
        self,
        target_id: str,
        kind: NotificationKind,
        task_id: uuid.UUID,
        *,
        action: Optional[str] = None,
        assignment_id: Optional[str] = None,
        unread_only: bool = False,
    ) -> Optional[Notification]: ...

    async def update(
        self,
        notification_id: uuid.UUID,
        *,
        read: Optional[bool] = None,
        metadata: Optional[NotificationMetadata] = None,
        title: Optional[str] = None,
        body: Optional[str] = None,
    ) -> None: ...


# ---------------------------------------------------------------------------
# Email relay
# ---------------------------------------------------------------------------


class EmailRelay:
    """Posts ``{to, subject, html}`` to an HTTP mail relay."""

    def __init__(self, url: str, timeout: float = 5.0, client: httpx.AsyncClient | None = None):
        self._url = url
        self._timeout = timeout
        self._client = client

    async def send(self, to: str, subject: str, body: str) -> bool:
        payload = {
            "to": to,
            "subject": subject,
            "html": "<p>" + html.escape(body).replace("\n", "<br>") + "</p>",
        }
        try:
            if self._client is not None:
                resp = await self._client.post(self._url, json=payload, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout)) as client:
                    resp = await client.post(self._url, json=payload)
            resp.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            log.warning("email.relay_failed", to=to, subject=subject, error=str(exc))
            return False


# ---------------------------------------------------------------------------
# SQL-backed feed
# ---------------------------------------------------------------------------


class SqlNotificationSink:
    """Stores notifications in the ``notifications`` table, one session per call."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        email_relay: EmailRelay | None = None,
    ):
        self._session_factory = session_factory
        self._email_relay = email_relay

    async def notify(
        self,
        target_id: str,
        kind: NotificationKind,
        title: str,
        body: str,
        task_id: Optional[uuid.UUID],
        metadata: Optional[NotificationMetadata] = None,
    ) -> uuid.UUID:
        notification = Notification(
            user_id=target_id,
            kind=kind.value,
            title=title,
            body=body,
            task_id=task_id,
            meta=metadata.model_dump(mode="json") if metadata is not None else None,
        )
        try:
            async with self._session_factory() as session:
                session.add(notification)
                await session.commit()
                email = None
                if self._email_relay is not None:
                    user = await session.get(User, target_id)
                    email = user.email if user else None
        except SQLAlchemyError as exc:
            raise CollaboratorUnavailable("notifications", exc) from exc

        if email:
            await self._email_relay.send(email, title, body)
        return notification.id

    async def find_latest(
        self,
        target_id: str,
        kind: NotificationKind,
        task_id: uuid.UUID,
        *,
        action: Optional[str] = None,
        assignment_id: Optional[str] = None,
        unread_only: bool = False,
    ) -> Optional[Notification]:
        stmt = select(Notification).where(
            Notification.user_id == target_id,
            Notification.kind == kind.value,
            Notification.task_id == task_id,
        )
        if unread_only:
            stmt = stmt.where(Notification.read == False)  # noqa: E712
        stmt = stmt.order_by(Notification.created_at.desc()).limit(LOOKBACK_LIMIT)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                candidates = result.scalars().all()
        except SQLAlchemyError as exc:
            raise CollaboratorUnavailable("notifications", exc) from exc

        for notification in candidates:
            meta = notification.meta or {}
            if action is not None and meta.get("action") != action:
                continue
            if assignment_id is not None and meta.get("assignment_id") != assignment_id:
                continue
            return notification
        return None

    async def update(
        self,
        notification_id: uuid.UUID,
        *,
        read: Optional[bool] = None,
        metadata: Optional[NotificationMetadata] = None,
        title: Optional[str] = None,
        body: Optional[str] = None,
    ) -> None:
        try:
            async with self._session_factory() as session:
                notification = await session.get(Notification, notification_id)
                if notification is None:
                    return
                if read is not None:
                    notification.read = read
                if metadata is not None:
                    notification.meta = metadata.model_dump(mode="json")
                if title is not None:
                    notification.title = title
                if body is not None:
                    notification.body = body
                session.add(notification)
                await session.commit()
        except SQLAlchemyError as exc:
            raise CollaboratorUnavailable("notifications", exc) from exc
