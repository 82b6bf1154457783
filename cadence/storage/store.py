"""Message store -- conversation and message records for chat turns."""

import logging
from datetime import UTC, datetime

from sqlalchemy import delete, select, update

from cadence.storage.database import Database
from cadence.storage.models import DEFAULT_TITLE, Conversation, Message
from cadence.utils import preview_title

logger = logging.getLogger(__name__)


class MessageStore:
    """Append-only message persistence plus conversation bookkeeping."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_conversation(self, user_id: str, title: str | None = None) -> Conversation:
        async with self._db.session() as session:
            conversation = Conversation(user_id=user_id, title=title or None)
            session.add(conversation)
            await session.commit()
            logger.info("Created conversation %s for user %s", conversation.id[:8], user_id)
            return conversation

    async def get_conversation(self, conversation_id: str, user_id: str) -> Conversation | None:
        """Conversation owned by user_id, or None."""
        async with self._db.session() as session:
            result = await session.execute(
                select(Conversation)
                .where(Conversation.id == conversation_id)
                .where(Conversation.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def delete_conversation(self, conversation_id: str) -> None:
        async with self._db.session() as session:
            await session.execute(delete(Message).where(Message.conversation_id == conversation_id))
            await session.execute(delete(Conversation).where(Conversation.id == conversation_id))
            await session.commit()

    async def create_message(self, conversation_id: str, role: str, content: str) -> Message:
        """Append a message; id and created_at are generated here."""
        async with self._db.session() as session:
            message = Message(conversation_id=conversation_id, role=role, content=content)
            session.add(message)
            await session.commit()
            logger.debug(
                "Stored %s message %s (%d chars) in %s",
                role, message.id[:8], len(content), conversation_id[:8],
            )
            return message

    async def list_messages(self, conversation_id: str, limit: int | None = None) -> list[Message]:
        """Messages in chronological order, optionally only the newest `limit`."""
        async with self._db.session() as session:
            query = select(Message).where(Message.conversation_id == conversation_id)
            if limit:
                query = query.order_by(Message.created_at.desc()).limit(limit)
                result = await session.execute(query)
                return list(reversed(result.scalars().all()))
            result = await session.execute(query.order_by(Message.created_at))
            return list(result.scalars().all())

    async def touch_conversation(self, conversation_id: str) -> None:
        """Bump updated_at so recently active conversations sort first."""
        async with self._db.session() as session:
            await session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(updated_at=datetime.now(UTC))
            )
            await session.commit()

    async def retitle_or_touch(self, conversation: Conversation, content: str) -> None:
        """Title an untitled conversation from its first message, else just touch it."""
        title = (conversation.title or "").strip()
        if title and title != DEFAULT_TITLE:
            await self.touch_conversation(conversation.id)
            return
        async with self._db.session() as session:
            await session.execute(
                update(Conversation)
                .where(Conversation.id == conversation.id)
                .values(title=preview_title(content), updated_at=datetime.now(UTC))
            )
            await session.commit()
