"""
FinChat - Chat Persistence (MongoDB)
=====================================
Async chat and message store backed by MongoDB via ``motor``.

Collections::

    chats     {"_id": str, "user_id": str, "title": str, "created_at": datetime}
    messages  {"_id": str, "chat_id": str, "role": str, "content": str | list, "created_at": datetime}

Records cross the boundary as plain dicts with an ``id`` key instead of
Mongo's ``_id``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

import motor.motor_asyncio
from pymongo import ReturnDocument

from finchat.config.settings import settings
from finchat.src.core.models import MessageRecord
from finchat.src.utils.logger import get_logger

logger = get_logger(__name__)

ChatRecord = dict[str, str | datetime]


@runtime_checkable
class ChatRepository(Protocol):
    """Persistence operations the chat pipeline relies on."""

    async def get_chat(self, chat_id: str) -> ChatRecord | None: ...

    async def save_chat(self, chat_id: str, user_id: str, title: str) -> ChatRecord: ...

    async def save_messages(self, messages: list[MessageRecord]) -> None: ...

    async def delete_chat(self, chat_id: str) -> bool: ...


# ══════════════════════════════════════════════════════════════════════
#  MONGODB SINGLETON CLIENT
# ══════════════════════════════════════════════════════════════════════

_mongo_client: motor.motor_asyncio.AsyncIOMotorClient | None = None


def _get_mongo_client() -> motor.motor_asyncio.AsyncIOMotorClient:
    """Return (or create) the module-level async MongoDB client."""
    global _mongo_client
    if _mongo_client is None:
        _mongo_client = motor.motor_asyncio.AsyncIOMotorClient(settings.MONGO_URI.get_secret_value())
        logger.info("MongoDB async client created (singleton).")
    return _mongo_client


def _from_document(doc: dict) -> dict:
    record = {k: v for k, v in doc.items() if k != "_id"}
    record["id"] = doc["_id"]
    return record


class MongoChatRepository:
    """
    Chat / message store.

    Parameters
    ----------
    database
        Optional motor database (tests inject a stub); defaults to
        ``settings.MONGO_DB_NAME`` on the shared client.
    """

    __slots__ = ("_chats", "_messages")

    def __init__(self, database: object | None = None) -> None:
        db = database if database is not None else _get_mongo_client()[settings.MONGO_DB_NAME]
        self._chats = db["chats"]  # type: ignore[index]
        self._messages = db["messages"]  # type: ignore[index]


    async def get_chat(self, chat_id: str) -> ChatRecord | None:
        doc = await self._chats.find_one({"_id": chat_id})
        return _from_document(doc) if doc is not None else None


    async def save_chat(self, chat_id: str, user_id: str, title: str) -> ChatRecord:
        """
        Create the chat unless it already exists and return the stored record.

        Fields are only written on insert: concurrent creators of one chat
        id all receive the first writer's record.
        """
        now = datetime.now(timezone.utc)
        doc = await self._chats.find_one_and_update({"_id": chat_id}, {"$setOnInsert": {"user_id": user_id, "title": title, "created_at": now}}, upsert=True, return_document=ReturnDocument.AFTER)
        logger.info("[CHAT] Chat '%s' saved (owner '%s').", chat_id, doc.get("user_id"))
        return _from_document(doc)


    async def save_messages(self, messages: list[MessageRecord]) -> None:
        if not messages:
            return
        docs = [{"_id": m["id"], **{k: v for k, v in m.items() if k != "id"}} for m in messages]
        await self._messages.insert_many(docs)
        logger.debug("[CHAT] Saved %d message(s).", len(docs))


    async def delete_chat(self, chat_id: str) -> bool:
        """Delete a chat and its messages.  Returns True if the chat existed."""
        await self._messages.delete_many({"chat_id": chat_id})
        result = await self._chats.delete_one({"_id": chat_id})
        logger.info("[CHAT] Chat '%s' deleted (existed=%s).", chat_id, result.deleted_count > 0)
        return result.deleted_count > 0
