"""
Per-sender lead records.

Leads and qualified leads are always looked up by sender_key. Creation is
insert-or-merge: if a concurrent attempt created the record first, the
unique constraint rejects our insert and we merge into theirs instead.
Merges never erase a known name or email and never lower the priority.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from pipeline.db.models import Lead, QualifiedLead
from pipeline.db.repository import LEADS, QUALIFIED_LEADS, DocumentStore
from pipeline.schemas.leads import Priority, escalate

logger = logging.getLogger(__name__)


class LeadStateStore:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def find_lead(self, sender_key: str) -> Lead | None:
        found = await self.store.query_equals(LEADS, "sender_key", sender_key, limit=1)
        return found[0] if found else None

    async def find_qualified_lead(self, sender_key: str) -> QualifiedLead | None:
        found = await self.store.query_equals(QUALIFIED_LEADS, "sender_key", sender_key, limit=1)
        return found[0] if found else None

    async def upsert_lead(
        self,
        sender_key: str,
        *,
        intent: str,
        message_count: int,
        message_body: str,
        now: datetime | None = None,
    ) -> Lead:
        now = now or datetime.now(timezone.utc)
        existing = await self.find_lead(sender_key)
        if existing is None:
            try:
                lead = await self.store.insert(
                    LEADS,
                    {
                        "sender_key": sender_key,
                        "intent": intent,
                        "message_count": message_count,
                        "first_message_body": message_body,
                        "created_at": now,
                        "last_active": now,
                    },
                )
                logger.info("Created lead for sender %s", sender_key)
                return lead
            except IntegrityError:
                logger.info("Lead for sender %s created concurrently; merging", sender_key)
                existing = await self.find_lead(sender_key)
                if existing is None:
                    raise

        fields = {
            "intent": intent,
            "message_count": max(existing.message_count or 0, message_count),
            "last_active": now,
        }
        await self.store.update_fields(LEADS, existing.id, fields)
        for key, value in fields.items():
            setattr(existing, key, value)
        return existing

    async def upsert_qualified_lead(
        self,
        sender_key: str,
        *,
        intent: str,
        message_count: int,
        message_body: str,
        name: str | None,
        email: str | None,
        priority: Priority | str,
        now: datetime | None = None,
    ) -> QualifiedLead:
        now = now or datetime.now(timezone.utc)
        existing = await self.find_qualified_lead(sender_key)
        if existing is None:
            try:
                qualified = await self.store.insert(
                    QUALIFIED_LEADS,
                    {
                        "sender_key": sender_key,
                        "intent": intent,
                        "message_count": message_count,
                        "first_message_body": message_body,
                        "name": name,
                        "email": email,
                        "priority": Priority.coerce(priority).value,
                        "created_at": now,
                        "last_active": now,
                    },
                )
                logger.info("Created qualified lead for sender %s", sender_key)
                return qualified
            except IntegrityError:
                logger.info("Qualified lead for sender %s created concurrently; merging", sender_key)
                existing = await self.find_qualified_lead(sender_key)
                if existing is None:
                    raise

        fields = {
            "intent": intent,
            "message_count": max(existing.message_count or 0, message_count),
            "priority": escalate(existing.priority, priority).value,
            "last_active": now,
        }
        # Monotonic fill: only missing contact fields are written
        if name and not existing.name:
            fields["name"] = name
        if email and not existing.email:
            fields["email"] = email

        await self.store.update_fields(QUALIFIED_LEADS, existing.id, fields)
        for key, value in fields.items():
            setattr(existing, key, value)
        return existing
