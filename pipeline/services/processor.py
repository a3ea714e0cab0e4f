"""
Message processor: drives one inbound message through
claim → decrypt → classify → qualify → extract → reply → persist.

The claim flag on the message is the only lock. Once claimed, the attempt
ends in one of two ways:
- processed=True, processing=False  (success, not a lead, or a terminal
  input error that retrying cannot fix)
- processing=False only             (unexpected failure; the message will
  be picked up again by a later poll)
"""

import logging
from datetime import datetime, timezone
from enum import Enum

from pipeline.db.models import RawMessage
from pipeline.db.repository import RAW_MESSAGES, DocumentStore
from pipeline.schemas.leads import CLASSIFICATION_FALLBACK, EXTRACTION_FALLBACK, Classification, Priority
from pipeline.services.call_sites import COURTESY_REPLY, CallSites, format_reply
from pipeline.services.crypto import DecryptionError, Decryptor
from pipeline.services.lead_store import LeadStateStore

logger = logging.getLogger(__name__)

DECRYPTION_ERROR_REPLY = "Error processing your message due to a decryption issue."
MALFORMED_REPLY = "Error processing your message: the message was empty or unreadable."


class ProcessingOutcome(str, Enum):
    ALREADY_CLAIMED = "already_claimed"
    DECRYPTION_FAILED = "decryption_failed"
    MALFORMED = "malformed"
    NOT_A_LEAD = "not_a_lead"
    COMPLETED = "completed"
    RELEASED = "released"


class Stage(str, Enum):
    CLAIMED = "claimed"
    DECRYPTED = "decrypted"
    CLASSIFIED = "classified"
    QUALIFIED = "qualified"
    SKIPPED = "skipped"
    REPLIED = "replied"
    PERSISTED = "persisted"


class MessageProcessor:
    def __init__(
        self,
        store: DocumentStore,
        leads: LeadStateStore,
        call_sites: CallSites,
        decryptor: Decryptor | None = None,
    ):
        self.store = store
        self.leads = leads
        self.call_sites = call_sites
        self.decryptor = decryptor

    async def process(self, message_id: str) -> ProcessingOutcome:
        if not await self.store.claim(message_id):
            logger.debug("Message %s already claimed or processed; skipping", message_id)
            return ProcessingOutcome.ALREADY_CLAIMED

        state = {"stage": Stage.CLAIMED}
        try:
            outcome = await self._run(message_id, state)
        except Exception:
            logger.exception(
                "Processing failed for message %s at stage %s; releasing claim",
                message_id,
                state["stage"].value,
            )
            await self._release(message_id)
            return ProcessingOutcome.RELEASED

        logger.info("Message %s processed: %s", message_id, outcome.value)
        return outcome

    async def _run(self, message_id: str, state: dict) -> ProcessingOutcome:
        message: RawMessage | None = await self.store.get_by_id(RAW_MESSAGES, message_id)
        if message is None:
            raise LookupError(f"Claimed message {message_id} no longer exists")

        # ── Decrypt ──────────────────────────────────────────────────────────
        try:
            text = self._read_body(message)
        except DecryptionError as e:
            logger.error("Decryption failed for message %s: %s. Marking processed.", message_id, e)
            await self._finish(message_id, auto_reply_text=DECRYPTION_ERROR_REPLY)
            return ProcessingOutcome.DECRYPTION_FAILED

        if not text or not text.strip():
            logger.error("Message %s has no readable body. Marking processed.", message_id)
            await self._finish(message_id, auto_reply_text=MALFORMED_REPLY)
            return ProcessingOutcome.MALFORMED
        state["stage"] = Stage.DECRYPTED

        # ── Context ──────────────────────────────────────────────────────────
        sender_key = message.sender_key
        message_count = await self.store.count_equals(RAW_MESSAGES, "sender_key", sender_key)
        returning_client = message_count > 1

        # ── Classify ─────────────────────────────────────────────────────────
        classification = await self.call_sites.classify(text, returning_client=returning_client)
        state["stage"] = Stage.CLASSIFIED
        if not classification.is_lead:
            await self._finish_not_a_lead(
                message_id, sender_key, classification, message_count, returning_client
            )
            return ProcessingOutcome.NOT_A_LEAD
        intent = classification.intent

        # ── Qualify (sticky once a qualified lead exists) ────────────────────
        qualified_lead = await self.leads.find_qualified_lead(sender_key)
        if qualified_lead is not None:
            is_qualified = True
            priority = Priority.coerce(qualified_lead.priority)
            name, email = qualified_lead.name, qualified_lead.email
        else:
            qualification = await self.call_sites.qualify(text, message_count, intent)
            is_qualified = qualification.is_qualified
            priority = qualification.priority
            name = email = None
        state["stage"] = Stage.QUALIFIED if is_qualified else Stage.SKIPPED

        # ── Extract only what a qualified sender is still missing ────────────
        extraction = EXTRACTION_FALLBACK
        extraction_attempted = is_qualified and (not name or not email)
        if extraction_attempted:
            extraction = await self.call_sites.extract(text)
            name = name or extraction.name
            email = email or extraction.email
        missing_name, missing_email = not name, not email

        # ── Reply ────────────────────────────────────────────────────────────
        reply = await self.call_sites.reply(
            text,
            intent=intent,
            is_qualified=is_qualified,
            missing_name=missing_name,
            missing_email=missing_email,
            returning_client=returning_client,
        )
        state["stage"] = Stage.REPLIED

        # ── Persist: qualified lead, lead, then the message itself ───────────
        now = datetime.now(timezone.utc)
        if is_qualified:
            qualified_lead = await self.leads.upsert_qualified_lead(
                sender_key,
                intent=intent,
                message_count=message_count,
                message_body=text,
                name=name,
                email=email,
                priority=priority,
                now=now,
            )
            priority = Priority.coerce(qualified_lead.priority)

        await self.leads.upsert_lead(
            sender_key,
            intent=intent,
            message_count=message_count,
            message_body=text,
            now=now,
        )

        await self._finish(
            message_id,
            is_lead=True,
            is_qualified=is_qualified,
            priority=priority.value,
            auto_reply_text=reply,
            reply_pending=True,
            message_count=message_count,
            metadata_json={
                "intent": intent,
                "returning_client": returning_client,
                "extraction_attempted": extraction_attempted,
                "extracted": extraction.model_dump(),
                "missing_name": missing_name,
                "missing_email": missing_email,
            },
        )
        state["stage"] = Stage.PERSISTED
        return ProcessingOutcome.COMPLETED

    async def _finish_not_a_lead(
        self,
        message_id: str,
        sender_key: str,
        classification: Classification,
        message_count: int,
        returning_client: bool,
    ) -> None:
        """
        Close out a message that creates no lead records. A sender who is
        already qualified stays qualified on every later message, and a
        classifier outage still leaves the sender a courtesy reply.
        """
        fields = {
            "is_lead": False,
            "is_qualified": False,
            "message_count": message_count,
        }
        qualified_lead = await self.leads.find_qualified_lead(sender_key)
        if qualified_lead is not None:
            fields["is_qualified"] = True
            fields["priority"] = Priority.coerce(qualified_lead.priority).value

        classification_unavailable = classification is CLASSIFICATION_FALLBACK
        if classification_unavailable:
            fields["auto_reply_text"] = format_reply(COURTESY_REPLY)
            fields["reply_pending"] = True

        fields["metadata_json"] = {
            "intent": classification.intent,
            "returning_client": returning_client,
            "classification_unavailable": classification_unavailable,
        }
        await self._finish(message_id, **fields)

    def _read_body(self, message: RawMessage) -> str | None:
        if message.encrypted_body or message.iv or message.auth_tag:
            if self.decryptor is None:
                raise DecryptionError("No decryption key configured")
            return self.decryptor.decrypt(message.encrypted_body, message.iv, message.auth_tag)
        return message.body

    async def _finish(self, message_id: str, **fields) -> None:
        await self.store.update_fields(
            RAW_MESSAGES,
            message_id,
            {"processed": True, "processing": False, **fields},
        )

    async def _release(self, message_id: str) -> None:
        try:
            await self.store.update_fields(RAW_MESSAGES, message_id, {"processing": False})
        except Exception:
            logger.exception("Could not release claim on message %s", message_id)
