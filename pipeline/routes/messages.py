"""
Read-only views of pipeline state.

GET /messages/{message_id}   processing flags and derived fields of one message
GET /leads/{sender_key}      the lead and qualified lead for a sender
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from pipeline.db.repository import RAW_MESSAGES, DocumentStore
from pipeline.services.lead_store import LeadStateStore

router = APIRouter(tags=["pipeline"])


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


# ============================================================
# Pydantic schemas
# ============================================================

class MessageResponse(BaseModel):
    id: str
    sender_key: str
    processed: bool
    processing: bool
    is_lead: Optional[bool]
    is_qualified: Optional[bool]
    priority: Optional[str]
    message_count: Optional[int]
    auto_reply_text: Optional[str]
    reply_pending: bool
    metadata: Optional[dict]

    @classmethod
    def from_message(cls, message) -> "MessageResponse":
        return cls(
            id=message.id,
            sender_key=message.sender_key,
            processed=message.processed,
            processing=message.processing,
            is_lead=message.is_lead,
            is_qualified=message.is_qualified,
            priority=message.priority,
            message_count=message.message_count,
            auto_reply_text=message.auto_reply_text,
            reply_pending=message.reply_pending,
            metadata=message.metadata_json,
        )


class LeadResponse(BaseModel):
    sender_key: str
    intent: Optional[str]
    message_count: int
    first_message_body: Optional[str]
    created_at: Optional[datetime]
    last_active: Optional[datetime]


class QualifiedLeadResponse(LeadResponse):
    name: Optional[str]
    email: Optional[str]
    priority: str


class SenderLeadsResponse(BaseModel):
    lead: Optional[LeadResponse]
    qualified_lead: Optional[QualifiedLeadResponse]


# ============================================================
# Endpoints
# ============================================================

@router.get("/messages/{message_id}", response_model=MessageResponse)
async def get_message_api(message_id: str, store: DocumentStore = Depends(get_store)):
    """Fetch the processing state of a single message."""
    message = await store.get_by_id(RAW_MESSAGES, message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found.")
    return MessageResponse.from_message(message)


@router.get("/leads/{sender_key}", response_model=SenderLeadsResponse)
async def get_sender_leads_api(sender_key: str, store: DocumentStore = Depends(get_store)):
    """Return the lead records tracked for one sender."""
    leads = LeadStateStore(store)
    lead = await leads.find_lead(sender_key)
    qualified = await leads.find_qualified_lead(sender_key)
    if lead is None and qualified is None:
        raise HTTPException(status_code=404, detail="No lead for this sender.")

    return SenderLeadsResponse(
        lead=LeadResponse.model_validate(lead, from_attributes=True) if lead else None,
        qualified_lead=(
            QualifiedLeadResponse.model_validate(qualified, from_attributes=True) if qualified else None
        ),
    )
