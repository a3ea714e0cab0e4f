"""
Pydantic contracts for the generation call-sites.

Every generation response is validated against one of these models; a
response that does not fit becomes the call-site fallback instead.
"""

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    @classmethod
    def coerce(cls, value: "str | Priority | None") -> "Priority":
        """Map loose labels like "high" or None onto the enum."""
        if isinstance(value, Priority):
            return value
        if not value:
            return cls.LOW
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        return cls.LOW


_PRIORITY_ORDER = [Priority.LOW, Priority.MEDIUM, Priority.HIGH]


def escalate(current: "str | Priority | None", proposed: "str | Priority | None") -> Priority:
    """Return the higher of two priorities; priority never degrades."""
    a, b = Priority.coerce(current), Priority.coerce(proposed)
    return a if a.rank >= b.rank else b


def normalize_intent(intent: str | None) -> str:
    if not intent or not str(intent).strip():
        return "general_inquiry"
    return re.sub(r"\s+", "_", str(intent).strip().lower())


class Classification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_lead: bool = Field(..., alias="isLead")
    intent: str = "general_inquiry"

    @field_validator("intent", mode="before")
    @classmethod
    def _normalize(cls, value):
        return normalize_intent(value)


class Qualification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_qualified: bool = Field(..., alias="isQualified")
    priority: Priority = Priority.LOW

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value):
        return Priority.coerce(value)


class Extraction(BaseModel):
    name: str | None = None
    email: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("email", mode="before")
    @classmethod
    def _clean_email(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value if EMAIL_PATTERN.match(value) else None


CLASSIFICATION_FALLBACK = Classification(is_lead=False, intent="unknown")
QUALIFICATION_FALLBACK = Qualification(is_qualified=False, priority=Priority.LOW)
EXTRACTION_FALLBACK = Extraction(name=None, email=None)
