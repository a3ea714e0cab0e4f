"""
Classify, qualify, extract and reply.

Each call-site is one generation request with a fixed instruction and a
fixed result shape. When the generation client has nothing usable, the
call-site returns its documented fallback instead of failing.
"""

import logging
import re

from pipeline.schemas.leads import (
    CLASSIFICATION_FALLBACK,
    EXTRACTION_FALLBACK,
    QUALIFICATION_FALLBACK,
    Classification,
    Extraction,
    Qualification,
)
from pipeline.services import prompts
from pipeline.services.generation import GenerationClient

logger = logging.getLogger(__name__)

COURTESY_REPLY = (
    "Thank you for your message. We are currently experiencing high volume "
    "but will reply to your inquiry shortly!"
)
DISCLAIMER = (
    "This is an automated response. A member of our team will review your conversation."
)
ASK_NAME = "Could you please share your full name?"
ASK_EMAIL = "Could you please share your email address?"

_FENCE = re.compile(r"```[a-zA-Z]*")
_EXCESS_BLANK_LINES = re.compile(r"\n(?:[ \t]*\n){2,}")


def _user_content(text: str, **context) -> str:
    lines = [f'Client message: """{text}"""']
    for key, value in context.items():
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


def select_reply_prompt(is_qualified: bool, missing_name: bool, missing_email: bool) -> str:
    """Pick the reply instruction from qualification and missing-field state."""
    if not is_qualified:
        return prompts.REPLY_INFORM_PROMPT
    if missing_name or missing_email:
        return prompts.REPLY_ASK_MISSING_PROMPT
    return prompts.REPLY_CONFIRM_PROMPT


def format_reply(body: str | None, missing_name: bool = False, missing_email: bool = False) -> str:
    """
    Sanitize a reply and lay it out as: answer, asks for missing fields,
    disclaimer. Paragraphs are separated by exactly one blank line.
    """
    body = _FENCE.sub("", body or "").strip()
    body = _EXCESS_BLANK_LINES.sub("\n\n", body)
    if not body:
        body = COURTESY_REPLY

    paragraphs = [body]
    asks = []
    if missing_name:
        asks.append(ASK_NAME)
    if missing_email:
        asks.append(ASK_EMAIL)
    if asks:
        paragraphs.append("\n".join(asks))
    paragraphs.append(DISCLAIMER)
    return "\n\n".join(paragraphs)


class CallSites:
    def __init__(self, generation: GenerationClient):
        self.generation = generation

    async def classify(self, text: str, returning_client: bool = False) -> Classification:
        result = await self.generation.generate(
            prompts.CLASSIFY_PROMPT,
            _user_content(text, returning_client=returning_client),
            Classification,
        )
        if result is None:
            logger.warning("Classification unavailable; treating message as not a lead")
            return CLASSIFICATION_FALLBACK
        return result

    async def qualify(self, text: str, message_count: int, intent: str) -> Qualification:
        result = await self.generation.generate(
            prompts.QUALIFY_PROMPT,
            _user_content(text, message_count=message_count, intent=intent),
            Qualification,
        )
        if result is None:
            logger.warning("Qualification unavailable; treating sender as unqualified")
            return QUALIFICATION_FALLBACK
        return result

    async def extract(self, text: str) -> Extraction:
        result = await self.generation.generate(prompts.EXTRACT_PROMPT, _user_content(text), Extraction)
        if result is None:
            logger.warning("Extraction unavailable; no contact fields extracted")
            return EXTRACTION_FALLBACK
        return result

    async def reply(
        self,
        text: str,
        intent: str,
        is_qualified: bool,
        missing_name: bool,
        missing_email: bool,
        returning_client: bool = False,
    ) -> str:
        instruction = select_reply_prompt(is_qualified, missing_name, missing_email)
        if returning_client:
            instruction = f"{instruction}\n{prompts.RETURNING_CLIENT_NOTE}"

        body = await self.generation.generate(instruction, _user_content(text, intent=intent))
        if body is None:
            logger.warning("Reply generation unavailable; sending courtesy reply")
            body = COURTESY_REPLY

        # Asks only make sense once a human will follow up
        return format_reply(
            body,
            missing_name=is_qualified and missing_name,
            missing_email=is_qualified and missing_email,
        )
