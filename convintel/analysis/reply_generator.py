"""
Reply Generator — the full tier.

Drafts an editable five-part response (greeting, acknowledgment, value
proposition, next step, closing) the agent can send as-is or adjust.
Missing sections are filled per-section; a failed call falls back to a
stage template.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional

from convintel.analysis.models import (
    AnalysisContext,
    PipelineStage,
    ReplyChannel,
    ReplyDraft,
    ReplyTone,
    first_name,
)
from convintel.exceptions import InferenceError
from convintel.llm.client import CompletionOptions, InferenceClient, complete_structured
from convintel.llm.llm_config import TASK_TEMPERATURES, TaskType
from convintel.llm.parsing import as_str_list, as_text

logger = logging.getLogger(__name__)

REPLY_SYSTEM_PROMPT = """You are an expert real estate agent crafting professional responses to clients.

Response Structure:
1. Greeting - Professional and personalized
2. Acknowledgment - Show you understand their needs/concerns
3. Value Proposition - How you're helping them achieve their goals
4. Next Step - Clear call to action
5. Closing - Professional sign-off

Tone Guidelines:
- Professional: For new clients, formal situations
- Friendly: For established relationships, warm and approachable
- Urgent: For time-sensitive matters, motivating but not pushy
- Casual: For long-term clients, relaxed communication

Generate responses that are:
- Concise and to the point
- Value-focused (what's in it for them)
- Action-oriented (clear next steps)
- Professional but not overly formal
- Editable and customizable by the agent

Return ONLY valid JSON."""


def build_reply_prompt(text: str, context: AnalysisContext) -> str:
    type_line = (
        f"Conversation Type: {context.conversation_type}"
        if context.conversation_type
        else ""
    )
    return f"""Client: {context.contact_name}
Pipeline Stage: {context.current_stage.value}
Last Message From: {context.last_message_from}
{type_line}

Recent Conversation:
"{text}"

Generate a professional response and return JSON with this structure:
{{
  "greeting": "Personalized greeting",
  "acknowledgment": "Show understanding of their message/needs",
  "valueProposition": "How you're helping them",
  "nextStep": "Clear call to action",
  "closing": "Professional closing",
  "fullReply": "Complete message combining all sections",
  "tone": "Professional|Friendly|Urgent|Casual",
  "editSuggestions": ["suggestion1", "suggestion2"]
}}"""


def normalize_tone(value: Any) -> ReplyTone:
    text = as_text(value)
    if text is None:
        return ReplyTone.PROFESSIONAL
    lowered = text.lower()
    for tone in ReplyTone:
        if tone.value.lower() in lowered:
            return tone
    return ReplyTone.PROFESSIONAL


def normalize_reply_draft(raw: Mapping[str, Any], contact_name: str) -> ReplyDraft:
    name = first_name(contact_name)
    return ReplyDraft(
        greeting=as_text(raw.get("greeting")) or f"Hi {name},",
        acknowledgment=as_text(raw.get("acknowledgment")) or "Thanks for reaching out.",
        value_proposition=(
            as_text(raw.get("valueProposition") or raw.get("value_proposition"))
            or "I'm here to help you achieve your real estate goals."
        ),
        next_step=(
            as_text(raw.get("nextStep") or raw.get("next_step"))
            or "Let me know if you have any questions."
        ),
        closing=as_text(raw.get("closing")) or "Best regards,",
        full_reply=(
            as_text(raw.get("fullReply") or raw.get("full_reply"))
            or (
                f"Hi {name},\n\nThanks for reaching out. I'm here to help with your "
                "real estate needs.\n\nBest,"
            )
        ),
        tone=normalize_tone(raw.get("tone")),
        edit_suggestions=as_str_list(raw.get("editSuggestions") or raw.get("edit_suggestions")),
    )


# ---------------------------------------------------------------------------
# Stage templates
# ---------------------------------------------------------------------------

def _assemble(
    name: str,
    acknowledgment: str,
    value_proposition: str,
    next_step: str,
    closing: str,
    tone: ReplyTone,
    edit_suggestions: list[str],
    body: Optional[str] = None,
) -> ReplyDraft:
    greeting = f"Hi {name},"
    body = body or f"{acknowledgment} {value_proposition}"
    return ReplyDraft(
        greeting=greeting,
        acknowledgment=acknowledgment,
        value_proposition=value_proposition,
        next_step=next_step,
        closing=closing,
        full_reply=f"{greeting}\n\n{body}\n\n{next_step}\n\n{closing}",
        tone=tone,
        edit_suggestions=edit_suggestions,
    )


def default_reply_draft(context: AnalysisContext) -> ReplyDraft:
    """Template reply for the contact's stage, used when inference fails."""
    name = context.first_name

    if context.current_stage is PipelineStage.LEAD:
        return _assemble(
            name,
            acknowledgment="Thank you for your interest in working together.",
            value_proposition=(
                "I'd love to learn more about your real estate goals and how I can "
                "help you achieve them."
            ),
            next_step="Would you be available for a quick call this week to discuss your needs?",
            closing="Looking forward to connecting!",
            tone=ReplyTone.PROFESSIONAL,
            edit_suggestions=[
                "Mention specific property type they're interested in",
                "Add your brokerage name",
                "Include your contact information",
            ],
        )

    if context.current_stage is PipelineStage.ACTIVE_OPPORTUNITY:
        value_proposition = (
            "With the market moving quickly, I want to make sure you're seeing the "
            "best opportunities as soon as they hit."
        )
        return _assemble(
            name,
            acknowledgment="Thanks for your message. I hope you're having a great week!",
            value_proposition=value_proposition,
            next_step=(
                "Should I send over the latest listings that match your criteria, or "
                "would you prefer to schedule another showing tour?"
            ),
            closing="Talk soon!",
            tone=ReplyTone.FRIENDLY,
            edit_suggestions=[
                "Mention specific properties they've seen",
                "Reference their timeline",
                "Add personal touch based on previous conversations",
            ],
            body=f"Thanks for your message! {value_proposition}",
        )

    return _assemble(
        name,
        acknowledgment="Thanks for reaching out.",
        value_proposition="I'm here to help you navigate your real estate journey.",
        next_step=(
            "Let me know if you have any questions or if there's anything specific "
            "I can help with."
        ),
        closing="Best regards,",
        tone=ReplyTone.PROFESSIONAL,
        edit_suggestions=[
            "Add personalized details",
            "Include relevant market insights",
            "Customize based on conversation history",
        ],
    )


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

async def generate_reply(
    text: str,
    context: AnalysisContext,
    client: InferenceClient,
    *,
    model: Optional[str] = None,
    timeout: Optional[float] = None,
) -> ReplyDraft:
    """Draft a reply with the full tier, falling back to the stage template."""
    options = CompletionOptions(
        temperature=TASK_TEMPERATURES[TaskType.REPLY_GENERATION],
        expect_structured_output=True,
        model=model,
    )
    try:
        raw = await complete_structured(
            client,
            REPLY_SYSTEM_PROMPT,
            build_reply_prompt(text, context),
            options,
            timeout=timeout,
            stage=TaskType.REPLY_GENERATION.value,
        )
        return normalize_reply_draft(raw, context.contact_name)
    except InferenceError as e:
        logger.warning(
            "reply_generation_failed",
            extra={
                "contact_id": context.contact_id,
                "error": str(e)[:200],
                "error_type": type(e).__name__,
            },
        )
        return default_reply_draft(context)
    except Exception as e:
        logger.exception(
            "reply_generation_unexpected_error",
            extra={"contact_id": context.contact_id, "error": str(e)[:200]},
        )
        return default_reply_draft(context)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

_NEWLINES = re.compile(r"\n+")


def format_reply_for_channel(draft: ReplyDraft, channel: ReplyChannel | str) -> str:
    """
    Render a draft for delivery.

    text:  greeting, acknowledgment and next step on a single line
    email: all five sections separated by blank lines
    """
    if ReplyChannel(channel) is ReplyChannel.TEXT:
        short = f"{draft.greeting} {draft.acknowledgment} {draft.next_step}"
        return _NEWLINES.sub(" ", short).strip()

    return "\n\n".join((
        draft.greeting,
        draft.acknowledgment,
        draft.value_proposition,
        draft.next_step,
        draft.closing,
    ))


QUICK_REPLIES = {
    "high": "Hi {name}! Thanks for your message. I'll get back to you shortly with the information you need.",
    "medium": "Thanks for reaching out, {name}! I'll review this and get back to you soon.",
    "low": "Hi {name}! Thanks for your message. I'll take a look and follow up with you.",
}


def generate_quick_reply(contact_name: str, urgency: str = "low") -> str:
    """Canned acknowledgment for a text message, by urgency (high/medium/low)."""
    template = QUICK_REPLIES.get(urgency.lower(), QUICK_REPLIES["low"])
    return template.format(name=first_name(contact_name))
