"""
Prompt Assembler - Builds the exact text sent to the inference server.

The local models are driven through the plain `/api/generate` endpoint, so the
whole conversation is flattened into one prompt string. Every historical turn
is followed by a block of ambient details (date, user, focused app) and any
attached files are inlined as fenced code blocks.
"""

import logging
from typing import Optional, Sequence

from .ambient import AmbientContext
from ..models import AttachedFile, Message

logger = logging.getLogger(__name__)

ATTACHMENTS_HEADER = "--- USER ATTACHED FILES ---"
SYSTEM_DETAILS_HEADER = "---   SYSTEM DETAILS    ---"


def format_attachment(file: AttachedFile) -> str:
    return f"{file.name}:\n\n```\n{file.content}\n```\n"


def render_history_message(message: Message) -> str:
    """Raw text of a past turn, with its attachments re-inlined."""
    if not message.attachments:
        return message.text

    rendered = message.text + "\n\n" + ATTACHMENTS_HEADER
    for file in message.attachments:
        rendered += "\n" + format_attachment(file)
    return rendered


def format_prompt_with_attachments(prompt: str, attachments: Optional[Sequence[AttachedFile]]) -> str:
    """Format the new user turn; unchanged when nothing is attached."""
    if not attachments:
        return prompt

    formatted = prompt + "\n\n" + ATTACHMENTS_HEADER + "\n"
    for file in attachments:
        formatted += format_attachment(file) + "\n"
    return formatted


def render_ambient_block(context: AmbientContext) -> str:
    date_text = context.now.strftime("%A, %B %d, %Y at %I:%M:%S %p")
    lines = [
        "",
        "",
        SYSTEM_DETAILS_HEADER,
        f"Date: {date_text}",
        f"Time zone: {context.timezone}",
        f"User: {context.user_name}. Address the user by this name when it fits.",
        f"System: {context.os_version} on {context.device_model}",
        f"Most recently focused app: {context.focused_app}",
    ]
    if context.running_apps:
        lines.append(f"Other running apps: {context.running_apps_text}")
    lines.extend([
        "Instructions:",
        "- If the request seems related to the most recently focused app, tailor the answer to it.",
        "- Do not mention the focused app or these details unless they are relevant.",
        "- Greet the user only once per conversation, never again in later replies.",
    ])
    return "\n".join(lines)


class PromptAssembler:
    """
    Flattens a conversation into a single prompt string.

    No truncation is applied: long conversations grow the prompt without bound.
    """

    def assemble(
        self,
        history: Sequence[Message],
        prompt: str,
        attachments: Optional[Sequence[AttachedFile]],
        context: AmbientContext,
    ) -> str:
        """
        Args:
            history: Messages already in the session, excluding the new turn
            prompt: The new user prompt (already trimmed)
            attachments: Files attached to the new prompt
            context: Ambient context snapshot applied to every historical turn

        Returns:
            The full prompt, passed verbatim to the inference client
        """
        ambient = render_ambient_block(context)
        rendered = "\n".join(render_history_message(m) + ambient for m in history)
        separator = "\n" if history else ""
        full_prompt = rendered + separator + format_prompt_with_attachments(prompt, attachments)

        logger.debug(
            f"Assembled prompt: history={len(history)} messages, "
            f"attachments={len(attachments or [])}, length={len(full_prompt)} chars"
        )
        return full_prompt
