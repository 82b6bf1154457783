"""Attachment block builder.

Rewrites the newest user message into a multi-part content array when the
caller uploaded files. Documents and images come first and the user's text
comes last, so the model reads the material before the instruction that
refers to it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cadence.agent.blocks import ChatMessage, ContentBlock, DocumentBlock, ImageBlock, TextBlock

logger = logging.getLogger(__name__)

MAX_ATTACHMENTS = 5

DOCUMENT_MEDIA_TYPES = frozenset({"application/pdf"})
IMAGE_MEDIA_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


@dataclass
class Attachment:
    name: str
    media_type: str
    data: str  # base64 payload


def build_attachment_blocks(attachments: list[Attachment], text: str) -> list[ContentBlock]:
    """Content blocks for attachments in upload order, then one TextBlock.

    Unsupported media types are skipped.
    """
    if len(attachments) > MAX_ATTACHMENTS:
        raise ValueError(f"At most {MAX_ATTACHMENTS} attachments are allowed, got {len(attachments)}")

    blocks: list[ContentBlock] = []
    for attachment in attachments:
        if attachment.media_type in DOCUMENT_MEDIA_TYPES:
            blocks.append(DocumentBlock(media_type=attachment.media_type, data=attachment.data))
        elif attachment.media_type in IMAGE_MEDIA_TYPES:
            blocks.append(ImageBlock(media_type=attachment.media_type, data=attachment.data))
        else:
            logger.debug("Skipping attachment %s with unsupported type %s", attachment.name, attachment.media_type)
    blocks.append(TextBlock(text=text))
    return blocks


def apply_attachments(history: list[ChatMessage], attachments: list[Attachment]) -> list[ChatMessage]:
    """Return history with the newest entry rebuilt around the attachments.

    Earlier entries are passed through untouched. If the newest entry is not
    a user message there is nothing to attach to and history is returned as is.
    """
    if not attachments:
        return list(history)
    if not history or history[-1].role != "user":
        logger.warning("Dropping %d attachment(s): newest history entry is not a user message", len(attachments))
        return list(history)

    newest = history[-1]
    blocks = build_attachment_blocks(attachments, newest.plain_text())
    return [*history[:-1], ChatMessage(role="user", content=blocks)]
