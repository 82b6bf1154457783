"""Tests for attachment block building."""

import logging

import pytest

from cadence.agent.attachments import Attachment, apply_attachments, build_attachment_blocks
from cadence.agent.blocks import ChatMessage, DocumentBlock, ImageBlock, TextBlock


def _pdf(name: str = "notes.pdf") -> Attachment:
    return Attachment(name=name, media_type="application/pdf", data="JVBERi0=")


def _png(name: str = "photo.png") -> Attachment:
    return Attachment(name=name, media_type="image/png", data="iVBORw0=")


class TestBuildAttachmentBlocks:
    def test_order_and_text_last(self):
        """Attachments in upload order, then exactly one text block."""
        blocks = build_attachment_blocks([_png(), _pdf()], "Summarize these")
        assert blocks == [
            ImageBlock(media_type="image/png", data="iVBORw0="),
            DocumentBlock(media_type="application/pdf", data="JVBERi0="),
            TextBlock(text="Summarize these"),
        ]

    def test_wire_shape(self):
        blocks = build_attachment_blocks([_pdf()], "Read this")
        assert [b.to_api() for b in blocks] == [
            {"type": "document", "source": {"type": "base64", "media_type": "application/pdf", "data": "JVBERi0="}},
            {"type": "text", "text": "Read this"},
        ]

    @pytest.mark.parametrize("media_type", ["image/jpeg", "image/gif", "image/webp"])
    def test_supported_images(self, media_type):
        blocks = build_attachment_blocks([Attachment("x", media_type, "AAAA")], "hi")
        assert isinstance(blocks[0], ImageBlock)

    def test_unsupported_type_skipped(self):
        blocks = build_attachment_blocks(
            [Attachment("sheet.xlsx", "application/vnd.ms-excel", "AAAA"), _png()],
            "hi",
        )
        assert [type(b) for b in blocks] == [ImageBlock, TextBlock]

    def test_more_than_five_rejected(self):
        with pytest.raises(ValueError, match="At most 5"):
            build_attachment_blocks([_png(f"{i}.png") for i in range(6)], "hi")

    def test_five_allowed(self):
        blocks = build_attachment_blocks([_png(f"{i}.png") for i in range(5)], "hi")
        assert len(blocks) == 6


class TestApplyAttachments:
    def test_only_newest_message_rewritten(self):
        history = [
            ChatMessage(role="user", content="Earlier question"),
            ChatMessage(role="assistant", content="Earlier answer"),
            ChatMessage(role="user", content="What does this say?"),
        ]
        result = apply_attachments(history, [_pdf()])

        assert result[:2] == history[:2]
        assert result[2].role == "user"
        assert result[2].content == [
            DocumentBlock(media_type="application/pdf", data="JVBERi0="),
            TextBlock(text="What does this say?"),
        ]
        # Input history is left alone
        assert history[2].content == "What does this say?"

    def test_no_attachments_is_passthrough(self):
        history = [ChatMessage(role="user", content="Hi")]
        assert apply_attachments(history, []) == history

    def test_newest_not_user(self, caplog):
        history = [
            ChatMessage(role="user", content="Hi"),
            ChatMessage(role="assistant", content="Hello"),
        ]
        with caplog.at_level(logging.WARNING, logger="cadence.agent.attachments"):
            result = apply_attachments(history, [_pdf()])
        assert result == history
        assert "not a user message" in caplog.text

    def test_empty_history(self):
        assert apply_attachments([], [_pdf()]) == []
