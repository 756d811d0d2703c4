"""Helpers for the Gmail API message resource (payload tree)."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class AttachmentInfo:
    """Attachment metadata found in a message payload."""

    part_id: str
    filename: str
    mime_type: str
    size: int
    attachment_id: str


class MessageParser:
    """Extract headers and attachment metadata from a Gmail message."""

    @staticmethod
    def get_header(message: dict, name: str) -> Optional[str]:
        """Return the first header value matching name (case-insensitive).

        Args:
            message: Gmail message resource
            name: Header name (e.g., "Subject")

        Returns:
            Optional[str]: Header value, or None if absent
        """
        headers = (message.get("payload") or {}).get("headers") or []
        wanted = name.lower()
        for header in headers:
            if header.get("name", "").lower() == wanted:
                return header.get("value")
        return None

    @staticmethod
    def extract_attachments(message: dict) -> list[AttachmentInfo]:
        """Walk the payload tree and collect parts that are attachments.

        Args:
            message: Gmail message resource

        Returns:
            list[AttachmentInfo]: Attachments in document order
        """
        attachments: list[AttachmentInfo] = []
        payload = message.get("payload") or {}

        # A single-part message can carry the attachment on the payload itself
        stack = [payload]
        while stack:
            part = stack.pop()
            body = part.get("body") or {}
            if part.get("filename") and body.get("attachmentId"):
                attachments.append(AttachmentInfo(
                    part_id=part.get("partId", ""),
                    filename=part["filename"],
                    mime_type=part.get("mimeType", ""),
                    size=body.get("size", 0),
                    attachment_id=body["attachmentId"],
                ))
            # Reverse so children are visited in order
            stack.extend(reversed(part.get("parts") or []))

        return attachments

    @staticmethod
    def first_pdf_attachment(message: dict) -> Optional[AttachmentInfo]:
        """Return the first PDF attachment, or None."""
        for attachment in MessageParser.extract_attachments(message):
            if "pdf" in attachment.mime_type.lower() or attachment.filename.lower().endswith(".pdf"):
                return attachment
        return None
