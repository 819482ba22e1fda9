"""Inbound normalizer: raw protocol envelopes to NormalizedMessage."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from src.webhook.models import NormalizedMessage, SourceKind

logger = logging.getLogger(__name__)

# Transport suffixes removed from individual contact addresses
ADDRESS_SUFFIXES = ("@s.whatsapp.net", "@c.us")

# Bookkeeping entries the protocol may place before the actual content
_METADATA_KEYS = frozenset({"messageContextInfo", "senderKeyDistributionMessage"})

_CAPTIONED_KINDS = {SourceKind.IMAGE, SourceKind.VIDEO}


def strip_address_suffix(address: str) -> str:
    for suffix in ADDRESS_SUFFIXES:
        address = address.replace(suffix, "")
    return address


def _content_kind(content: dict[str, Any]) -> str | None:
    for key in content:
        if key not in _METADATA_KEYS:
            return key
    return None


def _extract_text(kind: SourceKind, body: Any) -> str | None:
    if kind is SourceKind.CONVERSATION:
        return body if isinstance(body, str) else None
    if not isinstance(body, dict):
        return None
    if kind is SourceKind.EXTENDED_TEXT:
        text = body.get("text")
        return text if isinstance(text, str) else None
    if kind in _CAPTIONED_KINDS:
        # Media without a caption carries no text to forward
        caption = body.get("caption")
        return caption if isinstance(caption, str) and caption else None
    return None


def normalize(
    envelope: dict[str, Any], received_at: datetime | None = None,
) -> NormalizedMessage | None:
    """Return the canonical form of ``envelope``, or None if it must be dropped.

    Dropped: self-originated messages, envelopes without a sender or content,
    and any kind outside SourceKind (media without caption included).
    """
    key = envelope.get("key") or {}
    if key.get("fromMe"):
        return None

    remote = key.get("remoteJid")
    content = envelope.get("message")
    if not remote or not isinstance(content, dict):
        return None

    raw_kind = _content_kind(content)
    try:
        kind = SourceKind(raw_kind)
    except ValueError:
        logger.debug("Dropping unsupported message kind: %s", raw_kind)
        return None

    text = _extract_text(kind, content[raw_kind])
    if text is None:
        return None

    return NormalizedMessage(
        sender_id=strip_address_suffix(remote),
        text=text.strip(),
        timestamp=received_at or datetime.now(UTC),
        message_id=str(key.get("id") or ""),
        source_kind=kind,
        reply_to=remote,
    )
