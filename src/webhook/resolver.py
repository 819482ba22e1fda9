"""Reply resolver: pick the reply text out of a webhook response.

Recognized shapes, in priority order:

1. A non-empty JSON string (or plain-text body): used as is.
2. A JSON object: the first field of ``REPLY_FIELD_PRIORITY`` holding a
   non-empty string wins, whatever other fields are present.

Everything else (null, lists, numbers, objects without such a field)
resolves to None and no reply is sent.
"""

from __future__ import annotations

from typing import Any

# First non-empty string field in this order wins.
REPLY_FIELD_PRIORITY: tuple[str, ...] = ("reply", "message", "text", "response", "data")


def resolve(raw_response: Any) -> str | None:
    if isinstance(raw_response, str):
        return raw_response or None

    if isinstance(raw_response, dict):
        for field_name in REPLY_FIELD_PRIORITY:
            value = raw_response.get(field_name)
            if isinstance(value, str) and value:
                return value

    return None
