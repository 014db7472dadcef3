"""Utility helpers for the Vetro service."""

from __future__ import annotations

import json
import re
import uuid
from datetime import datetime, timezone
from typing import Any


JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
BARE_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


def extract_json_object(content: str) -> dict[str, Any]:
    """Extract and parse the first JSON object from the model response."""

    match = JSON_BLOCK_RE.search(content)
    if match:
        payload = match.group(1)
    else:
        match = BARE_JSON_RE.search(content)
        if not match:
            raise ValueError("No JSON object found in response")
        payload = match.group(0)

    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON payload produced by the model") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Model response was not a JSON object")
    return parsed


def new_entry_id() -> str:
    """Return a fresh identifier for a catalog entry or profile."""

    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Timezone-aware current time used for document timestamps."""

    return datetime.now(timezone.utc)


def format_size(size: int) -> str:
    """Render a byte count the way the CLI lists files."""

    if not size:
        return "?"
    return f"{size / (1024 * 1024):.1f} MB"
