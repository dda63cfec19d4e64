"""
replies.py — Inspection of webhook reply text for the chat front end.

The webhook sometimes embeds a structured "startup cards" list in its reply:

    ...free text...<startup cards>{"challengeTitle": "...", "startups": [...]}</startup cards>

Rendering the cards is the front end's job; this module only recognises the
block and decodes its JSON so the chat layer can tag the message.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

STARTUP_CARDS_OPEN = "<startup cards>"
STARTUP_CARDS_CLOSE = "</startup cards>"

_STARTUP_CARDS_RE = re.compile(
    re.escape(STARTUP_CARDS_OPEN) + r"(.*?)" + re.escape(STARTUP_CARDS_CLOSE),
    re.DOTALL,
)


def is_html_reply(text: str) -> bool:
    """True when the reply looks like a bare HTML fragment."""
    stripped = text.strip()
    return stripped.startswith("<") and stripped.endswith(">")


def has_startup_cards(text: str) -> bool:
    return STARTUP_CARDS_OPEN in text


def extract_startup_cards(text: str) -> Optional[Dict[str, Any]]:
    """
    Decode the JSON object between the startup-cards markers.

    Returns None if there is no complete block or its content is not a
    JSON object.
    """
    match = _STARTUP_CARDS_RE.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except (ValueError, RecursionError) as exc:
        logger.warning("Error parsing startup cards data: %s", exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Startup cards block is not a JSON object (%s)", type(data).__name__)
        return None
    return data
