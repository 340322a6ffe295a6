"""Daily Digest contract utilities.

The "Daily Digest" is the structured JSON payload the summarizer model returns.
This module defines:
- A JSON Schema (for validation)
- The Markdown rendering delivered to chat destinations
"""

from __future__ import annotations

from typing import Any, Dict, List

from jsonschema import Draft202012Validator


DAILY_DIGEST_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["digest_title", "overview", "main_stories", "other_topics"],
    "properties": {
        "digest_title": {"type": "string", "minLength": 1},
        "overview": {"type": "string", "minLength": 1},
        "main_stories": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["headline", "summary", "source_link"],
                "properties": {
                    "headline": {"type": "string", "minLength": 1},
                    "category": {"type": ["string", "null"]},
                    "summary": {"type": "string", "minLength": 1},
                    "source_link": {"type": "string", "minLength": 1},
                },
                "additionalProperties": True,
            },
        },
        "other_topics": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["topic", "brief_update", "source_link"],
                "properties": {
                    "topic": {"type": "string", "minLength": 1},
                    "brief_update": {"type": "string", "minLength": 1},
                    "source_link": {"type": "string", "minLength": 1},
                },
                "additionalProperties": True,
            },
        },
    },
    "additionalProperties": True,
}


_VALIDATOR = Draft202012Validator(DAILY_DIGEST_SCHEMA)


def validate_daily_digest(payload: Dict[str, Any]) -> List[str]:
    """Return a list of human-readable validation errors (empty means valid)."""
    errors = []
    for e in sorted(_VALIDATOR.iter_errors(payload), key=lambda x: [str(p) for p in x.path]):
        path = ".".join(str(p) for p in e.path) if e.path else "<root>"
        errors.append(f"{path}: {e.message}")
    return errors


def render_digest_markdown(payload: Dict[str, Any]) -> str:
    """Render a validated digest payload as chat-friendly Markdown."""
    out = [f"# {payload['digest_title'].strip()}", "", "## Overview", payload["overview"].strip(), ""]

    stories = payload.get("main_stories") or []
    if stories:
        out += ["## Main Stories", ""]
        for story in stories:
            out.append(f"### {story['headline'].strip()}")
            category = (story.get("category") or "").strip()
            if category:
                out += [f"*Category: {category}*", ""]
            out += [story["summary"].strip(), "", f"<{story['source_link'].strip()}>"]

    topics = payload.get("other_topics") or []
    if topics:
        out += ["## Other Topics", ""]
        for topic in topics:
            out += [
                f"### {topic['topic'].strip()}",
                topic["brief_update"].strip(),
                "",
                f"<{topic['source_link'].strip()}>",
            ]

    return "\n".join(out) + "\n"
