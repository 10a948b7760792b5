"""Jira issue field builders using Atlassian Document Format (ADF)."""

from __future__ import annotations

import re

from helpportal.schemas.tickets import CreateTicketInput

METADATA_SEPARATOR = "----"
PORTAL_SIGNATURE = "*Submitted via Support Portal*"

_OWNER_ID_RE = re.compile(r"Discord User ID:\s*(\d{17,19})")


def _text_node(text: str) -> dict:
    return {"type": "text", "text": text}


def _bold_text(text: str) -> dict:
    return {"type": "text", "text": text, "marks": [{"type": "strong"}]}


def _paragraph(*inline: dict) -> dict:
    return {"type": "paragraph", "content": list(inline)}


def _rule() -> dict:
    return {"type": "rule"}


def _doc(*content: dict) -> dict:
    return {"version": 1, "type": "doc", "content": list(content)}


def _text_paragraphs(text: str) -> list[dict]:
    # ADF rejects empty text nodes, so blank lines become empty paragraphs
    return [
        _paragraph(_text_node(line)) if line else {"type": "paragraph", "content": []}
        for line in text.splitlines() or [""]
    ]


def build_ticket_description(data: CreateTicketInput) -> dict:
    """ADF description: the user's text followed by the ownership footer.

    The footer is what ticket listing searches on and what ownership checks
    read back, so its line format must not drift.
    """
    footer = [
        _paragraph(_bold_text("Discord User ID: "), _text_node(data.user_id)),
        _paragraph(_bold_text("Discord Username: "), _text_node(data.username)),
    ]
    if data.server_id:
        footer.append(_paragraph(_bold_text("Discord Server ID: "), _text_node(data.server_id)))
    footer.append(_paragraph(_text_node(PORTAL_SIGNATURE)))

    return _doc(*_text_paragraphs(data.description), _rule(), *footer)


def build_issue_fields(project_key: str, data: CreateTicketInput) -> dict:
    """Build Jira create-issue fields for a portal-submitted ticket."""
    return {
        "project": {"key": project_key},
        "summary": data.summary,
        "description": build_ticket_description(data),
        "issuetype": {"name": "Task"},
        "priority": {"name": data.priority.capitalize()},
        "labels": ["support-portal", *data.labels],
    }


def build_comment_body(message: str, user_id: str, username: str) -> dict:
    """ADF comment carrying the same ownership footer as the description."""
    footer = []
    if username:
        footer.append(_paragraph(_bold_text("Discord Username: "), _text_node(username)))
    footer.append(_paragraph(_bold_text("Discord User ID: "), _text_node(user_id)))
    return _doc(*_text_paragraphs(message.strip()), _rule(), *footer)


def adf_to_text(node: dict | str | None) -> str:
    """Flatten an ADF document to plain text, one line per block."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    node_type = node.get("type")
    if node_type == "text":
        return node.get("text", "")
    if node_type == "hardBreak":
        return "\n"
    if node_type == "rule":
        return METADATA_SEPARATOR
    children = [adf_to_text(child) for child in node.get("content", [])]
    if node_type in ("doc", "bulletList", "orderedList"):
        return "\n".join(children)
    return "".join(children)


def strip_metadata(description: str) -> str:
    """Drop the ownership footer so it is never shown back to the user."""
    head, _, _ = description.partition(METADATA_SEPARATOR)
    return head.rstrip()


def owner_id_from_description(description: str) -> str | None:
    match = _OWNER_ID_RE.search(description)
    return match.group(1) if match else None
