from __future__ import annotations

from collections.abc import Sequence

FOLLOW_UP_HEADING = "**Follow-up suggestions:**"
FOLLOW_UP_BULLET = "- "


def format_follow_ups(suggestions: Sequence[str]) -> str:
    lines = [FOLLOW_UP_HEADING]
    lines.extend(f"{FOLLOW_UP_BULLET}{s}" for s in suggestions)
    return "\n\n" + "\n".join(lines)


def attach_follow_ups(content: str, pending: Sequence[str]) -> tuple[str, list[str]]:
    """Append the pending suggestions to a final assistant reply.

    Returns the new content and the (now empty) pending list. Content that
    already ends with the same block is returned unchanged, so applying this
    twice to the same terminal message never duplicates the list.
    """
    if not pending:
        return content, []
    block = format_follow_ups(pending)
    if content.endswith(block):
        return content, []
    return content + block, []


def parse_follow_ups(content: str) -> list[str]:
    """Read back the suggestions appended by `attach_follow_ups`."""
    marker = "\n\n" + FOLLOW_UP_HEADING + "\n"
    index = content.rfind(marker)
    if index < 0:
        return []
    tail = content[index + len(marker):]
    return [
        line[len(FOLLOW_UP_BULLET):]
        for line in tail.split("\n")
        if line.startswith(FOLLOW_UP_BULLET)
    ]
