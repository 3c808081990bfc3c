"""Commit message rendering.

A request's commit message is an audit trail, not a summary: every
registered ``ChangeInfo`` contributes one line, in registration order,
even when two lines are identical.

Layout::

    <headline>

    <description of each registered change>   (only under a forced headline)

    VP-Action: <tag of the headline>
    VP-Action: <tag of each registered change>

Without a forced headline the registered descriptions themselves form
the message body (the first one doubling as the subject line).  When
files changed but nobody described why, the touched paths are listed.
"""

from __future__ import annotations

from collections.abc import Sequence

from .models import ChangeInfo

TRAILER_KEY = "VP-Action"


def render_commit_message(
    changes: Sequence[ChangeInfo],
    headline: ChangeInfo | None = None,
    paths: Sequence[str] = (),
) -> str:
    """Build the commit message for one flushed request.

    Args:
        changes: Registered change infos, in registration order.
        headline: The most recent forced change info, if any.
        paths: Touched file paths, used only when *changes* is empty and
            no headline was forced.

    Returns:
        Multi-line commit message without a trailing newline.
    """
    descriptions = [change.describe() for change in changes]

    if headline is not None:
        lines = [headline.describe()]
        if descriptions:
            lines.append("")
            lines.extend(descriptions)
    elif descriptions:
        lines = descriptions
    else:
        count = len(paths)
        noun = "file" if count == 1 else "files"
        lines = [f"Update {count} entity {noun}"]
        if paths:
            lines.append("")
            lines.extend(paths)

    tagged = ([headline] if headline is not None else []) + list(changes)
    if tagged:
        lines.append("")
        lines.extend(f"{TRAILER_KEY}: {info.action_tag()}" for info in tagged)

    return "\n".join(lines)


def parse_action_tags(message: str) -> list[str]:
    """Extract the ``VP-Action`` trailer values from a commit message."""
    prefix = f"{TRAILER_KEY}: "
    return [
        line[len(prefix):]
        for line in message.splitlines()
        if line.startswith(prefix)
    ]
