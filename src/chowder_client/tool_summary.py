"""Parser for verbose tool summaries.

With verbose reporting enabled the gateway reports tool use as ordinary chat
text, one line per call:

    "📄 read: IDENTITY.md"
    "🔧 bash: ls -la"

parse_tool_summary() recovers (tool, argument) from such a line and rejects
ordinary prose that merely contains a colon.
"""

from __future__ import annotations

KNOWN_TOOLS: frozenset[str] = frozenset(
    {
        "read",
        "write",
        "edit",
        "apply_patch",
        "search",
        "bash",
        "exec",
        "browser",
        "web",
        "canvas",
        "llm_task",
        "agent_send",
        "sessions_list",
        "sessions_read",
        "message",
    }
)

# Leading decoration (an emoji plus variation selectors / joiners) is short.
MAX_DECORATION_CHARS = 8


def _strip_decoration(text: str) -> str:
    index = 0
    while (
        index < len(text) - 1
        and index < MAX_DECORATION_CHARS
        and not text[index].isalnum()
        and not text[index].isspace()
    ):
        index += 1
    return text[index:]


def parse_tool_summary(text: str) -> tuple[str, str | None] | None:
    """Parse a verbose tool summary line.

    Args:
        text: A chat delta, e.g. ``"📄 read: IDENTITY.md"``

    Returns:
        ``(tool_name, argument)`` with argument None when empty, or None if
        the text is not a summary of a known tool.
    """
    working = text.strip()
    if not working:
        return None

    working = _strip_decoration(working).strip()

    tool_part, colon, argument = working.partition(":")
    if not colon:
        return None

    tool_name = tool_part.strip().lower()
    if tool_name not in KNOWN_TOOLS:
        return None

    argument = argument.strip()
    return tool_name, argument or None
