"""Strip command payloads and model artifacts from text shown to the user."""
import logging
import re
from typing import Optional

from extractor import extract_commands
from models import ActionCommand

logger = logging.getLogger(__name__)

# A fence opening right before a command, or a bare fence closing right after it
FENCE_BEFORE_RE = re.compile(r"```(?:json|tool_code)?\s*$")
FENCE_AFTER_RE = re.compile(r"\s*```(?!\S)")

EMPTY_FENCE_RE = re.compile(r"```(?:json|tool_code)?\s*```")
BRACKET_LINE_RE = re.compile(r"^[ \t]*[\]\}][ \t]*$", re.MULTILINE)
TOOL_CODE_RE = re.compile(r"\btool_code\b")
ROLE_PREFIX_RE = re.compile(r"^(?:(?:Assistant|Wove)[ \t]*:\s*)+", re.IGNORECASE)
BLANK_LINES_RE = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")


def _widen(text: str, start: int, end: int) -> tuple[int, int]:
    """Grow a command span over code fences that only exist to wrap it."""
    after = FENCE_AFTER_RE.match(text, end)
    if after:
        before = FENCE_BEFORE_RE.search(text, 0, start)
        inner = "```" in text[start:end]
        if inner or before:
            end = after.end()
            if before and not inner:
                start = before.start()
    # A command on its own line takes the line break with it
    if (start == 0 or text[start - 1] == "\n") and text[end:end + 1] == "\n":
        end += 1
    return start, end


def remove_spans(text: str, spans: list[tuple[int, int]]) -> str:
    """Cut [start, end) ranges out of text; ranges refer to the original offsets."""
    merged: list[list[int]] = []
    for start, end in sorted(spans):
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    for start, end in reversed(merged):
        text = text[:start] + text[end:]
    return text


def _cleanup_pass(text: str) -> str:
    text = EMPTY_FENCE_RE.sub("", text)
    text = TOOL_CODE_RE.sub("", text)
    text = BRACKET_LINE_RE.sub("", text)
    text = ROLE_PREFIX_RE.sub("", text.strip())
    text = BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def clean_artifacts(text: str) -> str:
    # Repeat until stable so a second sanitize never changes anything
    while True:
        cleaned = _cleanup_pass(text)
        if cleaned == text:
            return cleaned
        text = cleaned


def sanitize_response(raw: str, commands: Optional[list[ActionCommand]] = None) -> str:
    """
    Text to display for a model response.

    Every extracted command (duplicates included) is removed by its recorded span,
    so marker text that never became a command stays put. Cleanup can join a marker
    to its payload (a lone bracket line between them, say), so the result is scanned
    again until no command is left. If nothing is left the raw response is shown
    rather than an empty message.
    """
    if commands is None:
        commands = extract_commands(raw)
    display = raw
    while True:
        spans = [_widen(display, c.start, c.end) for c in commands]
        display = clean_artifacts(remove_spans(display, spans))
        commands = extract_commands(display)
        if not commands:
            break
        logger.info("Cleanup exposed %d more command(s), removing them", len(commands))
    if not display:
        logger.info("Response was only commands, showing it unredacted")
        return raw
    return display
