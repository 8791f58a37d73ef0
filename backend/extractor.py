"""
Command extraction from model responses.

The model embeds commands in plain text as a marker followed by a JSON literal:

    Done! TASKS_JSON: [{"title": "Buy milk"}]

Each marker is scanned independently over a copy of the response with code fences
removed; offsets are mapped back so every command records its exact span in the
original text for later redaction. Notes use a delimiter pair instead, since their
content routinely contains braces.
"""
import json
import logging
import re
from typing import Iterator, Optional

from models import ActionCommand, CommandKind

logger = logging.getLogger(__name__)

# marker -> (command kind, opening token of its payload)
MARKERS: dict[str, tuple[CommandKind, str]] = {
    "TASKS_JSON:": (CommandKind.CREATE_TASKS, "["),
    "TASK_UPDATE_JSON:": (CommandKind.UPDATE_TASK, "{"),
    "TASK_DELETE_JSON:": (CommandKind.DELETE_TASK, "{"),
    "TASK_DELETE_ALL_JSON:": (CommandKind.DELETE_ALL_TASKS, "{"),
    "TASK_DELETE_COMPLETED_JSON:": (CommandKind.DELETE_COMPLETED_TASKS, "{"),
    "EVENTS_JSON:": (CommandKind.CREATE_EVENTS, "["),
    "EVENT_UPDATE_JSON:": (CommandKind.UPDATE_EVENT, "{"),
    "EVENT_DELETE_JSON:": (CommandKind.DELETE_EVENT, "{"),
    "GOALS_JSON:": (CommandKind.CREATE_GOALS, "["),
    "GOAL_UPDATE_JSON:": (CommandKind.UPDATE_GOAL, "{"),
    "GOAL_DELETE_JSON:": (CommandKind.DELETE_GOAL, "{"),
}

NOTE_START = "<<<NOTE_START>>>"
NOTE_END = "<<<NOTE_END>>>"
NOTE_RE = re.compile(re.escape(NOTE_START) + r"\s*(.*?)\s*" + re.escape(NOTE_END), re.DOTALL)

CLOSERS = {"{": "}", "[": "]"}

# ```json, ```tool_code or a bare ``` plus the newline after it
FENCE_RE = re.compile(r"```(?:json|tool_code)?[ \t]*\n?")

# What may sit between a marker and its payload: whitespace and stray tool_code tokens
GAP_RE = re.compile(r"(?:\s+|\btool_code\b)*")


def strip_code_fences(text: str) -> tuple[str, list[int]]:
    """
    Remove code fences from text.
    Returns the cleaned text and, for each cleaned character, its offset in the
    original (with one trailing entry for len(text)).
    """
    pieces: list[str] = []
    offsets: list[int] = []
    pos = 0
    for match in FENCE_RE.finditer(text):
        pieces.append(text[pos:match.start()])
        offsets.extend(range(pos, match.start()))
        pos = match.end()
    pieces.append(text[pos:])
    offsets.extend(range(pos, len(text)))
    offsets.append(len(text))
    return "".join(pieces), offsets


def find_closing(text: str, start: int, opener: str, closer: str) -> Optional[int]:
    """
    Index of the token closing the opener at text[start], or None if unterminated.
    Tokens inside string literals don't count; a backslash skips the next character.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return i
    return None


def _scan_marker(clean: str, marker: str, opener: str) -> Iterator[tuple[int, int, int]]:
    """Yield (marker, opener, closer) positions for each marker directly followed by a balanced literal."""
    closer = CLOSERS[opener]
    pos = clean.find(marker)
    while pos != -1:
        open_pos = GAP_RE.match(clean, pos + len(marker)).end()
        if open_pos < len(clean) and clean[open_pos] == opener:
            close_pos = find_closing(clean, open_pos, opener, closer)
            if close_pos is None:
                logger.error("Dropping %s command: payload is never closed", marker)
                return
            yield pos, open_pos, close_pos
            pos = clean.find(marker, close_pos + 1)
        else:
            logger.debug("%s is not followed by %r, treating it as text", marker, opener)
            pos = clean.find(marker, open_pos)


def extract_json_literal(text: str, marker: str, opener: str = "{") -> Optional[str]:
    """First balanced JSON literal following marker, exactly as it appears in text."""
    clean, offsets = strip_code_fences(text)
    for _, open_pos, close_pos in _scan_marker(clean, marker, opener):
        return text[offsets[open_pos]:offsets[close_pos] + 1]
    return None


def _marker_commands(text: str, failed: dict[str, int]) -> list[ActionCommand]:
    clean, offsets = strip_code_fences(text)
    commands = []
    for marker, (kind, opener) in MARKERS.items():
        for marker_pos, open_pos, close_pos in _scan_marker(clean, marker, opener):
            try:
                payload = json.loads(clean[open_pos:close_pos + 1])
            except json.JSONDecodeError as e:
                logger.error("Dropping %s command: %s", marker, e)
                failed.setdefault(marker, offsets[marker_pos])
                continue
            end = offsets[close_pos] + 1
            commands.append(ActionCommand(
                kind=kind,
                marker=marker,
                payload=payload,
                literal=text[offsets[open_pos]:end],
                start=offsets[marker_pos],
                end=end,
            ))
    return commands


def _note_commands(text: str, failed: dict[str, int]) -> list[ActionCommand]:
    commands = []
    for match in NOTE_RE.finditer(text):
        body = FENCE_RE.sub("", match.group(1)).strip()
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            logger.error("Dropping note command: %s", e)
            failed.setdefault(NOTE_START, match.start())
            continue
        if not isinstance(payload, dict):
            logger.error("Dropping note command: expected an object, got %s", type(payload).__name__)
            failed.setdefault(NOTE_START, match.start())
            continue
        commands.append(ActionCommand(
            kind=CommandKind.CREATE_NOTE,
            marker=NOTE_START,
            payload=payload,
            literal=match.group(1),
            start=match.start(),
            end=match.end(),
        ))
    return commands


def extract_commands(text: str) -> list[ActionCommand]:
    """
    All well-formed commands in a response, ordered by position.

    A command whose span overlaps an earlier one (a marker quoted inside another
    command's payload, say) is discarded. Only the first instance of each marker is
    executable: later instances come back flagged as duplicates so they are still
    redacted from the display text. When that first instance is malformed it is
    dropped and every later instance of the marker is flagged as well.
    """
    failed: dict[str, int] = {}
    candidates = sorted(_marker_commands(text, failed) + _note_commands(text, failed), key=lambda c: c.start)
    commands: list[ActionCommand] = []
    seen: set[str] = set()
    covered_until = 0
    for command in candidates:
        if command.start < covered_until:
            logger.debug("Skipping %s nested inside another command", command.marker)
            continue
        covered_until = command.end
        if command.marker in seen:
            logger.info("Ignoring repeated %s command", command.marker)
            command.duplicate = True
        elif failed.get(command.marker, len(text)) < command.start:
            logger.info("Ignoring %s command that follows a malformed one", command.marker)
            command.duplicate = True
        seen.add(command.marker)
        commands.append(command)
    return commands
