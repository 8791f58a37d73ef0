"""
Tests for sanitizer.py - command redaction and artifact cleanup.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sanitizer import clean_artifacts, remove_spans, sanitize_response


class TestRedaction:
    """Commands are cut out of the displayed text."""

    def test_trailing_command(self):
        assert sanitize_response('Done! TASKS_JSON: [{"title":"X"}]') == "Done!"

    def test_command_on_its_own_line(self):
        raw = 'Sure!\nTASKS_JSON: [{"title": "X"}]\nAnything else?'
        assert sanitize_response(raw) == "Sure!\nAnything else?"

    def test_fenced_command(self):
        raw = 'Here you go!\n```json\nTASKS_JSON: [{"title": "X"}]\n```'
        assert sanitize_response(raw) == "Here you go!"

    def test_every_instance_removed(self):
        raw = 'Ok TASK_DELETE_JSON: {"taskTitle": "a"}\nTASK_DELETE_JSON: {"taskTitle": "b"}'
        assert sanitize_response(raw) == "Ok"

    def test_note_block(self):
        raw = 'Saved it.\n<<<NOTE_START>>>{"title": "Ideas", "content": "x"}<<<NOTE_END>>>'
        assert sanitize_response(raw) == "Saved it."

    def test_tool_code_inside_command(self):
        assert sanitize_response('Here. TASKS_JSON: tool_code [{"title": "X"}]') == "Here."

    def test_command_exposed_by_cleanup(self):
        """Removing a lone bracket line can join a marker to its payload; that is removed too."""
        assert sanitize_response('Here.\nTASKS_JSON:\n]\n[{"title": "X"}]') == "Here."

    def test_instances_after_malformed_one_still_hidden(self):
        raw = 'Ok. TASK_DELETE_JSON: {"taskTitle": "gym",} TASK_DELETE_JSON: {"taskTitle": "rent"}'
        assert sanitize_response(raw) == 'Ok. TASK_DELETE_JSON: {"taskTitle": "gym",}'

    def test_marker_in_prose_left_alone(self):
        raw = "You can say TASKS_JSON: to create tasks."
        assert sanitize_response(raw) == raw

    def test_only_commands_falls_back_to_raw(self):
        raw = 'TASKS_JSON: [{"title": "X"}]'
        assert sanitize_response(raw) == raw

    def test_plain_text_unchanged(self):
        assert sanitize_response("Hello there.") == "Hello there."


class TestArtifacts:
    """Tests for leftover fences, brackets and role prefixes."""

    def test_stray_bracket_lines(self):
        assert clean_artifacts("Here\n]\n}\nDone") == "Here\n\nDone"

    def test_tool_code(self):
        assert clean_artifacts("tool_code\nHello") == "Hello"

    def test_empty_fence(self):
        assert clean_artifacts("Hi ```json\n```") == "Hi"

    @pytest.mark.parametrize("raw", ["Assistant: Hi", "wove: Hi", "Wove: Assistant: Hi"])
    def test_role_prefix(self, raw):
        assert clean_artifacts(raw) == "Hi"

    def test_blank_lines_collapsed(self):
        assert clean_artifacts("A\n\n\n\nB") == "A\n\nB"


class TestIdempotence:
    """Sanitizing a sanitized response changes nothing."""

    @pytest.mark.parametrize("raw", [
        'Done! TASKS_JSON: [{"title":"X"}]',
        'Here. TASKS_JSON: tool_code [{"title": "X"}]',
        'Here.\nTASKS_JSON:\n]\n[{"title": "X"}]',
        'Assistant: Here you go!\n```json\nTASKS_JSON: [{"title": "X"}]\n```\n]\n\n\n\nBye',
        'TASKS_JSON: [{"title": "X"}]',
        "tool_code\n```json\n```\nAssistant: Hi",
    ])
    def test_twice_equals_once(self, raw):
        once = sanitize_response(raw)
        assert sanitize_response(once) == once


def test_remove_spans_merges_overlaps():
    assert remove_spans("abcdefgh", [(5, 7), (1, 3), (2, 4)]) == "aeh"
