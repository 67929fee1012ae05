"""Unit tests for IVR script parsing, validation and the flow engine."""

from __future__ import annotations

from typing import Any

import pytest

from outreach.core.errors import InvalidInputError, ScriptValidationError
from outreach.services.ivr import (
    HANGUP,
    IvrTarget,
    TargetKind,
    find_next_block,
    find_next_step,
    load_script,
    match_option,
    parse_script,
    resolve_target,
    validate_script,
)


def _script() -> dict[str, Any]:
    return {
        "pages": {
            "page_1": {"id": "page_1", "title": "Intro", "blocks": ["b1", "b2"]},
            "page_2": {"id": "page_2", "title": "Outro", "blocks": ["b3"]},
        },
        "blocks": {
            "b1": {
                "id": "b1",
                "type": "synthetic",
                "title": "Q1",
                "content": "Press 1 or 2",
                "options": [
                    {"value": 1, "next": "b3"},
                    {"value": "2", "next": "hangup"},
                    {"value": "vx-any", "next": "page_2"},
                ],
            },
            "b2": {"id": "b2", "type": "synthetic", "title": "Q2", "content": "Thanks", "options": []},
            "b3": {"id": "b3", "type": "recorded", "title": "Bye", "audioFile": "bye.mp3"},
        },
    }


class TestParseScript:
    """Tests for parse_script and load_script."""

    def test_numeric_option_values_coerced(self) -> None:
        script = parse_script(_script())

        assert script.blocks["b1"].options[0].value == "1"
        assert script.blocks["b3"].audio == "bye.mp3"
        assert script.blocks["b3"].is_recorded

    def test_first_location(self) -> None:
        assert parse_script(_script()).first_location() == ("page_1", "b1")

    def test_empty_document_rejected(self) -> None:
        with pytest.raises(ScriptValidationError):
            parse_script(None)

    def test_load_rejects_invalid_graph(self) -> None:
        raw = _script()
        raw["blocks"]["b2"]["options"] = [{"value": "1", "next": "missing"}]

        with pytest.raises(ScriptValidationError) as exc_info:
            load_script(raw)

        assert any("missing" in error for error in exc_info.value.errors)

    def test_find_page_by_title(self) -> None:
        found = parse_script(_script()).find_page_by_title(" outro ")

        assert found is not None
        assert found[0] == "page_2"


class TestValidateScript:
    """Tests for validate_script."""

    def test_valid_script(self) -> None:
        report = validate_script(_script())

        assert report.is_valid
        assert report.errors == []

    def test_missing_sections(self) -> None:
        report = validate_script({})

        assert report.errors == ['Missing "pages" property', 'Missing "blocks" property']

    def test_dangling_option_target(self) -> None:
        raw = _script()
        raw["blocks"]["b2"]["options"] = [{"value": "1", "next": "nowhere"}]

        report = validate_script(raw)

        assert 'Option 0 in block "b2" references non-existent next block "nowhere"' in report.errors

    def test_page_references_unknown_block(self) -> None:
        raw = _script()
        raw["pages"]["page_2"]["blocks"].append("ghost")

        report = validate_script(raw)

        assert 'Page "page_2" references non-existent block "ghost"' in report.errors

    def test_cycle_detected(self) -> None:
        raw = _script()
        raw["blocks"]["b3"]["options"] = [{"value": "1", "next": "b1"}]

        report = validate_script(raw)

        assert not report.is_valid
        assert any(error.startswith("Circular reference detected") for error in report.errors)

    def test_self_loop_detected(self) -> None:
        raw = _script()
        raw["blocks"]["b2"]["options"] = [{"value": "9", "next": "page_1:b2"}]

        report = validate_script(raw)

        assert any('involving block "b2"' in error for error in report.errors)

    def test_cycle_through_page_target_detected(self) -> None:
        raw = _script()
        raw["blocks"]["b3"]["options"] = [{"value": "1", "next": "page_1"}]

        report = validate_script(raw)

        assert not report.is_valid
        assert any('involving block "b1"' in error for error in report.errors)

    def test_non_string_block_reference_rejected(self) -> None:
        raw = _script()
        raw["pages"]["page_2"]["blocks"] = ["b3", {"id": "b4"}, ["b5"]]

        report = validate_script(raw)

        assert not report.is_valid
        assert report.errors.count('Page "page_2" has a non-string block reference') == 2

    def test_terminal_and_page_targets_accepted(self) -> None:
        raw = _script()
        raw["blocks"]["b2"]["options"] = [
            {"value": "1", "next": "end"},
            {"value": "2", "next": "page_2"},
            {"value": "3", "next": "page_2:b3"},
        ]

        assert validate_script(raw).is_valid

    def test_warnings_do_not_block(self) -> None:
        raw = _script()
        raw["blocks"]["orphan"] = {"id": "orphan", "type": "synthetic"}

        report = validate_script(raw)

        assert report.is_valid
        assert 'Block "orphan" is not referenced by any page' in report.warnings
        assert 'Block "orphan" is missing a "title" property' in report.warnings


class TestFlowEngine:
    """Tests for option matching and step resolution."""

    def test_exact_option_match(self) -> None:
        script = parse_script(_script())

        option = match_option(script.blocks["b1"], " 2 ")

        assert option is not None
        assert option.next == "hangup"

    def test_any_input_needs_more_than_two_characters(self) -> None:
        script = parse_script(_script())

        assert match_option(script.blocks["b1"], "9") is None
        option = match_option(script.blocks["b1"], "yes please")
        assert option is not None
        assert option.next == "page_2"

    def test_option_target_wins(self) -> None:
        script = parse_script(_script())

        assert find_next_step(script, "page_1", "b1", "1") == "b3"

    def test_no_match_falls_through_linearly(self) -> None:
        script = parse_script(_script())

        assert find_next_step(script, "page_1", "b1", "7") == "page_1:b2"

    def test_last_block_of_page_moves_to_next_page(self) -> None:
        script = parse_script(_script())

        assert find_next_step(script, "page_1", "b2") == "page_2:b3"

    def test_end_of_script_hangs_up(self) -> None:
        script = parse_script(_script())

        assert find_next_step(script, "page_2", "b3") == HANGUP
        assert find_next_block(script, "page_2", "b3") is None

    def test_unknown_block_rejected(self) -> None:
        script = parse_script(_script())

        with pytest.raises(InvalidInputError):
            find_next_step(script, "page_1", "nope")

    def test_unknown_page_rejected(self) -> None:
        script = parse_script(_script())

        with pytest.raises(InvalidInputError):
            find_next_block(script, "page_9", "b1")

    @pytest.mark.parametrize(
        ("step", "expected"),
        [
            ("hangup", IvrTarget(TargetKind.HANGUP)),
            ("end", IvrTarget(TargetKind.HANGUP)),
            ("page_2:b3", IvrTarget(TargetKind.BLOCK, "page_2", "b3")),
            ("page_2", IvrTarget(TargetKind.PAGE, "page_2")),
            ("b2", IvrTarget(TargetKind.BLOCK, "page_1", "b2")),
        ],
    )
    def test_resolve_target(self, step: str, expected: IvrTarget) -> None:
        script = parse_script(_script())

        assert resolve_target(script, step, "page_1") == expected
