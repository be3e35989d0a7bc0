"""Tests for the script compiler."""

import json

import pytest

from browser_script_runner.config import Params
from browser_script_runner.errors import JobInputError
from browser_script_runner.models import (
    ActionStep,
    CaptureStep,
    ClickStep,
    EvaluateStep,
    ExtractStep,
    NavigateStep,
    SleepStep,
    UnknownStep,
)
from browser_script_runner.script_compiler import ScriptCompiler, parse_line


def test_navigate_line():
    assert parse_line("navigate https://example.com") == {"type": "navigate", "url": "https://example.com"}


def test_navigate_line_variants():
    assert parse_line("Navigate: to https://example.com/a")["url"] == "https://example.com/a"
    assert parse_line("NAVIGATE to https://example.com")["url"] == "https://example.com"


def test_navigate_with_several_words_is_an_action():
    assert parse_line("navigate to the login page") == {
        "type": "action",
        "prompt": "navigate to the login page",
    }


def test_comments_and_blank_lines_are_skipped():
    assert parse_line("# just a comment") is None
    assert parse_line("   ") is None
    assert parse_line("") is None
    assert parse_line("// also a comment") is None


def test_capture_line():
    assert parse_line("capture: api/users") == {"type": "capture", "url": "api/users"}


def test_extract_line_keeps_entire_line_as_prompt():
    assert parse_line("Extract the order total") == {"type": "extract", "prompt": "Extract the order total"}


def test_evaluate_line():
    assert parse_line("evaluate document.title") == {"type": "evaluate", "script": "document.title"}


def test_sleep_line():
    assert parse_line("sleep for 2000") == {"type": "sleep", "duration": 2000}
    assert parse_line("sleep: 500") == {"type": "sleep", "duration": 500}


def test_free_text_is_an_action():
    assert parse_line("click the blue Sign In button") == {
        "type": "action",
        "prompt": "click the blue Sign In button",
    }


def test_compile_text_script():
    script = """
    # login flow
    navigate to https://example.com/login
    capture api/session

    type %USERNAME% into the email field
    sleep 250
    extract the welcome message
    """
    steps = ScriptCompiler().compile(script)

    assert steps == [
        NavigateStep(url="https://example.com/login"),
        CaptureStep(url="api/session"),
        ActionStep(prompt="type %USERNAME% into the email field"),
        SleepStep(duration=250),
        ExtractStep(prompt="extract the welcome message"),
    ]


def test_encodings_compile_identically():
    text = "navigate https://example.com\ncapture api/users\nevaluate document.title\nsleep 100"
    obj = {
        "steps": [
            {"type": "navigate", "url": "https://example.com"},
            {"type": "capture", "url": "api/users"},
            {"type": "evaluate", "script": "document.title"},
            {"type": "sleep", "duration": 100},
        ]
    }
    compiler = ScriptCompiler()

    from_text = compiler.compile(text)
    from_json = compiler.compile(json.dumps(obj))
    from_object = compiler.compile(obj)

    assert from_text == from_json == from_object
    assert from_text[2] == EvaluateStep(script="document.title")


def test_object_without_steps_compiles_to_empty_list():
    assert ScriptCompiler().compile({"title": "nothing here"}) == []


def test_missing_script_compiles_to_empty_list():
    assert ScriptCompiler().compile(None) == []


def test_only_comments_compiles_to_empty_list():
    assert ScriptCompiler().compile("# nothing\n\n# to do") == []


def test_malformed_json_script_raises():
    with pytest.raises(JobInputError):
        ScriptCompiler().compile('{"steps": [ {"type": "navigate", }')


def test_recorder_fields_are_mapped():
    steps = ScriptCompiler().compile({
        "steps": [
            {"type": "click", "selectors": [["#go"]], "offsetX": 4, "offsetY": 7, "target": "main"},
        ]
    })
    assert steps == [ClickStep(selectors=[["#go"]], offset_x=4, offset_y=7)]


def test_unknown_step_type_is_preserved():
    steps = ScriptCompiler().compile({"steps": [{"type": "scroll", "x": 10}]})
    assert isinstance(steps[0], UnknownStep)
    assert steps[0].type == "scroll"


def test_compile_params_normalizes_json_text():
    params = Params(script='{"steps": [{"type": "reload"}]}')
    steps = ScriptCompiler().compile_params(params)

    assert len(steps) == 1
    assert params.script == {"steps": [{"type": "reload"}]}


def test_compile_params_leaves_line_script_as_text():
    params = Params(script="navigate https://example.com")
    ScriptCompiler().compile_params(params)
    assert params.script == "navigate https://example.com"
