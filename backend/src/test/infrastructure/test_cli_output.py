# tests/infrastructure/test_cli_output.py
import json

import pytest

from infrastructure.generation.cli_output import (
    CliOutput,
    StreamJsonOutput,
    detect_output_format,
    make_cli_output,
)


def _line(event) -> str:
    return json.dumps(event) + "\n"


def _assistant(text: str) -> str:
    return _line({"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}})


def _delta(text: str) -> str:
    return _line(
        {
            "type": "stream_event",
            "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": text}},
        }
    )


@pytest.mark.parametrize(
    "args, expected",
    [
        (["-p"], "text"),
        (["-p", "--output-format", "stream-json", "--verbose"], "stream-json"),
        (["-p", "--output-format=json"], "json"),
        (["-p", "--output-format"], "text"),
    ],
)
def test_detect_output_format(args, expected):
    assert detect_output_format(args) == expected


def test_make_cli_output_picks_parser():
    assert type(make_cli_output(["-p", "--output-format", "text"])) is CliOutput
    assert isinstance(make_cli_output(["--output-format", "stream-json"]), StreamJsonOutput)
    assert isinstance(make_cli_output(["--output-format", "json"]), StreamJsonOutput)


def test_plain_text_is_forwarded_as_is():
    out = CliOutput()
    assert out.feed("It was ") == ["It was "]
    assert out.feed("") == []
    assert out.finish() == []
    assert out.usage is None


def test_assistant_text_split_across_reads():
    out = StreamJsonOutput()
    raw = _assistant("Once upon") + _assistant(" a time")

    chunks = []
    for i in range(0, len(raw), 7):
        chunks += out.feed(raw[i : i + 7])
    chunks += out.finish()

    assert chunks == ["Once upon", " a time"]


def test_deltas_win_over_full_assistant_messages():
    out = StreamJsonOutput()
    chunks = out.feed(_delta("Once ") + _delta("upon") + _assistant("Once upon"))
    assert chunks == ["Once ", "upon"]


def test_result_records_usage_and_cost():
    out = StreamJsonOutput()
    out.feed(_assistant("Titles"))
    chunks = out.feed(
        _line(
            {
                "type": "result",
                "is_error": False,
                "result": "Titles",
                "usage": {"input_tokens": 12, "output_tokens": 5, "cache_read_input_tokens": None},
                "total_cost_usd": 0.25,
            }
        )
    )

    # already streamed; the result text is not repeated
    assert chunks == []
    assert out.usage.input_tokens == 12
    assert out.usage.output_tokens == 5
    assert out.usage.cache_read_input_tokens == 0
    assert out.usage.cost_usd == 0.25
    assert out.error is None


def test_single_json_object_emits_result_text():
    out = StreamJsonOutput()
    payload = json.dumps({"type": "result", "result": "whole answer", "usage": {"output_tokens": 2}})

    assert out.feed(payload) == []
    assert out.finish() == ["whole answer"]
    assert out.usage.output_tokens == 2


def test_error_result_sets_error():
    out = StreamJsonOutput()
    out.feed(_line({"type": "result", "is_error": True, "subtype": "error_max_turns"}))
    assert out.error == "error_max_turns"
    assert out.usage is None


def test_non_json_and_unknown_lines_are_ignored():
    out = StreamJsonOutput()
    raw = "warming up\n" + _line({"type": "system", "subtype": "init"}) + _line([1, 2]) + _assistant("ok")
    assert out.feed(raw) == ["ok"]
