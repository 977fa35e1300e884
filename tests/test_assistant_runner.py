from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from ticketflow.assistant import (
    AssistantNotFoundError,
    AssistantRunner,
    ContextFile,
    FakeAssistantRunner,
    ScriptedTurn,
    StreamHub,
    parse_stream_line,
)
from ticketflow.assistant.runner import PLAN_ONLY_TOOLS, build_turn_prompt


def write_script(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "claude"
    script.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    script.chmod(0o755)
    return script


STREAMING_BODY = """cat > "$(dirname "$0")/prompt.txt"
echo "$@" > "$(dirname "$0")/args.txt"
printf '%s\\n' '{"type":"system","subtype":"init"}'
printf '%s\\n' '{"type":"assistant","message":{"content":[{"type":"text","text":"Hello "},{"type":"tool_use","name":"Read"}]}}'
printf '%s\\n' '{"type":"content_block_delta","delta":{"text":"world"}}'
printf '%s\\n' 'not json'
printf '%s\\n' '{"type":"result","result":"Hello world"}'
"""


def test_parse_stream_line_variants() -> None:
    assert parse_stream_line('{"type":"assistant","message":{"content":[{"type":"text","text":"hi"}]}}').chunks == ("hi",)
    assert parse_stream_line('{"type":"content_block_delta","delta":{"text":"x"}}').chunks == ("x",)
    result = parse_stream_line('{"type":"result","result":"done"}')
    assert result.chunks == () and result.result == "done"
    assert parse_stream_line("raw text").chunks == ("raw text\n",)
    assert parse_stream_line('{"type":"system"}').chunks == ()
    assert parse_stream_line("   ").chunks == ()


def test_build_turn_prompt_prepends_context_files() -> None:
    prompt = build_turn_prompt("Do it", [ContextFile(path="a.py", content="x = 1")])

    assert prompt.startswith("Additional context files:")
    assert "a.py:\n```\nx = 1\n```" in prompt
    assert prompt.endswith("Do it")


def test_runner_streams_chunks_for_cwd(tmp_path: Path) -> None:
    script = write_script(tmp_path, STREAMING_BODY)
    work = tmp_path / "work"
    work.mkdir()
    runner = AssistantRunner(script)
    received: list[str] = []
    runner.subscribe(str(work), received.append)

    result = asyncio.run(runner.send_turn("Plan this", cwd=str(work), plan_only=True))

    assert result.success
    assert received == ["Hello ", "world", "not json\n"]
    assert result.response == "Hello worldnot json\n"
    assert (tmp_path / "prompt.txt").read_text(encoding="utf-8") == "Plan this"
    args = (tmp_path / "args.txt").read_text(encoding="utf-8")
    assert "--print --verbose --output-format stream-json" in args
    assert f"--allowedTools {PLAN_ONLY_TOOLS}" in args
    assert "--dangerously-skip-permissions" not in args


def test_runner_uses_result_when_nothing_streamed(tmp_path: Path) -> None:
    script = write_script(
        tmp_path,
        'cat > /dev/null\necho "$@" > "$(dirname "$0")/args.txt"\n'
        "printf '%s\\n' '{\"type\":\"result\",\"result\":\"final answer\"}'\n",
    )
    runner = AssistantRunner(script)
    received: list[str] = []
    runner.subscribe(str(tmp_path), received.append)

    result = asyncio.run(runner.send_turn("Go", cwd=str(tmp_path)))

    assert result.response == "final answer"
    assert received == ["final answer"]
    assert "--dangerously-skip-permissions" in (tmp_path / "args.txt").read_text(encoding="utf-8")


def test_runner_reports_failure(tmp_path: Path) -> None:
    script = write_script(tmp_path, "cat > /dev/null\necho boom >&2\nexit 3\n")
    runner = AssistantRunner(script)

    result = asyncio.run(runner.send_turn("Go", cwd=str(tmp_path)))

    assert not result.success
    assert result.returncode == 3
    assert result.error == "boom"


def test_runner_stop_kills_process(tmp_path: Path) -> None:
    script = write_script(
        tmp_path,
        "cat > /dev/null\nprintf '%s\\n' 'working'\nexec sleep 30\n",
    )
    runner = AssistantRunner(script)
    received: list[str] = []
    runner.subscribe(str(tmp_path), received.append)

    async def scenario():
        task = asyncio.create_task(runner.send_turn("Go", cwd=str(tmp_path)))
        for _ in range(200):
            if received:
                break
            await asyncio.sleep(0.05)
        assert runner.is_running(str(tmp_path))
        assert await runner.stop(str(tmp_path))
        return await asyncio.wait_for(task, timeout=10)

    result = asyncio.run(scenario())

    assert result.stopped
    assert not result.success
    assert received == ["working\n"]
    assert not runner.is_running(str(tmp_path))


def test_stop_without_running_turn(tmp_path: Path) -> None:
    runner = AssistantRunner(write_script(tmp_path, "exit 0\n"))
    assert asyncio.run(runner.stop(str(tmp_path))) is False


def test_assistant_not_found(tmp_path: Path) -> None:
    with pytest.raises(AssistantNotFoundError):
        AssistantRunner(tmp_path / "missing")


def test_stream_hub_keeps_keys_apart() -> None:
    hub = StreamHub()
    first: list[str] = []
    second: list[str] = []
    hub.subscribe("/wt/a", first.append)
    unsubscribe = hub.subscribe("/wt/b", second.append)

    hub.publish("/wt/a", "a1")
    hub.publish("/wt/b", "b1")
    unsubscribe()
    hub.publish("/wt/b", "b2")

    assert first == ["a1"]
    assert second == ["b1"]
    assert hub.listener_count("/wt/b") == 0


def test_stream_hub_survives_failing_listener() -> None:
    hub = StreamHub()
    received: list[str] = []

    def _broken(chunk: str) -> None:
        raise RuntimeError("listener bug")

    hub.subscribe("key", _broken)
    hub.subscribe("key", received.append)
    hub.publish("key", "chunk")

    assert received == ["chunk"]


def test_fake_runner_interleaves_concurrent_turns_without_mixing() -> None:
    runner = FakeAssistantRunner(
        [
            ScriptedTurn(chunks=("a1", "a2", "a3")),
            ScriptedTurn(chunks=("b1", "b2", "b3")),
        ]
    )
    seen: dict[str, list[str]] = {"/wt/a": [], "/wt/b": []}
    for key, bucket in seen.items():
        runner.subscribe(key, bucket.append)

    async def scenario():
        return await asyncio.gather(
            runner.send_turn("a", cwd="/wt/a"),
            runner.send_turn("b", cwd="/wt/b"),
        )

    results = asyncio.run(scenario())

    assert seen == {"/wt/a": ["a1", "a2", "a3"], "/wt/b": ["b1", "b2", "b3"]}
    assert [result.response for result in results] == ["a1a2a3", "b1b2b3"]
    assert [call["cwd"] for call in runner.calls] == ["/wt/a", "/wt/b"]
