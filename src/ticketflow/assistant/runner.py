"""Async runner for the assistant CLI in stream-json mode."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

from ..utils import sanitize_environment
from .streams import StreamHub

logger = logging.getLogger(__name__)

GLOBAL_STREAM_KEY = "__global__"
PLAN_ONLY_TOOLS = "Read,Glob,Grep,Task,WebFetch,WebSearch,TodoWrite,mcp__*"
_STREAM_LINE_LIMIT = 16 * 1024 * 1024


class AssistantRunnerError(RuntimeError):
    """Base class for assistant runner errors."""


class AssistantNotFoundError(AssistantRunnerError):
    """Raised when the assistant CLI executable cannot be located."""


@dataclass(slots=True, frozen=True)
class ContextFile:
    path: str
    content: str


@dataclass(slots=True)
class TurnResult:
    """Holds the outcome of one assistant turn."""

    success: bool
    response: str
    error: str | None = None
    returncode: int | None = None
    stopped: bool = False


@dataclass(slots=True)
class StreamLine:
    """Text extracted from one line of stream-json output."""

    chunks: tuple[str, ...] = ()
    result: str | None = None


def parse_stream_line(line: str) -> StreamLine:
    """Extract response text from a single stream-json line.

    Lines that are not JSON objects are passed through as raw text.
    """

    stripped = line.strip()
    if not stripped:
        return StreamLine()
    try:
        event = json.loads(stripped)
    except json.JSONDecodeError:
        return StreamLine(chunks=(line if line.endswith("\n") else line + "\n",))
    if not isinstance(event, dict):
        return StreamLine(chunks=(stripped + "\n",))

    event_type = event.get("type")
    if event_type == "assistant":
        message = event.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            return StreamLine()
        texts = [
            block["text"]
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
        ]
        return StreamLine(chunks=tuple(texts))
    if event_type == "content_block_delta":
        delta = event.get("delta") or {}
        text = delta.get("text") if isinstance(delta, dict) else None
        return StreamLine(chunks=(text,) if text else ())
    if event_type == "result":
        result = event.get("result")
        return StreamLine(result=result if isinstance(result, str) else None)
    return StreamLine()


def build_turn_prompt(prompt: str, context_files: Iterable[ContextFile] | None) -> str:
    files = list(context_files or [])
    if not files:
        return prompt
    sections = ["Additional context files:"]
    for item in files:
        sections.append(f"\n{item.path}:\n```\n{item.content}\n```")
    return "\n".join(sections) + "\n\n" + prompt


class AssistantRunner:
    """Execute assistant turns asynchronously, publishing chunks on a StreamHub."""

    def __init__(
        self,
        executable: Path | None = None,
        *,
        hub: StreamHub | None = None,
        extra_flags: Sequence[str] | None = None,
    ) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._hub = hub or StreamHub()
        self._extra_flags = list(extra_flags or [])
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._stopped: set[str] = set()

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise AssistantNotFoundError(f"Assistant executable not found at {candidate}")

        binary = shutil.which("claude")
        if binary is None:
            raise AssistantNotFoundError("Assistant CLI executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def hub(self) -> StreamHub:
        return self._hub

    def subscribe(self, cwd: str | None, listener: Callable[[str], None]) -> Callable[[], None]:
        return self._hub.subscribe(cwd or GLOBAL_STREAM_KEY, listener)

    def is_running(self, cwd: str | None) -> bool:
        return (cwd or GLOBAL_STREAM_KEY) in self._processes

    def command_flags(self, *, plan_only: bool) -> list[str]:
        args = ["--print", "--verbose", "--output-format", "stream-json"]
        if plan_only:
            args.extend(["--allowedTools", PLAN_ONLY_TOOLS])
        else:
            args.append("--dangerously-skip-permissions")
        args.extend(self._extra_flags)
        return args

    async def send_turn(
        self,
        prompt: str,
        context_files: Iterable[ContextFile] | None = None,
        cwd: str | None = None,
        *,
        plan_only: bool = False,
    ) -> TurnResult:
        key = cwd or GLOBAL_STREAM_KEY
        if key in self._processes:
            raise AssistantRunnerError(f"An assistant turn is already running for {key}")

        cmd = [str(self._executable_path), *self.command_flags(plan_only=plan_only)]
        logger.info(
            "Starting assistant turn",
            extra={"cwd": cwd, "plan_only": plan_only, "prompt_length": len(prompt)},
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(),
                limit=_STREAM_LINE_LIMIT,
            )
        except OSError as exc:
            logger.error("Failed to spawn assistant", extra={"cwd": cwd, "error": str(exc)})
            return TurnResult(success=False, response="", error=str(exc))

        self._processes[key] = process
        self._stopped.discard(key)
        try:
            writer = asyncio.create_task(self._write_prompt(process, build_turn_prompt(prompt, context_files)))
            stderr_task = asyncio.create_task(process.stderr.read())

            streamed: list[str] = []
            final: str | None = None
            assert process.stdout is not None
            async for raw in process.stdout:
                parsed = parse_stream_line(raw.decode("utf-8", errors="replace"))
                for chunk in parsed.chunks:
                    streamed.append(chunk)
                    self._hub.publish(key, chunk)
                if parsed.result is not None:
                    final = parsed.result

            await writer
            stderr = (await stderr_task).decode("utf-8", errors="replace").strip()
            returncode = await process.wait()
        finally:
            self._processes.pop(key, None)

        response = "".join(streamed)
        if not response and final:
            response = final
            self._hub.publish(key, final)

        if key in self._stopped:
            self._stopped.discard(key)
            logger.info("Assistant turn stopped", extra={"cwd": cwd})
            return TurnResult(success=False, response=response, error="stopped", returncode=returncode, stopped=True)

        success = returncode == 0 or bool(response)
        if not success:
            logger.warning(
                "Assistant turn failed",
                extra={"cwd": cwd, "returncode": returncode, "stderr": stderr[:500]},
            )
        else:
            logger.info("Assistant turn finished", extra={"cwd": cwd, "response_length": len(response)})
        return TurnResult(
            success=success,
            response=response,
            error=None if success else (stderr or f"assistant exited with code {returncode}"),
            returncode=returncode,
        )

    async def stop(self, cwd: str | None) -> bool:
        """Kill the running turn for ``cwd``. Returns False when nothing was running."""

        key = cwd or GLOBAL_STREAM_KEY
        process = self._processes.get(key)
        if process is None:
            return False
        self._stopped.add(key)
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        logger.warning("Killed assistant process", extra={"cwd": cwd})
        return True

    @staticmethod
    async def _write_prompt(process: asyncio.subprocess.Process, prompt: str) -> None:
        assert process.stdin is not None
        try:
            process.stdin.write(prompt.encode("utf-8"))
            await process.stdin.drain()
            process.stdin.close()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Assistant closed stdin before the prompt was written")


@dataclass(slots=True)
class ScriptedTurn:
    """Canned turn for FakeAssistantRunner."""

    chunks: tuple[str, ...] = ()
    success: bool = True
    error: str | None = None
    gate: asyncio.Event | None = None


class FakeAssistantRunner(AssistantRunner):
    """Test double that replays scripted turns through the StreamHub."""

    def __init__(  # type: ignore[override]
        self,
        turns: Iterable[ScriptedTurn] | None = None,
        *,
        hub: StreamHub | None = None,
    ) -> None:
        self._turns = list(turns or [])
        self._hub = hub or StreamHub()
        self._extra_flags = []
        self._processes = {}
        self._stopped = set()
        self._executable_path = Path("/tmp/fake-claude")
        self._gates: dict[str, asyncio.Event] = {}
        self.calls: list[dict[str, Any]] = []

    def queue(self, turn: ScriptedTurn) -> None:
        self._turns.append(turn)

    async def send_turn(  # type: ignore[override]
        self,
        prompt: str,
        context_files: Iterable[ContextFile] | None = None,
        cwd: str | None = None,
        *,
        plan_only: bool = False,
    ) -> TurnResult:
        key = cwd or GLOBAL_STREAM_KEY
        self.calls.append({"prompt": prompt, "cwd": cwd, "plan_only": plan_only})
        turn = self._turns.pop(0) if self._turns else ScriptedTurn()
        self._processes[key] = None  # type: ignore[assignment]
        self._stopped.discard(key)
        if turn.gate is not None:
            self._gates[key] = turn.gate
        try:
            streamed: list[str] = []
            for chunk in turn.chunks:
                if key in self._stopped:
                    break
                streamed.append(chunk)
                self._hub.publish(key, chunk)
                await asyncio.sleep(0)
            if turn.gate is not None and key not in self._stopped:
                await turn.gate.wait()
        finally:
            self._processes.pop(key, None)
            self._gates.pop(key, None)

        if key in self._stopped:
            self._stopped.discard(key)
            return TurnResult(success=False, response="".join(streamed), error="stopped", stopped=True)
        return TurnResult(success=turn.success, response="".join(streamed), error=turn.error)

    async def stop(self, cwd: str | None) -> bool:  # type: ignore[override]
        key = cwd or GLOBAL_STREAM_KEY
        if key not in self._processes:
            return False
        self._stopped.add(key)
        gate = self._gates.get(key)
        if gate is not None:
            gate.set()
        return True


__all__ = [
    "AssistantNotFoundError",
    "AssistantRunner",
    "AssistantRunnerError",
    "ContextFile",
    "FakeAssistantRunner",
    "ScriptedTurn",
    "StreamLine",
    "TurnResult",
    "build_turn_prompt",
    "parse_stream_line",
]
