"""Health-Analysis Agent: supervised Anthropic tool loop over the canvas.

A run walks idle → starting → analyzing → completed | error. The model
explores zones, inspects nodes, files suggestions and finally submits
dimension scores. The orchestrator, not the prompt, decides when the run is
done: a run is complete once a health update has followed at least one
exploration call. A turn that ends without tool calls before that point gets
a continuation prompt (up to HEALTH_ANALYSIS_MAX_NUDGES); running out of
nudges, turns or wall-clock time ends the run in ``error``.

Cancellation tears down the in-flight model request and returns the run to
``idle``. Suggestions and scores written by tool calls that already finished
stay persisted.
"""

import asyncio
import json
import uuid
from collections.abc import AsyncGenerator
from typing import Any
from uuid import UUID

from anthropic import AsyncAnthropic

from app.agents.health_analysis_prompts import (
    CONTINUE_ANALYSIS_PROMPT,
    CREATE_SUGGESTION,
    EXPLORATION_TOOLS,
    HEALTH_ANALYSIS_TOOLS,
    UPDATE_FRAMEWORK_HEALTH,
)
from app.agents.health_analysis_tools import execute_health_tool
from app.agents.health_analysis_types import AnalysisProgress, HealthAnalysisContext, ToolExecution
from app.core.config import Settings, get_settings
from app.core.errors import ConflictError
from app.core.health_stream import sse_event
from app.core.logging import get_logger
from app.core.schemas_health_analysis import AnalysisStatus, StreamEventType
from app.db import chats

logger = get_logger(__name__)


class AnalysisIncompleteError(Exception):
    """The model stopped, or ran out of budget, before completing the analysis."""


# Allowed state transitions; cancel returns to idle from any live state
_TRANSITIONS: dict[AnalysisStatus, set[AnalysisStatus]] = {
    AnalysisStatus.IDLE: {AnalysisStatus.STARTING},
    AnalysisStatus.STARTING: {AnalysisStatus.ANALYZING, AnalysisStatus.ERROR, AnalysisStatus.IDLE},
    AnalysisStatus.ANALYZING: {AnalysisStatus.COMPLETED, AnalysisStatus.ERROR, AnalysisStatus.IDLE},
    AnalysisStatus.COMPLETED: set(),
    AnalysisStatus.ERROR: set(),
}


def _block_to_dict(block: Any) -> dict[str, Any] | None:
    if block.type == "text":
        return {"type": "text", "text": block.text}
    if block.type == "tool_use":
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    return None


def history_to_messages(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Replay stored chat messages as text-only model history.

    Tool calls are not replayed (their results are already reflected in the
    canvas), and history must open with a user turn.
    """
    messages: list[dict[str, Any]] = []
    for row in rows:
        text = "\n".join(
            block.get("text", "")
            for block in row.get("content") or []
            if block.get("type") == "text"
        ).strip()
        if not text or row.get("role") not in ("user", "assistant"):
            continue
        if not messages and row["role"] != "user":
            continue
        append_text_message(messages, row["role"], text)
    return messages


def append_text_message(messages: list[dict[str, Any]], role: str, text: str) -> None:
    """Append a text turn, folding it into the previous turn when roles repeat."""
    if messages and messages[-1]["role"] == role and isinstance(messages[-1]["content"], str):
        messages[-1]["content"] = f"{messages[-1]['content']}\n\n{text}"
    else:
        messages.append({"role": role, "content": text})


class HealthAnalysisRun:
    """One streaming analysis session bound to a health-analysis chat."""

    def __init__(
        self,
        context: HealthAnalysisContext,
        system_prompt: str,
        message: str,
        settings: Settings | None = None,
        client: AsyncAnthropic | None = None,
    ):
        self.context = context
        self.system_prompt = system_prompt
        self.message = message
        self.settings = settings or get_settings()
        self.client = client or AsyncAnthropic(api_key=self.settings.ANTHROPIC_API_KEY)
        self.status = AnalysisStatus.IDLE
        self.progress = AnalysisProgress()
        self.error: str | None = None
        self._cancel_event = asyncio.Event()
        self._transcript_text: list[str] = []
        self._tool_calls: list[dict[str, Any]] = []

    @property
    def chat_id(self) -> str:
        return str(self.context.chat_id)

    @property
    def is_live(self) -> bool:
        return self.status in (AnalysisStatus.STARTING, AnalysisStatus.ANALYZING)

    def _log_extra(self) -> dict[str, str]:
        return {
            "project_id": str(self.context.project_id),
            "project_framework_id": str(self.context.project_framework_id),
            "chat_id": self.chat_id,
        }

    def transition(self, target: AnalysisStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise ConflictError(f"Analysis cannot go from {self.status.value} to {target.value}")
        logger.info(f"Analysis {self.status.value} -> {target.value}", extra=self._log_extra())
        self.status = target

    def begin(self) -> None:
        self.transition(AnalysisStatus.STARTING)

    def cancel(self) -> bool:
        """Request cancellation. Returns False when the run is not live."""
        if not self.is_live:
            return False
        self._cancel_event.set()
        if self.status == AnalysisStatus.STARTING:
            self.transition(AnalysisStatus.IDLE)
        return True

    # ------------------------------------------------------------------
    # Model turns
    # ------------------------------------------------------------------

    async def _model_turn(self, messages: list[dict[str, Any]]) -> Any:
        async with self.client.messages.stream(
            model=self.settings.HEALTH_ANALYSIS_MODEL,
            max_tokens=self.settings.HEALTH_ANALYSIS_MAX_TOKENS,
            system=self.system_prompt,
            messages=messages,
            tools=HEALTH_ANALYSIS_TOOLS,
        ) as stream:
            return await stream.get_final_message()

    async def _await_turn(self, messages: list[dict[str, Any]], deadline: float) -> Any | None:
        """
        Run one model turn racing cancellation and the session deadline.

        Returns None when cancelled; raises TimeoutError past the deadline.
        """
        loop = asyncio.get_running_loop()
        turn = asyncio.ensure_future(self._model_turn(messages))
        cancel_wait = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {turn, cancel_wait},
                timeout=max(deadline - loop.time(), 0),
                return_when=asyncio.FIRST_COMPLETED,
            )
            if turn in done:
                return turn.result()
        finally:
            cancel_wait.cancel()
            if not turn.done():
                turn.cancel()
                await asyncio.gather(turn, return_exceptions=True)

        if self._cancel_event.is_set():
            return None
        raise asyncio.TimeoutError("Health analysis timed out")

    async def _await_tool(self, name: str, tool_input: dict[str, Any]) -> ToolExecution | None:
        """
        Run one tool call, returning None as soon as the run is cancelled.

        The store write itself runs in a worker thread and is not interrupted;
        a write that lands after cancellation stays persisted like any other
        partial progress.
        """
        tool = asyncio.ensure_future(execute_health_tool(self.context, name, tool_input))
        cancel_wait = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({tool, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_wait.cancel()
        if tool.done():
            return tool.result()
        return None

    def _record(self, execution: ToolExecution) -> None:
        progress = self.progress
        self._tool_calls.append(
            {"tool_name": execution.tool_name, "failed": execution.failed, "result": execution.result}
        )
        if execution.failed:
            progress.tool_errors += 1
            return
        if execution.tool_name in EXPLORATION_TOOLS:
            progress.exploration_calls += 1
        elif execution.tool_name == CREATE_SUGGESTION:
            progress.suggestions_created += 1
        elif execution.tool_name == UPDATE_FRAMEWORK_HEALTH and progress.exploration_calls > 0:
            progress.health_updates_after_exploration += 1

    def _persist_transcript(self) -> None:
        text = "\n\n".join(t for t in self._transcript_text if t)
        if not text and not self._tool_calls:
            return
        try:
            chats.save_message(
                self.context.chat_id,
                "assistant",
                [{"type": "text", "text": text}] if text else [],
                tool_calls=self._tool_calls,
            )
        except Exception as e:
            logger.error(f"Failed to persist analysis transcript: {e}", extra=self._log_extra())

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------

    async def stream(self) -> AsyncGenerator[str, None]:
        """
        Drive the analysis and yield SSE frames.

        Yields: data-status (analyzing), then data-appendMessage /
        data-health-suggestion / data-dimension-score / data-framework-health /
        data-node-updated as they happen, and finally ``finish``, ``error``
        or a data-status (idle) frame after cancellation.
        """
        if self._cancel_event.is_set():
            unregister_run(self)
            yield sse_event(StreamEventType.STATUS, {"status": self.status.value})
            return

        self.transition(AnalysisStatus.ANALYZING)
        yield sse_event(StreamEventType.STATUS, {"status": self.status.value, "chat_id": self.chat_id})

        settings = self.settings
        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.HEALTH_ANALYSIS_TIMEOUT_SECONDS
        progress = self.progress

        try:
            history = history_to_messages(
                chats.list_messages(self.context.chat_id, limit=settings.HEALTH_ANALYSIS_HISTORY_LIMIT)
            )
            chats.save_message(self.context.chat_id, "user", [{"type": "text", "text": self.message}])
            messages = history
            append_text_message(messages, "user", self.message)

            while True:
                if progress.turns >= settings.HEALTH_ANALYSIS_MAX_TURNS:
                    if progress.is_complete:
                        break
                    raise AnalysisIncompleteError(
                        f"Turn budget of {settings.HEALTH_ANALYSIS_MAX_TURNS} exhausted before a health update"
                    )
                progress.turns += 1

                final_message = await self._await_turn(messages, deadline)
                if final_message is None:
                    break

                blocks = [b for b in (_block_to_dict(block) for block in final_message.content) if b]
                text = "".join(b["text"] for b in blocks if b["type"] == "text").strip()
                if text:
                    self._transcript_text.append(text)
                    yield sse_event(
                        StreamEventType.APPEND_MESSAGE,
                        {
                            "id": str(uuid.uuid4()),
                            "role": "assistant",
                            "parts": [{"type": "text", "text": text}],
                        },
                    )

                tool_blocks = [b for b in blocks if b["type"] == "tool_use"]
                messages.append({"role": "assistant", "content": blocks or [{"type": "text", "text": "..."}]})

                if not tool_blocks:
                    if progress.is_complete:
                        break
                    if progress.nudges >= settings.HEALTH_ANALYSIS_MAX_NUDGES:
                        raise AnalysisIncompleteError(
                            "Model stopped before submitting a health update"
                        )
                    progress.nudges += 1
                    logger.info(
                        f"Model yielded early, continuation prompt {progress.nudges}",
                        extra=self._log_extra(),
                    )
                    messages.append({"role": "user", "content": CONTINUE_ANALYSIS_PROMPT})
                    continue

                tool_results = []
                for block in tool_blocks:
                    if self._cancel_event.is_set():
                        break
                    execution = await self._await_tool(block["name"], block["input"])
                    if execution is None:
                        break
                    self._record(execution)
                    for emission in execution.events:
                        yield sse_event(emission.type, emission.data)
                    tool_results.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": block["id"],
                            "content": json.dumps(execution.result, ensure_ascii=False, default=str),
                            "is_error": execution.failed,
                        }
                    )

                if self._cancel_event.is_set():
                    break
                messages.append({"role": "user", "content": tool_results})

            if self._cancel_event.is_set():
                self.transition(AnalysisStatus.IDLE)
                logger.info("Analysis cancelled", extra=self._log_extra())
                yield sse_event(StreamEventType.STATUS, {"status": self.status.value, "cancelled": True})
                return

            self.transition(AnalysisStatus.COMPLETED)
            logger.info(
                f"Analysis completed: {progress.exploration_calls} explorations, "
                f"{progress.suggestions_created} suggestions, {progress.turns} turns",
                extra=self._log_extra(),
            )
            yield sse_event(
                StreamEventType.FINISH,
                {"status": self.status.value, **progress.model_dump(exclude={"nudges"})},
            )

        except (asyncio.CancelledError, GeneratorExit):
            # Client went away; same semantics as an explicit cancel
            if self.is_live:
                self.transition(AnalysisStatus.IDLE)
            raise
        except (AnalysisIncompleteError, asyncio.TimeoutError) as e:
            self._fail(str(e) or "Health analysis timed out")
            yield sse_event(StreamEventType.ERROR, {"message": self.error})
        except Exception as e:
            logger.error(f"Error in health analysis stream: {e}", exc_info=True, extra=self._log_extra())
            self._fail(str(e))
            yield sse_event(StreamEventType.ERROR, {"message": self.error})
        finally:
            self._persist_transcript()
            unregister_run(self)

    def _fail(self, message: str) -> None:
        self.error = message
        if self.is_live:
            self.transition(AnalysisStatus.ERROR)
        logger.warning(f"Analysis failed: {message}", extra=self._log_extra())


# =============================================================================
# Process-local registry for cancellation
# =============================================================================

_ACTIVE_RUNS: dict[str, HealthAnalysisRun] = {}


def register_run(run: HealthAnalysisRun) -> None:
    """Track a run by chat id; a previous live run for the chat is cancelled."""
    previous = _ACTIVE_RUNS.get(run.chat_id)
    if previous is not None and previous is not run:
        previous.cancel()
    _ACTIVE_RUNS[run.chat_id] = run


def unregister_run(run: HealthAnalysisRun) -> None:
    if _ACTIVE_RUNS.get(run.chat_id) is run:
        del _ACTIVE_RUNS[run.chat_id]


def get_run(chat_id: UUID | str) -> HealthAnalysisRun | None:
    return _ACTIVE_RUNS.get(str(chat_id))


def cancel_analysis(chat_id: UUID | str) -> HealthAnalysisRun | None:
    """Cancel the live run for a chat. Returns the run, or None if none is live."""
    run = get_run(chat_id)
    if run is None or not run.cancel():
        return None
    return run
