"""Health-analysis event stream: SSE framing, parsing and client-side state.

The stream is append-only. Each frame is ``data: {json}\\n\\n`` carrying a
``type`` from StreamEventType and a ``data`` payload. Consumers apply frames
in arrival order and skip types they do not know, so new event types can be
added without breaking older readers.
"""

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from app.core.logging import get_logger
from app.core.schemas_health_analysis import AnalysisStatus, StreamEventType

logger = get_logger(__name__)

SSE_PREFIX = "data: "


def sse_event(event_type: StreamEventType | str, data: Any = None) -> str:
    """Format one typed event as an SSE data frame."""
    type_value = event_type.value if isinstance(event_type, StreamEventType) else event_type
    payload: dict[str, Any] = {"type": type_value}
    if data is not None:
        payload["data"] = data
    return f"{SSE_PREFIX}{json.dumps(payload, ensure_ascii=False, default=str)}\n\n"


def parse_sse_lines(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """
    Decode ``data:`` lines into event dicts.

    Non-data lines (comments, blank separators) are skipped; a frame that is
    not valid JSON is logged and dropped rather than ending the stream.
    """
    for raw in lines:
        line = raw.strip("\r\n")
        if not line.startswith(SSE_PREFIX):
            continue
        try:
            event = json.loads(line[len(SSE_PREFIX):])
        except json.JSONDecodeError as e:
            logger.warning(f"Dropping malformed SSE frame: {e}")
            continue
        if isinstance(event, dict):
            yield event


def split_sse_text(text: str) -> Iterator[dict[str, Any]]:
    """parse_sse_lines over a whole response body."""
    return parse_sse_lines(text.splitlines())


@dataclass
class HealthStreamState:
    """
    Client-side view of one analysis built by folding stream events.

    ``apply`` returns False for event types it does not handle.
    """

    status: AnalysisStatus = AnalysisStatus.ANALYZING
    messages: list[dict[str, Any]] = field(default_factory=list)
    dimension_scores: dict[str, float] = field(default_factory=dict)
    overall_score: float | None = None
    insights: str | None = None
    suggestions: list[dict[str, Any]] = field(default_factory=list)
    updated_nodes: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    def apply(self, event: dict[str, Any]) -> bool:
        try:
            event_type = StreamEventType(event.get("type"))
        except ValueError:
            return False

        data = event.get("data")

        if event_type == StreamEventType.APPEND_MESSAGE:
            # Older producers send the message JSON-encoded
            message = json.loads(data) if isinstance(data, str) else data
            if message:
                self.messages.append(message)
        elif event_type == StreamEventType.DIMENSION_SCORE:
            self.dimension_scores[data["dimension_key"]] = data["score"]
        elif event_type == StreamEventType.FRAMEWORK_HEALTH:
            self.overall_score = data.get("overall_score")
            self.insights = data.get("insights")
        elif event_type == StreamEventType.HEALTH_SUGGESTION:
            self.suggestions.append(data)
        elif event_type == StreamEventType.NODE_UPDATED:
            self.updated_nodes.append(data)
        elif event_type == StreamEventType.STATUS:
            self.status = AnalysisStatus(data["status"])
        elif event_type == StreamEventType.FINISH:
            self.status = AnalysisStatus((data or {}).get("status", AnalysisStatus.COMPLETED.value))
        elif event_type == StreamEventType.ERROR:
            self.status = AnalysisStatus.ERROR
            self.error = (data or {}).get("message")
        return True

    def apply_all(self, events: Iterable[dict[str, Any]]) -> "HealthStreamState":
        for event in events:
            self.apply(event)
        return self
