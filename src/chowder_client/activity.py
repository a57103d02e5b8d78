"""Turn activity tracking.

Builds the live "what is the agent doing" record for the current turn from
thinking deltas and tool events, and keeps a short label for status lines
("Thinking...", "Reading IDENTITY.md...", "Running command...").

The label is cleared when assistant text starts streaming, but never sooner
than ``min_label_duration`` after the turn started so it does not flicker.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import PurePosixPath

logger = logging.getLogger(__name__)

THINKING_LABEL = "Thinking..."
MIN_LABEL_DURATION = 0.8

# Tools whose label names the file they touch
_FILE_VERBS = {
    "read": "Reading",
    "write": "Writing",
    "edit": "Editing",
    "apply_patch": "Editing",
}

_TOOL_LABELS = {
    "search": "Searching...",
    "bash": "Running command...",
    "exec": "Running command...",
    "browser": "Browsing...",
    "web": "Searching the web...",
    "canvas": "Drawing...",
    "llm_task": "Running a subtask...",
    "agent_send": "Sending a message...",
    "message": "Sending a message...",
    "sessions_list": "Checking sessions...",
    "sessions_read": "Checking sessions...",
}


def label_for_tool(name: str, argument: str | None = None) -> str:
    """Human-readable status label for a tool call.

    Example:
        >>> label_for_tool("read", "/workspace/IDENTITY.md")
        'Reading IDENTITY.md...'
    """
    key = name.lower()
    verb = _FILE_VERBS.get(key)
    if verb is not None:
        target = PurePosixPath(argument.strip()).name if argument and argument.strip() else ""
        return f"{verb} {target or 'file'}..."
    return _TOOL_LABELS.get(key, f"Using {name}...")


class StepKind(str, Enum):
    THINKING = "thinking"
    TOOL_CALL = "tool_call"


@dataclass
class ActivityStep:
    """One thing the agent did during a turn."""

    kind: StepKind
    label: str
    detail: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class AgentActivity:
    """Everything the agent did during one turn. Not persisted."""

    current_label: str = ""
    thinking_text: str = ""
    steps: list[ActivityStep] = field(default_factory=list)
    started_at: float = 0.0
    generation: int = 0


ActivityCallback = Callable[[AgentActivity | None], None]


class ActivityTracker:
    """Maintains the live AgentActivity for the current turn.

    Args:
        min_label_duration: Seconds a label stays up before text may clear it
        clock: Monotonic clock (injectable for tests)
        on_change: Called with the live activity after every mutation
    """

    def __init__(
        self,
        min_label_duration: float = MIN_LABEL_DURATION,
        clock: Callable[[], float] = time.monotonic,
        on_change: ActivityCallback | None = None,
    ) -> None:
        self.min_label_duration = min_label_duration
        self._clock = clock
        self.on_change = on_change
        self.current: AgentActivity | None = None
        self.last_completed: AgentActivity | None = None
        self._generation = 0
        self._text_started = False
        self._clear_handle: asyncio.TimerHandle | None = None

    @property
    def is_active(self) -> bool:
        return self.current is not None

    def start_turn(self) -> AgentActivity:
        self._cancel_clear()
        self._generation += 1
        self._text_started = False
        self.current = AgentActivity(
            current_label=THINKING_LABEL,
            started_at=self._clock(),
            generation=self._generation,
        )
        self._changed()
        return self.current

    def thinking_delta(self, text: str) -> None:
        activity = self.current
        if activity is None or not text:
            return

        last = activity.steps[-1] if activity.steps else None
        if last is not None and last.kind == StepKind.THINKING:
            last.detail += text
        else:
            activity.steps.append(ActivityStep(kind=StepKind.THINKING, label=THINKING_LABEL, detail=text))
        activity.thinking_text += text
        activity.current_label = THINKING_LABEL
        self._changed()

    def tool_event(self, name: str, argument: str | None = None) -> None:
        activity = self.current
        if activity is None:
            return

        label = label_for_tool(name, argument)
        activity.steps.append(ActivityStep(kind=StepKind.TOOL_CALL, label=label, detail=argument or ""))
        activity.current_label = label
        self._changed()

    def text_delta(self) -> None:
        """Assistant text arrived; clear the label on the first one."""
        activity = self.current
        if activity is None or self._text_started:
            return
        self._text_started = True

        elapsed = self._clock() - activity.started_at
        if elapsed >= self.min_label_duration:
            self._clear_label(activity.generation)
            return

        loop = asyncio.get_running_loop()
        self._cancel_clear()
        self._clear_handle = loop.call_later(
            self.min_label_duration - elapsed,
            self._clear_label,
            activity.generation,
        )

    def finish_turn(self) -> AgentActivity | None:
        """End the turn. Returns the completed activity, if any."""
        self._cancel_clear()
        activity = self.current
        if activity is None:
            return None
        self.last_completed = activity
        self.current = None
        logger.debug(f"Turn finished with {len(activity.steps)} step(s)")
        self._changed()
        return activity

    def _clear_label(self, generation: int) -> None:
        self._clear_handle = None
        activity = self.current
        if activity is None or activity.generation != generation:
            return
        activity.current_label = ""
        self._changed()

    def _cancel_clear(self) -> None:
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self.current)
