"""
Content generators for the RepCoach workflows.

A generator turns (context, seed) into one artifact with exactly one call
to the chat backend:

- WorkoutPlanGenerator: asks for a strict JSON plan and parses it into a
  WorkoutPlan (see core.coach.plan_parser).
- InsightsAnswerGenerator: streams a free-text answer to the user's
  question, forwarding every fragment as it arrives.

Generators know nothing about sessions, channels or HTTP. The workflow
decides what to do with the artifact and with failures.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
)

from core.coach import prompts
from core.coach.models import InsightAnswer, WorkoutPlan, WorkoutRecord
from core.coach.plan_parser import parse_plan_payload
from exceptions.exceptions import GenerationError


logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Any]


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------


class ChatBackend(Protocol):
    """What a generator needs from the generation service."""

    async def complete(self, prompt: str) -> str:
        ...

    def stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        ...


class ContentGenerator(Protocol):
    """
    Interface the GenerationWorkflow drives.

    - generate(): produce one artifact or raise (GenerationError or whatever
      the backend raised). `on_chunk`, when given, receives incremental
      text fragments.
    - describe(): short human-readable text for the session history.
    - failure_message: user-facing text for the `error` stream event.
    """

    failure_message: str

    async def generate(
        self,
        context: Sequence[WorkoutRecord],
        seed: Mapping[str, Any],
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Any:
        ...

    def describe(self, artifact: Any) -> str:
        ...


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _fmt_quantity(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_history_for_plan(history: Sequence[WorkoutRecord]) -> str:
    """One line per workout: `2024-01-15: Squats 10 reps @ 135 lbs, ...`."""
    lines: List[str] = []
    for workout in history:
        parts = []
        for exercise in workout.exercises:
            part = f"{exercise.name} {_fmt_quantity(exercise.reps)} reps"
            if exercise.weight:
                part += f" @ {_fmt_quantity(exercise.weight)} lbs"
            parts.append(part)
        lines.append(f"{workout.date}: {', '.join(parts)}")
    return "\n".join(lines)


def format_history_for_insights(history: Sequence[WorkoutRecord]) -> str:
    if not history:
        return prompts.NO_WORKOUT_DATA

    lines: List[str] = []
    for workout in history:
        lines.append(f"\nDate: {workout.date}")
        if workout.with_instructor:
            lines.append("  (With Instructor)")
        for exercise in workout.exercises:
            line = f"  - {exercise.name}: {_fmt_quantity(exercise.reps)} reps"
            if exercise.weight:
                line += f" @ {_fmt_quantity(exercise.weight)} lbs"
            if exercise.time_seconds:
                line += f" ({_fmt_quantity(exercise.time_seconds)}s)"
            lines.append(line)
    return "\n".join(lines)


def format_plan_for_display(plan: WorkoutPlan) -> str:
    lines = ["Here's your workout for today:", ""]
    for index, exercise in enumerate(plan.exercises, start=1):
        line = f"{index}. {exercise.name} - {_fmt_quantity(exercise.reps)} reps"
        if exercise.weight:
            line += f" @ {_fmt_quantity(exercise.weight)} lbs"
        lines.append(line)
    return "\n".join(lines)


def build_workout_prompt(history: Sequence[WorkoutRecord]) -> str:
    """Task description + output format, plus the history block if any."""
    prompt = f"{prompts.PROMPT_WORKOUT_TASK}\n\n{prompts.PROMPT_WORKOUT_FORMAT}"
    if history:
        history_block = prompts.PROMPT_WORKOUT_HISTORY.format(
            history=format_history_for_plan(history)
        )
        prompt = f"{prompt}\n\n{history_block}"
    return prompt


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------


class WorkoutPlanGenerator:
    """Generate a workout plan for today from recent history."""

    failure_message = "Failed to generate workout"

    def __init__(
        self,
        backend: ChatBackend,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.backend = backend
        self._today = today

    async def generate(
        self,
        context: Sequence[WorkoutRecord],
        seed: Mapping[str, Any],
        on_chunk: Optional[ChunkCallback] = None,
    ) -> WorkoutPlan:
        prompt = build_workout_prompt(context)
        raw = await self.backend.complete(prompt)

        try:
            payload = parse_plan_payload(raw)
        except GenerationError:
            logger.warning("[COACH] Unusable model output: %r", raw[:500])
            raise

        return WorkoutPlan(
            date=self._today().isoformat(),
            exercises=payload.exercises,
        )

    def describe(self, artifact: WorkoutPlan) -> str:
        return format_plan_for_display(artifact)


class InsightsAnswerGenerator:
    """Answer a question about the user's workouts, streaming the text."""

    failure_message = "AI processing failed"

    def __init__(self, backend: ChatBackend) -> None:
        self.backend = backend

    def build_messages(
        self,
        context: Sequence[WorkoutRecord],
        question: str,
    ) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": prompts.PROMPT_INSIGHTS_SYSTEM},
            {
                "role": "user",
                "content": prompts.PROMPT_INSIGHTS_QUESTION.format(
                    history=format_history_for_insights(context),
                    question=question,
                ),
            },
        ]

    async def generate(
        self,
        context: Sequence[WorkoutRecord],
        seed: Mapping[str, Any],
        on_chunk: Optional[ChunkCallback] = None,
    ) -> InsightAnswer:
        question = str(seed.get("question") or "").strip()
        if not question:
            raise GenerationError("No question to answer")

        parts: List[str] = []
        async for chunk in self.backend.stream(self.build_messages(context, question)):
            parts.append(chunk)
            if on_chunk is not None:
                on_chunk(chunk)

        text = "".join(parts)
        if not text.strip():
            raise GenerationError("Empty answer from the model")

        logger.info("[INSIGHTS] Answer streamed in %d chunks", len(parts))
        return InsightAnswer(question=question, text=text)

    def describe(self, artifact: InsightAnswer) -> str:
        return artifact.text
