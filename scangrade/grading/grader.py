"""Claude-powered grading strategies and the executor that runs them."""

import asyncio
import dataclasses
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Sequence

from anthropic import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
)

from ..config import (
    ANTHROPIC_API_KEY,
    API_MAX_RETRIES,
    API_RETRY_DELAY,
    CLAUDE_MODEL,
    GRADING_TIMEOUT,
)
from ..errors import FailureReason, GradingFailure, InputError, PolicyViolation
from ..extraction.images import PageImage
from .outcomes import GradingOutcome, OutcomeTag, RubricScore, round_half_up, rubric_percentage

logger = logging.getLogger("scangrade.grading")

AUTONOMOUS = "autonomous"
REFERENCE_GUIDED = "reference-guided"

STRATEGY_TAGS = {
    AUTONOMOUS: OutcomeTag.AI,
    REFERENCE_GUIDED: OutcomeTag.TEACHER_GUIDED,
}


class GradingMode(str, Enum):
    """What the teacher asked for at the choosing-strategy step."""
    AI = "ai"
    TEACHER_GUIDED = "teacher-guided"
    BOTH = "both"
    MANUAL = "manual"

    @property
    def strategies(self) -> tuple[str, ...]:
        if self is GradingMode.AI:
            return (AUTONOMOUS,)
        if self is GradingMode.TEACHER_GUIDED:
            return (REFERENCE_GUIDED,)
        if self is GradingMode.BOTH:
            return (AUTONOMOUS, REFERENCE_GUIDED)
        return ()

MANUAL_JUSTIFICATION = "teacher override"

_QUOTA_HINTS = ("credit", "quota", "billing", "payment")


@dataclass(frozen=True)
class GradingRequest:
    """What a strategy is asked to grade."""
    text: str
    task: str = AUTONOMOUS
    images: tuple[PageImage, ...] = ()
    reference_image: Optional[PageImage] = None
    question_id: Optional[str] = None
    student_name: Optional[str] = None

    def for_task(self, task: str) -> "GradingRequest":
        return dataclasses.replace(self, task=task)


@dataclass(frozen=True)
class OracleResponse:
    rubric_scores: tuple[RubricScore, ...] = ()
    misconceptions: tuple[str, ...] = ()
    proficiency_level: Optional[int] = None
    justification: str = ""
    raw_percentage: Optional[float] = None
    grade: Optional[int] = None
    raw_text: str = ""


class GradingOracle(Protocol):
    """The grading service boundary."""

    async def grade(self, request: GradingRequest) -> OracleResponse: ...


GRADING_PROMPT = """You are grading a student's handwritten math work.

STUDENT WORK (transcribed from the scan):
{text}

{task_instructions}

Instructions:
1. Read the student's work carefully, using the page images when the transcription is unclear
2. Score each rubric criterion with the points earned out of the points possible
3. List specific misconceptions shown in the work (empty list if none)
4. Give a Regents-style proficiency score from 0 to 4
   (4 = complete and correct, 3 = minor errors, 2 = partial understanding,
    1 = limited understanding, 0 = no relevant work)
5. Suggest a grade from 0 to 100 and explain it in one or two sentences
6. Do NOT invent work that is not on the page

Respond in JSON format:
{{
    "rubricScores": [
        {{"criterion": "what was assessed", "earned": 1, "possible": 2, "feedback": "short note"}}
    ],
    "misconceptions": ["description of each misconception"],
    "totalScore": {{"earned": 1, "possible": 2}},
    "regentsScore": 0-4,
    "grade": 0-100,
    "gradeJustification": "why this grade",
    "feedback": "a brief encouraging note for the student"
}}"""

AUTONOMOUS_INSTRUCTIONS = """No answer key is provided. Solve the problem yourself first, then grade the
student's work against your own solution."""

REFERENCE_INSTRUCTIONS = """The teacher's answer guide is attached as the LAST image. Grade the student's
work by comparing it against the answer guide. The guide is the ground truth:
accept equivalent forms, but do not credit answers that contradict it."""


def build_prompt(request: GradingRequest) -> str:
    instructions = REFERENCE_INSTRUCTIONS if request.task == REFERENCE_GUIDED else AUTONOMOUS_INSTRUCTIONS
    if request.question_id:
        instructions += f"\nThis page answers question {request.question_id}."
    return GRADING_PROMPT.format(text=request.text or "(no text extracted)", task_instructions=instructions)


def _image_block(page: PageImage) -> dict:
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": page.media_type, "data": page.to_base64()},
    }


def _as_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


def _misconception_text(item) -> str:
    if isinstance(item, dict):
        return str(item.get("description") or item.get("name") or item.get("pattern") or "").strip()
    return str(item).strip()


def parse_oracle_response(response_text: str) -> OracleResponse:
    """Pull the JSON object out of a model reply.

    Raises:
        GradingFailure: With reason invalid-response if no JSON object is found.
    """
    start = response_text.find("{")
    end = response_text.rfind("}") + 1
    if start == -1 or end == 0:
        raise GradingFailure(FailureReason.INVALID_RESPONSE, f"No JSON found in response: {response_text[:200]}")

    try:
        data = json.loads(response_text[start:end])
    except json.JSONDecodeError as e:
        raise GradingFailure(FailureReason.INVALID_RESPONSE, f"Could not parse grading response: {e}")

    if not isinstance(data, dict):
        raise GradingFailure(FailureReason.INVALID_RESPONSE, "Grading response is not a JSON object")

    rubric = tuple(
        RubricScore.from_dict(item)
        for item in data.get("rubricScores") or []
        if isinstance(item, dict)
    )

    misconceptions = tuple(
        text
        for text in (_misconception_text(m) for m in data.get("misconceptions") or [])
        if text and text.lower() not in ("none", "n/a")
    )

    level = _as_int(data.get("regentsScore", data.get("proficiencyLevel")))
    if level is not None:
        level = max(0, min(4, level))

    percentage = rubric_percentage(rubric)
    total = data.get("totalScore")
    if percentage is None and isinstance(total, dict):
        try:
            possible = float(total.get("possible") or 0)
            if possible > 0:
                percentage = float(total.get("earned") or 0) / possible * 100
        except (TypeError, ValueError):
            percentage = None
    if percentage is None and data.get("rawPercentage") is not None:
        try:
            percentage = float(data["rawPercentage"])
        except (TypeError, ValueError):
            percentage = None

    justification = str(
        data.get("gradeJustification")
        or data.get("justification")
        or data.get("regentsScoreJustification")
        or ""
    ).strip()

    return OracleResponse(
        rubric_scores=rubric,
        misconceptions=misconceptions,
        proficiency_level=level,
        justification=justification,
        raw_percentage=percentage,
        grade=_as_int(data.get("grade")),
        raw_text=response_text,
    )


def classify_api_error(error: APIError) -> GradingFailure:
    """Map an Anthropic SDK error onto a failure reason the caller can act on."""
    if isinstance(error, APITimeoutError):
        return GradingFailure(FailureReason.TIMEOUT, "API timeout")

    if isinstance(error, APIConnectionError):
        return GradingFailure(FailureReason.ORACLE_UNAVAILABLE, f"Connection error: {error}")

    if isinstance(error, APIStatusError):
        status = error.status_code
        message = str(error.message or error)
        detail = f"HTTP {status}: {message[:200]}"

        if status == 402:
            return GradingFailure(FailureReason.QUOTA_EXHAUSTED, detail)
        if status == 429:
            if any(hint in message.lower() for hint in _QUOTA_HINTS):
                return GradingFailure(FailureReason.QUOTA_EXHAUSTED, detail)
            return GradingFailure(FailureReason.RATE_LIMITED, detail)
        if status == 408:
            return GradingFailure(FailureReason.TIMEOUT, detail)
        if status >= 500:
            # Includes 529 overloaded
            return GradingFailure(FailureReason.ORACLE_UNAVAILABLE, detail)
        return GradingFailure(FailureReason.REJECTED, detail)

    return GradingFailure(FailureReason.ORACLE_UNAVAILABLE, str(error))


class ClaudeGradingOracle:
    """Grade student work with Claude Vision."""

    def __init__(self, client: Optional[AsyncAnthropic] = None, model: str = CLAUDE_MODEL):
        self.client = client or AsyncAnthropic(api_key=ANTHROPIC_API_KEY)
        self.model = model

    def build_content(self, request: GradingRequest) -> list[dict]:
        content = [_image_block(page) for page in request.images]
        if request.task == REFERENCE_GUIDED and request.reference_image is not None:
            content.append({"type": "text", "text": "TEACHER'S ANSWER GUIDE:"})
            content.append(_image_block(request.reference_image))
        content.append({"type": "text", "text": build_prompt(request)})
        return content

    async def grade(self, request: GradingRequest) -> OracleResponse:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=4000,
                messages=[{"role": "user", "content": self.build_content(request)}],
            )
        except APIError as e:
            raise classify_api_error(e) from e

        response_text = "".join(block.text for block in response.content if block.type == "text")
        return parse_oracle_response(response_text)


def outcome_from_response(tag: OutcomeTag, response: OracleResponse) -> GradingOutcome:
    return GradingOutcome(
        tag=tag,
        rubric_scores=tuple(response.rubric_scores),
        misconceptions=tuple(response.misconceptions),
        proficiency_level=response.proficiency_level,
        justification=response.justification,
        raw_percentage=response.raw_percentage,
        grade=response.grade,
        raw_response=response.raw_text,
    )


def manual_outcome(score: float, possible: float = 100, rubric_scores: Sequence[RubricScore] = ()) -> GradingOutcome:
    """The non-oracle strategy: a score typed in by the teacher."""
    if possible <= 0:
        raise InputError("Points possible must be greater than zero.")
    if not 0 <= score <= possible:
        raise InputError(f"Score must be between 0 and {possible:g}.")

    percentage = score / possible * 100
    return GradingOutcome(
        tag=OutcomeTag.MANUAL,
        rubric_scores=tuple(rubric_scores),
        misconceptions=(),
        proficiency_level=None,
        justification=MANUAL_JUSTIFICATION,
        raw_percentage=percentage,
        grade=round_half_up(percentage),
    )


@dataclass
class StrategyResults:
    outcomes: dict[OutcomeTag, GradingOutcome] = field(default_factory=dict)
    failures: dict[OutcomeTag, GradingFailure] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return bool(self.outcomes)


class GradingExecutor:
    """Run grading strategies with a time bound and a single retry."""

    def __init__(
        self,
        oracle: GradingOracle,
        timeout: float = GRADING_TIMEOUT,
        max_retries: int = API_MAX_RETRIES,
        retry_delay: float = API_RETRY_DELAY,
    ):
        self.oracle = oracle
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def _attempt(self, request: GradingRequest) -> OracleResponse:
        try:
            return await asyncio.wait_for(self.oracle.grade(request), self.timeout)
        except asyncio.TimeoutError:
            raise GradingFailure(FailureReason.TIMEOUT, f"No response within {self.timeout:g}s")
        except APIError as e:
            raise classify_api_error(e) from e

    async def run(self, strategy: str, request: GradingRequest) -> GradingOutcome:
        """Invoke one strategy. A retryable failure is retried once, then raised."""
        if strategy not in STRATEGY_TAGS:
            raise ValueError(f"Unknown grading strategy: {strategy}")
        if strategy == REFERENCE_GUIDED and request.reference_image is None:
            raise PolicyViolation("Reference-guided grading needs an answer guide image.")

        tag = STRATEGY_TAGS[strategy]
        request = request.for_task(strategy)
        start = time.monotonic()

        for attempt in range(1, self.max_retries + 2):
            try:
                response = await self._attempt(request)
            except GradingFailure as e:
                e.strategy = strategy
                e.attempts = attempt
                if not e.retryable or attempt > self.max_retries:
                    logger.error("%s grading failed after %d attempt(s): %s", strategy, attempt, e)
                    raise
                logger.warning(
                    "%s grading failed (%s), retrying in %gs (attempt %d/%d)",
                    strategy, e.reason.value, self.retry_delay, attempt, self.max_retries + 1,
                )
                await asyncio.sleep(self.retry_delay)
                continue

            outcome = outcome_from_response(tag, response)
            logger.info(
                "%s grading complete in %.1fs: grade %s, level %s, %s%%",
                strategy, time.monotonic() - start, outcome.grade, outcome.proficiency_level,
                f"{outcome.raw_percentage:.0f}" if outcome.raw_percentage is not None else "-",
            )
            return outcome

    async def run_both(
        self,
        request: GradingRequest,
        strategies: Sequence[str] = (AUTONOMOUS, REFERENCE_GUIDED),
    ) -> StrategyResults:
        """Run strategies concurrently. One failing never cancels the other."""
        results = await asyncio.gather(
            *(self.run(strategy, request) for strategy in strategies),
            return_exceptions=True,
        )

        collected = StrategyResults()
        for strategy, result in zip(strategies, results):
            tag = STRATEGY_TAGS[strategy]
            if isinstance(result, GradingFailure):
                collected.failures[tag] = result
            elif isinstance(result, BaseException):
                raise result
            else:
                collected.outcomes[tag] = result
        return collected
