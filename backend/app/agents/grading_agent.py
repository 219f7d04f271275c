import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import openai

from app.core.errors import ScoringError
from app.core.openai_client import get_openai_client, get_default_gpt_model

logger = logging.getLogger(__name__)

MAX_SCORE = 100
COMPLETENESS_MAX = 40

SYSTEM_PROMPT = (
    "You are an experienced programming instructor reviewing a student's code submission. "
    "Judge the code strictly against the instructor's grading instructions and reply with JSON only."
)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass
class ScoringResult:
    score: float
    feedback: str
    passed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def completeness(self) -> int:
        return completeness_score(self.score)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def completeness_score(score: float) -> int:
    """Completeness out of 40; any overall score above 60 earns the full 40."""
    if score > 60:
        return COMPLETENESS_MAX
    return min(COMPLETENESS_MAX, _round_half_up(score * 0.4))


def build_review_prompt(corpus: str, instructions: str, branch_label: str) -> str:
    return f"""
    Grade the submission on branch "{branch_label}".

    Grading instructions from the instructor:
    {instructions}

    Respond in JSON:
    {{"score": number between 0 and {MAX_SCORE}, "feedback": string,
      "passed": [requirements the code satisfies], "errors": [problems or unmet requirements]}}

    Submitted code (each file starts with a "// File:" line):
    {corpus}
    """


def _as_string_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ScoringError(f"AI response field '{name}' is not a list")
    return [str(item) for item in value]


def parse_scoring_response(content: Optional[str]) -> ScoringResult:
    """Turn the model's reply into a ScoringResult or raise ScoringError."""
    if not content or not content.strip():
        raise ScoringError("AI service returned an empty response")

    text = content.strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ScoringError(f"Could not parse grading result: {e}") from e
    if not isinstance(payload, dict):
        raise ScoringError("Grading result is not a JSON object")

    raw_score = payload.get("score")
    if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)):
        try:
            raw_score = float(str(raw_score).strip())
        except (TypeError, ValueError):
            raise ScoringError(f"Grading result has no numeric score: {payload.get('score')!r}")
    if math.isnan(raw_score):
        raise ScoringError("Grading result score is NaN")
    score = min(float(MAX_SCORE), max(0.0, float(raw_score)))
    if score.is_integer():
        score = int(score)

    feedback = payload.get("feedback")
    return ScoringResult(
        score=score,
        feedback=str(feedback) if feedback is not None else "No feedback available",
        passed=_as_string_list(payload.get("passed"), "passed"),
        errors=_as_string_list(payload.get("errors"), "errors"),
    )


class CodeReviewAgent:
    """Asks the OpenAI chat completions API to grade a code corpus."""

    def __init__(self, client=None, model: Optional[str] = None, max_tokens: int = 1500,
                 temperature: float = 0.2):
        self._client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @property
    def client(self):
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    async def score(self, corpus: str, instructions: str, branch_label: str) -> ScoringResult:
        model_name = self.model or get_default_gpt_model()
        logger.info("Scoring branch %s with %s (%d chars of code)", branch_label, model_name, len(corpus))

        try:
            client = self.client
        except RuntimeError as e:
            raise ScoringError("AI service is not configured") from e

        try:
            response = await client.chat.completions.create(
                model=model_name,
                messages=[{"role": "system", "content": SYSTEM_PROMPT},
                          {"role": "user", "content": build_review_prompt(corpus, instructions, branch_label)}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except openai.APITimeoutError as e:
            raise ScoringError("AI service timed out") from e
        except openai.RateLimitError as e:
            raise ScoringError(f"AI service rate limit reached: {e}") from e
        except openai.OpenAIError as e:
            raise ScoringError(f"AI service request failed: {e}") from e

        if not response.choices:
            raise ScoringError("AI service returned no choices")
        result = parse_scoring_response(response.choices[0].message.content)
        logger.info("AI score for branch %s: %s/%d", branch_label, result.score, MAX_SCORE)
        return result


def build_grading_results(scoring: ScoringResult, branch_name: str, instructions: str,
                          files_analyzed: int) -> Dict[str, Any]:
    """Detailed results payload stored with every review."""
    return {
        "moduleName": f"Branch: {branch_name}",
        "totalScore": scoring.score,
        "maxTotalScore": MAX_SCORE,
        "codeQuality": {
            "score": scoring.score,
            "maxScore": MAX_SCORE,
            "feedback": scoring.feedback,
        },
        "completeness": {
            "score": scoring.completeness,
            "maxScore": COMPLETENESS_MAX,
            "passed": list(scoring.passed),
            "errors": list(scoring.errors),
        },
        "filesAnalyzed": files_analyzed,
        "customCriteria": instructions[:200] + "...",
    }
