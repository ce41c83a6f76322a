"""
Studio Portal
Hour estimation for change requests.

Pluggable estimator collaborator injected into the transition engine:
    - HeuristicHourEstimator: type base hours, adjusted by description length
      and complexity keywords (no network)
    - OpenAIHourEstimator: asks an OpenAI chat model for a number; any bad
      answer or API error falls back to the heuristic

Every estimator returns hours in [MIN_HOURS, MAX_HOURS]. The engine still
treats estimation as fallible: an exception leaves the change request
with null estimates.

Usage:
    from portal.services.estimation import build_estimator
    estimator = build_estimator(app.config)
    hours = estimator.estimate("Add SSO", "Support Okta login", "NEW_FEATURE")
"""

import logging
import math
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

MIN_HOURS = 1
MAX_HOURS = 500

BASE_HOURS = {
    "BUG": 4,
    "ENHANCEMENT": 8,
    "NEW_FEATURE": 16,
    "CONTENT": 2,
    "OTHER": 8,
}

COMPLEXITY_KEYWORDS = (
    "complex", "integration", "refactor", "architecture", "database", "api",
    "authentication", "security", "performance", "scalability", "migration",
    "redesign",
)

_TYPE_CONTEXT = {
    "BUG": "This is a bug fix. Consider: debugging time, root cause analysis, testing, and regression testing.",
    "ENHANCEMENT": "This is an enhancement to existing functionality. Consider: analysis of current code, implementation, testing.",
    "NEW_FEATURE": "This is a new feature. Consider: design, implementation, testing, integration with existing systems.",
    "CONTENT": "This is a content change. Usually minimal development time, mostly content updates.",
    "OTHER": "This is a general change request. Estimate based on the description provided.",
}

_SYSTEM_PROMPT = (
    "You are a software development estimator. "
    "Always respond with only a number representing hours (1-500)."
)


def _round_half_up(value, ndigits=0):
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def clamp_hours(hours):
    return max(MIN_HOURS, min(MAX_HOURS, hours))


# ── Estimator interface ──────────────────────────────────────────────────────

class HourEstimator(ABC):
    """Abstract interface for change-request hour estimators."""

    @abstractmethod
    def estimate(self, title: str, description: str, type: str) -> float:
        """
        Estimate development hours for a change request.

        Returns:
            Hours in [1, 500]. May raise; callers treat failure as "no estimate".
        """
        ...


class HeuristicHourEstimator(HourEstimator):
    """Keyword / length heuristic; deterministic and offline."""

    def estimate(self, title: str, description: str, type: str) -> float:
        text = f"{title} {description}".lower()
        word_count = len(text.split())

        hours = BASE_HOURS.get(type, 8)

        if word_count > 100:
            hours *= 1.5
        elif word_count > 50:
            hours *= 1.2
        elif word_count < 20:
            hours *= 0.8

        if any(keyword in text for keyword in COMPLEXITY_KEYWORDS):
            hours *= 1.5

        return clamp_hours(int(_round_half_up(hours)))


class OpenAIHourEstimator(HourEstimator):
    """OpenAI chat-completion estimator with heuristic fallback."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", fallback: HourEstimator | None = None):
        self.api_key = api_key
        self.model = model
        self.fallback = fallback or HeuristicHourEstimator()
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import openai
                self._client = openai.OpenAI(api_key=self.api_key)
            except ImportError:
                raise RuntimeError("openai package not installed. Run: pip install openai")
        return self._client

    def _prompt(self, title: str, description: str, type: str) -> str:
        return (
            "You are a software development project estimator. Estimate the number of "
            "development hours needed for this change request.\n\n"
            f"Change Request Type: {type}\n"
            f"Title: {title}\n"
            f"Description: {description}\n\n"
            f"{_TYPE_CONTEXT.get(type, '')}\n\n"
            "Consider:\n"
            "- Development time (coding, testing)\n"
            "- Design work if needed\n"
            "- Integration and refactoring\n"
            "- Documentation updates\n"
            "- Code review time\n\n"
            "Provide a realistic estimate in hours (1-500 range). "
            "Return ONLY a number, no explanation."
        )

    def estimate(self, title: str, description: str, type: str) -> float:
        try:
            client = self._get_client()
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": self._prompt(title, description, type)},
                ],
                temperature=0.3,
                max_tokens=10,
            )
            raw = (response.choices[0].message.content or "").strip()
            hours = float(raw)
        except Exception:
            logger.exception("AI estimation failed, using heuristic fallback")
            return self.fallback.estimate(title, description, type)

        if math.isnan(hours) or hours <= 0:
            logger.warning("AI estimator returned unusable value %r, using heuristic", raw)
            return self.fallback.estimate(title, description, type)

        return clamp_hours(_round_half_up(hours, 1))


def build_estimator(config) -> HourEstimator:
    """Pick the estimator named by HOUR_ESTIMATOR.

    "openai" without an OPENAI_API_KEY degrades to the heuristic.
    """
    kind = (config.get("HOUR_ESTIMATOR") or "heuristic").lower()
    if kind == "openai":
        api_key = config.get("OPENAI_API_KEY")
        if api_key:
            return OpenAIHourEstimator(api_key, model=config.get("ESTIMATOR_MODEL", "gpt-4o-mini"))
        logger.warning("HOUR_ESTIMATOR=openai but OPENAI_API_KEY is not set, using heuristic")
    return HeuristicHourEstimator()
