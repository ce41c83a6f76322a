"""Hour estimator tests (heuristic + OpenAI wrapper with a fake client)."""
from types import SimpleNamespace

import pytest

from portal.services.estimation import (
    MAX_HOURS,
    MIN_HOURS,
    HeuristicHourEstimator,
    OpenAIHourEstimator,
    build_estimator,
)


class _FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _openai_with(completions):
    estimator = OpenAIHourEstimator(api_key="sk-test")
    estimator._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return estimator


class TestHeuristic:
    def test_within_bounds(self):
        est = HeuristicHourEstimator()
        for cr_type in ("BUG", "ENHANCEMENT", "NEW_FEATURE", "CONTENT", "OTHER"):
            hours = est.estimate("Title", "short description", cr_type)
            assert MIN_HOURS <= hours <= MAX_HOURS

    def test_complexity_keywords_increase_estimate(self):
        est = HeuristicHourEstimator()
        plain = est.estimate("Add page", "Add a simple page", "NEW_FEATURE")
        complex_ = est.estimate("Add page", "Add a page with a payment integration", "NEW_FEATURE")
        assert complex_ > plain

    def test_deterministic(self):
        est = HeuristicHourEstimator()
        assert est.estimate("a", "b", "BUG") == est.estimate("a", "b", "BUG")


class TestOpenAI:
    def test_parses_and_rounds(self):
        completions = _FakeCompletions(content=" 12.34 ")
        assert _openai_with(completions).estimate("t", "d", "BUG") == pytest.approx(12.3)
        assert completions.kwargs["temperature"] == 0.3
        assert completions.kwargs["max_tokens"] == 10

    def test_clamps_to_range(self):
        assert _openai_with(_FakeCompletions(content="9000")).estimate("t", "d", "BUG") == MAX_HOURS
        assert _openai_with(_FakeCompletions(content="0.2")).estimate("t", "d", "BUG") == MIN_HOURS

    def test_non_numeric_answer_falls_back(self):
        est = _openai_with(_FakeCompletions(content="about ten hours"))
        assert est.estimate("t", "d", "BUG") == HeuristicHourEstimator().estimate("t", "d", "BUG")

    def test_api_error_falls_back(self):
        est = _openai_with(_FakeCompletions(error=ConnectionError("down")))
        assert est.estimate("t", "d", "CONTENT") == HeuristicHourEstimator().estimate("t", "d", "CONTENT")


def test_build_estimator_selects_from_config():
    assert isinstance(build_estimator({"HOUR_ESTIMATOR": "heuristic"}), HeuristicHourEstimator)
    assert isinstance(build_estimator({"HOUR_ESTIMATOR": "openai"}), HeuristicHourEstimator)
    chosen = build_estimator({"HOUR_ESTIMATOR": "openai", "OPENAI_API_KEY": "sk-x"})
    assert isinstance(chosen, OpenAIHourEstimator)
