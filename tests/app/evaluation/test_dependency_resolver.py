"""Tests for dependency gate checks."""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from app.evaluation.services.dependency_resolver import DependencyResolver
from app.evaluation.services.memory_store import MemoryEvaluationRepository
from prompt_tracker_core.domain.models import Evaluation, EvaluationContext
from prompt_tracker_core.runtime.context import RunContext

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _evaluation(score, key="keyword", context=EvaluationContext.TRACKED_CALL, test_run_id=None, **overrides):
    return Evaluation(
        response_id=overrides.pop("response_id", "resp-1"),
        evaluator_key=key,
        evaluator_type="KeywordEvaluator",
        score=score,
        passed=score is not None and score >= 80,
        evaluation_context=context,
        test_run_id=test_run_id,
        **overrides,
    )


@pytest.fixture
def evaluations():
    return MemoryEvaluationRepository()


@pytest.fixture
def resolver(evaluations):
    return DependencyResolver(evaluations)


@pytest.fixture
def ctx():
    return RunContext(request_id="req-1")


class TestDependencyResolver:
    """Gate decisions against committed evaluations."""

    def test_config_without_dependency_is_met(self, resolver, make_config, ctx):
        assert resolver.is_met(make_config("length"), "resp-1", ctx) is True

    def test_missing_dependency_evaluation_is_unmet(self, resolver, make_config, ctx):
        check = resolver.check(make_config("length", depends_on="keyword"), "resp-1", ctx)

        assert check.met is False
        assert check.reason == "no 'keyword' evaluation found"

    def test_threshold_boundary(self, evaluations, resolver, make_config, ctx):
        """A score exactly at the threshold opens the gate; one point below does not."""
        config = make_config("length", depends_on="keyword")

        evaluations.add(_evaluation(79, created_at=NOW))
        check = resolver.check(config, "resp-1", ctx)
        assert check.met is False
        assert check.reason == "'keyword' scored 79%, below threshold 80%"

        evaluations.add(_evaluation(80, created_at=NOW + timedelta(seconds=1)))
        assert resolver.is_met(config, "resp-1", ctx) is True

    def test_custom_threshold(self, evaluations, resolver, make_config, ctx):
        evaluations.add(_evaluation(50))

        assert resolver.is_met(make_config("length", depends_on="keyword", min_dependency_score=50), "resp-1", ctx)

    def test_score_is_compared_on_its_own_scale(self, evaluations, resolver, make_config, ctx):
        """4 out of 1-5 is 75%."""
        evaluations.add(_evaluation(4, score_min=1, score_max=5))

        assert resolver.is_met(make_config("length", depends_on="keyword"), "resp-1", ctx) is False

    def test_latest_evaluation_wins(self, evaluations, resolver, make_config, ctx):
        evaluations.add(_evaluation(95, created_at=NOW))
        evaluations.add(_evaluation(10, created_at=NOW + timedelta(minutes=1)))

        assert resolver.is_met(make_config("length", depends_on="keyword"), "resp-1", ctx) is False

    def test_ties_go_to_highest_id(self, evaluations, resolver, make_config, ctx):
        evaluations.add(_evaluation(10, created_at=NOW, id="a"))
        evaluations.add(_evaluation(95, created_at=NOW, id="b"))

        assert resolver.is_met(make_config("length", depends_on="keyword"), "resp-1", ctx) is True

    def test_failed_unit_is_unmet(self, evaluations, resolver, make_config, ctx):
        evaluations.add(_evaluation(None))

        check = resolver.check(make_config("length", depends_on="keyword"), "resp-1", ctx)

        assert check.reason == "'keyword' evaluation failed without a score"

    def test_other_context_is_ignored(self, evaluations, resolver, make_config, ctx):
        evaluations.add(_evaluation(100, context=EvaluationContext.MANUAL))

        assert resolver.is_met(make_config("length", depends_on="keyword"), "resp-1", ctx) is False

    def test_test_run_scoped_lookup(self, evaluations, resolver, make_config):
        evaluations.add(_evaluation(100, context=EvaluationContext.TEST_RUN, test_run_id="run-old"))
        ctx = RunContext.for_test_run("run-new")

        assert resolver.is_met(make_config("length", depends_on="keyword"), "resp-1", ctx) is False

    def test_other_response_is_ignored(self, evaluations, resolver, make_config, ctx):
        evaluations.add(_evaluation(100, response_id="resp-2"))

        assert resolver.is_met(make_config("length", depends_on="keyword"), "resp-1", ctx) is False

    def test_disabled_checking_always_meets(self, resolver, make_config):
        ctx = RunContext(request_id="req", check_dependencies=False)

        assert resolver.is_met(make_config("length", depends_on="keyword"), "resp-1", ctx) is True

    @settings(suppress_health_check=[HealthCheck.function_scoped_fixture], max_examples=50)
    @given(score=st.integers(min_value=0, max_value=100), threshold=st.integers(min_value=0, max_value=100))
    def test_gate_matches_threshold_comparison(self, make_config, score, threshold):
        evaluations = MemoryEvaluationRepository()
        evaluations.add(_evaluation(score))
        config = make_config("length", depends_on="keyword", min_dependency_score=threshold)

        met = DependencyResolver(evaluations).is_met(config, "resp-1", RunContext(request_id="r"))

        assert met is (score >= threshold)
