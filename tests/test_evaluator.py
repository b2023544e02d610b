"""Evaluator-optimizer workflow tests."""

import pytest

from agentloom.contracts import EvaluatorOptimizerWorkflowConfig, RetryPolicy, WorkflowStatus
from agentloom.errors import AgentInvocationError, ErrorKind
from agentloom.workflows import EvaluatorOptimizerExecutor
from agentloom.workflows.parsing import SchemaEvaluationParser


def _config(make_agent, **kwargs) -> EvaluatorOptimizerWorkflowConfig:
    return EvaluatorOptimizerWorkflowConfig(
        generator_agent=make_agent("generator"),
        evaluator_agent=make_agent("evaluator"),
        optimizer_agent=make_agent("optimizer"),
        **kwargs,
    )


def _verdict(score: int, feedback: str = "needs work") -> str:
    return f"SCORE: {score}\nFEEDBACK: {feedback}"


@pytest.mark.asyncio
async def test_stops_once_threshold_is_reached(make_agent, invoker):
    invoker.set_response("generator", "draft 1")
    invoker.set_response("evaluator", [_verdict(60), _verdict(78), _verdict(92, "great")])
    invoker.set_response("optimizer", ["draft 2", "draft 3"])
    executor = EvaluatorOptimizerExecutor(_config(make_agent, quality_threshold=90), invoker)

    result = await executor.execute(conversation_id="c1", input="Write a tagline")

    assert result.status == WorkflowStatus.COMPLETED
    assert result.result == "draft 3"
    assert executor.get_score_progression() == [60, 78, 92]
    assert len(executor.get_iterations()) == 3
    assert len(invoker.calls_for("optimizer")) == 2
    final = executor.get_final_iteration()
    assert final.iteration == 3
    assert final.evaluation.acceptable is True
    assert final.optimized_output is None
    assert executor.get_iterations()[0].optimized_output == "draft 2"
    assert result.state.metadata["final_score"] == 92
    assert result.state.metadata["quality_threshold_met"] is True


@pytest.mark.asyncio
async def test_prompts_carry_request_and_feedback(make_agent, invoker):
    invoker.set_response("generator", "v1")
    invoker.set_response("evaluator", [_verdict(40, "too vague"), _verdict(95)])
    invoker.set_response("optimizer", "v2")
    executor = EvaluatorOptimizerExecutor(_config(make_agent), invoker)

    await executor.execute(conversation_id="c1", input="Explain DNS")

    assert invoker.calls_for("evaluator")[0] == (
        "Evaluate the following output based on the original request.\n\n"
        "Original Request: Explain DNS\n\nOutput:\nv1"
    )
    assert invoker.calls_for("optimizer") == [
        "Original Request: Explain DNS\n\nCurrent Output:\nv1\n\n"
        "Evaluation Feedback (Score: 40/100):\ntoo vague\n\n"
        "Please refine the output to address the feedback and improve quality."
    ]


@pytest.mark.asyncio
async def test_evaluation_criteria_prefix_the_prompt(make_agent, invoker):
    invoker.set_response("evaluator", _verdict(99))
    config = _config(make_agent, evaluation_criteria="Judge clarity.")
    executor = EvaluatorOptimizerExecutor(config, invoker)

    await executor.execute(conversation_id="c1", input="Q")

    assert invoker.calls_for("evaluator") == [
        "Judge clarity.\n\nOriginal Request: Q\n\nOutput to Evaluate:\nMock response"
    ]


@pytest.mark.asyncio
async def test_stops_at_max_iterations(make_agent, invoker):
    invoker.set_response("evaluator", _verdict(50))
    executor = EvaluatorOptimizerExecutor(_config(make_agent, max_iterations=3), invoker)

    result = await executor.execute(conversation_id="c1", input="Q")

    assert result.status == WorkflowStatus.COMPLETED
    assert executor.get_score_progression() == [50, 50, 50]
    assert len(invoker.calls_for("optimizer")) == 2
    assert result.state.metadata["quality_threshold_met"] is False


@pytest.mark.asyncio
async def test_insufficient_improvement_stops_loop(make_agent, invoker):
    invoker.set_response("evaluator", [_verdict(60), _verdict(62), _verdict(95)])
    config = _config(make_agent, min_improvement=5)
    executor = EvaluatorOptimizerExecutor(config, invoker)

    await executor.execute(conversation_id="c1", input="Q")

    assert executor.get_score_progression() == [60, 62]


@pytest.mark.asyncio
async def test_custom_should_stop(make_agent, invoker):
    invoker.set_response("evaluator", [_verdict(10), _verdict(20), _verdict(30)])

    def stop_on_second(iteration, evaluation, previous):
        return previous is not None

    executor = EvaluatorOptimizerExecutor(_config(make_agent, should_stop=stop_on_second), invoker)

    await executor.execute(conversation_id="c1", input="Q")

    assert executor.get_score_progression() == [10, 20]


@pytest.mark.asyncio
async def test_return_all_iterations_formats_history(make_agent, invoker):
    invoker.set_response("generator", "v1")
    invoker.set_response("evaluator", [_verdict(70, "meh"), _verdict(91, "good")])
    invoker.set_response("optimizer", "v2")
    executor = EvaluatorOptimizerExecutor(_config(make_agent, return_all_iterations=True), invoker)

    result = await executor.execute(conversation_id="c1", input="Q")

    assert result.result == (
        "## Iteration 1\n\n**Score:** 70/100\n\n**Feedback:** meh\n\n**Output:**\nv1"
        "\n\n---\n\n"
        "## Iteration 2\n\n**Score:** 91/100\n\n**Feedback:** good\n\n**Output:**\nv2"
        "\n\n## Final Result (Score: 91/100)\n\nv2"
    )


@pytest.mark.asyncio
async def test_strict_policy_fails_on_mid_loop_error(make_agent, invoker):
    invoker.set_response("evaluator", [_verdict(40), AgentInvocationError("down")])
    executor = EvaluatorOptimizerExecutor(_config(make_agent), invoker)

    result = await executor.execute(conversation_id="c1", input="Q")

    assert result.status == WorkflowStatus.FAILED
    assert result.error == "down"
    assert executor.get_score_progression() == [40]


@pytest.mark.asyncio
async def test_best_effort_returns_last_evaluated_candidate(make_agent, invoker):
    invoker.set_response("generator", "v1")
    invoker.set_response("evaluator", [_verdict(40), AgentInvocationError("down")])
    invoker.set_response("optimizer", "v2")
    config = _config(make_agent, fail_policy="best-effort")
    executor = EvaluatorOptimizerExecutor(config, invoker)

    result = await executor.execute(conversation_id="c1", input="Q")

    assert result.status == WorkflowStatus.COMPLETED
    assert result.result == "v1"
    assert result.state.metadata["degraded"] is True
    assert result.state.metadata["error"] == "down"


@pytest.mark.asyncio
async def test_best_effort_still_fails_without_any_iteration(make_agent, invoker):
    invoker.set_response("generator", AgentInvocationError("down"))
    config = _config(make_agent, fail_policy="best-effort")

    result = await EvaluatorOptimizerExecutor(config, invoker).execute(
        conversation_id="c1", input="Q"
    )

    assert result.status == WorkflowStatus.FAILED


@pytest.mark.asyncio
async def test_unparseable_evaluation_is_a_parse_error(make_agent, invoker):
    invoker.set_response("evaluator", "Looks fine to me")
    executor = EvaluatorOptimizerExecutor(_config(make_agent), invoker)

    result = await executor.execute(conversation_id="c1", input="Q")

    assert result.status == WorkflowStatus.FAILED
    assert result.steps[-1].error_kind == ErrorKind.PARSE_ERROR


@pytest.mark.asyncio
async def test_parse_errors_retry_when_policy_allows(make_agent, invoker):
    invoker.set_response("evaluator", ['{"feedback": "no score"}', '{"score": 97, "feedback": "ok"}'])
    retry = RetryPolicy(
        max_retries=1,
        retry_delay=0.01,
        retryable_errors=frozenset({ErrorKind.PARSE_ERROR}),
    )
    config = _config(make_agent, retry=retry, evaluation_parser=SchemaEvaluationParser())
    executor = EvaluatorOptimizerExecutor(config, invoker)

    result = await executor.execute(conversation_id="c1", input="Q")

    assert result.status == WorkflowStatus.COMPLETED
    assert executor.get_score_progression() == [97]
    evaluator_step = next(s for s in result.steps if s.agent_id == "evaluator")
    assert evaluator_step.attempts == 2
