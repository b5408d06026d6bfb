"""Tests for supervisor/aggregator.py -- synthesis of the final response."""

from agents.utils import MockLLMClient
from metrics import MetricsCollector
from supervisor.aggregator import Aggregator, fallback_message
from supervisor.models import (
    AgentResult,
    ExecutionContext,
    ExecutionReport,
    Plan,
    PlanStep,
    StepOutcome,
    StepStatus,
)
from tests.conftest import VITALIK_ADDRESS, fenced, make_llm_response

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENS_RESULT = AgentResult(
    agent_name="ENSWalletIdentifierAgent",
    message="vitalik.eth resolves to " + VITALIK_ADDRESS,
    data={"ens_domain": "vitalik.eth", "wallet_address": VITALIK_ADDRESS},
)
SIDE_RESULT = AgentResult(
    agent_name="SideWalletsFinderAgent",
    message="Found 2 side wallets",
    data={"target_wallets": [VITALIK_ADDRESS], "side_wallets": []},
)


def _plan(*names: str) -> Plan:
    return Plan(
        steps=[PlanStep(agent_name=n, reason="r") for n in names],
        merge_directive="Present the wallet first, then its side wallets",
    )


def _complete(index: int, result: AgentResult) -> StepOutcome:
    return StepOutcome(
        step_index=index,
        agent_name=result.agent_name,
        status=StepStatus.COMPLETE,
        result=result,
    )


def _failed(index: int, name: str, status: StepStatus = StepStatus.FAILED) -> StepOutcome:
    return StepOutcome(step_index=index, agent_name=name, status=status, error="boom")


def _context() -> ExecutionContext:
    return ExecutionContext(user_input="side wallets of vitalik.eth", query_id="q_agg")


def _aggregator(*replies: str | Exception, **kwargs) -> tuple[Aggregator, MockLLMClient]:
    client = MockLLMClient(responses=[
        r if isinstance(r, Exception) else make_llm_response(r) for r in replies
    ])
    return Aggregator(client, model="agg-model", temperature=0.2, **kwargs), client


# =========================================================================
# Synthesis
# =========================================================================


class TestAggregate:
    """The model writes the message; the data comes from the executor."""

    async def test_uses_synthesized_message(self) -> None:
        aggregator, _ = _aggregator(fenced({"message": "  Vitalik has 2 side wallets.  "}))
        report = ExecutionReport([_complete(0, ENS_RESULT), _complete(1, SIDE_RESULT)])

        response = await aggregator.aggregate(
            _plan("ENSWalletIdentifierAgent", "SideWalletsFinderAgent"), report, _context()
        )

        assert response.message == "Vitalik has 2 side wallets."
        assert response.aggregated_agents_data == [ENS_RESULT, SIDE_RESULT]

    async def test_model_echoed_data_is_ignored(self) -> None:
        reply = fenced({
            "message": "ok",
            "aggregatedAgentsData": [{"agentName": "Invented", "message": "x", "data": None}],
        })
        aggregator, _ = _aggregator(reply)
        report = ExecutionReport([_complete(0, ENS_RESULT)])

        response = await aggregator.aggregate(
            _plan("ENSWalletIdentifierAgent"), report, _context()
        )

        assert [r.agent_name for r in response.aggregated_agents_data] == [
            "ENSWalletIdentifierAgent"
        ]

    async def test_response_data_is_a_copy(self) -> None:
        aggregator, _ = _aggregator(fenced({"message": "ok"}))
        result = ENS_RESULT.model_copy(deep=True)
        report = ExecutionReport([_complete(0, result)])

        response = await aggregator.aggregate(
            _plan("ENSWalletIdentifierAgent"), report, _context()
        )
        response.aggregated_agents_data[0].data["wallet_address"] = "0x0"

        assert result.data["wallet_address"] == VITALIK_ADDRESS

    async def test_prompt_contents(self) -> None:
        aggregator, client = _aggregator(fenced({"message": "ok"}))
        report = ExecutionReport([_complete(0, ENS_RESULT), _failed(1, "SideWalletsFinderAgent")])

        await aggregator.aggregate(
            _plan("ENSWalletIdentifierAgent", "SideWalletsFinderAgent"), report, _context()
        )

        call = client.call_history[0]
        user_prompt = call["messages"][-1]["content"]
        assert "side wallets of vitalik.eth" in user_prompt
        assert "Present the wallet first, then its side wallets" in user_prompt
        assert VITALIK_ADDRESS in user_prompt
        assert "SideWalletsFinderAgent (step 2): failed" in user_prompt
        assert call["agent_name"] == "Aggregator"
        assert call["model"] == "agg-model"


class TestIncompleteSteps:
    """Missing analyses must be visible in the message."""

    async def test_note_appended_when_model_omits_missing_agent(self) -> None:
        aggregator, _ = _aggregator(fenced({"message": "Vitalik's wallet is 0xd8dA."}))
        report = ExecutionReport([
            _complete(0, ENS_RESULT),
            _failed(1, "SideWalletsFinderAgent", StepStatus.SKIPPED),
        ])

        response = await aggregator.aggregate(
            _plan("ENSWalletIdentifierAgent", "SideWalletsFinderAgent"), report, _context()
        )

        assert response.message.startswith("Vitalik's wallet is 0xd8dA.")
        assert "Note: the following analyses could not be completed" in response.message
        assert "SideWalletsFinderAgent (step 2): skipped" in response.message

    async def test_note_appended_even_when_model_names_missing_agent(self) -> None:
        message = "Wallet resolved; SideWalletsFinderAgent could not run."
        aggregator, _ = _aggregator(fenced({"message": message}))
        report = ExecutionReport([_complete(0, ENS_RESULT), _failed(1, "SideWalletsFinderAgent")])

        response = await aggregator.aggregate(
            _plan("ENSWalletIdentifierAgent", "SideWalletsFinderAgent"), report, _context()
        )

        assert response.message == (
            f"{message}\n\nNote: the following analyses could not be completed: "
            "SideWalletsFinderAgent (step 2): failed"
        )

    async def test_repeated_agent_with_one_failed_step(self) -> None:
        name = "EarlyTokenBuyersFinderAgent"
        results = [
            AgentResult(agent_name=name, message=f"Early buyers of token {i}", data={"i": i})
            for i in range(2)
        ]
        aggregator, _ = _aggregator(
            fenced({"message": f"{name} found the early buyers of the tokens."})
        )
        report = ExecutionReport([
            _complete(0, results[0]),
            _complete(1, results[1]),
            _failed(2, name),
        ])

        response = await aggregator.aggregate(_plan(name, name, name), report, _context())

        assert response.message.startswith(f"{name} found the early buyers of the tokens.")
        assert "could not be completed" in response.message
        assert f"{name} (step 3): failed" in response.message
        assert response.aggregated_agents_data == results

    async def test_no_note_when_everything_completed(self) -> None:
        aggregator, _ = _aggregator(fenced({"message": "All done."}))
        report = ExecutionReport([_complete(0, ENS_RESULT), _complete(1, SIDE_RESULT)])

        response = await aggregator.aggregate(
            _plan("ENSWalletIdentifierAgent", "SideWalletsFinderAgent"), report, _context()
        )

        assert response.message == "All done."


# =========================================================================
# Fallback
# =========================================================================


class TestFallback:
    """Synthesis failures never fail the query."""

    async def test_model_error_uses_fallback(self, metrics_collector: MetricsCollector) -> None:
        metrics_collector.start("q_agg")
        aggregator, _ = _aggregator(
            RuntimeError("provider down"), metrics_collector=metrics_collector
        )
        report = ExecutionReport([_complete(0, ENS_RESULT), _complete(1, SIDE_RESULT)])

        response = await aggregator.aggregate(
            _plan("ENSWalletIdentifierAgent", "SideWalletsFinderAgent"), report, _context()
        )

        assert ENS_RESULT.message in response.message
        assert "SideWalletsFinderAgent: Found 2 side wallets" in response.message
        assert response.aggregated_agents_data == [ENS_RESULT, SIDE_RESULT]
        data = metrics_collector.get("q_agg")
        assert data.absorbed_errors == {"AggregationError": 1}

    async def test_unparsable_output_uses_fallback(self) -> None:
        aggregator, _ = _aggregator("Sure, here is a summary without JSON.")
        report = ExecutionReport([_complete(0, ENS_RESULT)])
        response = await aggregator.aggregate(
            _plan("ENSWalletIdentifierAgent"), report, _context()
        )
        assert response.message == f"ENSWalletIdentifierAgent: {ENS_RESULT.message}"

    async def test_blank_message_uses_fallback(self) -> None:
        aggregator, _ = _aggregator(fenced({"message": "   "}))
        report = ExecutionReport([_complete(0, ENS_RESULT)])
        response = await aggregator.aggregate(
            _plan("ENSWalletIdentifierAgent"), report, _context()
        )
        assert response.message.startswith("ENSWalletIdentifierAgent:")

    def test_fallback_message_lists_incomplete(self) -> None:
        message = fallback_message(
            [ENS_RESULT], [_failed(1, "SideWalletsFinderAgent")]
        )
        assert message.split("\n\n") == [
            f"ENSWalletIdentifierAgent: {ENS_RESULT.message}",
            "The following analyses could not be completed: "
            "SideWalletsFinderAgent (step 2): failed",
        ]
