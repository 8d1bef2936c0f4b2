"""
Session orchestrator tests - full turns through evaluation, the ledger and
the executor, with scripted advisors.
"""

import asyncio

from unittest.mock import patch

import pytest

from governance.agents.advisor import BaseAdvisor
from governance.agents.mock_advisor import MockAdvisor
from governance.agents.orchestrator import SessionOrchestrator, TurnState
from governance.core.errors import CollaboratorError, CollaboratorTimeout, TurnCancelled
from governance.core.schema import Recommendation


class ScriptedAdvisor(BaseAdvisor):
    """Advisor whose behavior is a coroutine function of the context."""

    def __init__(self, behavior):
        super().__init__("scripted", "scripted-model")
        self.behavior = behavior
        self.contexts = []

    async def get_recommendation(self, context):
        self.contexts.append(context)
        return await self.behavior(context)


@pytest.fixture
def rules(rule_store):
    rule_store.add_non_negotiable(3, "No falsified data", auto_reject=True, validation_keywords=["falsify"])
    rule_store.add_non_negotiable(5, "Protect jobs", validation_keywords=["layoff"])
    return rule_store


def make_orchestrator(rule_store, evaluator, ledger, executor, aggregator, transcript, planning_store,
                      advisor=None, timeout=5):
    return SessionOrchestrator(
        rule_store=rule_store,
        evaluator=evaluator,
        ledger=ledger,
        executor=executor,
        aggregator=aggregator,
        transcript=transcript,
        planning_store=planning_store,
        advisor=advisor or MockAdvisor(),
        timeout=timeout
    )


@pytest.fixture
def build(rules, evaluator, ledger, executor, aggregator, transcript, planning_store):
    def _build(advisor=None, timeout=5):
        return make_orchestrator(rules, evaluator, ledger, executor, aggregator, transcript, planning_store,
                                 advisor=advisor, timeout=timeout)
    return _build


class TestSubmitTurn:
    """End-to-end turn outcomes."""

    def test_approved_turn_executes_actions(self, build, planning_store, kpi_k1, transcript):
        orchestrator = build()
        result = asyncio.run(orchestrator.submit_turn("s1", "Please set kpi k1 to 10981"))

        assert result.disposition == "approved"
        assert result.score == 100
        assert result.executed
        assert planning_store.get_kpi("k1")["current_value"] == 10981
        assert result.states == [
            TurnState.RECEIVED, TurnState.RECOMMENDATION_OBTAINED, TurnState.EVALUATED,
            TurnState.APPROVED, TurnState.EXECUTED, TurnState.PERSISTED
        ]
        roles = [m.role for m in transcript.get_history("s1")]
        assert roles == ["user", "assistant"]

    def test_record_carries_turn_id(self, build, ledger):
        result = asyncio.run(build().submit_turn("s1", "hello"))
        record = ledger.get(result.validation_id)
        assert result.turn_id is not None
        assert record.turn_id == result.turn_id
        assert record.session_id == "s1"

    def test_rejected_turn_never_executes(self, build, planning_store, kpi_k1, ledger):
        orchestrator = build()
        result = asyncio.run(orchestrator.submit_turn("s1", "falsify the numbers and set kpi k1 to 12000"))

        assert result.disposition == "rejected"
        assert result.score == 0
        assert result.violated_rule_ids == [3]
        assert not result.executed
        assert planning_store.get_kpi("k1")["current_value"] == 9000
        assert "No falsified data" in result.reply
        assert ledger.get(result.validation_id).status == "rejected"

    def test_flagged_turn(self, build, planning_store, kpi_k1):
        orchestrator = build()
        result = asyncio.run(orchestrator.submit_turn("s1", "Plan a layoff and set kpi k1 to 100"))

        assert result.disposition == "flagged"
        assert result.score == 50
        assert result.violated_rule_ids == [5]
        assert planning_store.get_kpi("k1")["current_value"] == 9000
        assert TurnState.FLAGGED in result.states

    def test_approved_but_failed_keeps_disposition(self, build, ledger, executor):
        orchestrator = build()
        result = asyncio.run(orchestrator.submit_turn("s1", "set kpi ghost to 5"))

        assert result.disposition == "approved"
        assert not result.executed
        assert result.failed_action_index == 0
        assert result.error_kind == "ActionHandlerFailure"
        assert TurnState.EXECUTION_FAILED in result.states
        assert ledger.get(result.validation_id).status == "approved"
        assert not executor.get_outcome(result.validation_id).executed

    def test_new_session_when_none_given(self, build, transcript):
        result = asyncio.run(build().submit_turn(None, "hello"))
        assert result.session_id
        assert transcript.session_exists(result.session_id)

    def test_history_excludes_current_message(self, build, transcript):
        async def reply(context):
            return Recommendation(text="ok")

        advisor = ScriptedAdvisor(reply)
        orchestrator = build(advisor)
        asyncio.run(orchestrator.submit_turn("s1", "first"))
        asyncio.run(orchestrator.submit_turn("s1", "second"))

        second = advisor.contexts[1]
        assert [m.message for m in second.history][0] == "first"
        assert second.user_message == "second"
        assert "Non-Negotiables" in second.philosophy_context

    def test_zero_context_messages_sends_no_history(self, rules, evaluator, ledger, executor, aggregator,
                                                    transcript, planning_store):
        async def reply(context):
            return Recommendation(text="ok")

        advisor = ScriptedAdvisor(reply)
        orchestrator = SessionOrchestrator(
            rule_store=rules, evaluator=evaluator, ledger=ledger, executor=executor, aggregator=aggregator,
            transcript=transcript, planning_store=planning_store, advisor=advisor, timeout=5,
            context_messages=0
        )
        asyncio.run(orchestrator.submit_turn("s1", "first"))
        asyncio.run(orchestrator.submit_turn("s1", "second"))

        assert advisor.contexts[1].history == []


class TestAbortedTurns:
    """Failures before evaluation leave no ledger entry."""

    def test_collaborator_error(self, build, ledger, transcript):
        async def fail(context):
            raise CollaboratorError("model unreachable")

        with pytest.raises(CollaboratorError):
            asyncio.run(build(ScriptedAdvisor(fail)).submit_turn("s1", "hi"))

        assert ledger.state() == (0, 0)
        assert [m.role for m in transcript.get_history("s1")] == ["user"]

    def test_unexpected_advisor_failure_is_wrapped(self, build, ledger):
        async def fail(context):
            raise KeyError("response")

        with pytest.raises(CollaboratorError):
            asyncio.run(build(ScriptedAdvisor(fail)).submit_turn("s1", "hi"))
        assert ledger.state() == (0, 0)

    def test_timeout(self, build, ledger):
        async def hang(context):
            await asyncio.sleep(5)
            return Recommendation(text="too late")

        with pytest.raises(CollaboratorTimeout):
            asyncio.run(build(ScriptedAdvisor(hang), timeout=0.05).submit_turn("s1", "hi"))
        assert ledger.state() == (0, 0)

    def test_cancelled_before_advisor(self, build, ledger):
        advisor = ScriptedAdvisor(lambda context: None)

        async def run():
            cancel = asyncio.Event()
            cancel.set()
            await build(advisor).submit_turn("s1", "hi", cancel_event=cancel)

        with pytest.raises(TurnCancelled):
            asyncio.run(run())
        assert advisor.contexts == []
        assert ledger.state() == (0, 0)

    def test_cancelled_while_waiting_for_advisor(self, build, ledger, planning_store, kpi_k1):
        async def run():
            cancel = asyncio.Event()

            async def slow(context):
                cancel.set()
                return Recommendation(text="set kpi k1", proposed_actions=())

            orchestrator = build(ScriptedAdvisor(slow))
            await orchestrator.submit_turn("s1", "hi", cancel_event=cancel)

        with pytest.raises(TurnCancelled):
            asyncio.run(run())
        assert ledger.state() == (0, 0)

    def test_cancel_after_record_still_persists(self, build, ledger, transcript, planning_store, kpi_k1):
        cancel = asyncio.Event()
        record = ledger.record

        def record_then_cancel(*args, **kwargs):
            written = record(*args, **kwargs)
            cancel.set()
            return written

        async def run():
            orchestrator = build()
            with patch.object(ledger, 'record', side_effect=record_then_cancel):
                return await orchestrator.submit_turn("s1", "set kpi k1 to 10981", cancel_event=cancel)

        result = asyncio.run(run())
        assert result.states[-1] == TurnState.PERSISTED
        assert result.executed
        assert planning_store.get_kpi("k1")["current_value"] == 10981
        assert [m.role for m in transcript.get_history("s1")] == ["user", "assistant"]

    def test_lock_released_after_failure(self, build):
        async def fail(context):
            raise CollaboratorError("down")

        orchestrator = build(ScriptedAdvisor(fail))
        with pytest.raises(CollaboratorError):
            asyncio.run(orchestrator.submit_turn("s1", "hi"))
        assert orchestrator.active_sessions() == 0


class TestSessionOrdering:
    """Turns of one session are processed in submission order."""

    def test_concurrent_turns_same_session(self, build, transcript, ledger):
        async def reply(context):
            # The first turn is the slow one
            await asyncio.sleep(0.1 if context.user_message == "T1" else 0)
            return Recommendation(text=f"answer to {context.user_message}")

        orchestrator = build(ScriptedAdvisor(reply))

        async def run():
            return await asyncio.gather(
                orchestrator.submit_turn("s1", "T1"),
                orchestrator.submit_turn("s1", "T2"),
            )

        first, second = asyncio.run(run())

        messages = [m.message for m in transcript.get_history("s1")]
        assert messages[0] == "T1"
        assert messages[1].startswith("answer to T1")
        assert messages[2] == "T2"
        assert messages[3].startswith("answer to T2")
        assert first.validation_id < second.validation_id
        assert orchestrator.active_sessions() == 0

    def test_different_sessions_run_concurrently(self, build):
        started = []

        async def reply(context):
            started.append(context.session_id)
            await asyncio.sleep(0.05)
            return Recommendation(text="ok")

        orchestrator = build(ScriptedAdvisor(reply))

        async def run():
            tasks = [asyncio.create_task(orchestrator.submit_turn(sid, "hi")) for sid in ("a", "b")]
            await asyncio.sleep(0.01)
            # Both advisors are in flight before either finishes
            assert sorted(started) == ["a", "b"]
            await asyncio.gather(*tasks)

        asyncio.run(run())


class TestQueries:

    def test_recent_validations_and_alignment(self, build):
        orchestrator = build()

        async def run():
            await orchestrator.submit_turn("s1", "hello")
            await orchestrator.submit_turn("s1", "falsify this")

        asyncio.run(run())

        recent = orchestrator.get_recent_validations(5)
        assert [r.status for r in recent] == ["rejected", "approved"]

        score = orchestrator.get_alignment_score()
        assert score.total_validations == 2
        assert score.overall_score == 50
