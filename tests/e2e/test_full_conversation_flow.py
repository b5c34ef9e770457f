"""
End-to-End Tests for Full Conversation Flow

Tests the complete tutoring loop with a scripted oracle:
- Reveal gating across attempts
- Micro-drill lifecycle
- Failed turns leave the knowledge graph untouched
- One request in flight per session
- Reset discards late replies
- Persistence and whiteboard animation
"""

import asyncio
import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_calculus_tutor", "src"))

from socratic_calculus_tutor.contract import parse_oracle_record
from socratic_calculus_tutor.errors import OracleTransportError
from socratic_calculus_tutor.knowledge_graph import ErrorKind
from socratic_calculus_tutor.knowledge_store import KnowledgeGraphStore
from socratic_calculus_tutor.session_state import TurnPhase
from socratic_calculus_tutor import socratic_tutor as tutor_module
from socratic_calculus_tutor.socratic_tutor import SocraticTutor, TurnStatus


def record(error_type="None", topic="limits", delta=10, micro_drill=False,
           visualization="none", expression=None, mastered=None, weak_nodes=None):
    whiteboard = {"text": "Whiteboard", "visualization_type": visualization}
    if expression:
        whiteboard["function_config"] = {"expression": expression}
    update = {"topic": topic, "confidence_delta": delta}
    if mastered is not None:
        update["mastered"] = mastered
    if weak_nodes is not None:
        update["weak_nodes"] = weak_nodes
    return {
        "tutor_response": f"Tutor reply ({error_type})",
        "error_type": error_type,
        "micro_drill": micro_drill,
        "whiteboard_instruction": whiteboard,
        "knowledge_update": update,
    }


class ScriptedOracle:
    """Replays canned records; an Exception entry is raised instead."""

    def __init__(self, *records):
        self.records = list(records)
        self.requests = []

    async def respond(self, request):
        self.requests.append(request)
        item = self.records.pop(0)
        if isinstance(item, Exception):
            raise item
        return parse_oracle_record(item)


class BlockingOracle:
    """Holds the reply until release() is called."""

    def __init__(self, reply):
        self.reply = reply
        self.started = asyncio.Event()
        self.gate = asyncio.Event()

    async def respond(self, request):
        self.started.set()
        await self.gate.wait()
        return parse_oracle_record(self.reply)

    def release(self):
        self.gate.set()


SESSION = "calc_session"


class TestFullConversationFlow:
    """Test complete conversation flows."""

    @pytest.fixture
    def store(self):
        return KnowledgeGraphStore()

    @pytest.mark.asyncio
    async def test_reveal_gating(self, store):
        """
        Three wrong attempts unlock reveal mode on the fourth; a correct
        answer starts the next problem at attempt 1.
        """
        oracle = ScriptedOracle(
            record("Sign Error", delta=-10),
            record("Arithmetic Error", delta=-10),
            record("Conceptual Gap", delta=-10),
            record("None", delta=15),
            record("None", delta=15),
        )
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)

        results = [await tutor.submit(SESSION, f"answer {i}") for i in range(5)]

        assert [r.status for r in results] == [TurnStatus.APPLIED] * 5
        assert [r.attempt_number for r in results] == [1, 2, 3, 4, 1]
        assert [r.reveal_allowed for r in results] == [False, False, False, True, False]

        fourth = oracle.requests[3]
        assert "REVEAL MODE" in fourth.messages[0]["content"]
        assert fourth.messages[-1] == {"role": "user", "content": "[Attempt 4] answer 3"}
        assert "GUIDED MODE" in oracle.requests[0].messages[0]["content"]

    @pytest.mark.asyncio
    async def test_conversation_history(self, store):
        tutor = SocraticTutor(oracle=ScriptedOracle(record("Sign Error"), record()), store=store, animate=False)

        await tutor.submit(SESSION, "is it 3?")
        await tutor.submit(SESSION, "is it 4?")
        session = await tutor.get_or_create_session(SESSION)

        assert [m.role for m in session.messages] == ["user", "assistant", "user", "assistant"]
        assert session.messages[1].error_type == ErrorKind.SIGN_ERROR
        assert session.conversation_history[2] == {"role": "user", "content": "is it 4?"}
        assert session.phase == TurnPhase.IDLE

    @pytest.mark.asyncio
    async def test_oracle_sees_last_twenty_turns(self, store):
        oracle = ScriptedOracle(*[record() for _ in range(12)])
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)

        for i in range(12):
            await tutor.submit(SESSION, f"turn {i}")

        assert len(oracle.requests[-1].messages) == 1 + 20
        assert oracle.requests[-1].messages[-1]["content"] == "[Attempt 1] turn 11"

    @pytest.mark.asyncio
    async def test_knowledge_graph_updates(self, store):
        oracle = ScriptedOracle(
            record("Sign Error", delta=-10, weak_nodes=["negation"]),
            record("None", delta=20, topic="limits", mastered=True),
        )
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)

        await tutor.submit(SESSION, "x")
        session = await tutor.get_or_create_session(SESSION)
        graph = session.knowledge_graph
        assert graph.topics["limits"].confidence_score == 40
        assert graph.weak_nodes == ("negation",)
        assert graph.error_history[-1].error_kind == ErrorKind.SIGN_ERROR

        await tutor.submit(SESSION, "y")
        graph = session.knowledge_graph
        assert graph.topics["limits"].mastered is True
        assert graph.topics["limits"].confidence_score == 60
        assert graph.session_stats.total_attempts == 2

    @pytest.mark.asyncio
    async def test_micro_drill_lifecycle(self, store):
        oracle = ScriptedOracle(
            record("Sign Error", delta=-10),
            record("Sign Error", delta=-10),
            record("Sign Error", delta=-10, micro_drill=True, topic="negation"),
            record("Sign Error", delta=-10),
        )
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)

        for _ in range(3):
            result = await tutor.submit(SESSION, "wrong again")
        session = await tutor.get_or_create_session(SESSION)

        assert result.micro_drill is True
        assert session.micro_drill_active is True
        assert session.micro_drill_topic == "negation"
        assert session.knowledge_graph.session_stats.micro_drills_completed == 1
        assert session.messages[-1].is_micro_drill is True

        # A later record without the flag does not leave the drill
        await tutor.submit(SESSION, "still wrong")
        assert session.micro_drill_active is True
        assert session.knowledge_graph.session_stats.attempt_on_current_problem == 4

        assert await tutor.dismiss_micro_drill(SESSION) is True
        assert session.micro_drill_active is False
        assert session.micro_drill_topic is None
        assert session.knowledge_graph.session_stats.attempt_on_current_problem == 0
        assert session.knowledge_graph.session_stats.micro_drills_completed == 1

        assert await tutor.dismiss_micro_drill(SESSION) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failure", [
        OracleTransportError("connection reset"),
        {"tutor_response": "missing everything else"},
        {**record(), "error_type": "Typo"},
        RuntimeError("boom"),
    ])
    async def test_failed_turn_leaves_graph_untouched(self, store, failure):
        oracle = ScriptedOracle(record("Sign Error", delta=-10), failure, record())
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)

        await tutor.submit(SESSION, "first")
        session = await tutor.get_or_create_session(SESSION)
        before = session.knowledge_graph

        result = await tutor.submit(SESSION, "second")

        assert result.status == TurnStatus.FAILED
        assert result.error
        assert session.knowledge_graph is before
        assert session.error == result.error
        assert session.phase == TurnPhase.IDLE
        assert session.messages[-1].role == "user"

        # The session recovers on the next turn
        assert (await tutor.submit(SESSION, "third")).status == TurnStatus.APPLIED
        assert session.error is None

    @pytest.mark.asyncio
    async def test_empty_input_rejected(self, store):
        oracle = ScriptedOracle()
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)

        for text in ("", "   ", "\n\t"):
            result = await tutor.submit(SESSION, text)
            assert result.status == TurnStatus.REJECTED

        session = await tutor.get_or_create_session(SESSION)
        assert session.messages == []
        assert oracle.requests == []

    @pytest.mark.asyncio
    async def test_one_request_in_flight(self, store):
        oracle = BlockingOracle(record())
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)

        first = asyncio.create_task(tutor.submit(SESSION, "first"))
        await oracle.started.wait()

        session = await tutor.get_or_create_session(SESSION)
        assert session.is_loading is True

        second = await tutor.submit(SESSION, "second")
        assert second.status == TurnStatus.REJECTED
        assert len(session.messages) == 1

        oracle.release()
        assert (await first).status == TurnStatus.APPLIED
        assert session.is_loading is False

    @pytest.mark.asyncio
    async def test_reset_discards_late_reply(self, store):
        oracle = BlockingOracle(record("Sign Error", delta=-10))
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)

        pending = asyncio.create_task(tutor.submit(SESSION, "question"))
        await oracle.started.wait()
        await tutor.reset_session(SESSION)
        oracle.release()

        result = await pending
        session = await tutor.get_or_create_session(SESSION)

        assert result.status == TurnStatus.DISCARDED
        assert session.messages == []
        assert session.knowledge_graph.topics == {}
        assert session.generation == 1
        assert session.phase == TurnPhase.IDLE
        assert await store.load(SESSION) == session.knowledge_graph

    @pytest.mark.asyncio
    async def test_graph_persists_across_tutors(self, store):
        tutor = SocraticTutor(oracle=ScriptedOracle(record("Wrong Theorem", delta=-20)), store=store, animate=False)
        await tutor.submit(SESSION, "use the product rule")

        restored = SocraticTutor(oracle=ScriptedOracle(), store=store, animate=False)
        session = await restored.get_or_create_session(SESSION)

        assert session.knowledge_graph.topics["limits"].confidence_score == 30
        assert session.knowledge_graph.error_history[-1].error_kind == ErrorKind.WRONG_THEOREM
        assert session.messages == []

    @pytest.mark.asyncio
    async def test_reset_clears_store(self, store):
        tutor = SocraticTutor(oracle=ScriptedOracle(record("Sign Error")), store=store, animate=False)
        await tutor.submit(SESSION, "x")
        await tutor.reset_session(SESSION)

        assert await store.load(SESSION) == (await tutor.get_or_create_session(SESSION)).knowledge_graph
        assert store._in_memory == {}


class TestWhiteboardFlow:
    """Visualization requests replace each other wholesale."""

    @pytest.fixture
    def store(self):
        return KnowledgeGraphStore()

    @pytest.mark.asyncio
    async def test_visualization_frames(self, store):
        oracle = ScriptedOracle(record(visualization="integral", expression="Math.pow(x,2)"))
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)

        await tutor.submit(SESSION, "area under x squared?")
        session = await tutor.get_or_create_session(SESSION)

        assert session.whiteboard.visualization_type == "integral"
        assert session.latest_frame["overlay"]["rectangle_count"] == 4
        assert tutor.frame_at(SESSION, 3.0)["overlay"]["rectangle_count"] is None

    @pytest.mark.asyncio
    async def test_rejected_expression_is_silent(self, store):
        oracle = ScriptedOracle(record(visualization="limit", expression="__import__('os')"))
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)

        result = await tutor.submit(SESSION, "limit?")
        session = await tutor.get_or_create_session(SESSION)

        assert result.status == TurnStatus.APPLIED
        assert session.latest_frame is None
        assert tutor.frame_at(SESSION, 0.0) is None

    @pytest.mark.asyncio
    async def test_new_visualization_replaces_old(self, store):
        oracle = ScriptedOracle(
            record(visualization="derivative", expression="x*x"),
            record(visualization="limit", expression="sin(x) / x"),
            record(visualization="none"),
        )
        tutor = SocraticTutor(oracle=oracle, store=store, animate=True)

        await tutor.submit(SESSION, "slope?")
        first = tutor.animations[SESSION]
        assert first.running is True

        await tutor.submit(SESSION, "limit?")
        second = tutor.animations[SESSION]
        assert second is not first
        assert first.running is False
        assert tutor.frame_at(SESSION, 0.0)["kind"] == "limit"

        await tutor.submit(SESSION, "thanks")
        assert SESSION not in tutor.animations
        assert second.running is False
        assert tutor.frame_at(SESSION, 0.0) is None

        await tutor.shutdown()

    @pytest.mark.asyncio
    async def test_reset_stops_animation(self, store):
        oracle = ScriptedOracle(record(visualization="derivative", expression="x*x"))
        tutor = SocraticTutor(oracle=oracle, store=store, animate=True)

        await tutor.submit(SESSION, "slope?")
        animation = tutor.animations[SESSION]
        await tutor.reset_session(SESSION)

        assert animation.running is False
        assert SESSION not in tutor.animations
        assert tutor.frame_at(SESSION, 0.0) is None

    @pytest.mark.asyncio
    async def test_deeply_nested_expression_does_not_lock_session(self, store):
        deep = "-" * 944 + "x"
        oracle = ScriptedOracle(
            record("Sign Error", delta=-10, visualization="derivative", expression=deep),
            record(),
        )
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)

        result = await tutor.submit(SESSION, "slope?")
        session = await tutor.get_or_create_session(SESSION)

        assert result.status == TurnStatus.APPLIED
        assert session.phase == TurnPhase.IDLE
        assert session.latest_frame is None
        assert await store.load(SESSION) == session.knowledge_graph

        assert (await tutor.submit(SESSION, "next")).status == TurnStatus.APPLIED

    @pytest.mark.asyncio
    async def test_whiteboard_failure_fails_turn_cleanly(self, store, monkeypatch):
        def broken_scene(instruction):
            raise RecursionError("maximum recursion depth exceeded")

        oracle = ScriptedOracle(record("Sign Error", delta=-10, visualization="limit"), record())
        tutor = SocraticTutor(oracle=oracle, store=store, animate=False)
        session = await tutor.get_or_create_session(SESSION)
        before = session.knowledge_graph

        monkeypatch.setattr(tutor_module, "build_scene", broken_scene)
        result = await tutor.submit(SESSION, "limit?")

        assert result.status == TurnStatus.FAILED
        assert session.phase == TurnPhase.IDLE
        assert session.knowledge_graph is before
        assert session.messages[-1].role == "user"
        assert session.error

        monkeypatch.undo()
        assert (await tutor.submit(SESSION, "again")).status == TurnStatus.APPLIED
