"""
Socratic Calculus Tutor

Runs the per-turn protocol: gate the attempt, ask the oracle, fold its
verdict into the knowledge graph, swap the whiteboard, persist.

One request may be in flight per session. A reply that arrives after the
session was reset is dropped without touching state.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from socratic_calculus_tutor import knowledge_graph as kg
from socratic_calculus_tutor.animation_session import AnimationSession
from socratic_calculus_tutor.contract import WhiteboardInstruction
from socratic_calculus_tutor.errors import InputRejected, OracleError
from socratic_calculus_tutor.knowledge_graph import ErrorKind
from socratic_calculus_tutor.knowledge_store import KnowledgeGraphStore
from socratic_calculus_tutor.oracle import Oracle, OracleRequest
from socratic_calculus_tutor.prompts import attempt_gate, build_messages
from socratic_calculus_tutor.session_state import Message, SessionState, TurnPhase
from socratic_calculus_tutor.whiteboard import Frame, Scene, build_scene

logger = logging.getLogger(__name__)


class TurnStatus(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    REJECTED = "rejected"
    DISCARDED = "discarded"


@dataclass
class TurnResult:
    """Outcome of one submit() call."""
    status: TurnStatus
    attempt_number: int = 0
    reveal_allowed: bool = False
    tutor_response: Optional[str] = None
    error_type: Optional[ErrorKind] = None
    micro_drill: bool = False
    whiteboard: Optional[WhiteboardInstruction] = None
    error: Optional[str] = None


class SocraticTutor:
    """
    Session state machine around the oracle.

    Phases: IDLE -> AWAITING_ORACLE -> IDLE. The micro-drill flag is
    orthogonal: an applied record with micro_drill=true turns it on and only
    dismiss_micro_drill() turns it off.
    """

    def __init__(
        self,
        oracle: Optional[Oracle] = None,
        store: Optional[KnowledgeGraphStore] = None,
        animate: bool = True,
    ):
        if oracle is None:
            from socratic_calculus_tutor.oracle import OpenAIOracle
            oracle = OpenAIOracle()
        self.oracle = oracle
        self.store = store or KnowledgeGraphStore()
        self.animate = animate

        self.sessions: Dict[str, SessionState] = {}
        self.scenes: Dict[str, Scene] = {}
        self.animations: Dict[str, AnimationSession] = {}

    # ==================== Sessions ====================

    async def get_or_create_session(self, session_id: str) -> SessionState:
        """Get the in-memory session, restoring its knowledge graph on first use."""
        session = self.sessions.get(session_id)
        if session is None:
            graph = await self.store.load(session_id)
            session = SessionState(session_id=session_id, knowledge_graph=graph)
            self.sessions[session_id] = session
            logger.info(f"📚 [SocraticTutor] Session {session_id} ready ({len(graph.topics)} known topics)")
        return session

    def _check_input(self, session: SessionState, text: str):
        if not text or not text.strip():
            raise InputRejected("Empty message")
        if session.phase == TurnPhase.AWAITING_ORACLE:
            raise InputRejected("A response is still being prepared")

    # ==================== Turn protocol ====================

    async def submit(self, session_id: str, text: str) -> TurnResult:
        """Run one student turn end to end."""
        session = await self.get_or_create_session(session_id)

        try:
            self._check_input(session, text)
        except InputRejected as e:
            logger.info(f"🚫 [SocraticTutor] Rejected input for {session_id}: {e}")
            return TurnResult(status=TurnStatus.REJECTED, error=str(e))

        gate = attempt_gate(session.knowledge_graph)
        session.error = None
        session.messages.append(Message(role="user", content=text))
        session.conversation_history.append({"role": "user", "content": text})

        request = OracleRequest(
            messages=build_messages(session.knowledge_graph, session.conversation_history, gate),
            attempt_number=gate.attempt_number,
            reveal_allowed=gate.reveal_allowed,
        )

        generation = session.generation
        session.phase = TurnPhase.AWAITING_ORACLE
        logger.info(
            f"🤔 [SocraticTutor] Attempt {gate.attempt_number} for {session_id} "
            f"({'reveal' if gate.reveal_allowed else 'guided'} mode)"
        )

        try:
            record = await self.oracle.respond(request)
        except OracleError as e:
            return self._fail(session, generation, gate, str(e))
        except Exception as e:
            logger.exception(f"❌ [SocraticTutor] Unexpected oracle failure: {e}")
            return self._fail(session, generation, gate, f"Unexpected error: {e}")

        if self._is_stale(session, generation):
            logger.info(f"🗑️ [SocraticTutor] Discarding reply for reset session {session_id}")
            return TurnResult(status=TurnStatus.DISCARDED, attempt_number=gate.attempt_number)

        # Nothing below may leave the session half-applied or stuck awaiting
        try:
            graph = kg.apply_update(
                session.knowledge_graph,
                record.knowledge_update,
                record.error_type,
                record.is_correct,
            )
            if record.micro_drill:
                graph = kg.record_micro_drill_completed(graph)
            scene, first_frame = self._prepare_whiteboard(record.whiteboard_instruction)
        except Exception as e:
            logger.exception(f"❌ [SocraticTutor] Could not apply oracle record: {e}")
            return self._fail(session, generation, gate, f"Could not apply tutor reply: {e}")

        if record.micro_drill:
            session.micro_drill_active = True
            session.micro_drill_topic = record.knowledge_update.topic
            logger.info(f"🎯 [SocraticTutor] Micro-drill started on {record.knowledge_update.topic}")

        session.knowledge_graph = graph
        session.whiteboard = record.whiteboard_instruction
        self._show_whiteboard(session, scene, first_frame)

        session.messages.append(Message(
            role="assistant",
            content=record.tutor_response,
            error_type=record.error_type,
            is_micro_drill=record.micro_drill,
        ))
        session.conversation_history.append({"role": "assistant", "content": record.tutor_response})
        session.phase = TurnPhase.IDLE

        await self.store.save(session_id, graph)

        logger.info(
            f"✅ [SocraticTutor] Applied {record.error_type.value} on '{record.knowledge_update.topic}' "
            f"(confidence {kg.topic_confidence(graph, record.knowledge_update.topic)})"
        )
        return TurnResult(
            status=TurnStatus.APPLIED,
            attempt_number=gate.attempt_number,
            reveal_allowed=gate.reveal_allowed,
            tutor_response=record.tutor_response,
            error_type=record.error_type,
            micro_drill=record.micro_drill,
            whiteboard=record.whiteboard_instruction,
        )

    def _is_stale(self, session: SessionState, generation: int) -> bool:
        return self.sessions.get(session.session_id) is not session or session.generation != generation

    def _fail(self, session: SessionState, generation: int, gate, message: str) -> TurnResult:
        if self._is_stale(session, generation):
            return TurnResult(status=TurnStatus.DISCARDED, attempt_number=gate.attempt_number)

        logger.error(f"❌ [SocraticTutor] Turn failed for {session.session_id}: {message}")
        session.error = message
        session.phase = TurnPhase.IDLE
        return TurnResult(
            status=TurnStatus.FAILED,
            attempt_number=gate.attempt_number,
            reveal_allowed=gate.reveal_allowed,
            error=message,
        )

    # ==================== Micro-drills / reset ====================

    async def dismiss_micro_drill(self, session_id: str) -> bool:
        """Leave the drill and start the current problem afresh."""
        session = await self.get_or_create_session(session_id)
        if not session.micro_drill_active:
            return False

        session.micro_drill_active = False
        session.micro_drill_topic = None
        session.knowledge_graph = kg.reset_attempt_counter(session.knowledge_graph)
        await self.store.save(session_id, session.knowledge_graph)
        logger.info(f"👋 [SocraticTutor] Micro-drill dismissed for {session_id}")
        return True

    async def reset_session(self, session_id: str):
        """Clear conversation, whiteboard and stored graph."""
        await self._stop_animation(session_id)
        self.scenes.pop(session_id, None)

        session = self.sessions.get(session_id)
        if session is not None:
            # A fresh object: replies still pending on the old one become stale
            self.sessions[session_id] = SessionState(session_id=session_id, generation=session.generation + 1)

        await self.store.clear(session_id)
        logger.info(f"🔄 [SocraticTutor] Session {session_id} reset")

    # ==================== Whiteboard ====================

    def _prepare_whiteboard(
        self, instruction: WhiteboardInstruction
    ) -> Tuple[Optional[Scene], Optional[Dict[str, Any]]]:
        """Build the scene and its first frame without touching any session."""
        scene = build_scene(instruction)
        if scene is None:
            return None, None
        return scene, scene.frame_at(0.0).to_dict()

    def _show_whiteboard(self, session: SessionState, scene: Optional[Scene], first_frame: Optional[Dict[str, Any]]):
        """Replace the visualization wholesale and restart its animation."""
        session_id = session.session_id
        old = self.animations.pop(session_id, None)
        if old:
            old.cancel()

        if scene is None:
            self.scenes.pop(session_id, None)
            session.latest_frame = None
            return

        self.scenes[session_id] = scene
        session.latest_frame = first_frame

        if self.animate:
            def publish(frame: Frame):
                session.latest_frame = frame.to_dict()

            animation = AnimationSession(scene, publish)
            animation.start()
            self.animations[session_id] = animation

    async def _stop_animation(self, session_id: str):
        animation = self.animations.pop(session_id, None)
        if animation:
            await animation.stop()

    def frame_at(self, session_id: str, elapsed: float) -> Optional[Dict[str, Any]]:
        """Deterministic frame of the current visualization, None when nothing is drawn."""
        scene = self.scenes.get(session_id)
        return scene.frame_at(elapsed).to_dict() if scene else None

    async def shutdown(self):
        for session_id in list(self.animations):
            await self._stop_animation(session_id)

    # ==================== Progress ====================

    def get_progress(self, session: SessionState) -> Dict[str, Any]:
        graph = session.knowledge_graph
        dominant = kg.dominant_error(graph)
        return {
            "session_id": session.session_id,
            "mastered_topics": kg.mastered_topics(graph),
            "weak_nodes": list(graph.weak_nodes),
            "topic_confidence": {name: state.confidence_score for name, state in graph.topics.items()},
            "error_frequency": {kind.value: n for kind, n in kg.error_frequency(graph).items()},
            "dominant_error": dominant.value if dominant else None,
            "micro_drill_due": kg.should_trigger_micro_drill(graph),
            "knowledge_graph": kg.to_dict(graph),
        }
