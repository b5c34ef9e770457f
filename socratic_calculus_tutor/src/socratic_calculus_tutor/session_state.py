"""
Session State Data Model

Defines the SessionState dataclass for managing a tutoring session.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from socratic_calculus_tutor.contract import INITIAL_WHITEBOARD, WhiteboardInstruction
from socratic_calculus_tutor.knowledge_graph import ErrorKind, KnowledgeGraph


class TurnPhase(str, Enum):
    IDLE = "idle"
    AWAITING_ORACLE = "awaiting_oracle"


@dataclass
class Message:
    """One entry of the displayed conversation."""
    role: str  # "user" or "assistant"
    content: str
    error_type: Optional[ErrorKind] = None
    is_micro_drill: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "error_type": self.error_type.value if self.error_type else None,
            "is_micro_drill": self.is_micro_drill,
            "timestamp": self.timestamp,
        }


@dataclass
class SessionState:
    """Everything the tutor tracks for one student session."""
    session_id: str
    knowledge_graph: KnowledgeGraph = field(default_factory=KnowledgeGraph)
    phase: TurnPhase = TurnPhase.IDLE
    # Display history (unbounded) and the role/content turns sent to the oracle
    messages: List[Message] = field(default_factory=list)
    conversation_history: List[Dict[str, str]] = field(default_factory=list)
    whiteboard: WhiteboardInstruction = field(
        default_factory=lambda: INITIAL_WHITEBOARD.model_copy(deep=True)
    )
    error: Optional[str] = None
    micro_drill_active: bool = False
    micro_drill_topic: Optional[str] = None
    # Bumped on reset; replies carrying an older generation are discarded
    generation: int = 0
    # Latest frame published by the running animation (JSON-ready)
    latest_frame: Optional[Dict[str, Any]] = None

    @property
    def is_loading(self) -> bool:
        return self.phase == TurnPhase.AWAITING_ORACLE
