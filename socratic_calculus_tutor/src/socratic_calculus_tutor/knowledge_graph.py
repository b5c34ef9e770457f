"""
Student Knowledge Graph

Per-student model of topic mastery, confidence, weak nodes and error history.
Every value is a frozen dataclass; transitions are pure functions that return
a new snapshot, so the session can swap the whole graph atomically.
"""

import time
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from socratic_calculus_tutor.config import (
    DEFAULT_CONFIDENCE,
    ERROR_HISTORY_LIMIT,
    MASTERY_THRESHOLD,
    MAX_CONFIDENCE,
    MICRO_DRILL_THRESHOLD,
    MICRO_DRILL_WINDOW,
    MIN_CONFIDENCE,
    TOPIC_ERROR_WINDOW,
)

if TYPE_CHECKING:
    from socratic_calculus_tutor.contract import KnowledgeUpdate


class ErrorKind(str, Enum):
    """Error classification returned by the oracle."""
    CONCEPTUAL_GAP = "Conceptual Gap"
    ARITHMETIC_ERROR = "Arithmetic Error"
    SIGN_ERROR = "Sign Error"
    WRONG_THEOREM = "Wrong Theorem"
    NOTATION_CONFUSION = "Notation Confusion"
    CORRECT_IDEA_WRONG_EXECUTION = "Correct Idea, Wrong Execution"
    NONE = "None"


@dataclass(frozen=True)
class TopicState:
    """Mastery state of a single topic."""
    mastered: bool = False
    confidence_score: int = DEFAULT_CONFIDENCE  # 0-100
    attempts: int = 0
    last_errors: Tuple[ErrorKind, ...] = ()  # most recent last


@dataclass(frozen=True)
class ErrorRecord:
    """One classified mistake in the session error history."""
    error_kind: ErrorKind
    topic: str
    timestamp: int  # epoch milliseconds


@dataclass(frozen=True)
class SessionStats:
    total_attempts: int = 0
    consecutive_failures: int = 0
    micro_drills_completed: int = 0
    current_topic: str = ""
    attempt_on_current_problem: int = 0


@dataclass(frozen=True)
class KnowledgeGraph:
    """
    Snapshot of everything the tutor knows about the student.

    weak_nodes is deduplicated; its order only keeps serialization stable.
    """
    topics: Mapping[str, TopicState] = field(default_factory=dict)
    weak_nodes: Tuple[str, ...] = ()
    error_history: Tuple[ErrorRecord, ...] = ()
    session_stats: SessionStats = field(default_factory=SessionStats)


def create_empty() -> KnowledgeGraph:
    """Return the graph of a student we know nothing about."""
    return KnowledgeGraph()


def _clamp(value: float, low: int = MIN_CONFIDENCE, high: int = MAX_CONFIDENCE) -> int:
    return int(min(high, max(low, round(value))))


def _now_ms() -> int:
    return int(time.time() * 1000)


def apply_update(
    graph: KnowledgeGraph,
    update: "KnowledgeUpdate",
    error_kind: ErrorKind,
    is_correct: bool,
    now: Optional[int] = None,
) -> KnowledgeGraph:
    """
    Fold one oracle verdict into the graph and return the new snapshot.

    Algorithm:
    1. Look up the topic (default: not mastered, confidence 50, no attempts)
    2. Add confidence_delta, clamped to [0, 100]
    3. Push a non-None error into the topic's 5-entry window
    4. mastered = oracle flag if given, else previous mastery or
       (score >= 85 and correct); mastery is sticky
    5. Merge weak nodes; a mastered topic is never weak
    6. Append a non-None error to the 50-entry history
    7. Update session stats (a correct answer resets both failure counters)

    The input graph is never modified.
    """
    topic = update.topic
    existing = graph.topics.get(topic, TopicState())

    new_score = _clamp(existing.confidence_score + update.confidence_delta)

    if error_kind != ErrorKind.NONE:
        last_errors = (existing.last_errors + (error_kind,))[-TOPIC_ERROR_WINDOW:]
    else:
        last_errors = existing.last_errors

    if update.mastered is not None:
        mastered = update.mastered
    else:
        mastered = existing.mastered or (new_score >= MASTERY_THRESHOLD and is_correct)

    topics = dict(graph.topics)
    topics[topic] = TopicState(
        mastered=mastered,
        confidence_score=new_score,
        attempts=existing.attempts + 1,
        last_errors=last_errors,
    )

    weak_nodes = list(graph.weak_nodes)
    for name in update.weak_nodes or []:
        if name not in weak_nodes:
            weak_nodes.append(name)
    if mastered:
        weak_nodes = [name for name in weak_nodes if name != topic]

    error_history = graph.error_history
    if error_kind != ErrorKind.NONE:
        record = ErrorRecord(
            error_kind=error_kind,
            topic=topic,
            timestamp=now if now is not None else _now_ms(),
        )
        error_history = (error_history + (record,))[-ERROR_HISTORY_LIMIT:]

    stats = graph.session_stats
    session_stats = replace(
        stats,
        total_attempts=stats.total_attempts + 1,
        consecutive_failures=0 if is_correct else stats.consecutive_failures + 1,
        current_topic=topic,
        attempt_on_current_problem=0 if is_correct else stats.attempt_on_current_problem + 1,
    )

    return KnowledgeGraph(
        topics=topics,
        weak_nodes=tuple(weak_nodes),
        error_history=error_history,
        session_stats=session_stats,
    )


def record_micro_drill_completed(graph: KnowledgeGraph) -> KnowledgeGraph:
    stats = graph.session_stats
    return replace(
        graph,
        session_stats=replace(stats, micro_drills_completed=stats.micro_drills_completed + 1),
    )


def reset_attempt_counter(graph: KnowledgeGraph) -> KnowledgeGraph:
    """Start the current problem afresh (used when a drill is dismissed)."""
    return replace(
        graph,
        session_stats=replace(
            graph.session_stats,
            attempt_on_current_problem=0,
            consecutive_failures=0,
        ),
    )


# ==================== Queries ====================

def error_frequency(graph: KnowledgeGraph, window_size: int = MICRO_DRILL_WINDOW) -> Dict[ErrorKind, int]:
    """
    Count error kinds over the most recent window_size history entries.

    Keys appear in first-encountered order; ErrorKind.NONE is never counted.
    """
    if window_size <= 0:
        return {}
    window = graph.error_history[-window_size:]
    counts = Counter(r.error_kind for r in window if r.error_kind != ErrorKind.NONE)
    return dict(counts)


def dominant_error(graph: KnowledgeGraph, window_size: int = MICRO_DRILL_WINDOW) -> Optional[ErrorKind]:
    """
    Most frequent error kind with at least 3 occurrences, or None.

    Ties go to the kind that occurred most recently.
    """
    window = graph.error_history[-window_size:] if window_size > 0 else ()
    counts: Dict[ErrorKind, int] = {}
    last_seen: Dict[ErrorKind, int] = {}
    for index, record in enumerate(window):
        if record.error_kind == ErrorKind.NONE:
            continue
        counts[record.error_kind] = counts.get(record.error_kind, 0) + 1
        last_seen[record.error_kind] = index

    if not counts:
        return None
    best = max(counts, key=lambda kind: (counts[kind], last_seen[kind]))
    return best if counts[best] >= MICRO_DRILL_THRESHOLD else None


def should_trigger_micro_drill(graph: KnowledgeGraph) -> bool:
    """True iff some error kind occurred 3+ times in the last 30 entries."""
    return any(
        count >= MICRO_DRILL_THRESHOLD
        for count in error_frequency(graph, MICRO_DRILL_WINDOW).values()
    )


def topic_confidence(graph: KnowledgeGraph, topic: str) -> int:
    state = graph.topics.get(topic)
    return state.confidence_score if state else DEFAULT_CONFIDENCE


def mastered_topics(graph: KnowledgeGraph) -> List[str]:
    return [name for name, state in graph.topics.items() if state.mastered]


# ==================== Serialization ====================

def to_dict(graph: KnowledgeGraph) -> Dict[str, Any]:
    """
    Convert the graph to a JSON-compatible dict.

    Keys follow the stored blob layout (camelCase) so existing blobs load.
    """
    return {
        "topics": {
            name: {
                "mastered": state.mastered,
                "confidenceScore": state.confidence_score,
                "attempts": state.attempts,
                "lastErrors": [kind.value for kind in state.last_errors],
            }
            for name, state in graph.topics.items()
        },
        "weakNodes": list(graph.weak_nodes),
        "errorHistory": [
            {"type": r.error_kind.value, "topic": r.topic, "timestamp": r.timestamp}
            for r in graph.error_history
        ],
        "sessionStats": {
            "totalAttempts": graph.session_stats.total_attempts,
            "consecutiveFailures": graph.session_stats.consecutive_failures,
            "microDrillsCompleted": graph.session_stats.micro_drills_completed,
            "currentTopic": graph.session_stats.current_topic,
            "attemptOnCurrentProblem": graph.session_stats.attempt_on_current_problem,
        },
    }


def _non_negative_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
    return value


def from_dict(data: Mapping[str, Any]) -> KnowledgeGraph:
    """
    Rebuild a graph from to_dict() output.

    Raises:
        ValueError: if the data is malformed (callers treat it as absent)
    """
    if not isinstance(data, Mapping):
        raise ValueError("knowledge graph blob must be an object")

    try:
        topics = {}
        for name, raw in (data.get("topics") or {}).items():
            topics[str(name)] = TopicState(
                mastered=bool(raw["mastered"]),
                confidence_score=_clamp(raw["confidenceScore"]),
                attempts=_non_negative_int(raw["attempts"], "attempts"),
                last_errors=tuple(ErrorKind(kind) for kind in raw.get("lastErrors", []))[-TOPIC_ERROR_WINDOW:],
            )

        history = tuple(
            ErrorRecord(
                error_kind=ErrorKind(raw["type"]),
                topic=str(raw["topic"]),
                timestamp=int(raw["timestamp"]),
            )
            for raw in data.get("errorHistory") or []
        )
        history = tuple(r for r in history if r.error_kind != ErrorKind.NONE)[-ERROR_HISTORY_LIMIT:]

        weak_nodes: List[str] = []
        for name in data.get("weakNodes") or []:
            if name not in weak_nodes:
                weak_nodes.append(str(name))

        raw_stats = data.get("sessionStats") or {}
        stats = SessionStats(
            total_attempts=_non_negative_int(raw_stats.get("totalAttempts", 0), "totalAttempts"),
            consecutive_failures=_non_negative_int(raw_stats.get("consecutiveFailures", 0), "consecutiveFailures"),
            micro_drills_completed=_non_negative_int(raw_stats.get("microDrillsCompleted", 0), "microDrillsCompleted"),
            current_topic=str(raw_stats.get("currentTopic", "")),
            attempt_on_current_problem=_non_negative_int(
                raw_stats.get("attemptOnCurrentProblem", 0), "attemptOnCurrentProblem"
            ),
        )
    except (KeyError, TypeError, AttributeError, OverflowError) as e:
        raise ValueError(f"malformed knowledge graph blob: {e}") from e

    return KnowledgeGraph(
        topics=topics,
        weak_nodes=tuple(weak_nodes),
        error_history=history,
        session_stats=stats,
    )
