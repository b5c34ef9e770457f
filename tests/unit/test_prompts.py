"""
Unit Tests for the Prompt Builder

Tests reveal gating, the knowledge summary in the system prompt, and
message windowing.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_calculus_tutor", "src"))

from socratic_calculus_tutor import knowledge_graph as kg
from socratic_calculus_tutor.contract import KnowledgeUpdate
from socratic_calculus_tutor.knowledge_graph import ErrorKind
from socratic_calculus_tutor.prompts import (
    AttemptGate,
    attempt_gate,
    build_messages,
    build_system_prompt,
    build_user_message,
)


def fail(graph, kind=ErrorKind.SIGN_ERROR, topic="limits", weak_nodes=None):
    return kg.apply_update(graph, KnowledgeUpdate(topic=topic, confidence_delta=-10, weak_nodes=weak_nodes), kind, False)


def succeed(graph, topic="limits", mastered=None):
    return kg.apply_update(graph, KnowledgeUpdate(topic=topic, confidence_delta=10, mastered=mastered), ErrorKind.NONE, True)


class TestAttemptGate:
    """Reveal is allowed from the 4th attempt on the same problem."""

    @pytest.mark.parametrize("failures, attempt, reveal", [
        (0, 1, False),
        (1, 2, False),
        (2, 3, False),
        (3, 4, True),
        (5, 6, True),
    ])
    def test_gate(self, failures, attempt, reveal):
        graph = kg.create_empty()
        for _ in range(failures):
            graph = fail(graph)
        assert attempt_gate(graph) == AttemptGate(attempt_number=attempt, reveal_allowed=reveal)

    def test_correct_answer_resets_gate(self):
        graph = fail(fail(fail(kg.create_empty())))
        graph = succeed(graph)
        assert attempt_gate(graph) == AttemptGate(1, False)


class TestSystemPrompt:
    """Test suite for build_system_prompt."""

    def test_empty_graph(self):
        prompt = build_system_prompt(kg.create_empty())

        assert "GUIDED MODE" in prompt
        assert "REVEAL MODE" not in prompt
        assert "Topics Mastered: none yet" in prompt
        assert "Weak Areas:      none identified yet" in prompt
        assert "Repeated Errors: none" in prompt
        assert "Attempts on current problem: 0" in prompt
        assert "socratic_response" in prompt

    def test_reveal_mode_after_three_failures(self):
        graph = fail(fail(fail(kg.create_empty())))
        prompt = build_system_prompt(graph)

        assert "REVEAL MODE" in prompt
        assert "Attempts on current problem: 3" in prompt

    def test_knowledge_summary(self):
        graph = succeed(kg.create_empty(), topic="derivatives", mastered=True)
        graph = fail(graph, weak_nodes=["algebra", "factoring"])
        graph = kg.record_micro_drill_completed(graph)
        prompt = build_system_prompt(graph)

        assert "Topics Mastered: derivatives" in prompt
        assert "Weak Areas:      algebra, factoring" in prompt
        assert "Total Attempts:  2" in prompt
        assert "Micro-Drills Done: 1" in prompt

    def test_repeated_errors_sorted_by_count(self):
        graph = kg.create_empty()
        for kind in [
            ErrorKind.SIGN_ERROR, ErrorKind.SIGN_ERROR,
            ErrorKind.NOTATION_CONFUSION,
            ErrorKind.ARITHMETIC_ERROR, ErrorKind.ARITHMETIC_ERROR, ErrorKind.ARITHMETIC_ERROR,
        ]:
            graph = fail(graph, kind)
        prompt = build_system_prompt(graph)

        assert "Repeated Errors: Arithmetic Error (×3), Sign Error (×2)" in prompt
        assert "Notation Confusion (×" not in prompt

    def test_drill_recommendation(self):
        graph = kg.create_empty()
        for _ in range(3):
            graph = fail(graph, ErrorKind.WRONG_THEOREM)
        prompt = build_system_prompt(graph)

        assert "Dominant Error:  Wrong Theorem" in prompt
        assert "RECOMMENDED: set micro_drill: true and drill on Wrong Theorem." in prompt

    def test_no_recommendation_below_threshold(self):
        prompt = build_system_prompt(fail(fail(kg.create_empty())))
        assert "RECOMMENDED" not in prompt

    def test_explicit_gate_is_used(self):
        prompt = build_system_prompt(kg.create_empty(), AttemptGate(4, True))
        assert "REVEAL MODE" in prompt


class TestMessages:
    """Test suite for build_user_message and build_messages."""

    def test_user_message(self):
        assert build_user_message("is it 4?", 3) == "[Attempt 3] is it 4?"

    def test_messages_tag_last_user_turn(self):
        history = [
            {"role": "user", "content": "what is the limit?"},
            {"role": "assistant", "content": "What do you think?"},
            {"role": "user", "content": "4"},
        ]
        messages = build_messages(kg.create_empty(), history)

        assert messages[0]["role"] == "system"
        assert messages[1] == {"role": "user", "content": "what is the limit?"}
        assert messages[-1] == {"role": "user", "content": "[Attempt 1] 4"}

    def test_history_window(self):
        history = []
        for i in range(15):
            history.append({"role": "user", "content": f"q{i}"})
            history.append({"role": "assistant", "content": f"a{i}"})
        history.append({"role": "user", "content": "final"})

        messages = build_messages(kg.create_empty(), history)

        assert len(messages) == 1 + 20
        assert messages[1]["content"] == "a5"
        assert messages[-1]["content"] == "[Attempt 1] final"

    def test_history_not_modified(self):
        history = [{"role": "user", "content": "4"}]
        build_messages(kg.create_empty(), history)
        assert history == [{"role": "user", "content": "4"}]
