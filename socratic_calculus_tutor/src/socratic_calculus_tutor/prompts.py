"""
Prompt Builder

Turns the knowledge graph and conversation into the oracle request:
the system prompt, the attempt-tagged user turn, and the windowed
message list. Everything here is a pure function of its inputs.
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from socratic_calculus_tutor import knowledge_graph as kg
from socratic_calculus_tutor.config import (
    HISTORY_WINDOW,
    PROMPT_ERROR_WINDOW,
    PROMPT_REPEATED_ERROR_MIN,
    REVEAL_THRESHOLD,
)
from socratic_calculus_tutor.knowledge_graph import ErrorKind, KnowledgeGraph

RULE = "═" * 47


@dataclass(frozen=True)
class AttemptGate:
    """Attempt number of the turn being submitted and whether a reveal is allowed."""
    attempt_number: int
    reveal_allowed: bool


def attempt_gate(graph: KnowledgeGraph) -> AttemptGate:
    """The n-th attempt may reveal a step once n-1 attempts have failed 3+ times."""
    failed = graph.session_stats.attempt_on_current_problem
    return AttemptGate(attempt_number=failed + 1, reveal_allowed=failed >= REVEAL_THRESHOLD)


def _section(title: str) -> str:
    return f"{RULE}\n  {title}\n{RULE}"


def _repeated_errors(graph: KnowledgeGraph) -> str:
    counts = kg.error_frequency(graph, PROMPT_ERROR_WINDOW)
    repeated = [(kind, n) for kind, n in counts.items() if n >= PROMPT_REPEATED_ERROR_MIN]
    # Stable sort keeps first-seen order among equal counts
    repeated.sort(key=lambda item: item[1], reverse=True)
    return ", ".join(f"{kind.value} (×{n})" for kind, n in repeated) or "none"


def _error_catalogue() -> str:
    descriptions = {
        ErrorKind.CONCEPTUAL_GAP: "Student doesn't grasp the underlying concept at all",
        ErrorKind.ARITHMETIC_ERROR: "Correct method, wrong computation (e.g., 3×4=11)",
        ErrorKind.SIGN_ERROR: "Specifically sign/negative mistakes (e.g., -(-3) = -3)",
        ErrorKind.WRONG_THEOREM: "Applied the wrong rule/theorem (e.g., product rule instead of chain)",
        ErrorKind.NOTATION_CONFUSION: "Misused or misread mathematical notation",
        ErrorKind.CORRECT_IDEA_WRONG_EXECUTION: "Right approach, made an implementation mistake",
        ErrorKind.NONE: "No error, the student is correct or close to correct",
    }
    return "\n".join(f'• "{kind.value}" → {text}' for kind, text in descriptions.items())


def build_system_prompt(graph: KnowledgeGraph, gate: Optional[AttemptGate] = None) -> str:
    """Render the tutor instructions with the student's current knowledge state."""
    gate = gate or attempt_gate(graph)
    stats = graph.session_stats

    mastered = ", ".join(kg.mastered_topics(graph)) or "none yet"
    weak = ", ".join(graph.weak_nodes) or "none identified yet"

    if gate.reveal_allowed:
        mode = (
            f"⚠️  REVEAL MODE: Student has failed {REVEAL_THRESHOLD}+ times. You MAY now walk through "
            "the step, but still ask a comprehension question at the end to ensure understanding."
        )
    else:
        mode = "🔒  GUIDED MODE: Do NOT reveal the answer. Ask a guiding question only."

    drill_lines = []
    dominant = kg.dominant_error(graph)
    if dominant is not None:
        drill_lines.append(f"Dominant Error:  {dominant.value}")
    if kg.should_trigger_micro_drill(graph):
        target = dominant.value if dominant else "the repeated error"
        drill_lines.append(f"RECOMMENDED: set micro_drill: true and drill on {target}.")

    prompt = f"""You are SocraticEngine, an expert calculus tutor that never gives away answers directly.
Your job is to guide students to mathematical understanding through questions, not lectures.

{_section("CORE PRINCIPLES (NON-NEGOTIABLE)")}
1. NEVER give the direct answer unless the student has failed {REVEAL_THRESHOLD}+ attempts on this problem.
2. ALWAYS respond with a guiding question that nudges reasoning toward the correct path.
3. Analyze the student's REASONING PROCESS, not just their final answer.
4. Be encouraging but intellectually rigorous. Praise effort, challenge thinking.
5. If the student is on the right track, affirm it and push deeper.

{_section("CURRENT ATTEMPT STATUS")}
Attempts on current problem: {stats.attempt_on_current_problem}
{mode}

{_section("STUDENT KNOWLEDGE GRAPH")}
Topics Mastered: {mastered}
Weak Areas:      {weak}
Repeated Errors: {_repeated_errors(graph)}
Total Attempts:  {stats.total_attempts}
Micro-Drills Done: {stats.micro_drills_completed}"""

    if drill_lines:
        prompt += "\n" + "\n".join(drill_lines)

    prompt += f"""

{_section("ERROR CLASSIFICATION")}
Classify every student response into exactly ONE error type:

{_error_catalogue()}

{_section("MICRO-DRILL PROTOCOL")}
If any single error type has occurred 3+ times this session, set micro_drill: true.
The micro-drill should be a focused 2-minute exercise targeting ONLY that weak pattern.
Example: 3 Sign Errors → drill on negating expressions and double-negatives.

{_section("WHITEBOARD INSTRUCTIONS")}
You control the interactive whiteboard. Use whiteboard_instruction to:
- Set visualization_type: "limit" | "derivative" | "integral" | "none"
- Provide math_expression in LaTeX (e.g., "\\\\lim_{{x \\\\to 2}} x^2")
- Provide function_config with a numeric expression in x (e.g., "Math.pow(x,2)", "sin(x)")
- List steps with status: "neutral" | "student" | "correct" | "error"

For limits:      set limit_approach (x value) and limit_value (y value)
For derivatives: set derivative_point (x value where tangent is shown)
For integrals:   set integral_a and integral_b (bounds)

Always provide x_min, x_max, y_min, y_max for graph viewport.

{_section("KNOWLEDGE UPDATE")}
After each interaction, update the knowledge graph:
- confidence_delta: +10 to +20 for correct, -10 to -20 for wrong (range -30 to +20)
- mastered: true only if confident (score > 85) and 3+ correct in a row
- weak_nodes: list topics the student needs more work on

{_section("RESPONSE STYLE")}
- tutor_response: Conversational, warm, never condescending. 1-4 sentences max.
  End with a concrete question the student must answer.
  Use plain text (no LaTeX in tutor_response, it may be spoken aloud).
  Say math verbally: "x squared" not "x^2", "the limit as x approaches 2" not "lim x→2".
- whiteboard_instruction: Rich mathematical content goes here in LaTeX.

ALWAYS invoke the socratic_response tool. Never reply in plain text."""
    return prompt


def build_user_message(text: str, attempt_number: int) -> str:
    return f"[Attempt {attempt_number}] {text}"


def build_messages(
    graph: KnowledgeGraph,
    history: Sequence[Mapping[str, str]],
    gate: Optional[AttemptGate] = None,
    history_window: int = HISTORY_WINDOW,
) -> List[Dict[str, str]]:
    """
    Build the chat message list for the oracle.

    history is the canonical conversation and must end with the new user
    turn (raw text). Only the last history_window turns are sent; the final
    user turn is tagged with its attempt number.
    """
    gate = gate or attempt_gate(graph)
    window = list(history[-history_window:]) if history_window > 0 else []

    messages = [{"role": "system", "content": build_system_prompt(graph, gate)}]
    for index, turn in enumerate(window):
        content = turn["content"]
        if index == len(window) - 1 and turn["role"] == "user":
            content = build_user_message(content, gate.attempt_number)
        messages.append({"role": turn["role"], "content": content})
    return messages
