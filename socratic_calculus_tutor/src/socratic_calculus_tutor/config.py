"""
Configuration settings for the Socratic Calculus Tutor.

Contains thresholds, windows, animation timings and oracle settings.
Values that depend on the deployment are read from the environment.
"""

import os

from dotenv import load_dotenv

load_dotenv()


# ============================================================================
# Knowledge Graph
# ============================================================================

DEFAULT_CONFIDENCE = 50
MIN_CONFIDENCE = 0
MAX_CONFIDENCE = 100

# Score needed (together with a correct answer) to mark a topic mastered
MASTERY_THRESHOLD = 85

# Per-topic window of recent error kinds
TOPIC_ERROR_WINDOW = 5

# Graph-level error history, oldest evicted first
ERROR_HISTORY_LIMIT = 50

# Window and count used to decide whether a micro-drill is due
MICRO_DRILL_WINDOW = 30
MICRO_DRILL_THRESHOLD = 3

# Oracle contract range for confidence_delta
MIN_CONFIDENCE_DELTA = -30
MAX_CONFIDENCE_DELTA = 20


# ============================================================================
# Session / Prompt
# ============================================================================

# Failed attempts on the current problem before the tutor may reveal a step
REVEAL_THRESHOLD = 3

# Turns of conversation the oracle sees
HISTORY_WINDOW = 20

# Window and minimum count for the "repeated errors" line of the prompt
PROMPT_ERROR_WINDOW = 20
PROMPT_REPEATED_ERROR_MIN = 2


# ============================================================================
# Whiteboard
# ============================================================================

CANVAS_WIDTH = 480
CANVAS_HEIGHT = 320
SAMPLE_COUNT = 300

DEFAULT_X_MIN = -4.0
DEFAULT_X_MAX = 4.0
DEFAULT_Y_MIN = -2.0
DEFAULT_Y_MAX = 10.0

# Seconds between animation ticks
ANIMATION_TICK_SECONDS = float(os.getenv("ANIMATION_TICK_SECONDS", "0.05"))


# ============================================================================
# Oracle / Persistence
# ============================================================================

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
ORACLE_MAX_TOKENS = int(os.getenv("ORACLE_MAX_TOKENS", "1200"))
ORACLE_TEMPERATURE = 0.4

KNOWLEDGE_GRAPH_TABLE = "knowledge_graphs"
