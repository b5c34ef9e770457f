"""
Oracle Adapter

Sends the tutoring conversation to OpenAI and forces a single
socratic_response function call, whose arguments are validated into a
SocraticResponse.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import openai
from openai import AsyncOpenAI

from socratic_calculus_tutor.config import OPENAI_MODEL, ORACLE_MAX_TOKENS, ORACLE_TEMPERATURE
from socratic_calculus_tutor.contract import SocraticResponse, parse_oracle_record
from socratic_calculus_tutor.errors import OracleContractViolation, OracleTransportError
from socratic_calculus_tutor.knowledge_graph import ErrorKind

logger = logging.getLogger(__name__)

TOOL_NAME = "socratic_response"


@dataclass(frozen=True)
class OracleRequest:
    """One oracle call: the full message list plus the attempt gate it was built with."""
    messages: List[Dict[str, str]]
    attempt_number: int
    reveal_allowed: bool


class Oracle(Protocol):
    async def respond(self, request: OracleRequest) -> SocraticResponse:
        ...


_NUMBER = {"type": "number"}

SOCRATIC_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": TOOL_NAME,
        "description": "Return a structured Socratic tutoring response. Always invoke this tool.",
        "parameters": {
            "type": "object",
            "properties": {
                "tutor_response": {
                    "type": "string",
                    "description": (
                        "Spoken response to the student. Plain text only, no LaTeX. "
                        'Speak math verbally ("x squared"). End with a guiding question. Max 4 sentences.'
                    ),
                },
                "error_type": {
                    "type": "string",
                    "enum": [kind.value for kind in ErrorKind],
                    "description": 'Exact classification of the student\'s error. "None" if correct.',
                },
                "micro_drill": {
                    "type": "boolean",
                    "description": "Set true if any error type has occurred 3+ times this session.",
                },
                "whiteboard_instruction": {
                    "type": "object",
                    "description": "Instructions for the interactive math whiteboard.",
                    "properties": {
                        "text": {"type": "string", "description": "Short text label for the whiteboard state."},
                        "visualization_type": {
                            "type": "string",
                            "enum": ["limit", "derivative", "integral", "none"],
                        },
                        "math_expression": {"type": "string", "description": "Primary LaTeX expression."},
                        "function_config": {
                            "type": "object",
                            "properties": {
                                "expression": {
                                    "type": "string",
                                    "description": (
                                        'Numeric expression in x, e.g. "Math.pow(x,2)", "sin(x)". '
                                        "Do NOT use ^ for exponents."
                                    ),
                                },
                                "limit_approach": _NUMBER,
                                "limit_value": _NUMBER,
                                "derivative_point": _NUMBER,
                                "integral_a": _NUMBER,
                                "integral_b": _NUMBER,
                                "x_min": _NUMBER,
                                "x_max": _NUMBER,
                                "y_min": _NUMBER,
                                "y_max": _NUMBER,
                            },
                            "required": ["expression"],
                        },
                        "steps": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "expression": {"type": "string"},
                                    "status": {
                                        "type": "string",
                                        "enum": ["neutral", "student", "correct", "error"],
                                    },
                                    "annotation": {"type": "string"},
                                },
                                "required": ["expression", "status"],
                            },
                        },
                        "highlight_step": {"type": "integer"},
                    },
                    "required": ["text", "visualization_type"],
                },
                "knowledge_update": {
                    "type": "object",
                    "properties": {
                        "topic": {"type": "string", "description": 'Math topic, e.g. "limits", "chain rule".'},
                        "confidence_delta": {"type": "number", "description": "Range -30 to +20."},
                        "mastered": {"type": "boolean"},
                        "weak_nodes": {"type": "array", "items": {"type": "string"}},
                    },
                    "required": ["topic", "confidence_delta"],
                },
            },
            "required": [
                "tutor_response",
                "error_type",
                "micro_drill",
                "whiteboard_instruction",
                "knowledge_update",
            ],
        },
    },
}


class OpenAIOracle:
    """Oracle backed by the OpenAI chat completions API."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: str = OPENAI_MODEL):
        if client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY not found in environment variables")
            client = AsyncOpenAI(api_key=api_key)
        self.llm_client = client
        self.model = model

    async def respond(self, request: OracleRequest) -> SocraticResponse:
        """
        Raises:
            OracleTransportError: the API call failed
            OracleContractViolation: no tool call, or its arguments are unusable
        """
        try:
            response = await self.llm_client.chat.completions.create(
                model=self.model,
                messages=request.messages,
                tools=[SOCRATIC_TOOL],
                tool_choice={"type": "function", "function": {"name": TOOL_NAME}},
                max_tokens=ORACLE_MAX_TOKENS,
                temperature=ORACLE_TEMPERATURE,
            )
        except openai.APIError as e:
            logger.error(f"❌ [Oracle] OpenAI request failed: {e}")
            raise OracleTransportError(f"OpenAI API error: {e}") from e

        tool_calls = response.choices[0].message.tool_calls if response.choices else None
        call = next((c for c in tool_calls or [] if c.function.name == TOOL_NAME), None)
        if call is None:
            raise OracleContractViolation(f"Oracle did not invoke the {TOOL_NAME} tool")

        try:
            payload = json.loads(call.function.arguments)
        except (json.JSONDecodeError, TypeError) as e:
            raise OracleContractViolation(f"Tool arguments are not valid JSON: {e}") from e

        return parse_oracle_record(payload)
