"""
FastAPI Backend for the Socratic Calculus Tutor

Provides REST API endpoints for:
- Tutoring turns (oracle call, knowledge-graph update, whiteboard swap)
- Session state and progress
- Micro-drill dismissal and session reset
- Deterministic whiteboard frames for replay
"""

import logging
import os
import sys
import time
from datetime import datetime as dt
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from lib.logger import get_logger, setup_logging

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

# Add the socratic_calculus_tutor package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

package_src = os.path.join(project_root, 'socratic_calculus_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client, supabase_configured
from socratic_calculus_tutor import knowledge_graph as kg
from socratic_calculus_tutor.knowledge_store import KnowledgeGraphStore
from socratic_calculus_tutor.socratic_tutor import SocraticTutor, TurnStatus

# Singleton pattern for SocraticTutor so sessions survive between requests
_tutor_instance: Optional[SocraticTutor] = None


def get_tutor_instance() -> SocraticTutor:
    """Get or create singleton SocraticTutor instance."""
    global _tutor_instance
    if _tutor_instance is None:
        logger.section("Initializing SocraticTutor")
        if supabase_configured():
            store = KnowledgeGraphStore(supabase_client=get_supabase_client())
            logger.info("Knowledge graphs persisted to Supabase")
        else:
            logger.warning("Supabase not configured, keeping knowledge graphs in memory")
            store = KnowledgeGraphStore()

        try:
            _tutor_instance = SocraticTutor(store=store)
        except ValueError as e:
            logger.error("SocraticTutor not available", error=e)
            raise HTTPException(status_code=503, detail="SocraticTutor not available")
    return _tutor_instance


app = FastAPI(
    title="Socratic Calculus Tutor API",
    description="REST API for an adaptive Socratic calculus tutor with an animated whiteboard",
    version="1.0.0"
)

# CORS middleware for the web frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class ChatMessage(BaseModel):
    content: str
    session_id: Optional[str] = None


class ChatResponse(BaseModel):
    session_id: str
    tutor_response: str
    error_type: str
    micro_drill: bool
    micro_drill_active: bool
    attempt_number: int
    reveal_allowed: bool
    whiteboard: Dict[str, Any]
    frame: Optional[Dict[str, Any]] = None


class StateSummary(BaseModel):
    session_id: str
    phase: str
    is_loading: bool
    error: Optional[str]
    micro_drill_active: bool
    micro_drill_topic: Optional[str]
    whiteboard: Dict[str, Any]
    latest_frame: Optional[Dict[str, Any]]
    messages: List[Dict[str, Any]]
    knowledge_graph: Dict[str, Any]


class ProgressMetrics(BaseModel):
    session_id: str
    mastered_topics: List[str]
    weak_nodes: List[str]
    topic_confidence: Dict[str, int]
    error_frequency: Dict[str, int]
    dominant_error: Optional[str]
    micro_drill_due: bool
    knowledge_graph: Dict[str, Any]


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Socratic Calculus Tutor API",
        "version": "1.0.0",
    }


@app.post("/api/chat", response_model=ChatResponse)
async def chat(message: ChatMessage, tutor: SocraticTutor = Depends(get_tutor_instance)):
    """
    Run one tutoring turn.

    400 for empty input, 409 while the previous turn is still in flight,
    502 when the oracle fails (the knowledge graph is left untouched).
    """
    if not message.content or not message.content.strip():
        raise HTTPException(status_code=400, detail="Empty message")

    session_id = message.session_id or f"session_{dt.now().timestamp()}"
    start_time = time.time()
    logger.request("POST", "/api/chat", data={
        "session_id": session_id,
        "message_length": len(message.content),
    })

    result = await tutor.submit(session_id, message.content)

    if result.status == TurnStatus.REJECTED:
        raise HTTPException(status_code=409, detail=result.error)
    if result.status == TurnStatus.DISCARDED:
        raise HTTPException(status_code=409, detail="Session was reset while the reply was pending")
    if result.status == TurnStatus.FAILED:
        raise HTTPException(status_code=502, detail=result.error)

    session = await tutor.get_or_create_session(session_id)
    logger.response(200, "/api/chat", duration=time.time() - start_time, data={
        "error_type": result.error_type.value,
        "attempt": result.attempt_number,
        "visualization": result.whiteboard.visualization_type,
    })

    return ChatResponse(
        session_id=session_id,
        tutor_response=result.tutor_response,
        error_type=result.error_type.value,
        micro_drill=result.micro_drill,
        micro_drill_active=session.micro_drill_active,
        attempt_number=result.attempt_number,
        reveal_allowed=result.reveal_allowed,
        whiteboard=result.whiteboard.model_dump(),
        frame=tutor.frame_at(session_id, 0.0),
    )


@app.get("/api/state/{session_id}", response_model=StateSummary)
async def get_state(session_id: str, tutor: SocraticTutor = Depends(get_tutor_instance)):
    """Get the current session state."""
    session = await tutor.get_or_create_session(session_id)
    return StateSummary(
        session_id=session.session_id,
        phase=session.phase.value,
        is_loading=session.is_loading,
        error=session.error,
        micro_drill_active=session.micro_drill_active,
        micro_drill_topic=session.micro_drill_topic,
        whiteboard=session.whiteboard.model_dump(),
        latest_frame=session.latest_frame,
        messages=[m.to_dict() for m in session.messages],
        knowledge_graph=kg.to_dict(session.knowledge_graph),
    )


@app.get("/api/progress/{session_id}", response_model=ProgressMetrics)
async def get_progress(session_id: str, tutor: SocraticTutor = Depends(get_tutor_instance)):
    """Mastery, weak nodes and error patterns for the session."""
    session = await tutor.get_or_create_session(session_id)
    return ProgressMetrics(**tutor.get_progress(session))


@app.post("/api/sessions/{session_id}/micro-drill/dismiss")
async def dismiss_micro_drill(session_id: str, tutor: SocraticTutor = Depends(get_tutor_instance)):
    """Leave the active micro-drill."""
    dismissed = await tutor.dismiss_micro_drill(session_id)
    if not dismissed:
        raise HTTPException(status_code=404, detail="No active micro-drill")
    logger.success("Micro-drill dismissed", data={"session_id": session_id})
    return {"session_id": session_id, "micro_drill_active": False}


@app.get("/api/sessions/{session_id}/visualization")
async def get_visualization(
    session_id: str,
    t: float = Query(0.0, ge=0.0, description="Seconds since the visualization started"),
    tutor: SocraticTutor = Depends(get_tutor_instance),
):
    """Frame of the current visualization at time t; null when nothing is drawn."""
    return tutor.frame_at(session_id, t)


@app.delete("/api/sessions/{session_id}")
async def reset_session(session_id: str, tutor: SocraticTutor = Depends(get_tutor_instance)):
    """Clear the conversation, whiteboard and stored knowledge graph."""
    await tutor.reset_session(session_id)
    logger.success("Session reset", data={"session_id": session_id})
    return {"session_id": session_id, "reset": True}


@app.on_event("shutdown")
async def shutdown_event():
    """Stop running animations."""
    if _tutor_instance is not None:
        await _tutor_instance.shutdown()
    logger.info("🛑 Backend shutting down")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
