"""
FastAPI application serving the Lemon Law Assistant.
Provides a streaming WebSocket endpoint, a REST chat endpoint, and monitoring.
"""

import logging
import os
from contextlib import aclosing, asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from lemon_law.agent import INVALID_INPUT, MODEL_UNAVAILABLE, get_assistant
from lemon_law.config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    MODEL_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


# Pydantic models for API
class InboundMessage(BaseModel):
    """WebSocket frame sent by the client for each user utterance."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", min_length=1)
    input: str


class ChatRequest(BaseModel):
    """Request model for chat endpoint."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "message": "My Ford has been in the shop twice this year.",
                "session_id": "session_123",
            }
        }
    )

    message: str = Field(..., description="User's message")
    session_id: str = Field(..., description="Session identifier for conversation tracking")


class ChatResponse(BaseModel):
    """Response model for chat endpoint."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "response": "Thanks! How many days has the car been out of service in total?",
                "session_id": "session_123",
                "state": "COLLECT",
                "facts": {"manufacturer": "Ford", "repairOrders": 2},
                "verdict": None,
            }
        }
    )

    response: str = Field(..., description="Assistant's reply")
    session_id: str = Field(..., description="Session identifier")
    state: str = Field(..., description="COLLECT, ASSESS or END")
    facts: dict = Field(default_factory=dict, description="Facts collected so far")
    verdict: dict | None = Field(None, description="Qualification verdict once assessed")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    environment: str
    llm_circuit_breaker: dict


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Starting Lemon Law Assistant API")
    logger.info(f"Environment: {settings.environment}")

    try:
        get_assistant()
        logger.info("Assistant initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize assistant: {e}")

    yield

    logger.info("Shutting down Lemon Law Assistant API")


app = FastAPI(
    title="Lemon Law Assistant API",
    description="Conversational lemon law eligibility assessment",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {"message": "Lemon Law Assistant API", "version": "1.0.0", "docs": "/docs"}


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """
    Health check endpoint.
    Returns service status and the language model circuit breaker state.
    """
    return HealthResponse(
        status="healthy",
        environment=settings.environment,
        llm_circuit_breaker=get_assistant().llm.get_circuit_breaker_state(),
    )


@app.get("/ready")
def ready():
    return {"status": "ready"}


@app.websocket("/ws")
async def websocket_chat(websocket: WebSocket):
    """
    Streaming chat.

    Client frames: {"sessionId": "...", "input": "..."}
    Server frames, in order per turn:
      {"type": "token", "data": "..."}   (zero or more)
      {"type": "end", "data": {...}}     or  {"type": "error", "data": "..."}
    """
    await websocket.accept()
    assistant = get_assistant()

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                inbound = InboundMessage.model_validate_json(raw)
            except ValidationError:
                await websocket.send_json(
                    {
                        "type": "error",
                        "data": 'Malformed message. Expected {"sessionId": str, "input": str}.',
                        "code": INVALID_INPUT,
                    }
                )
                continue

            # aclosing: a dropped connection abandons the turn without committing it
            async with aclosing(assistant.stream_turn(inbound.session_id, inbound.input)) as events:
                async for event in events:
                    await websocket.send_json(event)

    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")


@app.post("/chat", response_model=ChatResponse, tags=["Chat"])
async def chat(request: ChatRequest):
    """
    Chat with the Lemon Law Assistant (non-streaming).

    Multiple requests with the same session_id continue the same assessment.

    Example conversation:

    Request 1:
    ```json
    {"message": "I have a 2024 Nissan with problems", "session_id": "user123"}
    ```

    Response 1:
    ```json
    {"response": "How many repair orders ...?", "session_id": "user123", "state": "COLLECT", ...}
    ```

    Request 2 (same session):
    ```json
    {"message": "4 repairs, all under warranty", "session_id": "user123"}
    ```

    Response 2:
    ```json
    {"response": "Congratulations! ...", "state": "END",
     "verdict": {"qualified": true, "reason": "Qualified for lemon law."}, ...}
    ```
    """
    try:
        logger.info(f"Chat request: session={request.session_id}")

        result = await get_assistant().chat(request.session_id, request.message)
    except Exception as e:
        logger.error(f"Error in /chat endpoint: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An error occurred processing your request. Please try again.",
        ) from e

    if result.error:
        raise HTTPException(
            status_code=ERROR_STATUS.get(
                result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR
            ),
            detail=result.error,
        )

    return ChatResponse(
        response=result.response,
        session_id=request.session_id,
        state=result.state.value,
        facts=result.facts,
        verdict=result.verdict.model_dump() if result.verdict else None,
    )


@app.post("/reset-conversation/{session_id}", tags=["Chat"])
async def reset_conversation(session_id: str):
    """
    Reset a session.
    The next message with this id starts a fresh assessment.
    """
    await get_assistant().reset_conversation(session_id)
    return {"message": f"Conversation reset for session {session_id}", "session_id": session_id}


@app.get("/sessions/{session_id}", tags=["Chat"])
async def get_session(session_id: str):
    """Inspect a session's state, facts, verdict and history."""
    session = get_assistant().get_session(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session.to_dict()


@app.get("/metrics", tags=["Monitoring"])
async def metrics():
    """
    Prometheus-compatible metrics endpoint.

    Returns:
    - Language model circuit breaker state
    - Active sessions
    """
    assistant = get_assistant()

    return {
        "llm_circuit_breaker": assistant.llm.get_circuit_breaker_state(),
        "active_sessions": len(assistant.store),
        "environment": settings.environment,
    }


if __name__ == "__main__":
    uvicorn.run(
        "lemon_law.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8080)),
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
