import base64
import logging
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

import config
from assistant import AssistantSession, SessionBusyError
from database import (
    ENTITY_KINDS,
    ChatHistoryStore,
    create_entity,
    delete_all_entities,
    delete_completed_tasks,
    delete_entity,
    get_snapshot,
    init_db,
    list_entities,
    update_entity,
)
from gateway import CredentialError, ModelGateway, SpeechSynthesizer, UpstreamError
from models import ChatMessage, ChatRequest, ChatResponse, EntitySnapshot, SpeakRequest
from resolver import MutationCallbacks

logger = logging.getLogger(__name__)

gateway = ModelGateway()
synthesizer = SpeechSynthesizer()


def store_callbacks() -> MutationCallbacks:
    """Mutation callbacks backed by the sqlite entity store."""
    return MutationCallbacks(
        on_task_create=partial(create_entity, "tasks"),
        on_task_update=partial(update_entity, "tasks"),
        on_task_delete=partial(delete_entity, "tasks"),
        on_task_delete_all=partial(delete_all_entities, "tasks"),
        on_task_delete_completed=delete_completed_tasks,
        on_event_create=partial(create_entity, "events"),
        on_event_update=partial(update_entity, "events"),
        on_event_delete=partial(delete_entity, "events"),
        on_note_create=partial(create_entity, "notes"),
        on_goal_create=partial(create_entity, "goals"),
        on_goal_update=partial(update_entity, "goals"),
        on_goal_delete=partial(delete_entity, "goals"),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    config.configure_logging()
    init_db()
    app.state.session = AssistantSession(gateway, store_callbacks(), ChatHistoryStore())
    yield
    # Shutdown (nothing to do)

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/entities")
def get_entities() -> EntitySnapshot:
    return get_snapshot()


@app.get("/entities/{kind}")
def get_entities_of_kind(kind: str) -> list[dict]:
    if kind not in ENTITY_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown entity kind: {kind}")
    return list_entities(kind)


@app.get("/conversation")
def get_conversation_endpoint(request: Request) -> list[ChatMessage]:
    """Get saved conversation history."""
    return request.app.state.session.messages


@app.delete("/conversation")
def clear_conversation(request: Request) -> dict:
    request.app.state.session.clear()
    return {"status": "cleared"}


@app.post("/chat")
async def chat(chat_request: ChatRequest, request: Request) -> ChatResponse:
    """Send a message to the assistant and apply any commands in its reply."""
    session: AssistantSession = request.app.state.session
    if not chat_request.message.strip():
        raise HTTPException(status_code=400, detail="Message is empty")

    try:
        result = await session.send(chat_request.message, get_snapshot(), chat_request.current_page)
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ChatResponse(
        response=result.display_text,
        side_effects=result.side_effects_applied,
        messages=session.messages,
    )


@app.post("/speak")
async def speak(speak_request: SpeakRequest) -> dict:
    """Synthesize speech, returned as base64 MP3."""
    try:
        audio = await synthesizer.synthesize(speak_request.text, speak_request.voice_id)
    except CredentialError as e:
        logger.error("Speech synthesis unavailable: %s", e)
        raise HTTPException(status_code=503, detail=str(e))
    except UpstreamError as e:
        logger.error("Speech synthesis failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
    return {"audio": base64.b64encode(audio).decode("ascii")}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
