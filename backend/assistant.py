"""
The assistant's turn handling.

handle_incoming_response() is the whole command pipeline for one model reply:
extract every command, apply them through the host's callbacks, then build the
text the user sees. AssistantSession wraps it with the transcript, the prompt
and the model call.
"""
import logging
from typing import Any, Optional, Union

from extractor import extract_commands
from gateway import CredentialError, ModelGateway, UpstreamError
from models import AssistantResult, ChatMessage, EntitySnapshot
from prompts import build_system_prompt
from resolver import MutationCallbacks, apply_commands
from sanitizer import sanitize_response

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = "Sorry, I encountered an error. Please try again."
CREDENTIAL_MESSAGE = "Please configure your API keys in Settings to use AI features."

RECENT_ACTIVITY_LIMIT = 10


class SessionBusyError(Exception):
    """A message was sent while the previous one is still waiting on the model."""


def handle_incoming_response(
    raw_text: str,
    current_entities: Union[EntitySnapshot, dict, None],
    callbacks: MutationCallbacks,
) -> AssistantResult:
    """Apply the commands in a model response and return what to display."""
    if isinstance(current_entities, EntitySnapshot):
        snapshot = current_entities
    else:
        snapshot = EntitySnapshot.model_validate(current_entities or {})

    # All extraction happens up front; display text is derived afterwards
    commands = extract_commands(raw_text)
    outcome = apply_commands(commands, snapshot, callbacks)
    display_text = sanitize_response(raw_text, commands)
    if outcome.clarifications:
        display_text = "\n\n".join([display_text, *outcome.clarifications])

    return AssistantResult(
        display_text=display_text,
        side_effects_applied=outcome.side_effects,
        clarifications=outcome.clarifications,
    )


class AssistantSession:
    """One conversation: transcript (persisted on every change), prompt and model round trip."""

    def __init__(
        self,
        gateway: ModelGateway,
        callbacks: MutationCallbacks,
        history_store: Any,
        current_page: str = "Dashboard",
    ):
        self.gateway = gateway
        self.callbacks = callbacks
        self.history_store = history_store
        self.current_page = current_page
        self.messages: list[ChatMessage] = history_store.load()
        self.recent_activity: list[str] = []
        self._waiting = False

    @property
    def waiting(self) -> bool:
        return self._waiting

    def _append(self, message: ChatMessage):
        self.messages.append(message)
        self.history_store.save(self.messages)

    def add_system_message(self, content: str):
        """Inline notice in the transcript (e.g. voice input failed)."""
        self._append(ChatMessage(role="assistant", content=content))

    def clear(self):
        self.messages = []
        self.recent_activity = []
        self.history_store.clear()

    async def send(
        self,
        text: str,
        snapshot: EntitySnapshot,
        current_page: Optional[str] = None,
    ) -> AssistantResult:
        """Run one user turn against the snapshot the host holds right now."""
        text = text.strip()
        if not text:
            raise ValueError("Message is empty")
        if self._waiting:
            raise SessionBusyError("Still waiting for the previous response")

        self._append(ChatMessage(role="user", content=text))
        system_prompt = build_system_prompt(
            current_page or self.current_page, snapshot, recent_activity=self.recent_activity
        )

        self._waiting = True
        try:
            raw = await self.gateway.complete(system_prompt, self.messages)
        except CredentialError as e:
            logger.error("Model call failed, credentials: %s", e)
            result = AssistantResult(display_text=CREDENTIAL_MESSAGE)
        except UpstreamError as e:
            logger.error("Model call failed: %s", e)
            result = AssistantResult(display_text=APOLOGY_MESSAGE)
        else:
            result = handle_incoming_response(raw, snapshot, self.callbacks)
        finally:
            self._waiting = False

        for effect in result.side_effects_applied:
            self.recent_activity.append(f"{effect.action}: {effect.title}" if effect.title else effect.action)
        del self.recent_activity[:-RECENT_ACTIVITY_LIMIT]

        self._append(ChatMessage(role="assistant", content=result.display_text))
        return result
