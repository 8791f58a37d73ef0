"""
Voice mode: listen -> dispatch -> speak -> listen, with no send button in between.

The controller only knows the VoiceCapability interface, so the same loop runs on
browser speech APIs, a cloud provider or a test double. Everything happens on one
event loop; recognition callbacks are expected to fire on that loop.

Nothing in the HTTP app drives this loop. A host front-end embeds it, wiring its own
VoiceCapability and a dispatch that sends the transcript through POST /chat (or an
AssistantSession) and returns the display text.
"""
import asyncio
import logging
from enum import Enum
from functools import partial
from typing import Awaitable, Callable, Optional, Protocol

import config

logger = logging.getLogger(__name__)

RECOGNITION_ERROR_MESSAGE = "Sorry, I couldn't hear that ({error}). Voice mode is off, tap the mic to try again."
DISPATCH_ERROR_MESSAGE = "Sorry, I couldn't process that. Please try again."


class VoiceState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    RECOGNIZED = "recognized"
    RECOGNITION_ERROR = "recognition_error"
    DISPATCHING = "dispatching"
    AWAITING_RESPONSE = "awaiting_response"
    SPEAKING = "speaking"


class ListeningHandle(Protocol):
    def stop(self) -> None: ...


class VoiceCapability(Protocol):
    def start_listening(
        self,
        on_partial: Callable[[str], None],
        on_final: Callable[[str], None],
        on_error: Callable[[str], None],
    ) -> ListeningHandle:
        """Start one recognition session: interim text, then a final transcript after trailing silence."""
        ...

    async def synthesize(self, text: str, voice: Optional[str]) -> bytes: ...

    async def play(self, audio: bytes) -> None: ...

    def stop_playback(self) -> None: ...


class VoiceLoopController:
    def __init__(
        self,
        capability: VoiceCapability,
        dispatch: Callable[[str], Awaitable[str]],
        *,
        on_partial: Optional[Callable[[str], None]] = None,
        on_system_message: Optional[Callable[[str], None]] = None,
        on_state_change: Optional[Callable[[VoiceState], None]] = None,
        voice: Optional[str] = None,
        resume_delay: Optional[float] = None,
    ):
        """
        Args:
            capability: speech recognition, synthesis and playback
            dispatch: sends a transcript as a chat message, returns the display text
            on_partial: interim recognition text (shown live in the input field)
            on_system_message: inline notices for the transcript
            resume_delay: seconds between playback ending and listening again, so the
                tail of the audio isn't picked up as input
        """
        self.capability = capability
        self.dispatch = dispatch
        self.on_partial = on_partial
        self.on_system_message = on_system_message
        self.on_state_change = on_state_change
        self.voice = voice
        self.resume_delay = config.VOICE_RESUME_DELAY if resume_delay is None else resume_delay

        self.active = False  # voice mode
        self.state = VoiceState.IDLE
        self._handle: Optional[ListeningHandle] = None
        # Bumped on every start/stop; callbacks and turns from an older generation are ignored
        self._generation = 0
        self._turn: Optional[asyncio.Task] = None

    def _set_state(self, state: VoiceState):
        if state == self.state:
            return
        logger.debug("Voice state %s -> %s", self.state.value, state.value)
        self.state = state
        if self.on_state_change:
            self.on_state_change(state)

    def _current(self, generation: int) -> bool:
        return self.active and generation == self._generation

    def start(self):
        if self.active:
            return
        self.active = True
        self._generation += 1
        self._listen()

    def stop(self):
        """Leave voice mode now: recognition and playback are cut off, not drained."""
        self.active = False
        self._generation += 1
        self._stop_recognition()
        self.capability.stop_playback()
        self._set_state(VoiceState.IDLE)

    def toggle(self):
        if self.active:
            self.stop()
        else:
            self.start()

    def _stop_recognition(self):
        if self._handle is not None:
            handle, self._handle = self._handle, None
            handle.stop()

    def _listen(self):
        self._stop_recognition()
        self._set_state(VoiceState.LISTENING)
        generation = self._generation
        self._handle = self.capability.start_listening(
            self._on_partial,
            partial(self._on_final, generation),
            partial(self._on_error, generation),
        )

    def _on_partial(self, text: str):
        if self.active and self.on_partial:
            self.on_partial(text)

    def _on_final(self, generation: int, transcript: str):
        if not self._current(generation):
            return
        self._handle = None
        transcript = transcript.strip()
        if not transcript:
            self._listen()
            return
        self._set_state(VoiceState.RECOGNIZED)
        self._turn = asyncio.ensure_future(self.run_turn(transcript, generation))

    def _on_error(self, generation: int, error: str):
        if generation != self._generation:
            return
        logger.warning("Speech recognition failed: %s", error)
        self._handle = None
        self._set_state(VoiceState.RECOGNITION_ERROR)
        self.active = False
        self._generation += 1
        self._set_state(VoiceState.IDLE)
        if self.on_system_message:
            self.on_system_message(RECOGNITION_ERROR_MESSAGE.format(error=error))

    async def run_turn(self, transcript: str, generation: Optional[int] = None):
        """Dispatch one transcript, speak the reply, then listen again."""
        if generation is None:
            generation = self._generation

        self._set_state(VoiceState.DISPATCHING)
        try:
            self._set_state(VoiceState.AWAITING_RESPONSE)
            display_text = await self.dispatch(transcript)
        except Exception:
            # Runs as a background task: nothing above us would see this
            logger.exception("Voice dispatch failed")
            display_text = ""
            if self._current(generation) and self.on_system_message:
                self.on_system_message(DISPATCH_ERROR_MESSAGE)

        # The model call itself is never cancelled; a stop while waiting just drops the reply
        if not self._current(generation):
            return

        if display_text and display_text.strip():
            self._set_state(VoiceState.SPEAKING)
            try:
                audio = await self.capability.synthesize(display_text, self.voice)
                if self._current(generation):
                    await self.capability.play(audio)
            except Exception as e:
                logger.warning("Speech playback failed: %s", e)

        if not self._current(generation):
            return
        await asyncio.sleep(self.resume_delay)
        if self._current(generation):
            self._listen()
