#!/usr/bin/env python3
"""
Core voice turn controller and the console chatbot runner.
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Set

from .capture import AudioCaptureSession
from .config import Config, default_config
from .errors import (
    CaptureError,
    LowConfidence,
    SynthesisExhausted,
    TranscriptionError,
    TurnRejected,
    VoiceChatError,
)
from .llm import Conversation, Message, create_chat_client
from .stt import TranscriptionChain, create_transcription_chain
from .trace import TraceBuffer
from .tts import SynthesisChain, create_synthesis_chain

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    LOW_CONFIDENCE = "low_confidence"
    AWAITING_REPLY = "awaiting_reply"
    SPEAKING = "speaking"


class CancellationToken:
    """Marks one turn; once cancelled, late results of that turn are discarded."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True


@dataclass
class TurnOutcome:
    status: str  # completed | low_confidence | error | cancelled
    transcript: Optional[str] = None
    reply: Optional[Message] = None
    notice: Optional[str] = None
    spoken: bool = False


class VoiceTurnController:
    """State machine driving one turn at a time:

    idle -> recording -> transcribing -> (low_confidence -> idle)
         -> awaiting_reply -> speaking -> idle

    Turns are strictly sequential; exclusivity comes from the state, not a lock.
    """

    def __init__(
        self,
        conversation: Conversation,
        transcription: TranscriptionChain,
        synthesis: SynthesisChain,
        capture: AudioCaptureSession,
        config: Optional[Config] = None,
        trace: Optional[TraceBuffer] = None,
    ):
        self.conversation = conversation
        self.transcription = transcription
        self.synthesis = synthesis
        self.capture = capture
        self.config = config or default_config
        self.trace = trace or TraceBuffer()
        self._state = TurnState.IDLE
        self._token: Optional[CancellationToken] = None
        self._listeners: List[Callable[[TurnState], None]] = []
        self._acquiring = False

    @property
    def state(self) -> TurnState:
        return self._state

    def add_listener(self, callback: Callable[[TurnState], None]):
        """Register a callback invoked with every new state."""
        self._listeners.append(callback)

    # --- turn entry points -------------------------------------------------

    async def start_recording(self) -> Optional[TurnOutcome]:
        """Begin a voice turn. Returns an error outcome if the microphone could not be opened."""
        token = self._begin_turn("start recording")
        self._set_state(TurnState.RECORDING)
        self._acquiring = True
        try:
            await self.capture.start()
        except CaptureError as exc:
            self.capture.release()
            return self._fail(token, exc)
        finally:
            self._acquiring = False
        if token.cancelled or token is not self._token or self._state is not TurnState.RECORDING:
            # the turn was cancelled or superseded while the microphone was being acquired
            self.capture.release()
            return TurnOutcome("cancelled")
        return None

    async def stop_recording(self) -> TurnOutcome:
        """Finish recording and run the rest of the turn."""
        if self._state is not TurnState.RECORDING or self._acquiring:
            raise TurnRejected("stop recording", self._state)
        token = self._token
        self._set_state(TurnState.TRANSCRIBING)
        try:
            clip = await self.capture.stop()
        except CaptureError as exc:
            self.capture.release()
            return self._fail(token, exc)

        try:
            utterance = await self.transcription.transcribe(clip)
        except LowConfidence as exc:
            if token.cancelled:
                return TurnOutcome("cancelled", transcript=exc.transcript or None)
            self._set_state(TurnState.LOW_CONFIDENCE)
            self.trace.warning(f"turn: transcript withheld ({exc})")
            self._finish(token)
            return TurnOutcome("low_confidence", transcript=exc.transcript or None, notice=exc.user_message)
        except TranscriptionError as exc:
            return self._fail(token, exc)

        if token.cancelled:
            return TurnOutcome("cancelled", transcript=utterance.text)
        return await self._respond(token, utterance.text)

    async def toggle_recording(self) -> Optional[TurnOutcome]:
        """Record-button behaviour: start a turn, or stop the one being recorded."""
        if self._state is TurnState.RECORDING:
            return await self.stop_recording()
        return await self.start_recording()

    async def submit_text(self, text: str) -> TurnOutcome:
        """Typed turn: skips capture and transcription."""
        if not text.strip():
            raise ValueError("cannot submit an empty message")
        token = self._begin_turn("send a message")
        return await self._respond(token, text)

    def cancel(self):
        """Abort whatever is happening and return to idle. Always legal, idempotent."""
        if self._token is not None:
            self._token.cancel()
        self.capture.release()
        self.synthesis.cancel()
        if self._state is not TurnState.IDLE:
            self.trace.info(f"turn: cancelled while {self._state.value}")
            self._set_state(TurnState.IDLE)

    def clear(self):
        """Cancel, forget the conversation and start a fresh provider session."""
        self.cancel()
        self.conversation.clear()
        self.transcription.reset()
        self.synthesis.reset()
        self.trace.info("session: restarted")

    # --- internals -----------------------------------------------------------

    def _begin_turn(self, action: str) -> CancellationToken:
        if self._state is TurnState.SPEAKING:
            # A new turn interrupts the previous reply.
            self._token.cancel()
            self.synthesis.cancel()
            self._set_state(TurnState.IDLE)
        if self._state is not TurnState.IDLE or self._acquiring:
            raise TurnRejected(action, self._state)
        self._token = CancellationToken()
        return self._token

    async def _respond(self, token: CancellationToken, text: str) -> TurnOutcome:
        self._set_state(TurnState.AWAITING_REPLY)
        reply = await self.conversation.submit(text, token)
        if reply is None or token.cancelled:
            return TurnOutcome("cancelled", transcript=text)

        self._set_state(TurnState.SPEAKING)
        spoken = False
        try:
            spoken = await self.synthesis.speak(reply.content)
        except SynthesisExhausted as exc:
            # Speech is best effort; the reply is already in the conversation.
            logger.warning("Reply not spoken: %s", exc)
        self._finish(token)
        status = "cancelled" if token.cancelled else "completed"
        return TurnOutcome(status, transcript=text, reply=reply, spoken=spoken)

    def _fail(self, token: CancellationToken, exc: VoiceChatError) -> TurnOutcome:
        if token.cancelled:
            return TurnOutcome("cancelled")
        self.trace.error(f"turn: {type(exc).__name__}: {exc}")
        self._finish(token)
        return TurnOutcome("error", notice=exc.user_message)

    def _finish(self, token: CancellationToken):
        if token is self._token and not token.cancelled:
            self._set_state(TurnState.IDLE)

    def _set_state(self, state: TurnState):
        if state is self._state:
            return
        logger.debug("turn state %s -> %s", self._state.value, state.value)
        self._state = state
        for callback in self._listeners:
            callback(state)


class FailoverVoiceChatbot:
    """
    Main voice chatbot class.

    Push-to-talk console loop: press Enter to start recording, Enter again to
    send; or type a message instead of speaking.
    """

    STATUS = {
        TurnState.RECORDING: "🎤 Recording… press Enter to stop.",
        TurnState.TRANSCRIBING: "📝 Transcribing…",
        TurnState.AWAITING_REPLY: "🤖 Thinking…",
        TurnState.SPEAKING: "🔊 Speaking…",
    }

    def __init__(self, config: Optional[Config] = None):
        """Initialize the chatbot with optional custom configuration."""
        self.config = config or default_config
        self.trace = None
        self.controller = None
        self._turns: Set[asyncio.Task] = set()

    async def initialize(self):
        """Build one session: trace buffer, provider chains, conversation and controller."""
        print("Booting failover voice chatbot…")
        self.trace = TraceBuffer(self.config.trace_capacity)
        transcription = create_transcription_chain(self.config, self.trace)
        synthesis = create_synthesis_chain(self.config, self.trace)
        conversation = Conversation(create_chat_client(self.config), self.config, self.trace, synthesis)
        capture = AudioCaptureSession(self.config, self.trace)
        self.controller = VoiceTurnController(conversation, transcription, synthesis, capture, self.config, self.trace)
        self.controller.add_listener(self._print_status)

    def _print_status(self, state: TurnState):
        status = self.STATUS.get(state)
        if status:
            print(status, flush=True)

    def _report(self, outcome: Optional[TurnOutcome]):
        if outcome is None:
            return
        if outcome.transcript and outcome.status != "low_confidence":
            print(f"You: {outcome.transcript}")
        if outcome.reply is not None:
            print(f"Scholar: {outcome.reply.content}")
        if outcome.notice:
            print(f"⚠️  {outcome.notice}")

    async def _run_turn(self, action, *args):
        try:
            self._report(await action(*args))
        except TurnRejected as exc:
            print(f"⏳ {exc.user_message}")

    def _spawn(self, coro) -> asyncio.Task:
        # Turns run in the background so input (and interruption) keeps working.
        task = asyncio.create_task(coro)
        self._turns.add(task)
        task.add_done_callback(self._turns.discard)
        return task

    async def process_command(self, line: str) -> bool:
        """Handle one line of console input. Returns False when the user quits."""
        command = line.strip()
        if command == "/quit":
            return False
        if command == "/clear":
            self.controller.clear()
            print("🧹 Conversation cleared.")
        elif command == "/cancel":
            self.controller.cancel()
        elif command == "/trace":
            print(self.trace.dump() or "(trace is empty)")
        elif command:
            self._spawn(self._run_turn(self.controller.submit_text, command))
        else:
            self._spawn(self._run_turn(self.controller.toggle_recording))
        return True

    async def run(self):
        """Run the main chatbot loop."""
        await self.initialize()
        print("Press Enter to talk, or type a message. Commands: /cancel /clear /trace /quit")
        try:
            while True:
                line = await asyncio.to_thread(input, "> ")
                if not await self.process_command(line):
                    break
        except (KeyboardInterrupt, EOFError):
            print("\nExiting…")
        finally:
            await self.cleanup()

    async def cleanup(self):
        """Clean up resources."""
        if self.controller:
            self.controller.cancel()
            if self._turns:
                await asyncio.gather(*self._turns, return_exceptions=True)
            await self.controller.transcription.close()
            await self.controller.synthesis.close()
            await self.controller.conversation.client.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Push-to-talk voice chatbot with provider failover")
    parser.add_argument("--chat-backend", choices=["nim", "ollama"], help="chat collaborator to use")
    parser.add_argument("--min-confidence", type=float, help="transcripts below this are not sent")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="logging level")
    return parser


def main(argv=None):
    """Console entry point."""
    args = build_parser().parse_args(argv)
    overrides = {
        key: value
        for key, value in (
            ("chat_backend", args.chat_backend),
            ("min_confidence", args.min_confidence),
            ("log_level", args.log_level),
        )
        if value is not None
    }
    config = Config.from_env(**overrides)
    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # Set Windows event loop policy if needed
    if sys.platform.startswith('win'):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())  # type: ignore

    chatbot = FailoverVoiceChatbot(config)
    try:
        asyncio.run(chatbot.run())
    except KeyboardInterrupt:
        pass
