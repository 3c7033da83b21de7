import asyncio
from typing import Any, List, Optional

import pytest

from failover_voice_chatbot.capture import AudioClip
from failover_voice_chatbot.config import Config
from failover_voice_chatbot.core import VoiceTurnController
from failover_voice_chatbot.errors import DeviceError
from failover_voice_chatbot.llm import ChatClient, Conversation
from failover_voice_chatbot.providers import ProviderTier
from failover_voice_chatbot.stt import BaseTranscriber, TranscriptionChain, Utterance
from failover_voice_chatbot.trace import TraceBuffer
from failover_voice_chatbot.tts import BaseSpeaker, SynthesisChain


def make_clip(data: bytes = b'encoded-audio') -> AudioClip:
    return AudioClip(data=data, mime_type='audio/ogg;codecs=opus', sample_rate=16000, duration_sec=1.0)


class StubTranscriber(BaseTranscriber):
    """Returns scripted results in order; the last one repeats."""

    def __init__(self, provider_id: str, tier: ProviderTier, results: List[Any], delay: float = 0.0):
        self.provider_id = provider_id
        self.tier = tier
        self.results = list(results)
        self.delay = delay
        self.calls: List[bytes] = []

    async def transcribe(self, clip: AudioClip) -> Utterance:
        self.calls.append(clip.data)
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result


class StubSpeaker(BaseSpeaker):
    def __init__(self, provider_id: str, tier: ProviderTier, error: Optional[Exception] = None, hold: bool = False):
        self.provider_id = provider_id
        self.tier = tier
        self.error = error
        self.hold = hold
        self.spoken: List[str] = []
        self.stops = 0
        self._stopped = asyncio.Event()

    async def speak(self, sentence: str):
        self.spoken.append(sentence)
        if self.error is not None:
            raise self.error
        if self.hold:
            self._stopped.clear()
            await self._stopped.wait()

    def stop(self):
        self.stops += 1
        self._stopped.set()


class StubChatClient(ChatClient):
    def __init__(self, replies: Optional[List[Any]] = None):
        self.replies = list(replies or [])
        self.calls: List[dict] = []
        self.release: Optional[asyncio.Event] = None

    async def reply(self, message: str, history) -> str:
        self.calls.append({'message': message, 'history': list(history)})
        if self.release is not None:
            await self.release.wait()
        result = self.replies.pop(0) if self.replies else f"reply to {message}"
        if isinstance(result, BaseException):
            raise result
        return result


class StubCapture:
    def __init__(self, clip: Optional[AudioClip] = None, start_error: Optional[Exception] = None,
                 start_delay: float = 0.0):
        self.clip = clip or make_clip()
        self.start_error = start_error
        self.start_delay = start_delay
        self.active = False
        self.starts = 0
        self.releases = 0

    async def start(self):
        self.starts += 1
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.start_error is not None:
            raise self.start_error
        self.active = True

    async def stop(self) -> AudioClip:
        if not self.active:
            raise DeviceError("no recording in progress")
        self.active = False
        return AudioClip(self.clip.data, self.clip.mime_type, self.clip.sample_rate)

    def release(self):
        self.releases += 1
        self.active = False


@pytest.fixture
def config() -> Config:
    return Config(stt_timeout_sec=0.05)


@pytest.fixture
def trace() -> TraceBuffer:
    return TraceBuffer(50)


def build_controller(config, trace, transcribers, speakers, chat=None, capture=None):
    transcription = TranscriptionChain(transcribers, config, trace)
    synthesis = SynthesisChain(speakers, config, trace)
    chat = chat or StubChatClient()
    conversation = Conversation(chat, config, trace, synthesis)
    capture = capture or StubCapture()
    controller = VoiceTurnController(conversation, transcription, synthesis, capture, config, trace)
    return controller, chat, capture


def default_transcribers(text='how do i say hello', confidence=0.9):
    return [
        StubTranscriber('cloud', ProviderTier.CLOUD_PRIMARY, [Utterance(text, confidence, 'cloud')]),
        StubTranscriber('hosted', ProviderTier.CLOUD_SECONDARY, [Utterance(text, confidence, 'hosted')]),
        StubTranscriber('local', ProviderTier.ON_DEVICE, [Utterance(text, confidence, 'local')]),
    ]


def default_speakers(**kwargs):
    return [
        StubSpeaker('cloud-voice', ProviderTier.CLOUD_PRIMARY, **kwargs),
        StubSpeaker('edge-voice', ProviderTier.CLOUD_SECONDARY, **kwargs),
        StubSpeaker('local-voice', ProviderTier.ON_DEVICE, **kwargs),
    ]


