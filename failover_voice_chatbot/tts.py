#!/usr/bin/env python3
"""
Text-to-Speech speakers and the synthesis failover chain.
"""

import asyncio
import io
import logging
import queue
import re
import threading
from typing import Dict, List, Optional, Sequence, Tuple

import httpx
import numpy as np

from .config import default_config
from .errors import SynthesisExhausted, SynthesisProviderError
from .providers import ProviderChain, ProviderKind, ProviderTier, SpeechProvider
from .trace import TraceBuffer

logger = logging.getLogger(__name__)

_MARKUP_RE = re.compile(r"(\*\*|\*|__|`+|^#{1,6}\s*|^>\s*)", re.MULTILINE)
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")


def sanitize_for_speech(text: str, overrides: Optional[Dict[str, str]] = None) -> str:
    """Strip formatting markers and apply whole-word pronunciation overrides."""
    text = _LINK_RE.sub(r"\1", text or "")
    text = _MARKUP_RE.sub("", text)
    for word, spoken in (overrides or {}).items():
        text = re.sub(rf"\b{re.escape(word)}\b", spoken, text, flags=re.IGNORECASE)
    return " ".join(text.split())


def _load_sounddevice():
    import sounddevice
    return sounddevice


def decode_mp3(data: bytes) -> Tuple[np.ndarray, int]:
    """Decode MP3 bytes to mono float32 samples using pydub (needs ffmpeg)."""
    from pydub import AudioSegment
    segment = AudioSegment.from_file(io.BytesIO(data), format="mp3")
    segment = segment.set_channels(1).set_sample_width(2)
    samples = np.array(segment.get_array_of_samples(), dtype=np.int16).astype(np.float32) / 32768.0
    return samples, segment.frame_rate


class AudioPlayer:
    """Plays decoded audio through sounddevice; ``stop()`` cuts playback immediately."""

    def __init__(self):
        self._playing = False

    @property
    def playing(self) -> bool:
        return self._playing

    async def play(self, samples: np.ndarray, sample_rate: int):
        sd = _load_sounddevice()
        self._playing = True
        try:
            sd.play(samples, samplerate=sample_rate)
            await asyncio.to_thread(sd.wait)
        finally:
            self._playing = False

    def stop(self):
        if self._playing:
            _load_sounddevice().stop()


class BaseSpeaker(SpeechProvider):
    """Base class for TTS speakers."""

    async def speak(self, sentence: str):  # pragma: no cover - interface
        raise NotImplementedError

    def stop(self):
        """Stop in-flight playback. Must be idempotent."""


class Mp3Speaker(BaseSpeaker):
    """Speaker that synthesizes MP3, decodes it with pydub and plays it.

    ``stop()`` also covers a sentence still being synthesized or decoded:
    it is dropped instead of played once its audio arrives.
    """

    def __init__(self, player: Optional[AudioPlayer] = None):
        self.player = player or AudioPlayer()
        self._stop_requests = 0

    async def synthesize(self, sentence: str) -> bytes:  # pragma: no cover - interface
        raise NotImplementedError

    async def speak(self, sentence: str):
        stamp = self._stop_requests
        data = await self.synthesize(sentence)
        if stamp != self._stop_requests:
            return
        try:
            samples, rate = await asyncio.to_thread(decode_mp3, data)
            if stamp != self._stop_requests:
                return
            await self.player.play(samples, rate)
        except Exception as exc:
            raise SynthesisProviderError(self.provider_id, f"playback failed: {exc}") from exc

    def stop(self):
        self._stop_requests += 1
        self.player.stop()


class ElevenLabsSpeaker(Mp3Speaker):
    """ElevenLabs cloud voice; the primary synthesis provider."""

    provider_id = "elevenlabs"
    tier = ProviderTier.CLOUD_PRIMARY

    def __init__(self, config=None, client: Optional[httpx.AsyncClient] = None, player: Optional[AudioPlayer] = None):
        super().__init__(player)
        self.config = config or default_config
        self._client = client or httpx.AsyncClient(timeout=self.config.tts_timeout_sec)

    def _build_payload(self, text: str) -> dict:
        return {
            "text": text,
            "model_id": self.config.elevenlabs_model_id,
            "voice_settings": {
                "stability": self.config.elevenlabs_stability,
                "similarity_boost": self.config.elevenlabs_similarity_boost,
                "style": self.config.elevenlabs_style,
                "use_speaker_boost": True,
            },
        }

    async def synthesize(self, text: str) -> bytes:
        if not self.config.elevenlabs_api_key:
            raise SynthesisProviderError(self.provider_id, "no API key configured")
        url = f"{self.config.elevenlabs_base_url.rstrip('/')}/v1/text-to-speech/{self.config.elevenlabs_voice_id}"
        headers = {
            "xi-api-key": self.config.elevenlabs_api_key,
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
        }
        try:
            response = await self._client.post(url, headers=headers, json=self._build_payload(text))
        except httpx.HTTPError as exc:
            raise SynthesisProviderError(self.provider_id, f"{type(exc).__name__}: {exc}") from exc
        if response.status_code != 200:
            raise SynthesisProviderError(self.provider_id, f"HTTP {response.status_code}: {response.text[:200]}")
        if not response.content:
            raise SynthesisProviderError(self.provider_id, "empty audio")
        return response.content

    async def close(self):
        await self._client.aclose()


class EdgeTTSSpeaker(Mp3Speaker):
    """Edge TTS speaker; the secondary cloud voice.

    Uses edge-tts to synthesize MP3 -> pydub to decode -> sounddevice to play.
    """

    provider_id = "edge-tts"
    tier = ProviderTier.CLOUD_SECONDARY

    def __init__(self, config=None, voice=None, player: Optional[AudioPlayer] = None):
        super().__init__(player)
        self.config = config or default_config
        self.voice = voice or self.config.edge_voice

    async def synthesize(self, sentence: str) -> bytes:
        try:
            import edge_tts
            communicate = edge_tts.Communicate(sentence, voice=self.voice)
            audio_bytes = bytearray()
            async for chunk in communicate.stream():
                if chunk["type"] == "audio":
                    audio_bytes.extend(chunk["data"])
        except Exception as exc:
            raise SynthesisProviderError(self.provider_id, f"{type(exc).__name__}: {exc}") from exc
        if not audio_bytes:
            raise SynthesisProviderError(self.provider_id, "empty audio")
        return bytes(audio_bytes)


class Pyttsx3Speaker(BaseSpeaker):
    """Threaded pyttsx3 speaker; async 'speak' returns when sentence finished.

    The engine lives on its own worker thread, started on first use, and is
    only ever touched from that thread. ``stop()`` bumps a counter the worker
    checks: queued sentences are skipped, the one being spoken is cut at the
    next word.
    """

    provider_id = "pyttsx3"
    tier = ProviderTier.ON_DEVICE

    def __init__(self, config=None, voice_filter=None):
        self.config = config or default_config
        self.voice_filter = voice_filter or self.config.local_voice
        self.queue: 'queue.Queue[Optional[Tuple[str, asyncio.Future, int]]]' = queue.Queue()
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.thread: Optional[threading.Thread] = None
        self._engine = None
        self._stop_requests = 0
        self._speaking_stamp: Optional[int] = None

    def _ensure_worker(self):
        if self.thread is None or not self.thread.is_alive():
            self.loop = asyncio.get_running_loop()
            self.thread = threading.Thread(target=self._worker, daemon=True)
            self.thread.start()

    def _init_engine(self):
        import pyttsx3
        engine = pyttsx3.init()
        if self.voice_filter:
            for v in engine.getProperty('voices'):
                name = getattr(v, 'name', '') or ''
                if self.voice_filter.lower() in name.lower():
                    engine.setProperty('voice', v.id)
                    break
        engine.setProperty('rate', int(engine.getProperty('rate') * self.config.local_speech_rate))
        return engine

    def _on_word(self, name=None, location=None, length=None):
        # Runs on the worker thread inside runAndWait().
        if self._speaking_stamp is not None and self._speaking_stamp != self._stop_requests:
            self._engine.stop()

    def _worker(self):
        while True:
            item = self.queue.get()
            if item is None:
                break
            text, fut, stamp = item
            if stamp != self._stop_requests:
                self.loop.call_soon_threadsafe(_resolve, fut, None)
                continue
            try:
                if self._engine is None:
                    self._engine = self._init_engine()
                    self._engine.connect('started-word', self._on_word)
                self._speaking_stamp = stamp
                self._engine.say(text)
                self._engine.runAndWait()
                self.loop.call_soon_threadsafe(_resolve, fut, None)
            except Exception as e:
                self.loop.call_soon_threadsafe(_resolve, fut, e)
            finally:
                self._speaking_stamp = None

    async def speak(self, sentence: str):
        self._ensure_worker()
        fut = self.loop.create_future()
        self.queue.put((sentence, fut, self._stop_requests))
        try:
            await fut
        except Exception as exc:
            raise SynthesisProviderError(self.provider_id, f"{type(exc).__name__}: {exc}") from exc

    def stop(self):
        self._stop_requests += 1

    async def close(self):
        if self.thread is not None:
            self.queue.put(None)
            await asyncio.to_thread(self.thread.join, 1)


def _resolve(fut: asyncio.Future, error: Optional[BaseException]):
    if fut.done():
        return
    if error is None:
        fut.set_result(True)
    else:
        fut.set_exception(error)


class SynthesisChain(ProviderChain[BaseSpeaker]):
    """Speaks text with the first healthy speaker, demoting the ones that fail.

    Speech is best effort: ``speak`` never blocks the conversation on failure.
    """

    def __init__(self, providers: Sequence[BaseSpeaker], config=None, trace: Optional[TraceBuffer] = None):
        super().__init__(ProviderKind.TTS, providers, trace)
        self.config = config or default_config
        self._generation = 0
        self._active: Optional[BaseSpeaker] = None

    @property
    def speaking(self) -> bool:
        return self._active is not None

    async def speak(self, text: str) -> bool:
        """Speak ``text``. Returns False if there was nothing to say or playback was cancelled.

        Raises SynthesisExhausted when every provider failed.
        """
        clean = sanitize_for_speech(text, self.config.pronunciation_overrides)
        if not clean:
            return False
        generation = self._generation
        failures: List[SynthesisProviderError] = []
        for descriptor, speaker in self.candidates():
            if generation != self._generation:
                return False
            self._active = speaker
            try:
                await speaker.speak(clean)
            except Exception as exc:
                if generation != self._generation:
                    return False  # stopped on purpose
                error = exc
                if not isinstance(error, SynthesisProviderError):
                    error = SynthesisProviderError(descriptor.id, f"{type(exc).__name__}: {exc}")
                failures.append(error)
                self.demote(descriptor, str(error))
                continue
            finally:
                self._active = None
            if generation != self._generation:
                return False
            self.trace.success(f"tts: {descriptor.id} spoke {len(clean)} chars")
            return True
        self.trace.error(f"tts: exhausted after {len(failures)} failure(s)")
        raise SynthesisExhausted(failures)

    def cancel(self):
        """Stop any in-flight playback. Idempotent."""
        self._generation += 1
        active = self._active
        for speaker in self.providers:
            speaker.stop()
        if active is not None:
            self.trace.info(f"tts: playback on {active.provider_id} cancelled")


def create_synthesis_chain(config=None, trace: Optional[TraceBuffer] = None) -> SynthesisChain:
    """Factory building the default chain: ElevenLabs, Edge TTS, then pyttsx3."""
    config = config or default_config
    providers: List[BaseSpeaker] = []
    if config.elevenlabs_api_key:
        providers.append(ElevenLabsSpeaker(config))
    else:
        logger.warning("tts provider %s disabled: missing API key", ElevenLabsSpeaker.provider_id)
    providers.append(EdgeTTSSpeaker(config))
    providers.append(Pyttsx3Speaker(config))
    return SynthesisChain(providers, config, trace)
