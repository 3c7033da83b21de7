#!/usr/bin/env python3
"""
Speech-to-Text providers and the transcription failover chain.
"""

import asyncio
import io
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import httpx
import numpy as np
import soundfile as sf

from .capture import AudioClip
from .config import default_config
from .errors import LowConfidence, NoSpeech, ProviderError, ProviderTimeout, TranscriptionExhausted
from .providers import ProviderChain, ProviderKind, ProviderTier, SpeechProvider
from .trace import TraceBuffer

logger = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE = 16000


@dataclass
class Utterance:
    """One transcribed user turn."""

    text: str
    confidence: Optional[float] = None
    provider_id: Optional[str] = None

    @property
    def effective_confidence(self) -> float:
        """Unreported confidence is trusted."""
        if self.confidence is None:
            return 1.0
        return min(1.0, max(0.0, self.confidence))


class BaseTranscriber(SpeechProvider):
    """Base class for transcription providers."""

    async def transcribe(self, clip: AudioClip) -> Utterance:  # pragma: no cover - interface
        raise NotImplementedError


class OpenAITranscriber(BaseTranscriber):
    """Cloud transcription over the OpenAI-compatible ``/audio/transcriptions`` endpoint."""

    provider_id = "openai"
    tier = ProviderTier.CLOUD_PRIMARY
    request_logprobs = True

    def __init__(self, config=None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or default_config
        self._client = client or httpx.AsyncClient()
        self.api_key = self.config.openai_api_key
        self.base_url = self.config.openai_base_url
        self.model = self.config.openai_stt_model

    async def transcribe(self, clip: AudioClip) -> Utterance:
        if not self.api_key:
            raise ProviderError(self.provider_id, "no API key configured")
        data = {
            "model": self.model,
            "language": self.config.stt_language,
            "response_format": "json",
        }
        if self.request_logprobs:
            data["include[]"] = "logprobs"
        try:
            response = await self._client.post(
                f"{self.base_url.rstrip('/')}/audio/transcriptions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                data=data,
                files={"file": (clip.filename, clip.data, clip.mime_type)},
                timeout=None,  # the chain enforces the deadline
            )
        except httpx.HTTPError as exc:
            raise ProviderError(self.provider_id, f"{type(exc).__name__}: {exc}") from exc

        if response.status_code != 200:
            raise ProviderError(self.provider_id, response.text[:200], status_code=response.status_code)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(self.provider_id, "response was not JSON") from exc

        return Utterance(
            text=(payload.get("text") or "").strip(),
            confidence=self._confidence(payload),
            provider_id=self.provider_id,
        )

    @staticmethod
    def _confidence(payload: dict) -> Optional[float]:
        if isinstance(payload.get("confidence"), (int, float)):
            return float(payload["confidence"])
        logprobs = [item.get("logprob") for item in payload.get("logprobs") or [] if isinstance(item, dict)]
        logprobs = [lp for lp in logprobs if isinstance(lp, (int, float))]
        if not logprobs:
            return None
        return math.exp(sum(logprobs) / len(logprobs))

    async def close(self):
        await self._client.aclose()


class NIMTranscriber(OpenAITranscriber):
    """Secondary hosted inference endpoint (NVIDIA NIM speech recognition)."""

    provider_id = "nvidia-nim"
    tier = ProviderTier.CLOUD_SECONDARY
    request_logprobs = False

    def __init__(self, config=None, client: Optional[httpx.AsyncClient] = None):
        super().__init__(config, client)
        self.api_key = self.config.nvidia_api_key
        self.base_url = self.config.nim_base_url
        self.model = self.config.nim_stt_model


class WhisperTranscriber(BaseTranscriber):
    """On-device faster-whisper transcription; the terminal fallback."""

    provider_id = "whisper-local"
    tier = ProviderTier.ON_DEVICE

    def __init__(self, config=None, model=None):
        self.config = config or default_config
        self._model = model

    def _select_device(self, compute: str) -> str:
        if compute != 'auto':
            return compute
        try:
            import ctranslate2
            return 'cuda' if ctranslate2.get_cuda_device_count() > 0 else 'cpu'
        except ImportError:
            return 'cpu'

    def _load_model(self):
        if self._model is None:
            from faster_whisper import WhisperModel
            device = self._select_device(self.config.whisper_compute)
            logger.info("Loading faster-whisper %s on %s", self.config.whisper_model, device)
            self._model = WhisperModel(self.config.whisper_model, device=device)
        return self._model

    async def transcribe(self, clip: AudioClip) -> Utterance:
        return await asyncio.to_thread(self._transcribe_sync, clip)

    def _transcribe_sync(self, clip: AudioClip) -> Utterance:
        audio = decode_clip(clip)
        model = self._load_model()
        # Faster-Whisper expects 16k float32 mono
        segments, _info = model.transcribe(
            audio,
            language=self.config.stt_language,
            vad_filter=False,
            beam_size=1,
        )
        segments = list(segments)
        text = " ".join(seg.text.strip() for seg in segments).strip()
        confidence = None
        if segments:
            mean_logprob = sum(seg.avg_logprob for seg in segments) / len(segments)
            confidence = math.exp(mean_logprob)
        return Utterance(text=text, confidence=confidence, provider_id=self.provider_id)


def decode_clip(clip: AudioClip) -> np.ndarray:
    """Decode an encoded clip into 16 kHz mono float32 in [-1, 1]."""
    samples, sample_rate = sf.read(io.BytesIO(clip.data), dtype='float32', always_2d=True)
    audio = samples.mean(axis=1)
    if sample_rate != WHISPER_SAMPLE_RATE and len(audio):
        target = int(round(len(audio) * WHISPER_SAMPLE_RATE / sample_rate))
        positions = np.linspace(0, len(audio) - 1, num=target)
        audio = np.interp(positions, np.arange(len(audio)), audio)
    return audio.astype(np.float32)


class TranscriptionChain(ProviderChain[BaseTranscriber]):
    """Tries transcribers in priority order, demoting the ones that fail."""

    def __init__(self, providers: Sequence[BaseTranscriber], config=None, trace: Optional[TraceBuffer] = None):
        super().__init__(ProviderKind.STT, providers, trace)
        self.config = config or default_config

    async def transcribe(self, clip: AudioClip) -> Utterance:
        """Transcribe a clip, hopping down the chain at most ``stt_max_fallbacks`` times.

        Raises LowConfidence (or NoSpeech) when the result must not be
        submitted, TranscriptionExhausted when no attempted provider succeeded.
        The clip's audio is released whatever happens.
        """
        try:
            if clip.is_empty:
                raise NoSpeech()
            failures: List[ProviderError] = []
            for descriptor, provider in self.candidates():
                if len(failures) > self.config.stt_max_fallbacks:
                    break
                try:
                    utterance = await self._attempt(provider, clip)
                except ProviderError as exc:
                    failures.append(exc)
                    self.demote(descriptor, str(exc))
                    continue
                self.trace.success(f"stt: {descriptor.id} transcribed {len(utterance.text)} chars "
                                   f"(confidence {utterance.effective_confidence:.2f})")
                return self._gate(utterance)
            self.trace.error(f"stt: exhausted after {len(failures)} failure(s)")
            raise TranscriptionExhausted(failures)
        finally:
            clip.release()

    async def _attempt(self, provider: BaseTranscriber, clip: AudioClip) -> Utterance:
        timeout = self.config.stt_timeout_sec if provider.is_network else None
        try:
            return await asyncio.wait_for(provider.transcribe(clip), timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(provider.provider_id, timeout) from exc
        except ProviderError:
            raise
        except Exception as exc:
            # Provider internals are opaque; any other failure counts as a provider error.
            raise ProviderError(provider.provider_id, f"{type(exc).__name__}: {exc}") from exc

    def _gate(self, utterance: Utterance) -> Utterance:
        if not utterance.text.strip():
            raise NoSpeech(utterance.provider_id)
        if utterance.effective_confidence < self.config.min_confidence:
            self.trace.warning(f"stt: low confidence {utterance.effective_confidence:.2f}, not submitting")
            raise LowConfidence(utterance.text, utterance.effective_confidence, utterance.provider_id)
        return utterance


def create_transcription_chain(config=None, trace: Optional[TraceBuffer] = None) -> TranscriptionChain:
    """Factory building the default chain: OpenAI, NVIDIA NIM, then local Whisper.

    Cloud providers without an API key are left out.
    """
    config = config or default_config
    providers: List[BaseTranscriber] = []
    if config.openai_api_key:
        providers.append(OpenAITranscriber(config))
    else:
        logger.warning("stt provider %s disabled: missing API key", OpenAITranscriber.provider_id)
    if config.nvidia_api_key:
        providers.append(NIMTranscriber(config))
    else:
        logger.warning("stt provider %s disabled: missing API key", NIMTranscriber.provider_id)
    providers.append(WhisperTranscriber(config))
    return TranscriptionChain(providers, config, trace)
