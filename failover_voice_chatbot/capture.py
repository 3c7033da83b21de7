#!/usr/bin/env python3
"""
Microphone capture for the Failover Voice Chatbot.

A capture session owns the input stream between ``start()`` and ``stop()``;
the stream is closed on every exit path so the device is never left open.
"""

import asyncio
import io
import logging
import queue
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import soundfile as sf

from .config import default_config
from .errors import CaptureError, DeviceError, DeviceNotFound, PermissionDenied
from .trace import TraceBuffer

logger = logging.getLogger(__name__)

CODEC_MIME_TYPES = {
    ("OGG", "OPUS"): "audio/ogg;codecs=opus",
    ("OGG", "VORBIS"): "audio/ogg;codecs=vorbis",
    ("FLAC", "PCM_16"): "audio/flac",
    ("WAV", "PCM_16"): "audio/wav",
}

FILE_EXTENSIONS = {"OGG": "ogg", "FLAC": "flac", "WAV": "wav"}

FALLBACK_CODEC = ("WAV", "PCM_16")

# PortAudio error codes
PA_INVALID_DEVICE = -9996
PA_DEVICE_UNAVAILABLE = -9985


def _load_sounddevice():
    # Imported lazily: PortAudio is only needed once a microphone is opened.
    import sounddevice
    return sounddevice


@dataclass
class AudioClip:
    """Encoded recording handed from the capture session to the transcription chain."""

    data: bytes
    mime_type: str
    sample_rate: int
    channels: int = 1
    duration_sec: float = 0.0

    @property
    def extension(self) -> str:
        base = self.mime_type.split(';')[0]
        return base.split('/')[-1] or "wav"

    @property
    def filename(self) -> str:
        return f"recording.{self.extension}"

    @property
    def is_empty(self) -> bool:
        return not self.data

    def release(self):
        """Drop the audio buffer once transcription has resolved."""
        self.data = b""


def choose_codec(preference: Sequence[str]) -> Tuple[str, str]:
    """Pick the first FORMAT/SUBTYPE pair that the installed libsndfile can write."""
    formats = sf.available_formats()
    for entry in preference:
        fmt, _, subtype = entry.upper().partition('/')
        if fmt in formats and subtype in sf.available_subtypes(fmt):
            return fmt, subtype
    return FALLBACK_CODEC


def mime_type_for(codec: Tuple[str, str]) -> str:
    return CODEC_MIME_TYPES.get(codec, f"audio/{FILE_EXTENSIONS.get(codec[0], codec[0].lower())}")


def encode_pcm(pcm: bytes, sample_rate: int, channels: int, codec: Tuple[str, str]) -> bytes:
    """Encode raw little-endian int16 PCM into the given container."""
    samples = np.frombuffer(pcm, dtype=np.int16).reshape(-1, channels)
    buf = io.BytesIO()
    fmt, subtype = codec
    sf.write(buf, samples, sample_rate, format=fmt, subtype=subtype)
    return buf.getvalue()


def classify_portaudio_error(exc: Exception) -> CaptureError:
    """Map a PortAudio failure onto the capture error the user should see."""
    text = str(exc).lower()
    code = exc.args[1] if len(exc.args) > 1 and isinstance(exc.args[1], int) else None
    if "permission" in text or "not allowed" in text or "access denied" in text:
        return PermissionDenied(str(exc))
    if code == PA_INVALID_DEVICE or "invalid device" in text or "no default input" in text:
        return DeviceNotFound(str(exc))
    return DeviceError(str(exc))


class AudioCaptureSession:
    """Records one utterance from the default input device.

    The PortAudio callback runs on its own thread and only puts blocks on a
    queue; everything else happens on the event loop.
    """

    def __init__(self, config=None, trace: Optional[TraceBuffer] = None):
        self.config = config or default_config
        self.trace = trace or TraceBuffer()
        self._stream = None
        self._blocks: 'queue.Queue[bytes]' = queue.Queue()
        self._buffered = 0
        self._overflows = 0
        self._truncated = False

    @property
    def active(self) -> bool:
        return self._stream is not None

    async def start(self):
        """Acquire the microphone. No-op when already recording."""
        if self._stream is not None:
            return
        self._reset_buffer()
        self._stream = await asyncio.to_thread(self._open_stream)
        self.trace.info("capture: microphone acquired")

    async def stop(self) -> AudioClip:
        """Release the microphone and return the encoded recording."""
        stream = self._stream
        if stream is None:
            raise DeviceError("no recording in progress")
        self._stream = None
        sd = _load_sounddevice()
        try:
            await asyncio.to_thread(stream.stop)
        except sd.PortAudioError as exc:
            raise classify_portaudio_error(exc) from exc
        finally:
            stream.close(ignore_errors=True)
        pcm = self._drain()
        if self._overflows:
            logger.debug("capture: %d input overflows", self._overflows)
        if self._truncated:
            self.trace.warning(f"capture: recording truncated at {self.config.max_record_seconds:g}s")
        clip = await asyncio.to_thread(self._encode, pcm)
        self.trace.info(f"capture: {clip.duration_sec:.1f}s recorded as {clip.mime_type}")
        return clip

    def release(self):
        """Abort any recording and free the device. Safe to call at any time."""
        stream = self._stream
        self._stream = None
        if stream is not None:
            stream.abort(ignore_errors=True)
            stream.close(ignore_errors=True)
            self.trace.info("capture: microphone released")
        self._reset_buffer()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.release()

    def _open_stream(self):
        sd = _load_sounddevice()
        try:
            sd.query_devices(kind='input')
        except (ValueError, sd.PortAudioError) as exc:
            raise DeviceNotFound(str(exc)) from exc

        stream = None
        try:
            stream = sd.RawInputStream(
                samplerate=self.config.sample_rate,
                blocksize=self.config.block_samples,
                channels=self.config.channels,
                dtype='int16',
                callback=self._callback,
            )
            stream.start()
        except PermissionError as exc:
            self._close_failed(stream)
            raise PermissionDenied(str(exc)) from exc
        except sd.PortAudioError as exc:
            self._close_failed(stream)
            raise classify_portaudio_error(exc) from exc
        return stream

    @staticmethod
    def _close_failed(stream):
        if stream is not None:
            stream.close(ignore_errors=True)

    def _callback(self, indata, frames, time_info, status):  # sounddevice RawInputStream callback
        if status.input_overflow:
            self._overflows += 1  # We tolerate overflow; frames still usable.
        if self._buffered >= self.config.max_record_bytes:
            self._truncated = True
            return
        block = bytes(indata)
        self._buffered += len(block)
        self._blocks.put(block)

    def _drain(self) -> bytes:
        blocks: List[bytes] = []
        while True:
            try:
                blocks.append(self._blocks.get_nowait())
            except queue.Empty:
                break
        return b''.join(blocks)

    def _reset_buffer(self):
        self._blocks = queue.Queue()
        self._buffered = 0
        self._overflows = 0
        self._truncated = False

    def _encode(self, pcm: bytes) -> AudioClip:
        codec = choose_codec(self.config.codec_preference)
        channels = self.config.channels
        usable = len(pcm) - len(pcm) % (2 * channels)
        pcm = pcm[:usable]
        duration = usable / (2 * channels * self.config.sample_rate)
        data = encode_pcm(pcm, self.config.sample_rate, channels, codec) if pcm else b""
        return AudioClip(
            data=data,
            mime_type=mime_type_for(codec),
            sample_rate=self.config.sample_rate,
            channels=channels,
            duration_sec=duration,
        )
