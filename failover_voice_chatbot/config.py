#!/usr/bin/env python3
"""
Configuration settings for the Failover Voice Chatbot using Pydantic.
"""

import json
import os
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, computed_field, ConfigDict, validator


DEFAULT_SYSTEM_PROMPT = """
You are the Scholar, a grammar tutor cursed in the 1400s to correct English for eternity. You are tired, bitter and theatrically disappointed, but you always give the user a correct answer.

Rules:
1. Start every reply with a dramatic sigh or complaint about the user's phrasing.
2. When the user asks how to say something, give two or three natural ways real people actually say it, not textbook phrasing.
3. Reference your centuries of suffering when you can.
4. Keep replies short. You are far too tired for long explanations.
5. End every reply with "yea".
"""

# Environment variables read by Config.from_env() besides the VOICE_<FIELD> ones.
ENV_ALIASES = {
    "openai_api_key": "OPENAI_API_KEY",
    "nvidia_api_key": "NVIDIA_API_KEY",
    "nim_base_url": "NVIDIA_NIM_BASE_URL",
    "elevenlabs_api_key": "ELEVENLABS_API_KEY",
    "elevenlabs_voice_id": "ELEVENLABS_VOICE_ID",
    "ollama_host": "OLLAMA_HOST",
}


class Config(BaseModel):
    """
    Configuration class for the Failover Voice Chatbot using Pydantic for validation.

    Covers microphone capture, both provider chains, the chat collaborator and
    the diagnostic trace buffer.
    """

    model_config = ConfigDict(
        extra='forbid',  # Don't allow extra fields
        validate_assignment=True,  # Validate on assignment
        frozen=False,  # Allow modification after creation
    )

    # Audio Capture Configuration
    sample_rate: int = Field(
        default=16000,
        description="Microphone sample rate in Hz",
        ge=8000,
        le=48000
    )

    channels: int = Field(
        default=1,
        description="Number of input channels to record",
        ge=1,
        le=2
    )

    block_ms: int = Field(
        default=100,
        description="Milliseconds of audio per capture callback block",
        ge=10,
        le=1000
    )

    max_record_seconds: float = Field(
        default=60.0,
        description="Recording is truncated after this many seconds",
        gt=0.0,
        le=600.0
    )

    codec_preference: List[str] = Field(
        default=["OGG/OPUS", "OGG/VORBIS", "FLAC/PCM_16", "WAV/PCM_16"],
        description="Encoding preference as FORMAT/SUBTYPE, first supported entry wins"
    )

    # Speech-to-Text Configuration
    stt_timeout_sec: float = Field(
        default=15.0,
        description="Timeout for a single network transcription call",
        gt=0.0,
        le=120.0
    )

    stt_max_fallbacks: int = Field(
        default=1,
        description="How many providers further down the chain one transcription may try",
        ge=0,
        le=2
    )

    min_confidence: float = Field(
        default=0.5,
        description="Transcripts below this confidence are not sent to the chat service",
        ge=0.0,
        le=1.0
    )

    stt_language: str = Field(
        default="en",
        description="Language hint passed to every transcription provider"
    )

    openai_api_key: Optional[str] = Field(
        default=None,
        description="API key for the primary cloud transcriber"
    )

    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI API"
    )

    openai_stt_model: str = Field(
        default="gpt-4o-transcribe",
        description="Model used by the primary cloud transcriber"
    )

    nvidia_api_key: Optional[str] = Field(
        default=None,
        description="API key for NVIDIA NIM (secondary transcriber and chat)"
    )

    nim_base_url: str = Field(
        default="https://integrate.api.nvidia.com/v1",
        description="Base URL of the NVIDIA NIM API"
    )

    nim_stt_model: str = Field(
        default="nvidia/parakeet-ctc-1.1b-asr",
        description="Model used by the secondary transcriber"
    )

    whisper_model: str = Field(
        default="base.en",
        description="faster-whisper model used by the on-device transcriber"
    )

    whisper_compute: Literal["auto", "cpu", "cuda"] = Field(
        default="auto",
        description="Compute device for the on-device Whisper model"
    )

    # Chat Configuration
    chat_backend: Literal["nim", "ollama"] = Field(
        default="nim",
        description="Chat collaborator used to generate replies"
    )

    nim_chat_model: str = Field(
        default="meta/llama-3.1-70b-instruct",
        description="NIM chat completion model"
    )

    ollama_model: str = Field(
        default="llama3.1:8b-instruct",
        description="Ollama model name to use for chat completion"
    )

    ollama_host: Optional[str] = Field(
        default=None,
        description="Ollama server URL (client default when unset)"
    )

    chat_timeout_sec: float = Field(
        default=30.0,
        description="Timeout for the chat completion request",
        gt=0.0,
        le=300.0
    )

    history_limit: int = Field(
        default=10,
        description="Most recent messages forwarded to the chat service",
        ge=0,
        le=100
    )

    temperature: float = Field(default=0.95, ge=0.0, le=2.0)
    top_p: float = Field(default=0.95, gt=0.0, le=1.0)

    max_tokens: int = Field(
        default=250,
        description="Maximum tokens per chat reply",
        ge=1,
        le=4096
    )

    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="System prompt for the chat model"
    )

    chat_error_reply: str = Field(
        default="Something broke in the scriptorium. Try again, yea",
        description="Placeholder assistant reply stored when the chat service fails"
    )

    # Text-to-Speech Configuration
    elevenlabs_api_key: Optional[str] = Field(
        default=None,
        description="API key for the primary cloud voice"
    )

    elevenlabs_voice_id: str = Field(
        default="21m00Tcm4TlvDq8ikWAM",
        description="ElevenLabs voice id"
    )

    elevenlabs_model_id: str = Field(default="eleven_multilingual_v2")
    elevenlabs_base_url: str = Field(default="https://api.elevenlabs.io")
    elevenlabs_stability: float = Field(default=0.3, ge=0.0, le=1.0)
    elevenlabs_similarity_boost: float = Field(default=0.75, ge=0.0, le=1.0)
    elevenlabs_style: float = Field(default=0.5, ge=0.0, le=1.0)

    tts_timeout_sec: float = Field(
        default=30.0,
        description="HTTP timeout for cloud synthesis requests",
        gt=0.0,
        le=300.0
    )

    edge_voice: str = Field(
        default="en-GB-RyanNeural",
        description="Voice name for the secondary (edge-tts) voice"
    )

    local_voice: Optional[str] = Field(
        default=None,
        description="Substring matched against pyttsx3 voice names (None = engine default)"
    )

    local_speech_rate: float = Field(
        default=1.1,
        description="Multiplier applied to the pyttsx3 default speaking rate",
        gt=0.0,
        le=3.0
    )

    pronunciation_overrides: Dict[str, str] = Field(
        default={"yea": "yeah"},
        description="Whole-word replacements applied before synthesis"
    )

    # Diagnostics
    trace_capacity: int = Field(
        default=50,
        description="Number of pipeline events kept by the trace buffer",
        ge=1,
        le=10000
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    # Computed properties (derived from other fields)
    @computed_field
    @property
    def block_samples(self) -> int:
        """Number of audio frames per capture block."""
        return int(self.sample_rate * self.block_ms / 1000)

    @computed_field
    @property
    def max_record_bytes(self) -> int:
        """Upper bound on buffered 16-bit PCM bytes."""
        return int(self.max_record_seconds * self.sample_rate) * self.channels * 2

    @validator('codec_preference')
    def validate_codec_preference(cls, v):
        """Ensure every codec entry looks like FORMAT/SUBTYPE."""
        if not v:
            raise ValueError("codec_preference cannot be empty")
        for entry in v:
            if entry.count('/') != 1:
                raise ValueError(f"codec entry {entry!r} must be FORMAT/SUBTYPE")
        return [entry.upper() for entry in v]

    @validator('system_prompt', 'chat_error_reply')
    def validate_not_blank(cls, v):
        """Ensure prompt text is not empty."""
        if not v.strip():
            raise ValueError("value cannot be empty")
        return v

    @classmethod
    def from_env(cls, environ=None, prefix: str = "VOICE_", **overrides) -> "Config":
        """Build a config from environment variables.

        Each field can be set as ``VOICE_<FIELD_NAME>``; API keys also honour
        their conventional names (``OPENAI_API_KEY`` …). List fields take a
        comma separated value, dict fields a JSON object. Keyword overrides
        win over the environment.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name, field in cls.model_fields.items():
            raw = environ.get(f"{prefix}{name.upper()}")
            if raw is None and name in ENV_ALIASES:
                raw = environ.get(ENV_ALIASES[name])
            if raw is None or raw == "":
                continue
            if isinstance(field.default, list):
                values[name] = [part.strip() for part in raw.split(',') if part.strip()]
            elif isinstance(field.default, dict):
                values[name] = json.loads(raw)
            else:
                values[name] = raw
        values.update(overrides)
        return cls(**values)


# Default configuration instance
default_config = Config()
