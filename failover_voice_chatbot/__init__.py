#!/usr/bin/env python3
"""
Failover Voice Chatbot Module
=============================

A push-to-talk (record -> transcribe -> chat -> speak) voice assistant that keeps
working when its speech providers do not. Transcription and synthesis each run
through a chain of three interchangeable providers; a provider that fails is
demoted for the rest of the session and the next one takes over.

Features
--------
1. Microphone capture with sounddevice, encoded (Opus preferred) with soundfile.
2. Speech-to-Text chain: OpenAI cloud -> NVIDIA NIM -> on-device faster-whisper,
   with a per-call timeout and a confidence gate.
3. Chat replies from NVIDIA NIM or a local Ollama model, with a bounded history window.
4. Text-to-Speech chain: ElevenLabs -> edge-tts -> on-device pyttsx3.
5. A turn state machine with cancellation at every step.
6. A bounded diagnostic trace of everything that happened across providers.

Quick Start
-----------
```python
from failover_voice_chatbot import FailoverVoiceChatbot, Config
import asyncio

async def main():
    chatbot = FailoverVoiceChatbot(Config.from_env())
    await chatbot.run()

if __name__ == '__main__':
    asyncio.run(main())
```
"""

from .core import CancellationToken, FailoverVoiceChatbot, TurnOutcome, TurnState, VoiceTurnController
from .config import Config
from .capture import AudioCaptureSession, AudioClip
from .llm import ChatClient, Conversation, Message, NIMChatClient, OllamaChatClient, create_chat_client
from .providers import ProviderChain, ProviderDescriptor, ProviderKind, ProviderTier, SpeechProvider
from .stt import (
    BaseTranscriber,
    NIMTranscriber,
    OpenAITranscriber,
    TranscriptionChain,
    Utterance,
    WhisperTranscriber,
    create_transcription_chain,
)
from .trace import Severity, TraceBuffer, TraceEvent
from .tts import (
    BaseSpeaker,
    EdgeTTSSpeaker,
    ElevenLabsSpeaker,
    Mp3Speaker,
    Pyttsx3Speaker,
    SynthesisChain,
    create_synthesis_chain,
    sanitize_for_speech,
)

__version__ = "1.0.0"
__all__ = [
    'FailoverVoiceChatbot',
    'VoiceTurnController',
    'TurnState',
    'TurnOutcome',
    'CancellationToken',
    'Config',
    'AudioCaptureSession',
    'AudioClip',
    'ChatClient',
    'Conversation',
    'Message',
    'NIMChatClient',
    'OllamaChatClient',
    'create_chat_client',
    'ProviderChain',
    'ProviderDescriptor',
    'ProviderKind',
    'ProviderTier',
    'SpeechProvider',
    'BaseTranscriber',
    'OpenAITranscriber',
    'NIMTranscriber',
    'WhisperTranscriber',
    'TranscriptionChain',
    'Utterance',
    'create_transcription_chain',
    'Severity',
    'TraceBuffer',
    'TraceEvent',
    'BaseSpeaker',
    'ElevenLabsSpeaker',
    'EdgeTTSSpeaker',
    'Mp3Speaker',
    'Pyttsx3Speaker',
    'SynthesisChain',
    'create_synthesis_chain',
    'sanitize_for_speech',
]
