#!/usr/bin/env python3
"""
Error taxonomy for the Failover Voice Chatbot.

Every error carries a ``user_message``: the in-character notice the turn
controller shows instead of a technical error.
"""

from typing import List, Optional


class VoiceChatError(Exception):
    """Base class for all pipeline errors."""

    user_message = "Everything broke. Try again, yea"


# Capture

class CaptureError(VoiceChatError):
    user_message = "Mic failed, try again"


class PermissionDenied(CaptureError):
    user_message = "Enable mic access, then try again"


class DeviceNotFound(CaptureError):
    user_message = "No mic found on this device"


class DeviceError(CaptureError):
    user_message = "Mic failed, try again"


# Transcription

class TranscriptionError(VoiceChatError):
    user_message = "Didn't catch that, try again"


class ProviderError(TranscriptionError):
    """A provider call failed (network error or non-success response)."""

    def __init__(self, provider_id: str, detail: str = "", status_code: Optional[int] = None):
        self.provider_id = provider_id
        self.detail = detail
        self.status_code = status_code
        message = f"{provider_id}: {detail}" if detail else provider_id
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        super().__init__(message)


class ProviderTimeout(ProviderError):
    def __init__(self, provider_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(provider_id, f"timed out after {timeout:g}s")


class LowConfidence(TranscriptionError):
    """The transcript is too uncertain to be submitted."""

    user_message = "Didn't catch that. Say it again, and clearly this time, yea"

    def __init__(self, transcript: str, confidence: float, provider_id: Optional[str] = None):
        self.transcript = transcript
        self.confidence = confidence
        self.provider_id = provider_id
        super().__init__(f"confidence {confidence:.2f} for {transcript!r}")


class NoSpeech(LowConfidence):
    user_message = "Didn't hear a thing, try again"

    def __init__(self, provider_id: Optional[str] = None):
        super().__init__("", 0.0, provider_id)


class TranscriptionExhausted(TranscriptionError):
    user_message = "Couldn't make out a word of that. Try again, yea"

    def __init__(self, failures: List[ProviderError]):
        self.failures = list(failures)
        detail = "; ".join(str(f) for f in self.failures) or "no healthy provider"
        super().__init__(f"all transcription providers failed: {detail}")


# Synthesis (never fatal to the conversation)

class SynthesisError(VoiceChatError):
    user_message = ""


class SynthesisProviderError(SynthesisError):
    def __init__(self, provider_id: str, detail: str = ""):
        self.provider_id = provider_id
        self.detail = detail
        super().__init__(f"{provider_id}: {detail}" if detail else provider_id)


class SynthesisExhausted(SynthesisError):
    def __init__(self, failures: List[SynthesisProviderError]):
        self.failures = list(failures)
        detail = "; ".join(str(f) for f in self.failures) or "no healthy provider"
        super().__init__(f"all synthesis providers failed: {detail}")


# Chat

class ChatTransportError(VoiceChatError):
    user_message = "Something broke in the scriptorium. Try again, yea"

    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.status_code = status_code
        if status_code is not None:
            detail = f"{detail} (HTTP {status_code})"
        super().__init__(detail)


# Control

class TurnRejected(VoiceChatError):
    """A turn action was requested in a state that does not allow it."""

    user_message = "Hold on, still busy with the last one"

    def __init__(self, action: str, state):
        self.action = action
        self.state = state
        super().__init__(f"cannot {action} while {getattr(state, 'value', state)}")
