#!/usr/bin/env python3
"""
Example usage of the Failover Voice Chatbot module with custom configuration.

This demonstrates how to customize the chatbot behavior by modifying the configuration.
"""

import asyncio
from failover_voice_chatbot import FailoverVoiceChatbot, Config


def custom_config() -> Config:
    """Custom configuration example."""
    return Config.from_env(
        # Use a local model instead of NVIDIA NIM
        chat_backend="ollama",
        ollama_model="llama3.1:8b-instruct",
        # Be stricter about what gets sent to the chat model
        min_confidence=0.7,
        # Give slow networks more room before falling back
        stt_timeout_sec=20.0,
        # Recordings are short push-to-talk turns
        max_record_seconds=30.0,
        # Prefer a different secondary voice
        edge_voice="en-US-GuyNeural",
    )


async def main():
    """Run the chatbot with custom configuration."""
    chatbot = FailoverVoiceChatbot(config=custom_config())
    await chatbot.run()


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nGoodbye!")
