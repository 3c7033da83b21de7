#!/usr/bin/env python3
"""
Runner script for the Failover Voice Chatbot.

This script provides a simple way to run the chatbot with settings taken from
the environment. For more advanced usage, import the module and create a
custom configuration.

Usage:
    python run_chatbot.py
"""

import asyncio
import logging

from failover_voice_chatbot import Config, FailoverVoiceChatbot


async def main():
    """Run the chatbot with the environment configuration."""
    config = Config.from_env()
    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    chatbot = FailoverVoiceChatbot(config)
    await chatbot.run()


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
