#!/usr/bin/env python3
"""
Setup script for the Failover Voice Chatbot module.
"""

from setuptools import setup, find_packages

with open("failover_voice_chatbot/README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="failover-voice-chatbot",
    version="1.0.0",
    author="Your Name",
    author_email="your.email@example.com",
    description="A push-to-talk voice assistant whose speech providers fail over to each other",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/failover-voice-chatbot",
    packages=find_packages(exclude=("tests", "tests.*")),
    package_data={"failover_voice_chatbot": ["README.md"]},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Sound/Audio :: Speech",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
    python_requires=">=3.10",
    install_requires=[
        "numpy",
        "sounddevice",
        "soundfile",
        "faster-whisper",
        "ollama>=0.4",
        "pyttsx3",
        "pydantic>=2.0.0",
        "httpx",
        "edge-tts",
        "pydub",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "failover-voice-chatbot=failover_voice_chatbot.core:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
