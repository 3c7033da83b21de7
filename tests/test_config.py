import pytest
from pydantic import ValidationError

from failover_voice_chatbot.config import Config, default_config


def test_defaults():
    config = Config()
    assert config.sample_rate == 16000
    assert config.min_confidence == 0.5
    assert config.stt_max_fallbacks == 1
    assert config.history_limit == 10
    assert config.trace_capacity == 50
    assert config.chat_backend == 'nim'
    assert config.system_prompt.strip().endswith('End every reply with "yea".')
    assert config.pronunciation_overrides == {'yea': 'yeah'}


def test_computed_fields():
    config = Config(sample_rate=16000, block_ms=100, max_record_seconds=2.0, channels=1)
    assert config.block_samples == 1600
    assert config.max_record_bytes == 64000


@pytest.mark.parametrize('overrides', [
    {'min_confidence': 1.5},
    {'sample_rate': 4000},
    {'chat_backend': 'openai'},
    {'codec_preference': []},
    {'codec_preference': ['OGG']},
    {'system_prompt': '   '},
    {'unknown_field': True},
])
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ValidationError):
        Config(**overrides)


def test_codec_preference_is_normalised():
    assert Config(codec_preference=['ogg/opus', 'wav/pcm_16']).codec_preference == ['OGG/OPUS', 'WAV/PCM_16']


def test_assignment_is_validated():
    config = Config()
    with pytest.raises(ValidationError):
        config.min_confidence = -0.1


def test_from_env_reads_prefixed_fields_and_aliases():
    environ = {
        'VOICE_MIN_CONFIDENCE': '0.7',
        'VOICE_CHAT_BACKEND': 'ollama',
        'VOICE_CODEC_PREFERENCE': 'flac/pcm_16, wav/pcm_16',
        'VOICE_PRONUNCIATION_OVERRIDES': '{"yea": "yeah", "thee": "the"}',
        'OPENAI_API_KEY': 'sk-env',
        'ELEVENLABS_API_KEY': '',
    }
    config = Config.from_env(environ)

    assert config.min_confidence == 0.7
    assert config.chat_backend == 'ollama'
    assert config.codec_preference == ['FLAC/PCM_16', 'WAV/PCM_16']
    assert config.pronunciation_overrides == {'yea': 'yeah', 'thee': 'the'}
    assert config.openai_api_key == 'sk-env'
    assert config.elevenlabs_api_key is None


def test_prefixed_variable_wins_over_alias():
    config = Config.from_env({'VOICE_NVIDIA_API_KEY': 'prefixed', 'NVIDIA_API_KEY': 'alias'})
    assert config.nvidia_api_key == 'prefixed'


def test_overrides_win_over_environment():
    config = Config.from_env({'VOICE_MIN_CONFIDENCE': '0.7'}, min_confidence=0.9)
    assert config.min_confidence == 0.9


def test_default_config_has_no_keys():
    assert default_config.openai_api_key is None
    assert default_config.elevenlabs_api_key is None
