import json

import httpx
import ollama
import pytest

from conftest import StubChatClient, default_speakers
from failover_voice_chatbot.config import Config
from failover_voice_chatbot.core import CancellationToken
from failover_voice_chatbot.errors import ChatTransportError
from failover_voice_chatbot.llm import (
    Conversation,
    Message,
    NIMChatClient,
    OllamaChatClient,
    build_messages,
    create_chat_client,
)
from failover_voice_chatbot.trace import Severity
from failover_voice_chatbot.tts import SynthesisChain


@pytest.mark.asyncio
async def test_history_forwarded_is_bounded(config, trace):
    chat = StubChatClient()
    conversation = Conversation(chat, config, trace)

    for i in range(50):
        await conversation.submit(f"question {i}")

    assert len(conversation) == 100
    assert all(len(call['history']) <= 10 for call in chat.calls)
    last = chat.calls[-1]['history']
    assert len(last) == 10
    assert last[0] == Message('user', 'question 44')
    assert last[-1] == Message('assistant', 'reply to question 48')


@pytest.mark.asyncio
async def test_history_excludes_the_message_being_sent(config, trace):
    chat = StubChatClient()
    conversation = Conversation(chat, config, trace)

    await conversation.submit("first")

    assert chat.calls[0] == {'message': 'first', 'history': []}


@pytest.mark.asyncio
async def test_chat_failure_stores_placeholder(config, trace):
    chat = StubChatClient([ChatTransportError('service unavailable', status_code=503)])
    conversation = Conversation(chat, config, trace)

    reply = await conversation.submit("hello")

    assert reply == Message('assistant', config.chat_error_reply)
    assert [m.role for m in conversation.messages] == ['user', 'assistant']
    assert any(e.severity is Severity.ERROR and '503' in e.message for e in trace.events())


@pytest.mark.asyncio
async def test_empty_message_is_rejected(config, trace):
    conversation = Conversation(StubChatClient(), config, trace)
    with pytest.raises(ValueError):
        await conversation.submit("   ")
    assert len(conversation) == 0


@pytest.mark.asyncio
async def test_cancelled_token_discards_reply(config, trace):
    token = CancellationToken()
    chat = StubChatClient()
    conversation = Conversation(chat, config, trace)
    token.cancel()

    assert await conversation.submit("hello", token) is None
    assert conversation.messages == (Message('user', 'hello'),)


@pytest.mark.asyncio
async def test_clear_empties_history_and_silences_speech(config, trace):
    speakers = default_speakers()
    synthesis = SynthesisChain(speakers, config, trace)
    conversation = Conversation(StubChatClient(), config, trace, synthesis)
    await conversation.submit("hello")

    conversation.clear()

    assert len(conversation) == 0
    assert conversation.history() == []
    assert all(s.stops == 1 for s in speakers)


def test_build_messages_order():
    history = [Message('user', 'hi'), Message('assistant', 'sigh, hello yea')]
    messages = build_messages("  You are a tutor.  ", "how do i say bye", history)

    assert messages == [
        {'role': 'system', 'content': 'You are a tutor.'},
        {'role': 'user', 'content': 'hi'},
        {'role': 'assistant', 'content': 'sigh, hello yea'},
        {'role': 'user', 'content': 'how do i say bye'},
    ]


def _nim(handler, api_key='nv-test'):
    config = Config(nvidia_api_key=api_key)
    return NIMChatClient(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_nim_chat_request_payload():
    captured = []

    def handler(request):
        captured.append(request)
        return httpx.Response(200, json={'choices': [{'message': {'role': 'assistant', 'content': ' *sighs* Say "bye", yea '}}]})

    client = _nim(handler)
    reply = await client.reply("how do i say bye", [Message('user', 'hi')])

    assert reply == '*sighs* Say "bye", yea'
    request = captured[0]
    assert str(request.url) == 'https://integrate.api.nvidia.com/v1/chat/completions'
    assert request.headers['authorization'] == 'Bearer nv-test'
    payload = json.loads(request.content)
    assert payload['model'] == 'meta/llama-3.1-70b-instruct'
    assert payload['temperature'] == 0.95
    assert payload['top_p'] == 0.95
    assert payload['max_tokens'] == 250
    assert [m['role'] for m in payload['messages']] == ['system', 'user', 'user']


@pytest.mark.asyncio
@pytest.mark.parametrize('response', [
    httpx.Response(500, text='internal error'),
    httpx.Response(200, json={'choices': []}),
    httpx.Response(200, json={'choices': [{'message': {'content': '   '}}]}),
    httpx.Response(200, text='not json'),
])
async def test_nim_chat_failures_are_transport_errors(response):
    client = _nim(lambda request: response)
    with pytest.raises(ChatTransportError):
        await client.reply("hello", [])


@pytest.mark.asyncio
async def test_nim_chat_network_error_is_transport_error():
    def handler(request):
        raise httpx.ReadTimeout('timed out', request=request)

    with pytest.raises(ChatTransportError):
        await _nim(handler).reply("hello", [])


@pytest.mark.asyncio
async def test_nim_chat_without_key():
    with pytest.raises(ChatTransportError):
        await _nim(lambda request: httpx.Response(200), api_key=None).reply("hello", [])


class FakeOllama:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def chat(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.mark.asyncio
async def test_ollama_chat_passes_model_and_options():
    fake = FakeOllama(response={'message': {'role': 'assistant', 'content': 'Ugh. Fine, yea'}})
    client = OllamaChatClient(Config(chat_backend='ollama'), client=fake)

    reply = await client.reply("hi", [])

    assert reply == 'Ugh. Fine, yea'
    call = fake.calls[0]
    assert call['model'] == 'llama3.1:8b-instruct'
    assert call['options'] == {'num_predict': 250, 'temperature': 0.95, 'top_p': 0.95}
    assert call['messages'][-1] == {'role': 'user', 'content': 'hi'}


@pytest.mark.asyncio
async def test_ollama_response_error_is_transport_error():
    fake = FakeOllama(error=ollama.ResponseError('model not found', 404))
    client = OllamaChatClient(Config(), client=fake)

    with pytest.raises(ChatTransportError) as info:
        await client.reply("hi", [])

    assert info.value.status_code == 404


@pytest.mark.asyncio
async def test_ollama_connection_error_is_transport_error():
    client = OllamaChatClient(Config(), client=FakeOllama(error=ConnectionError('refused')))
    with pytest.raises(ChatTransportError):
        await client.reply("hi", [])


def test_create_chat_client_follows_backend():
    assert isinstance(create_chat_client(Config()), NIMChatClient)
    assert isinstance(create_chat_client(Config(chat_backend='ollama')), OllamaChatClient)
