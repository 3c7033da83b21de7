import pytest

from failover_voice_chatbot.providers import (
    ProviderChain,
    ProviderDescriptor,
    ProviderKind,
    ProviderTier,
    SpeechProvider,
)
from failover_voice_chatbot.trace import Severity, TraceBuffer


class Provider(SpeechProvider):
    def __init__(self, provider_id, tier):
        self.provider_id = provider_id
        self.tier = tier
        self.closed = False

    async def close(self):
        self.closed = True


def make_chain(trace=None):
    return ProviderChain(ProviderKind.STT, [
        Provider('cloud', ProviderTier.CLOUD_PRIMARY),
        Provider('hosted', ProviderTier.CLOUD_SECONDARY),
        Provider('local', ProviderTier.ON_DEVICE),
    ], trace or TraceBuffer())


def test_descriptors_follow_construction_order():
    chain = make_chain()
    assert [(d.id, d.priority, d.tier) for d in chain.descriptors] == [
        ('cloud', 0, ProviderTier.CLOUD_PRIMARY),
        ('hosted', 1, ProviderTier.CLOUD_SECONDARY),
        ('local', 2, ProviderTier.ON_DEVICE),
    ]
    assert all(d.kind is ProviderKind.STT for d in chain.descriptors)


def test_select_skips_demoted_providers():
    trace = TraceBuffer()
    chain = make_chain(trace)
    chain.demote(chain.descriptor('cloud'), 'timed out')

    descriptor, provider = chain.select()

    assert descriptor.id == 'hosted'
    assert provider.provider_id == 'hosted'
    assert trace.events()[-1].severity is Severity.WARNING


def test_demotion_is_monotonic():
    descriptor = ProviderDescriptor('cloud', ProviderKind.TTS, 0, ProviderTier.CLOUD_PRIMARY)
    assert descriptor.demote() is True
    assert descriptor.demote() is False
    assert descriptor.healthy is False


def test_terminal_provider_is_never_demoted():
    chain = make_chain()
    for descriptor in chain.descriptors:
        chain.demote(descriptor, 'failed')

    assert [d.healthy for d in chain.descriptors] == [False, False, True]
    assert chain.select()[0].id == 'local'


def test_reset_restores_health():
    chain = make_chain()
    chain.demote(chain.descriptor('cloud'), 'failed')
    chain.reset()
    assert all(d.healthy for d in chain.descriptors)


def test_is_eligible_can_readmit_providers():
    class ReadmittingChain(ProviderChain):
        def is_eligible(self, descriptor):
            return True

    chain = ReadmittingChain(ProviderKind.TTS, [Provider('cloud', ProviderTier.CLOUD_PRIMARY)])
    chain.demote(chain.descriptor('cloud'), 'failed')
    assert chain.select()[0].id == 'cloud'


def test_on_device_providers_are_not_network():
    assert Provider('cloud', ProviderTier.CLOUD_PRIMARY).is_network
    assert not Provider('local', ProviderTier.ON_DEVICE).is_network


def test_empty_chain_is_rejected():
    with pytest.raises(ValueError):
        ProviderChain(ProviderKind.STT, [])


def test_unknown_descriptor():
    with pytest.raises(KeyError):
        make_chain().descriptor('missing')


@pytest.mark.asyncio
async def test_close_closes_every_provider():
    chain = make_chain()
    await chain.close()
    assert all(p.closed for p in chain.providers)
