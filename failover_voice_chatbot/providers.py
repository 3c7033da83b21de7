#!/usr/bin/env python3
"""
Provider descriptors and the failover chain shared by transcription and synthesis.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Generic, List, Optional, Sequence, Tuple, TypeVar

from .trace import TraceBuffer

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    STT = "stt"
    TTS = "tts"


class ProviderTier(str, Enum):
    CLOUD_PRIMARY = "cloud-primary"
    CLOUD_SECONDARY = "cloud-secondary"
    ON_DEVICE = "on-device"


class SpeechProvider:
    """Base for every interchangeable speech backend.

    Subclasses set ``provider_id`` and ``tier``; the chain decides which one runs.
    """

    provider_id = "provider"
    tier = ProviderTier.CLOUD_PRIMARY

    @property
    def is_network(self) -> bool:
        return self.tier is not ProviderTier.ON_DEVICE

    async def close(self):  # optional cleanup
        pass


@dataclass
class ProviderDescriptor:
    id: str
    kind: ProviderKind
    priority: int
    tier: ProviderTier
    healthy: bool = True

    @property
    def terminal(self) -> bool:
        """On-device providers are the last resort and are never demoted."""
        return self.tier is ProviderTier.ON_DEVICE

    def demote(self) -> bool:
        """Mark unhealthy for the rest of the session. Returns True if this changed anything."""
        if self.terminal or not self.healthy:
            return False
        self.healthy = False
        return True


P = TypeVar("P", bound=SpeechProvider)


class ProviderChain(Generic[P]):
    """Ordered, failover-capable set of providers for one capability.

    Health flags belong to the chain instance, so every session gets its own.
    """

    def __init__(self, kind: ProviderKind, providers: Sequence[P], trace: Optional[TraceBuffer] = None):
        if not providers:
            raise ValueError(f"{kind.value} chain needs at least one provider")
        self.kind = kind
        self.trace = trace or TraceBuffer()
        self._providers: List[P] = list(providers)
        self._descriptors = [
            ProviderDescriptor(id=p.provider_id, kind=kind, priority=i, tier=p.tier)
            for i, p in enumerate(self._providers)
        ]

    @property
    def descriptors(self) -> Tuple[ProviderDescriptor, ...]:
        return tuple(self._descriptors)

    @property
    def providers(self) -> Tuple[P, ...]:
        return tuple(self._providers)

    def descriptor(self, provider_id: str) -> ProviderDescriptor:
        for descriptor in self._descriptors:
            if descriptor.id == provider_id:
                return descriptor
        raise KeyError(provider_id)

    def is_eligible(self, descriptor: ProviderDescriptor) -> bool:
        """Whether a provider may be selected. Override to add cooldown re-admission."""
        return descriptor.healthy

    def candidates(self) -> List[Tuple[ProviderDescriptor, P]]:
        """Eligible providers in priority order."""
        ordered = sorted(zip(self._descriptors, self._providers), key=lambda pair: pair[0].priority)
        return [(d, p) for d, p in ordered if self.is_eligible(d)]

    def select(self) -> Optional[Tuple[ProviderDescriptor, P]]:
        candidates = self.candidates()
        return candidates[0] if candidates else None

    def demote(self, descriptor: ProviderDescriptor, reason: str):
        if descriptor.demote():
            self.trace.warning(f"{self.kind.value}: {descriptor.id} demoted for this session ({reason})")
        else:
            self.trace.warning(f"{self.kind.value}: {descriptor.id} failed ({reason})")

    def reset(self):
        """Start a new session: every provider is healthy again."""
        for descriptor in self._descriptors:
            descriptor.healthy = True
        logger.debug("%s chain health reset", self.kind.value)

    async def close(self):
        for provider in self._providers:
            await provider.close()
