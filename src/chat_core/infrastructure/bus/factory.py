from __future__ import annotations

from chat_core.application.ports.bus import Transport
from chat_core.config import Settings
from chat_core.infrastructure.bus.memory import InMemoryBroker
from chat_core.infrastructure.bus.redis_pubsub import RedisTransport
from chat_core.realtime.fabric import ChannelFabric


def build_transport(settings: Settings, *, broker: InMemoryBroker | None = None) -> Transport:
    if settings.FABRIC_BACKEND == "memory":
        return (broker or InMemoryBroker()).transport()
    return RedisTransport(settings.REDIS_URL, poll_timeout=settings.FABRIC_POLL_TIMEOUT)


def build_fabric(settings: Settings, *, broker: InMemoryBroker | None = None) -> ChannelFabric:
    return ChannelFabric(
        build_transport(settings, broker=broker),
        connect_timeout=settings.FABRIC_CONNECT_TIMEOUT,
        reconnect_base_delay=settings.FABRIC_RECONNECT_BASE_DELAY,
        reconnect_max_delay=settings.FABRIC_RECONNECT_MAX_DELAY,
    )
