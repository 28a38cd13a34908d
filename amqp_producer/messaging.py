#!/usr/bin/env python3
"""
Message model for the one-shot producer.
A Message lives only for the duration of a single publish call.
"""
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

# AMQP shortstr limit applies to routing keys.
MAX_ROUTING_KEY_BYTES = 255


class DeliveryMode(IntEnum):
    NOT_PERSISTENT = 1
    PERSISTENT = 2


class PublisherState(IntEnum):
    IDLE = 0
    CONNECTING = 1
    READY = 2
    PUBLISHING = 3
    DONE = 4
    FAILED = 5

    @property
    def is_terminal(self) -> bool:
        return self in (PublisherState.DONE, PublisherState.FAILED)


@dataclass
class Message:
    """A single outgoing message addressed through the default exchange."""
    payload: bytes
    routing_key: str
    content_type: str = "text/plain"
    delivery_mode: DeliveryMode = DeliveryMode.NOT_PERSISTENT

    def __post_init__(self):
        if isinstance(self.payload, str):
            self.payload = self.payload.encode('utf-8')
        if not self.routing_key:
            raise ValueError("routing key must not be empty")
        if len(self.routing_key.encode('utf-8')) > MAX_ROUTING_KEY_BYTES:
            raise ValueError(
                f"routing key exceeds {MAX_ROUTING_KEY_BYTES} bytes: {self.routing_key[:32]}..."
            )
        self.delivery_mode = DeliveryMode(self.delivery_mode)

    @property
    def persistent(self) -> bool:
        return self.delivery_mode == DeliveryMode.PERSISTENT

    def text(self, encoding: str = 'utf-8') -> str:
        """Decode the payload for display."""
        return self.payload.decode(encoding, errors='replace')


@dataclass
class PublishResult:
    """Result of a publish operation."""
    success: bool
    routing_key: str
    latency_ms: float
    confirmed: bool = False


def get_current_time_ms() -> float:
    """Get current timestamp in milliseconds."""
    return time.time() * 1000


def create_message(
    payload: Any,
    routing_key: str,
    content_type: str = "text/plain",
    delivery_mode: DeliveryMode = DeliveryMode.NOT_PERSISTENT
) -> Message:
    """Factory function to create a Message, coercing the payload to bytes."""
    if isinstance(payload, bytes):
        payload_bytes = payload
    elif isinstance(payload, str):
        payload_bytes = payload.encode('utf-8')
    else:
        payload_bytes = str(payload).encode('utf-8')

    return Message(
        payload=payload_bytes,
        routing_key=routing_key,
        content_type=content_type,
        delivery_mode=delivery_mode
    )
