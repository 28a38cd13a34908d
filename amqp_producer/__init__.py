"""Publish a single message to an AMQP broker through the default exchange."""

from .async_publisher import AsyncPublisher, publish_once
from .config import PublisherConfig
from .errors import BrokerConnectionError, ConfigError, DeliveryError, ExchangeError, PublishError
from .messaging import DeliveryMode, Message, PublisherState, PublishResult, create_message
from .publisher import BlockingPublisher, publish_once_blocking

__all__ = [
    "AsyncPublisher",
    "BlockingPublisher",
    "BrokerConnectionError",
    "ConfigError",
    "DeliveryError",
    "DeliveryMode",
    "ExchangeError",
    "Message",
    "PublishError",
    "PublishResult",
    "PublisherConfig",
    "PublisherState",
    "create_message",
    "publish_once",
    "publish_once_blocking",
]
