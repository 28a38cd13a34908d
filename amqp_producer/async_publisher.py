#!/usr/bin/env python3
"""
Async publisher built on aio-pika.
Connects, opens a confirming channel, publishes one message through the
default exchange and waits for the broker's acknowledgment.
"""
import asyncio
import logging
from typing import Optional

import aio_pika
from aio_pika.exceptions import (
    AMQPConnectionError, AMQPError, ChannelInvalidStateError, ProbableAuthenticationError
)
from aio_pika.exceptions import DeliveryError as ReturnedError
from aiormq import spec

from .base import PublisherBase
from .config import PublisherConfig
from .errors import BrokerConnectionError, DeliveryError, ExchangeError, describe
from .messaging import Message, PublisherState, PublishResult, get_current_time_ms

logger = logging.getLogger(__name__)


class AsyncPublisher(PublisherBase):
    """aio-pika implementation, usable as an async context manager."""

    def __init__(self, config: PublisherConfig):
        super().__init__(config, "aio-pika")
        self._connection: Optional[aio_pika.abc.AbstractConnection] = None
        self._channel: Optional[aio_pika.abc.AbstractChannel] = None
        self._exchange: Optional[aio_pika.abc.AbstractExchange] = None

    async def __aenter__(self) -> 'AsyncPublisher':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _open_connection(self) -> aio_pika.abc.AbstractConnection:
        cfg = self.config
        last_error = None

        for attempt in range(1, cfg.connection_attempts + 1):
            try:
                return await aio_pika.connect(
                    host=cfg.host,
                    port=cfg.port,
                    login=cfg.username,
                    password=cfg.password,
                    virtualhost=cfg.vhost,
                    timeout=cfg.timeout,
                )
            except ProbableAuthenticationError as e:
                raise BrokerConnectionError(f"Broker at {cfg.url} rejected the credentials: {describe(e)}") from e
            except (AMQPConnectionError, OSError, asyncio.TimeoutError) as e:
                last_error = e
                logger.warning(
                    " [!] Connection attempt %d/%d to %s failed: %s",
                    attempt, cfg.connection_attempts, cfg.url, describe(e)
                )
                if attempt < cfg.connection_attempts:
                    await asyncio.sleep(cfg.retry_delay)

        raise BrokerConnectionError(
            f"Could not connect to {cfg.url} after {cfg.connection_attempts} attempt(s): {describe(last_error)}"
        ) from last_error

    async def connect(self):
        """Open the connection, the channel and the default exchange handle."""
        self._transition(PublisherState.CONNECTING)
        logger.info(" [*] Connecting to %s", self.config.url)

        try:
            self._connection = await self._open_connection()
        except BrokerConnectionError:
            self._fail()
            raise

        try:
            self._channel = await asyncio.wait_for(
                self._connection.channel(
                    publisher_confirms=self.config.confirm,
                    on_return_raises=self.config.mandatory,
                ),
                timeout=self.config.timeout,
            )
        except (AMQPError, OSError, asyncio.TimeoutError) as e:
            self._fail()
            await self.close()
            raise ExchangeError(f"Could not open a channel on {self.config.url}: {describe(e)}") from e

        # The nameless exchange routes straight to the queue named by the routing key.
        self._exchange = self._channel.default_exchange
        self._transition(PublisherState.READY)

    async def publish(self, message: Message) -> PublishResult:
        """Publish a single message and wait for it to be confirmed."""
        if self.state == PublisherState.IDLE:
            await self.connect()
        self._require_ready()
        self._transition(PublisherState.PUBLISHING)

        amqp_message = aio_pika.Message(
            body=message.payload,
            content_type=message.content_type,
            delivery_mode=aio_pika.DeliveryMode(int(message.delivery_mode)),
        )

        msg_start = get_current_time_ms()
        try:
            confirmation = await self._exchange.publish(
                amqp_message,
                routing_key=message.routing_key,
                mandatory=self.config.mandatory,
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as e:
            self._fail()
            raise DeliveryError(
                f"Message to '{message.routing_key}' was not confirmed within {self.config.timeout}s"
            ) from e
        except ReturnedError as e:
            self._fail()
            if isinstance(e.frame, spec.Basic.Return):
                raise DeliveryError(f"No queue is bound for routing key '{message.routing_key}'") from e
            raise DeliveryError(f"Failed to publish to '{message.routing_key}': {describe(e)}") from e
        except (AMQPError, ChannelInvalidStateError, OSError) as e:
            self._fail()
            raise DeliveryError(f"Failed to publish to '{message.routing_key}': {describe(e)}") from e

        confirmed = False
        if self.config.confirm:
            if not isinstance(confirmation, spec.Basic.Ack):
                self._fail()
                raise DeliveryError(
                    f"Broker did not acknowledge message to '{message.routing_key}': {confirmation!r}"
                )
            confirmed = True

        self._transition(PublisherState.DONE)
        latency_ms = get_current_time_ms() - msg_start
        logger.info(" [x] Sent %r to '%s' (%.1f ms)", message.text(), message.routing_key, latency_ms)

        return PublishResult(
            success=True,
            routing_key=message.routing_key,
            latency_ms=latency_ms,
            confirmed=confirmed,
        )

    async def close(self):
        if self._connection is not None and not self._connection.is_closed:
            try:
                await self._connection.close()
            except (AMQPError, OSError) as e:
                logger.warning(" [!] Error while closing connection to %s: %s", self.config.url, describe(e))
            else:
                logger.debug(" [*] Connection to %s closed", self.config.url)
        self._connection = None
        self._channel = None
        self._exchange = None

    async def run(self) -> PublishResult:
        """Connect, publish the configured message, close."""
        async with self:
            return await self.publish(self.build_message())


async def publish_once(config: PublisherConfig) -> PublishResult:
    """Publish the configured message once with aio-pika."""
    return await AsyncPublisher(config).run()
