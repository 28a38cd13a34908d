#!/usr/bin/env python3
"""
Blocking publisher built on pika.
Same flow as the async publisher: connect, confirm-select the channel,
publish one message through the default exchange, close.

Each step drives a SelectConnection ioloop until its callback fires, so the
configured timeout can bound the channel open and the confirm wait.
"""
import logging
from typing import Callable, Optional

import pika
from pika.exceptions import AMQPConnectionError, AMQPError, ProbableAuthenticationError
from pika.spec import Basic

from .base import PublisherBase
from .config import PublisherConfig
from .errors import BrokerConnectionError, DeliveryError, ExchangeError, describe
from .messaging import Message, PublisherState, PublishResult, get_current_time_ms

logger = logging.getLogger(__name__)


def _root_cause(error: BaseException) -> BaseException:
    """Unwrap pika's connection workflow errors down to what ended the last attempt."""
    while True:
        if getattr(error, 'exceptions', None):
            error = error.exceptions[-1]
        elif isinstance(getattr(error, 'exception', None), BaseException):
            error = error.exception
        elif (isinstance(error, AMQPConnectionError) and len(error.args) == 1
              and isinstance(error.args[0], BaseException)):
            error = error.args[0]
        else:
            return error


class BlockingPublisher(PublisherBase):
    """pika SelectConnection implementation, usable as a context manager."""

    def __init__(self, config: PublisherConfig):
        super().__init__(config, "pika")
        self._connection: Optional[pika.SelectConnection] = None
        self._channel = None
        self._error: Optional[BaseException] = None
        self._connection_open = False
        self._channel_ready = False
        self._closing = False
        self._closed = False
        self._timed_out = False
        self._confirmation = None
        self._returned = None

    def __enter__(self) -> 'BlockingPublisher':
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _connection_parameters(self) -> pika.ConnectionParameters:
        cfg = self.config
        kwargs = {}
        if cfg.timeout is not None:
            kwargs.update(
                socket_timeout=cfg.timeout,
                stack_timeout=cfg.timeout,
                blocked_connection_timeout=cfg.timeout,
            )
        return pika.ConnectionParameters(
            host=cfg.host,
            port=cfg.port,
            virtual_host=cfg.vhost,
            credentials=pika.PlainCredentials(cfg.username, cfg.password),
            connection_attempts=cfg.connection_attempts,
            retry_delay=cfg.retry_delay,
            **kwargs
        )

    def _wait(self, done: Callable[[], bool], timeout: Optional[float]) -> bool:
        """Run the ioloop until done() holds. Returns False if timeout passed first."""
        ioloop = self._connection.ioloop
        self._timed_out = False
        timer = ioloop.call_later(timeout, self._on_deadline) if timeout is not None else None
        try:
            while not done() and not self._timed_out:
                ioloop.start()
        finally:
            if timer is not None and not self._timed_out:
                ioloop.remove_timeout(timer)
        return done()

    def _stop(self):
        self._connection.ioloop.stop()

    def _on_deadline(self):
        self._timed_out = True
        self._stop()

    def _on_connection_open(self, _connection):
        self._connection_open = True
        self._stop()

    def _on_connection_open_error(self, _connection, error):
        self._error = error
        self._stop()

    def _on_connection_closed(self, _connection, reason):
        self._closed = True
        if not self._closing and self._error is None:
            self._error = reason
        self._stop()

    def _on_channel_open(self, channel):
        self._channel = channel
        if not self.config.confirm:
            self._on_channel_ready()
            return
        try:
            channel.confirm_delivery(self._on_delivery_confirmation, callback=self._on_channel_ready)
        except AMQPError as e:
            self._error = e
            self._stop()

    def _on_channel_ready(self, _frame=None):
        self._channel_ready = True
        self._stop()

    def _on_channel_closed(self, _channel, reason):
        if not self._closing and self._error is None:
            self._error = reason
        self._stop()

    def _on_message_returned(self, _channel, method, _properties, _body):
        logger.debug(" [!] Broker returned message to '%s': %s", method.routing_key, method.reply_text)
        self._returned = method

    def _on_delivery_confirmation(self, method_frame):
        self._confirmation = method_frame.method
        self._stop()

    def connect(self):
        """Open the connection and a channel in confirm mode."""
        self._transition(PublisherState.CONNECTING)
        logger.info(" [*] Connecting to %s", self.config.url)

        self._connection = pika.SelectConnection(
            self._connection_parameters(),
            on_open_callback=self._on_connection_open,
            on_open_error_callback=self._on_connection_open_error,
            on_close_callback=self._on_connection_closed,
        )
        # socket_timeout and stack_timeout bound each connection attempt
        self._wait(lambda: self._connection_open or self._error is not None, None)
        if not self._connection_open:
            self._fail()
            cause = _root_cause(self._error)
            if isinstance(cause, ProbableAuthenticationError):
                raise BrokerConnectionError(
                    f"Broker at {self.config.url} rejected the credentials: {describe(cause)}"
                ) from self._error
            raise BrokerConnectionError(
                f"Could not connect to {self.config.url} after "
                f"{self.config.connection_attempts} attempt(s): {describe(cause)}"
            ) from self._error

        try:
            channel = self._connection.channel(on_open_callback=self._on_channel_open)
            channel.add_on_close_callback(self._on_channel_closed)
            channel.add_on_return_callback(self._on_message_returned)
        except (AMQPError, OSError) as e:
            self._error = e

        ready = self._error is None and self._wait(
            lambda: self._channel_ready or self._error is not None, self.config.timeout
        )
        if not ready or self._error is not None:
            error = self._error
            self._fail()
            self.close()
            if error is None:
                raise ExchangeError(
                    f"Channel on {self.config.url} was not opened within {self.config.timeout}s"
                )
            raise ExchangeError(f"Could not open a channel on {self.config.url}: {describe(error)}") from error

        self._transition(PublisherState.READY)

    def publish(self, message: Message) -> PublishResult:
        """Publish a single message; with confirms on, returns once the broker acks."""
        if self.state == PublisherState.IDLE:
            self.connect()
        self._require_ready()
        self._transition(PublisherState.PUBLISHING)

        msg_start = get_current_time_ms()
        try:
            # exchange='' is the default exchange, where the queue name is the routing key
            self._channel.basic_publish(
                exchange='',
                routing_key=message.routing_key,
                body=message.payload,
                properties=pika.BasicProperties(
                    content_type=message.content_type,
                    delivery_mode=int(message.delivery_mode),
                ),
                mandatory=self.config.mandatory,
            )
        except (AMQPError, OSError) as e:
            self._fail()
            raise DeliveryError(f"Failed to publish to '{message.routing_key}': {describe(e)}") from e

        if self.config.confirm:
            confirmed = self._wait(
                lambda: self._confirmation is not None or self._error is not None, self.config.timeout
            )
            if self._error is not None:
                self._fail()
                raise DeliveryError(
                    f"Failed to publish to '{message.routing_key}': {describe(self._error)}"
                ) from self._error
            if not confirmed:
                self._fail()
                raise DeliveryError(
                    f"Message to '{message.routing_key}' was not confirmed within {self.config.timeout}s"
                )
            if isinstance(self._confirmation, Basic.Nack):
                self._fail()
                raise DeliveryError(f"Broker did not acknowledge message to '{message.routing_key}'")
            if self._returned is not None:
                self._fail()
                raise DeliveryError(f"No queue is bound for routing key '{message.routing_key}'")

        self._transition(PublisherState.DONE)
        latency_ms = get_current_time_ms() - msg_start
        logger.info(" [x] Sent %r to '%s' (%.1f ms)", message.text(), message.routing_key, latency_ms)

        return PublishResult(
            success=True,
            routing_key=message.routing_key,
            latency_ms=latency_ms,
            confirmed=self.config.confirm,
        )

    def close(self):
        """Close the connection, flushing anything still buffered."""
        connection = self._connection
        if connection is not None and not (connection.is_closed or connection.is_closing):
            self._closing = True
            try:
                connection.close()
            except (AMQPError, OSError) as e:
                logger.warning(" [!] Error while closing connection to %s: %s", self.config.url, describe(e))
            else:
                if self._wait(lambda: self._closed, self.config.timeout):
                    logger.debug(" [*] Connection to %s closed", self.config.url)
                else:
                    logger.warning(
                        " [!] Connection to %s did not close within %ss", self.config.url, self.config.timeout
                    )
        self._connection = None
        self._channel = None

    def run(self) -> PublishResult:
        """Connect, publish the configured message, close."""
        with self:
            return self.publish(self.build_message())


def publish_once_blocking(config: PublisherConfig) -> PublishResult:
    """Publish the configured message once with pika."""
    return BlockingPublisher(config).run()
