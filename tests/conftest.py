import pytest
from unittest.mock import AsyncMock, MagicMock

from aiormq import spec
from pika.exceptions import ConnectionClosedByClient
from pika.frame import Method
from pika.spec import Basic as PikaBasic

from amqp_producer.config import ENV_VARS, PublisherConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep RABBITMQ_* and LOGGER_LOG_LEVEL from the host out of unit tests."""
    for var, _ in ENV_VARS.values():
        monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("LOGGER_LOG_LEVEL", raising=False)


@pytest.fixture
def config():
    return PublisherConfig()


@pytest.fixture
def aio_connection():
    """Fake aio-pika connection whose default exchange acks every publish."""
    exchange = MagicMock()
    exchange.publish = AsyncMock(return_value=spec.Basic.Ack(delivery_tag=1))

    channel = MagicMock()
    channel.default_exchange = exchange

    connection = MagicMock()
    connection.channel = AsyncMock(return_value=channel)
    connection.close = AsyncMock()
    connection.is_closed = False
    return connection


class FakeIOLoop:
    """Runs queued callbacks until stop(); fires the earliest timer only when nothing else is queued."""

    def __init__(self):
        self.ready = []
        self.timers = []
        self._stopping = False

    def call_later(self, delay, callback):
        timer = MagicMock(delay=delay, callback=callback)
        self.timers.append(timer)
        return timer

    def remove_timeout(self, timer):
        self.timers = [t for t in self.timers if t is not timer]

    def stop(self):
        self._stopping = True

    def start(self):
        self._stopping = False
        while not self._stopping:
            if self.ready:
                self.ready.pop(0)()
            elif self.timers:
                timer = min(self.timers, key=lambda t: t.delay)
                self.remove_timeout(timer)
                timer.callback()
            else:
                raise AssertionError("ioloop has nothing left to run and would block forever")


class FakeBroker:
    """
    Stands in for pika.SelectConnection. Tests script the broker's behaviour
    (open error, channel error, ack/nack/silence, returned message) before
    the publisher runs.
    """

    def __init__(self):
        self.ioloop = FakeIOLoop()
        self.open_error = None
        self.channel_error = None
        self.confirmation = PikaBasic.Ack
        self.returned = False
        self.parameters = None
        self.connection = None
        self.connections = 0
        self._callbacks = {}

        self.channel = MagicMock()
        self.channel.add_on_close_callback.side_effect = self._register("channel_closed")
        self.channel.add_on_return_callback.side_effect = self._register("returned")
        self.channel.confirm_delivery.side_effect = self._confirm_delivery
        self.channel.basic_publish.side_effect = self._basic_publish

    def _register(self, name):
        def register(callback):
            self._callbacks[name] = callback
        return register

    def __call__(self, parameters, on_open_callback, on_open_error_callback, on_close_callback):
        self.parameters = parameters
        self.connections += 1
        self._callbacks = {"connection_closed": on_close_callback}

        connection = MagicMock()
        connection.ioloop = self.ioloop
        connection.is_closed = False
        connection.is_closing = False
        connection.channel.side_effect = self._open_channel
        connection.close.side_effect = self._close
        self.connection = connection

        if self.open_error is not None:
            connection.is_closed = True
            self.ioloop.ready.append(lambda: on_open_error_callback(connection, self.open_error))
        else:
            self.ioloop.ready.append(lambda: on_open_callback(connection))
        return connection

    def _open_channel(self, on_open_callback):
        if self.channel_error is not None:
            self.ioloop.ready.append(
                lambda: self._callbacks["channel_closed"](self.channel, self.channel_error)
            )
        else:
            self.ioloop.ready.append(lambda: on_open_callback(self.channel))
        return self.channel

    def _confirm_delivery(self, ack_nack_callback, callback=None):
        self._callbacks["confirm"] = ack_nack_callback
        self.ioloop.ready.append(lambda: callback(MagicMock()))

    def _basic_publish(self, exchange, routing_key, body, properties, mandatory):
        if self.returned:
            method = PikaBasic.Return(reply_code=312, reply_text="NO_ROUTE", exchange=exchange,
                                      routing_key=routing_key)
            self.ioloop.ready.append(
                lambda: self._callbacks["returned"](self.channel, method, properties, body)
            )
        confirm = self._callbacks.get("confirm")
        if confirm is not None and self.confirmation is not None:
            frame = Method(1, self.confirmation(delivery_tag=1))
            self.ioloop.ready.append(lambda: confirm(frame))

    def _close(self):
        connection = self.connection
        connection.is_closing = True

        def closed():
            connection.is_closing = False
            connection.is_closed = True
            self._callbacks["connection_closed"](connection, ConnectionClosedByClient(200, "Normal shutdown"))
        self.ioloop.ready.append(closed)


@pytest.fixture
def pika_broker():
    return FakeBroker()
