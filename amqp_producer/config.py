#!/usr/bin/env python3
"""
Publisher configuration.
Defaults match a stock local RabbitMQ; each connection field can be
overridden through RABBITMQ_* environment variables or explicit keyword
overrides (the CLI passes its flags that way).
"""
import os
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional
from urllib.parse import quote

from .errors import ConfigError
from .messaging import DeliveryMode, MAX_ROUTING_KEY_BYTES


DEFAULT_HOST = 'localhost'
DEFAULT_PORT = 5672
DEFAULT_VHOST = '/'
DEFAULT_USERNAME = 'guest'
DEFAULT_PASSWORD = 'guest'
DEFAULT_ROUTING_KEY = 'testQ'
DEFAULT_MESSAGE = 'Hello World!'

# field name -> (environment variable, parser)
ENV_VARS = {
    'host': ('RABBITMQ_HOST', str),
    'port': ('RABBITMQ_PORT', int),
    'vhost': ('RABBITMQ_VHOST', str),
    'username': ('RABBITMQ_USER', str),
    'password': ('RABBITMQ_PASS', str),
    'routing_key': ('RABBITMQ_ROUTING_KEY', str),
    'body': ('RABBITMQ_MESSAGE', str),
    'timeout': ('RABBITMQ_TIMEOUT', float),
    'connection_attempts': ('RABBITMQ_CONNECTION_ATTEMPTS', int),
}


@dataclass(frozen=True)
class PublisherConfig:
    """Everything a publisher needs to connect and send its one message."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    vhost: str = DEFAULT_VHOST
    username: str = DEFAULT_USERNAME
    password: str = DEFAULT_PASSWORD
    routing_key: str = DEFAULT_ROUTING_KEY
    body: str = DEFAULT_MESSAGE
    content_type: str = 'text/plain'
    delivery_mode: DeliveryMode = DeliveryMode.NOT_PERSISTENT
    confirm: bool = True
    mandatory: bool = False
    timeout: Optional[float] = None
    connection_attempts: int = 1
    retry_delay: float = 2.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> 'PublisherConfig':
        """
        Build a config from environment variables, then apply overrides.

        Overrides whose value is None are ignored so that unset CLI flags
        fall through to the environment and then to the defaults.
        """
        if environ is None:
            environ = os.environ

        values = {}
        for name, (var, parse) in ENV_VARS.items():
            raw = environ.get(var)
            if raw is None or raw == '':
                continue
            try:
                values[name] = parse(raw)
            except ValueError as e:
                raise ConfigError(f"{var}={raw!r} is not a valid {parse.__name__}") from e

        known = {f.name for f in fields(cls)}
        for name, value in overrides.items():
            if name not in known:
                raise ConfigError(f"Unknown configuration option: {name}")
            if value is not None:
                values[name] = value

        config = cls(**values)
        config.validate()
        return config

    def validate(self):
        """Raise ConfigError if any field is out of range."""
        if not self.host:
            raise ConfigError("host must not be empty")
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"port must be between 1 and 65535, got {self.port}")
        if not self.routing_key:
            raise ConfigError("routing key must not be empty")
        if len(self.routing_key.encode('utf-8')) > MAX_ROUTING_KEY_BYTES:
            raise ConfigError(f"routing key must be at most {MAX_ROUTING_KEY_BYTES} bytes")
        if self.connection_attempts < 1:
            raise ConfigError("connection attempts must be at least 1")
        if self.retry_delay < 0:
            raise ConfigError("retry delay must not be negative")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if self.mandatory and not self.confirm:
            raise ConfigError("mandatory publishing needs publisher confirms to report returned messages")
        try:
            DeliveryMode(self.delivery_mode)
        except ValueError as e:
            raise ConfigError(f"Unknown delivery mode: {self.delivery_mode}") from e

    @property
    def url(self) -> str:
        """Connection URL with the password masked, safe to log."""
        return f"amqp://{quote(self.username, safe='')}:***@{self.host}:{self.port}/{quote(self.vhost, safe='')}"
