#!/usr/bin/env python3
"""
Error taxonomy for the producer.
Client library exceptions are translated into these at the publisher boundary;
each class carries the process exit code the CLI reports for it.
"""


class PublishError(Exception):
    """Base class for all producer failures."""
    exit_code = 1


class ConfigError(PublishError):
    """Invalid or unparsable configuration."""
    exit_code = 2


class BrokerConnectionError(PublishError):
    """The broker could not be reached or refused the connection."""
    exit_code = 3


class ExchangeError(PublishError):
    """The channel or the default exchange could not be opened."""
    exit_code = 4


class DeliveryError(PublishError):
    """The broker did not confirm the published message."""
    exit_code = 5


def describe(exc: BaseException) -> str:
    """Short one-line description of a client library exception."""
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__
