#!/usr/bin/env python3
"""
Command-line entry point: publish one message and exit.

Exit codes: 0 on a confirmed publish, 2 for bad configuration, 3 when the
broker cannot be reached, 4 when the channel cannot be opened, 5 when the
message is not confirmed, 130 on interrupt.
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional, Union

from .async_publisher import AsyncPublisher
from .config import PublisherConfig
from .errors import ConfigError, PublishError
from .log import setup_logging
from .messaging import DeliveryMode, PublishResult
from .publisher import BlockingPublisher

logger = logging.getLogger(__name__)

PUBLISHERS = {
    'aio-pika': AsyncPublisher,
    'pika': BlockingPublisher,
}


def create_publisher(client: str, config: PublisherConfig) -> Union[AsyncPublisher, BlockingPublisher]:
    """Factory function to create a publisher for the given client library."""
    client_lower = client.lower()
    if client_lower not in PUBLISHERS:
        raise ConfigError(f"Unknown client: {client}")
    return PUBLISHERS[client_lower](config)


def run(config: PublisherConfig, client: str = 'aio-pika') -> PublishResult:
    publisher = create_publisher(client, config)
    if isinstance(publisher, AsyncPublisher):
        return asyncio.run(publisher.run())
    return publisher.run()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='amqp-publish',
        description='Publish a single message to a queue through the default exchange.'
    )
    # Unset flags stay None and fall through to RABBITMQ_* env vars, then defaults.
    parser.add_argument('--host', help='Broker host (env RABBITMQ_HOST, default localhost)')
    parser.add_argument('--port', type=int, help='Broker port (env RABBITMQ_PORT, default 5672)')
    parser.add_argument('--vhost', help='Virtual host (env RABBITMQ_VHOST, default /)')
    parser.add_argument('--username', help='Username (env RABBITMQ_USER, default guest)')
    parser.add_argument('--password', help='Password (env RABBITMQ_PASS, default guest)')
    parser.add_argument('--routing-key', help='Destination queue name (env RABBITMQ_ROUTING_KEY, default testQ)')
    parser.add_argument('--message', dest='body', help="Message body (env RABBITMQ_MESSAGE, default 'Hello World!')")
    parser.add_argument('--content-type', help='Content type (default text/plain)')
    parser.add_argument('--persistent', dest='delivery_mode', action='store_const',
                        const=DeliveryMode.PERSISTENT, help='Ask the broker to persist the message')
    parser.add_argument('--no-confirm', dest='confirm', action='store_const', const=False,
                        help='Do not wait for publisher confirms')
    parser.add_argument('--mandatory', action='store_const', const=True,
                        help='Fail if no queue matches the routing key')
    parser.add_argument('--timeout', type=float,
                        help='Seconds to wait for connect and confirm (env RABBITMQ_TIMEOUT, default: wait forever)')
    parser.add_argument('--connection-attempts', type=int,
                        help='Connection attempts before giving up (env RABBITMQ_CONNECTION_ATTEMPTS, default 1)')
    parser.add_argument('--retry-delay', type=float, help='Seconds between connection attempts (default 2)')
    parser.add_argument('--client', choices=sorted(PUBLISHERS), default='aio-pika',
                        help='Client library to publish with')
    parser.add_argument('--log-level', help='DEBUG, INFO, WARNING or ERROR (env LOGGER_LOG_LEVEL, default WARNING)')
    parser.add_argument('--log-file', help='Also write log output to this file')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        setup_logging(args.log_level, args.log_file)
    except ValueError as e:
        parser.error(str(e))

    overrides = {
        name: getattr(args, name)
        for name in (
            'host', 'port', 'vhost', 'username', 'password', 'routing_key', 'body',
            'content_type', 'delivery_mode', 'confirm', 'mandatory', 'timeout',
            'connection_attempts', 'retry_delay',
        )
    }

    try:
        config = PublisherConfig.from_env(**overrides)
        result = run(config, args.client)
    except PublishError as e:
        logger.error(" [!] %s", e)
        return e.exit_code
    except KeyboardInterrupt:
        logger.warning(" [!] Interrupted before the message was confirmed")
        return 130

    logger.info(" [x] Done: routing_key=%s confirmed=%s", result.routing_key, result.confirmed)
    return 0


if __name__ == "__main__":
    sys.exit(main())
