#!/usr/bin/env python3
"""
State tracking shared by the async and blocking publishers.
"""
import logging

from .config import PublisherConfig
from .errors import PublishError
from .messaging import Message, PublisherState, create_message

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PublisherState.IDLE: {PublisherState.CONNECTING},
    PublisherState.CONNECTING: {PublisherState.READY, PublisherState.FAILED},
    PublisherState.READY: {PublisherState.PUBLISHING, PublisherState.FAILED},
    PublisherState.PUBLISHING: {PublisherState.DONE, PublisherState.FAILED},
}


class PublisherBase:
    """One publisher instance owns one connection and sends one message."""

    def __init__(self, config: PublisherConfig, client_name: str):
        self.config = config
        self.client_name = client_name
        self.state = PublisherState.IDLE

    def build_message(self) -> Message:
        return create_message(
            payload=self.config.body,
            routing_key=self.config.routing_key,
            content_type=self.config.content_type,
            delivery_mode=self.config.delivery_mode
        )

    def _transition(self, new_state: PublisherState):
        if new_state not in ALLOWED_TRANSITIONS.get(self.state, ()):
            raise PublishError(
                f"Invalid publisher state transition {self.state.name} -> {new_state.name}"
            )
        logger.debug(" [*] %s publisher: %s -> %s", self.client_name, self.state.name, new_state.name)
        self.state = new_state

    def _fail(self):
        if not self.state.is_terminal:
            self._transition(PublisherState.FAILED)

    def _require_ready(self):
        if self.state != PublisherState.READY:
            raise PublishError(
                f"Cannot publish while {self.state.name}; "
                "each publisher sends exactly one message"
            )
