"""Exceptions raised by the device fleet simulator."""

from typing import Optional


class SimulatorError(Exception):
    """Base class for simulator errors."""


class BrokerConnectionError(SimulatorError, ConnectionError):
    """The broker could not be reached, refused the session, or timed out."""


class NotConnectedError(SimulatorError):
    """An operation that needs a live broker connection ran without one."""


class PublishFailure(SimulatorError):
    """A single message did not reach the broker.

    Reported to the channel's failure handler, never raised into a timer.
    """

    def __init__(
        self,
        topic: str,
        cause: Optional[BaseException] = None,
        device_id: Optional[str] = None,
    ):
        self.topic = topic
        self.cause = cause
        self.device_id = device_id
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to publish to {topic}{detail}")
