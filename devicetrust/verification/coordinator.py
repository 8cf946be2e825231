"""
Session coordinator interface.

The coordinator is the transport-facing collaborator a verification session
calls into. Delivering messages (to-device events, HTTP, anything else) is its
job; the session only reacts to the outcome.
"""

from abc import ABC, abstractmethod


class SessionCoordinator(ABC):
    """
    Contract for sending verification messages to the peer device.

    Implementations may raise TransportFailure from either method.
    """

    @abstractmethod
    async def send_confirmation(self, transaction_id: str) -> bool:
        """
        Send our confirmation and wait for the peer's acknowledgement.

        Returns:
            True if the peer acknowledged, False if it refused or never answered
        """
        ...

    @abstractmethod
    async def send_cancellation(self, transaction_id: str, reason: str) -> None:
        """
        Tell the peer the handshake is cancelled. Best effort.
        """
        ...
