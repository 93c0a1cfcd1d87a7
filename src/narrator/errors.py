"""Exception types shared by the channel client, backends and orchestrator."""

from __future__ import annotations


class NarratorError(RuntimeError):
    """Base error raised by the relay."""


class ProtocolError(NarratorError):
    """Raised when a channel frame cannot be decoded."""


class DeliveryError(NarratorError):
    """Raised when a delivery backend call fails."""

    def __init__(self, action: str, detail: str):
        super().__init__(f"{action}: {detail}")
        self.action = action
        self.detail = detail


class DeliveryTimeout(DeliveryError):
    """Raised when a backend request does not answer before its deadline."""


class DeliveryUnavailable(DeliveryError):
    """Raised when no delivery target could be provisioned."""


__all__ = [
    "NarratorError",
    "ProtocolError",
    "DeliveryError",
    "DeliveryTimeout",
    "DeliveryUnavailable",
]
