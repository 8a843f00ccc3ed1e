"""Model transports and provider wiring."""

from .transport import OpenAICompatibleTransport, TransportSettings

__all__ = ["OpenAICompatibleTransport", "TransportSettings"]
