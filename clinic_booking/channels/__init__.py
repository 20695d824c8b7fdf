"""Response renderers for telephony channels."""

from .twiml import TwiMLRenderer

__all__ = ["TwiMLRenderer"]
