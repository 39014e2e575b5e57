# Providers package
"""External service providers for the take-off retrieval system."""

from .vision_providers import GroqVisionProvider, create_vision_provider

__all__ = ["GroqVisionProvider", "create_vision_provider"]
