"""AuraSense: local record store and explainable migraine risk prediction."""

from aurasense.core.log import configure_logging

__version__ = "0.1.0"

__all__ = ["configure_logging"]
