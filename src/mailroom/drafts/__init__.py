"""Draft continuation lookup."""

from .resolver import DraftThreadResolver

__all__ = ["DraftThreadResolver"]
