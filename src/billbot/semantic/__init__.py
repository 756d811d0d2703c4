"""Semantic understanding module using LLM inference."""

from .inference import BillExtractor

__all__ = ["BillExtractor"]
