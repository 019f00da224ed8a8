"""Parsers package: format adapters, the dispatch registry and the canonical mapper."""

from .base import BaseParser, SourceFormat  # noqa: F401
from .mapper import CanonicalMapper, normalize_channel  # noqa: F401
from .registry import ParserRegistry, parse  # noqa: F401
