"""Exception types raised by the engine."""

from __future__ import annotations


class CodecaseError(Exception):
    """Base class for engine errors."""


class InvalidTransition(CodecaseError):
    """Command is not valid for the current playthrough phase."""


class StoreError(CodecaseError):
    """Profile store read or write failed; local state was left untouched."""
