"""Exception hierarchy for the enrichment pipeline."""

from __future__ import annotations


class LorekeeperError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(LorekeeperError, ValueError):
    """Raised when a caller supplies incomplete input (missing id, name, content)."""


class PipelineConfigurationError(ConfigurationError):
    """Raised when a stage declaration can never be satisfied."""


class CompletionError(LorekeeperError):
    """Raised when the text-generation capability fails to produce a response."""


class InvalidTransitionError(LorekeeperError):
    """Raised when a triage item is moved along a transition that does not exist."""
