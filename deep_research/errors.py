"""Exception types that cross component boundaries.

Most failures inside a research run are absorbed where they happen and show up
as empty collections. Only the types below are meant to travel upwards.
"""
from __future__ import annotations


class ResearchError(Exception):
    """Base class for research failures."""


class BrowserUnavailableError(ResearchError):
    """The browser collaborator cannot be used at all; the run cannot proceed."""


class LLMResponseError(ResearchError):
    """A completion failed or returned content that could not be used."""


class JSONExtractionError(LLMResponseError):
    """No usable JSON payload could be recovered from a completion."""
