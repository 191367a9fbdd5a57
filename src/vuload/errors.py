from __future__ import annotations


class VuloadError(Exception):
    """Base for errors that abort a run before any virtual user starts."""


class ConfigError(VuloadError):
    """Invalid scenario, request or threshold configuration."""


class EncodingError(VuloadError):
    """The request body could not be serialized."""
