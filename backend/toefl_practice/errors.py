"""Exceptions shared by the provider clients and services.

Route handlers translate these into HTTP errors; nothing below the HTTP
layer knows about status codes.
"""


class ConfigurationError(RuntimeError):
    """A required setting (usually a provider API key) is missing."""


class ProviderError(RuntimeError):
    """An external provider failed or returned something unusable."""


class NotFoundError(LookupError):
    """A referenced row does not exist or is not visible to the caller."""
