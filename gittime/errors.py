from __future__ import annotations


class GittimeError(Exception):
    """Base class for errors surfaced to the operator."""


class ConfigError(GittimeError):
    pass


class StorageError(GittimeError):
    """A persisted document could not be read or written; fails the run."""


class GitQueryError(GittimeError):
    """The log reader could not answer a query (bad revision, not a repo)."""


class ClassificationError(GittimeError):
    """Transport, decode, or sanitization failure from the external classifier."""
