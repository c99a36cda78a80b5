from __future__ import annotations


class AllowscanError(Exception):
    """Base class for errors that abort a run."""


class ConfigError(AllowscanError):
    """Configuration file is missing, malformed, or has unknown keys."""


class InputFileError(AllowscanError):
    """The identifier list could not be read."""


class SessionUnavailableError(AllowscanError):
    """No usable session headers could be obtained at startup."""


class OutputFileError(AllowscanError):
    """A result file could not be created or opened for appending."""
