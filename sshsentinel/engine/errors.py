from __future__ import annotations


class SentinelError(Exception):
    """Base class for every error raised by the evaluation engine."""


class PolicyError(SentinelError):
    """The policy document is malformed. Fatal at load time."""


class MatcherError(PolicyError):
    """A matcher expression cannot be built, e.g. an invalid regex."""


class ParseError(SentinelError):
    """Configuration input could not be decoded as text."""


class ConfigSourceError(SentinelError):
    """The configuration file could not be read at all."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"cannot read configuration source '{path}': {reason}")
        self.path = path
        self.reason = reason


class ResolutionError(SentinelError):
    """
    One resource attribute could not be determined.

    This is different from the attribute being absent: a missing file has
    no owner (Absent), an unreadable directory means we do not know.
    """

    def __init__(self, resource: str, reason: str):
        super().__init__(f"{resource}: {reason}")
        self.resource = resource
        self.reason = reason
