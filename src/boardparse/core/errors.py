"""Exception hierarchy for boardparse.

Parsing stages never raise on user input; they degrade to plain text and
report a :class:`~boardparse.core.model.Diagnostic`. Only configuration and
storage problems surface as exceptions.
"""

from .model import PostId


class BoardParseError(Exception):
    """Base class for every error raised by boardparse."""


class ConfigError(BoardParseError):
    """Board configuration failed validation."""


class StorageUnavailable(BoardParseError):
    """Raised by a storage gateway when the backing store cannot be used."""


class ParseFailure(BoardParseError):
    """A post could not be parsed and persisted."""

    def __init__(self, message: str, post_id: PostId | None = None):
        super().__init__(message)
        self.post_id = post_id


class BodyTooLong(ParseFailure):
    def __init__(self, post_id: PostId | None, length: int, limit: int):
        super().__init__(
            f"Post body is {length} characters, limit is {limit}", post_id
        )
        self.length = length
        self.limit = limit


class ResolutionUnavailable(ParseFailure):
    """Storage could not be queried while resolving references."""


class SyncFailure(ParseFailure):
    """A backlink delta could not be committed. Nothing was applied."""
