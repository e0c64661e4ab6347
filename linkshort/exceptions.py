class LinkShortError(Exception):
    """Base class for errors raised by the link services."""


class LinkNotFoundError(LinkShortError):
    """The code or id is unknown, expired, or owned by someone else."""


class ShortCodeConflictError(LinkShortError):
    """A short code could not be stored because it is already taken."""

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.code = code
