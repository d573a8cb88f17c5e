"""Exception hierarchy shared by the book pipeline and the HTTP surface."""


class BookpressError(Exception):
    """Base class for every error raised by bookpress services."""


class ParseError(BookpressError):
    """The archive could not be read, even after salvage."""


class ResourceError(BookpressError):
    """A single content document failed extraction and is skipped."""


class PublishError(BookpressError):
    """A page could not be created after exhausting retries."""


class CredentialExhausted(PublishError):
    """Every credential is cooling down and a new account could not be created."""


class EditError(BookpressError):
    """A footer back-patch was abandoned; the page stays reachable without it."""


class AlreadyProcessing(BookpressError):
    """A book for the same user is already in flight."""
