"""
Exceptions raised by the directory client.

Every error the library raises derives from :py:class:`DirectoryError`, so
callers that do not care about the specific failure can catch that alone.
Lookups that find nothing are not errors: they return ``None``.  Only
operations that need an existing target turn absence into
:py:class:`NotFoundError`.
"""


class DirectoryError(Exception):
    """
    Base class for all errors raised by :py:mod:`adclient`.
    """


class DirectoryConnectionError(DirectoryError):
    """
    Dialing the directory server failed.

    :py:meth:`~adclient.session.Session.connect` does not retry these itself;
    :py:meth:`~adclient.session.Session.reconnect` does.
    """


class AuthError(DirectoryError):
    """
    The bind was rejected.  Never retried with the same credentials.
    """


class TransportError(DirectoryError):
    """
    A directory operation (search, modify, add, delete) failed on an
    established connection.
    """


class AmbiguousResultError(DirectoryError):
    """
    More than one entry matched a filter that must be unique within the
    search root.
    """

    def __init__(self, msg: str, count: int = 0) -> None:
        super().__init__(msg)
        #: How many entries matched.
        self.count = count


class NotFoundError(DirectoryError):
    """
    An operation required an existing entry and none was found.
    """


class ValidationError(DirectoryError):
    """
    A request was malformed, e.g. it named neither an id, a DN nor a filter.
    """


class ExhaustedRetriesError(DirectoryError):
    """
    The reconnect loop gave up.

    Args:
        attempts: the number of reconnect attempts made
        last_error: the error from the failed health probe or the last
            failed connect attempt

    """

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        msg = f"failed after {attempts} attempts. error: {last_error}"
        super().__init__(msg)
        self.attempts = attempts
        self.last_error = last_error


class CancelledError(DirectoryError):
    """
    The caller cancelled a reconnect while it was waiting for the next try.
    """


class ResolutionError(DirectoryError):
    """
    Resolving one of the candidate members of a group change failed, so the
    whole change was abandoned.

    Args:
        identifier: the candidate id whose lookup failed

    """

    def __init__(self, msg: str, identifier: str) -> None:
        super().__init__(msg)
        self.identifier = identifier
