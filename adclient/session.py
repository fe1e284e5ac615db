"""
Directory session management.

A :py:class:`Session` owns the one long-lived connection a client uses.  It
knows how to open it (dial plus optional bind), close it, and recover it with
a bounded retry loop when the server goes away.  It is also the entry
resolver: every search goes through :py:meth:`Session.search` or
:py:meth:`Session.search_all`.

The transport is not assumed to be safe for concurrent use, so every
operation on the session's own handle is serialized through a re-entrant
lock.  Code that wants parallelism (the membership reconciler) opens its own
short-lived connections with :py:meth:`Session.new_connection` instead.
"""

import enum
import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from functools import wraps
from typing import Any

from .config import Config, render_filter
from .exceptions import (
    AmbiguousResultError,
    AuthError,
    CancelledError,
    DirectoryConnectionError,
    DirectoryError,
    ExhaustedRetriesError,
    TransportError,
)
from .models import Entry
from .transports import MATCH_ALL, SCOPE_BASE, SCOPE_SUBTREE, Transport
from .typing import AttributeValue

#: Name of the logger used when the caller does not supply one.
LOGGER_NAME = "django-adclient"


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    #: The last :py:meth:`Session.reconnect` gave up or was cancelled.
    FAILED = "failed"


def atomic(func: Callable) -> Callable:
    """
    Decorator for methods that use the session's own connection.

    Holds the session lock for the duration of the call and opens the
    connection first if there isn't one.

    Args:
        func: The method to wrap.

    Returns:
        The wrapped method.

    """

    @wraps(func)
    def wrapper(self, *args, **kwargs) -> Any:
        with self._lock:
            if self.handle is None:
                self.connect()
            return func(self, *args, **kwargs)

    return wrapper


class Session:
    """
    The connection lifecycle for one directory.

    ``connect()`` is idempotent: calling it on a connected session does
    nothing.  Call :py:meth:`disconnect` first to force a re-dial.

    Args:
        config: where and as whom to connect
        transport: the capability that does the actual I/O

    Keyword Args:
        logger: anything with a ``debug(msg, *args)`` method; defaults to the
            ``django-adclient`` logger

    """

    #: Seconds between reconnect attempts when the caller passes ``0``.
    DEFAULT_POLL_INTERVAL: float = 5.0
    #: Reconnect attempts when the caller passes ``0``.
    DEFAULT_MAX_ATTEMPTS: int = 2

    def __init__(
        self, config: Config, transport: Transport, logger: Any | None = None
    ) -> None:
        self.config = config
        self.transport = transport
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        #: The live transport handle, or ``None`` while disconnected.
        self.handle: Any | None = None
        self.state: SessionState = SessionState.DISCONNECTED
        self._lock = threading.RLock()

    def is_connected(self) -> bool:
        return self.handle is not None

    # -----------------------
    # Connection lifecycle
    # -----------------------

    def _open(self, dn: str | None = None, password: str = "") -> Any:
        """
        Dial the server and bind, either as ``dn`` or, if that is not given,
        as the configured bind account.

        Raises:
            DirectoryConnectionError: the server could not be reached
            AuthError: the bind was rejected

        Returns:
            A new handle, owned by the caller.

        """
        if dn is None and self.config.bind is not None:
            dn, password = self.config.bind.dn, self.config.bind.password
        handle = self._call(
            f"dial {self.config.url}",
            self.transport.dial,
            self.config.url,
            self.config.insecure_tls,
            self.config.timeout,
        )
        if dn is not None:
            try:
                self._call(f"bind {dn}", self.transport.bind, handle, dn, password)
            except DirectoryError:
                self.close_connection(handle)
                raise
        return handle

    def connect(self) -> None:
        """
        Open the session's connection and bind it if a bind account is
        configured.  Does nothing if already connected.

        Raises:
            DirectoryConnectionError: the server could not be reached
            AuthError: the bind was rejected

        """
        with self._lock:
            if self.handle is not None:
                return
            self.state = SessionState.CONNECTING
            try:
                self.handle = self._open()
            except DirectoryError:
                self.state = SessionState.DISCONNECTED
                raise
            self.state = SessionState.CONNECTED
            self.logger.debug("session.connect.success url=%s", self.config.url)

    def disconnect(self) -> None:
        """
        Close the session's connection.  Does nothing if not connected, and
        never raises.
        """
        with self._lock:
            handle, self.handle = self.handle, None
            self.state = SessionState.DISCONNECTED
            if handle is not None:
                self.close_connection(handle)

    def new_connection(self) -> Any:
        """
        Open a connection, bound as the configured bind account, that the
        session does not own.  Release it with :py:meth:`close_connection`.

        Raises:
            DirectoryConnectionError: the server could not be reached
            AuthError: the bind was rejected

        """
        return self._open()

    def close_connection(self, handle: Any) -> None:
        """
        Close ``handle``.  Close errors are logged and otherwise ignored: the
        connection is unusable afterwards either way.
        """
        try:
            self._call("close", self.transport.close, handle)
        except DirectoryError as exc:
            self.logger.debug("session.close.failed error=%s", exc)

    def check_credentials(self, dn: str, password: str) -> None:
        """
        Verify that ``dn`` can bind with ``password``, on a throwaway
        connection that is always closed.  The session's own connection is
        not touched.

        An empty password is rejected without contacting the server: the
        directory would accept it as an unauthenticated bind.

        Raises:
            DirectoryConnectionError: the server could not be reached
            AuthError: the credentials were rejected

        """
        if not password:
            self.logger.debug("auth.empty_password dn=%s", dn)
            msg = f"bind {dn}: empty password"
            raise AuthError(msg)
        try:
            handle = self._open(dn, password)
        except AuthError:
            self.logger.debug("auth.invalid_credentials dn=%s", dn)
            raise
        self.close_connection(handle)

    def _probe(self) -> None:
        """
        Check that the session's connection still works by looking up the
        bound identity itself.  Anonymous sessions look up the search base.

        Raises:
            DirectoryError: the connection is unusable

        """
        if self.handle is None:
            msg = "not connected"
            raise DirectoryConnectionError(msg)
        if self.config.bind is not None:
            self.search_all(
                self.config.search_base,
                render_filter(self.config.users.filter_by_dn, self.config.bind.dn),
                attributes=[self.config.users.id_attribute],
                handle=self.handle,
            )
        else:
            self.search_all(
                self.config.search_base,
                MATCH_ALL,
                attributes=["objectClass"],
                scope=SCOPE_BASE,
                handle=self.handle,
            )

    def _fail(self) -> None:
        self.disconnect()
        self.state = SessionState.FAILED

    def reconnect(
        self,
        cancel: threading.Event | None = None,
        poll_interval: float = 0,
        max_attempts: int = 0,
    ) -> int:
        """
        Make sure the session's connection works, re-dialing if it doesn't.

        First the connection is probed.  If the probe succeeds this returns
        ``0`` at once.  Otherwise, every ``poll_interval`` seconds the session
        disconnects and connects again until a connect succeeds or
        ``max_attempts`` attempts have failed.  Setting ``cancel`` stops the
        wait for the next attempt; an attempt already under way is allowed to
        finish.

        Args:
            cancel: set this from another thread to give up
            poll_interval: seconds between attempts; ``0`` means
                :py:attr:`DEFAULT_POLL_INTERVAL`
            max_attempts: attempts before giving up; ``0`` means
                :py:attr:`DEFAULT_MAX_ATTEMPTS`

        Only connection failures are retried.  A rejected bind ends the loop
        at once.  Whenever the loop gives up the session is left
        disconnected.

        Raises:
            AuthError: the bind account was rejected
            CancelledError: ``cancel`` was set while waiting
            ExhaustedRetriesError: every attempt failed

        Returns:
            The number of reconnect attempts it took.

        """
        poll_interval = poll_interval or self.DEFAULT_POLL_INTERVAL
        max_attempts = max_attempts or self.DEFAULT_MAX_ATTEMPTS
        cancel = cancel or threading.Event()
        with self._lock:
            try:
                self._probe()
            except DirectoryError as exc:
                last_error: DirectoryError = exc
            else:
                return 0
            self.logger.debug("session.reconnect.probe_failed error=%s", last_error)
            self.state = SessionState.RECONNECTING
            attempts = 0
            while True:
                if cancel.wait(poll_interval):
                    self._fail()
                    msg = f"reconnect cancelled after {attempts} attempts"
                    raise CancelledError(msg)
                if attempts >= max_attempts:
                    self._fail()
                    raise ExhaustedRetriesError(attempts, last_error)
                attempts += 1
                self.logger.debug("session.reconnect.attempt attempt=%d", attempts)
                self.disconnect()
                try:
                    self.connect()
                except AuthError:
                    self.logger.debug("session.reconnect.auth_failed attempt=%d", attempts)
                    self._fail()
                    raise
                except DirectoryError as exc:
                    last_error = exc
                    self.state = SessionState.RECONNECTING
                    continue
                self.logger.debug("session.reconnect.success attempts=%d", attempts)
                return attempts

    # -----------------------
    # Entry resolution
    # -----------------------

    def _call(self, operation: str, func: Callable, *args) -> Any:
        try:
            return func(*args)
        except DirectoryError:
            raise
        except Exception as exc:
            msg = f"{operation}: {exc}"
            raise TransportError(msg) from exc

    def _search(
        self,
        handle: Any,
        base_dn: str,
        searchfilter: str,
        attributes: Sequence[str] | None,
        scope: int,
        time_limit: float | None,
    ) -> list[Entry]:
        if time_limit is None:
            time_limit = self.config.timeout
        return self._call(
            f"search {searchfilter}",
            self.transport.search,
            handle,
            base_dn,
            searchfilter,
            scope,
            attributes,
            time_limit,
        )

    @atomic
    def _session_search(self, *args) -> list[Entry]:
        return self._search(self.handle, *args)

    def search_all(
        self,
        base_dn: str,
        searchfilter: str,
        attributes: Sequence[str] | None = None,
        scope: int = SCOPE_SUBTREE,
        time_limit: float | None = None,
        handle: Any | None = None,
    ) -> list[Entry]:
        """
        Return every entry under ``base_dn`` that matches ``searchfilter``.

        Args:
            base_dn: the search root
            searchfilter: an LDAP filter string
            attributes: attributes to fetch; ``None`` means all
            scope: :py:data:`~adclient.transports.SCOPE_SUBTREE` or
                :py:data:`~adclient.transports.SCOPE_BASE`
            time_limit: seconds; ``None`` means the configured timeout
            handle: search on this connection instead of the session's own

        Raises:
            DirectoryConnectionError: the connection is unusable
            TransportError: the search failed

        """
        if handle is not None:
            return self._search(handle, base_dn, searchfilter, attributes, scope, time_limit)
        return self._session_search(base_dn, searchfilter, attributes, scope, time_limit)

    def search(
        self,
        base_dn: str,
        searchfilter: str,
        attributes: Sequence[str] | None = None,
        scope: int = SCOPE_SUBTREE,
        time_limit: float | None = None,
        handle: Any | None = None,
    ) -> Entry | None:
        """
        Return the one entry that matches ``searchfilter``, or ``None``.

        Takes the same arguments as :py:meth:`search_all`.

        Raises:
            AmbiguousResultError: more than one entry matched
            DirectoryConnectionError: the connection is unusable
            TransportError: the search failed

        """
        entries = self.search_all(
            base_dn, searchfilter, attributes, scope, time_limit, handle=handle
        )
        if len(entries) > 1:
            msg = f"too many entries found: {len(entries)} entries match {searchfilter}"
            raise AmbiguousResultError(msg, count=len(entries))
        if not entries:
            return None
        return entries[0]

    # -----------------------
    # Writes
    # -----------------------

    @atomic
    def modify_replace(
        self, dn: str, attribute: str, values: Sequence[AttributeValue]
    ) -> None:
        """
        Replace all values of ``attribute`` on ``dn`` in one operation.
        """
        self._call(
            f"modify {dn}", self.transport.modify_replace, self.handle, dn, attribute, values
        )

    @atomic
    def add(self, dn: str, attributes: Mapping[str, Sequence[AttributeValue]]) -> None:
        self._call(f"add {dn}", self.transport.add, self.handle, dn, attributes)

    @atomic
    def delete(self, dn: str) -> None:
        self._call(f"delete {dn}", self.transport.delete, self.handle, dn)
