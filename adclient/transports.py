"""
Directory transports.

A transport is the capability that actually talks to a directory server: it
dials, binds, and runs search/modify/add/delete primitives on the handle it
dialed.  :py:class:`~adclient.session.Session` owns the handles and decides
when to call what; transports hold no per-connection state of their own.

Two implementations ship with the library: :py:class:`LdapTransport`, which
speaks real LDAP through python-ldap, and
:py:class:`~adclient.fake.FakeTransport`, an in-memory directory for tests.

Transports are not assumed to be safe for concurrent use of one handle.
"""

import abc
from collections.abc import Mapping, Sequence
from typing import Any

from ldap import modlist

from adclient import ldap

from .exceptions import AuthError, DirectoryConnectionError, TransportError
from .models import Entry
from .typing import AddModlist, AttributeValue, LDAPData, ReplaceModlist

#: Search the whole subtree under the base DN.
SCOPE_SUBTREE: int = ldap.SCOPE_SUBTREE  # type: ignore[attr-defined]
#: Search only the base DN itself.
SCOPE_BASE: int = ldap.SCOPE_BASE  # type: ignore[attr-defined]
#: Matches any entry; used for base-scope existence checks.
MATCH_ALL = "(objectClass=*)"


def encode_values(values: Sequence[AttributeValue]) -> list[bytes]:
    """
    Encode attribute values for the wire.  ``bytes`` pass through untouched.
    """
    return [v if isinstance(v, bytes) else str(v).encode("utf-8") for v in values]


class Transport(abc.ABC):
    """
    The directory protocol primitives a :py:class:`~adclient.session.Session`
    is built on.

    Every method that touches the network raises a
    :py:class:`~adclient.exceptions.DirectoryError` subclass:
    :py:class:`~adclient.exceptions.DirectoryConnectionError` when the server
    cannot be reached, :py:class:`~adclient.exceptions.AuthError` when a bind
    is rejected and :py:class:`~adclient.exceptions.TransportError` for any
    other failed operation.
    """

    @abc.abstractmethod
    def dial(self, url: str, insecure_tls: bool = False, timeout: float = 0) -> Any:
        """
        Open a connection to ``url`` and return its handle.

        Args:
            url: ``ldap://`` or ``ldaps://`` URL of the server
            insecure_tls: skip certificate verification for ``ldaps://``
            timeout: network timeout in seconds; ``0`` means the transport's
                default

        """

    @abc.abstractmethod
    def bind(self, handle: Any, dn: str, password: str) -> None:
        """
        Authenticate ``handle`` as ``dn``.
        """

    @abc.abstractmethod
    def search(
        self,
        handle: Any,
        base_dn: str,
        searchfilter: str,
        scope: int = SCOPE_SUBTREE,
        attributes: Sequence[str] | None = None,
        time_limit: float | None = None,
    ) -> list[Entry]:
        """
        Run a search and return every matching entry, in server order.  A
        missing ``base_dn`` yields no entries rather than an error.
        """

    @abc.abstractmethod
    def modify_replace(
        self, handle: Any, dn: str, attribute: str, values: Sequence[AttributeValue]
    ) -> None:
        """
        Replace every value of ``attribute`` on ``dn`` with ``values`` in a
        single modify operation.
        """

    @abc.abstractmethod
    def add(
        self, handle: Any, dn: str, attributes: Mapping[str, Sequence[AttributeValue]]
    ) -> None:
        """
        Create entry ``dn``.
        """

    @abc.abstractmethod
    def delete(self, handle: Any, dn: str) -> None:
        """
        Remove entry ``dn``.
        """

    @abc.abstractmethod
    def close(self, handle: Any) -> None:
        """
        Release ``handle``.
        """


class LdapTransport(Transport):
    """
    A :py:class:`Transport` backed by python-ldap.

    python-ldap connects lazily, so an unreachable server is reported by the
    first bind or search on the handle rather than by :py:meth:`dial`.  Either
    way it surfaces as
    :py:class:`~adclient.exceptions.DirectoryConnectionError`.
    """

    #: python-ldap errors that mean the server could not be reached.
    CONNECTION_ERRORS: tuple[type[Exception], ...] = (
        ldap.SERVER_DOWN,  # type: ignore[attr-defined]
        ldap.CONNECT_ERROR,  # type: ignore[attr-defined]
        ldap.TIMEOUT,  # type: ignore[attr-defined]
    )

    def _translate(self, exc: Exception, operation: str) -> Exception:
        if isinstance(exc, self.CONNECTION_ERRORS):
            return DirectoryConnectionError(f"{operation}: {exc}")
        return TransportError(f"{operation}: {exc}")

    def dial(self, url: str, insecure_tls: bool = False, timeout: float = 0) -> Any:
        try:
            handle = ldap.initialize(url)
            handle.set_option(ldap.OPT_REFERRALS, 0)  # type: ignore[attr-defined]
            if timeout:
                handle.set_option(ldap.OPT_NETWORK_TIMEOUT, float(timeout))  # type: ignore[attr-defined]
            if url.lower().startswith("ldaps://"):
                if insecure_tls:
                    handle.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)  # type: ignore[attr-defined]
                else:
                    handle.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)  # type: ignore[attr-defined]
                handle.set_option(ldap.OPT_X_TLS_NEWCTX, 0)  # type: ignore[attr-defined]
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            msg = f"dial {url}: {exc}"
            raise DirectoryConnectionError(msg) from exc
        return handle

    def bind(self, handle: Any, dn: str, password: str) -> None:
        try:
            handle.simple_bind_s(dn, password)
        except self.CONNECTION_ERRORS as exc:
            msg = f"bind {dn}: {exc}"
            raise DirectoryConnectionError(msg) from exc
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            msg = f"bind {dn}: {exc}"
            raise AuthError(msg) from exc

    def search(
        self,
        handle: Any,
        base_dn: str,
        searchfilter: str,
        scope: int = SCOPE_SUBTREE,
        attributes: Sequence[str] | None = None,
        time_limit: float | None = None,
    ) -> list[Entry]:
        try:
            if time_limit:
                handle.set_option(ldap.OPT_TIMELIMIT, int(time_limit))  # type: ignore[attr-defined]
            data: list[LDAPData] = handle.search_s(
                base_dn,
                scope,
                filterstr=searchfilter,
                attrlist=list(attributes) if attributes else None,
            )
        except ldap.NO_SUCH_OBJECT:  # type: ignore[attr-defined]
            return []
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            raise self._translate(exc, f"search {searchfilter}") from exc
        # We have to filter out any references that AD puts in
        return [
            Entry.from_ldap(dn, attrs)
            for dn, attrs in data
            if dn and isinstance(attrs, dict)
        ]

    def modify_replace(
        self, handle: Any, dn: str, attribute: str, values: Sequence[AttributeValue]
    ) -> None:
        _modlist: ReplaceModlist = [
            (ldap.MOD_REPLACE, attribute, encode_values(values))  # type: ignore[attr-defined]
        ]
        try:
            handle.modify_s(dn, _modlist)
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            raise self._translate(exc, f"modify {dn}") from exc

    def add(
        self, handle: Any, dn: str, attributes: Mapping[str, Sequence[AttributeValue]]
    ) -> None:
        data = {key: encode_values(values) for key, values in attributes.items() if values}
        _modlist: AddModlist = modlist.addModlist(data)
        try:
            handle.add_s(dn, _modlist)
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            raise self._translate(exc, f"add {dn}") from exc

    def delete(self, handle: Any, dn: str) -> None:
        try:
            handle.delete_s(dn)
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            raise self._translate(exc, f"delete {dn}") from exc

    def close(self, handle: Any) -> None:
        try:
            handle.unbind_s()
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            raise self._translate(exc, "unbind") from exc
