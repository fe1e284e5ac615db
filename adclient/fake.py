"""
An in-memory :py:class:`~adclient.transports.Transport` for tests.

The fake does not evaluate LDAP filters.  It is seeded with entries and with
an explicit map from filter string to the DNs that filter should return, so a
test states exactly what the directory answers.  Build a fresh one per test::

    fake = FakeTransport(credentials={"CN=svc,DC=example,DC=com": "secret"})
    fake.register(
        "CN=alice,OU=Staff,DC=example,DC=com",
        {"sAMAccountName": ["alice"]},
        filters=["(&(objectClass=person)(sAMAccountName=alice))"],
    )

"""

import threading
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .exceptions import AuthError, DirectoryConnectionError, TransportError
from .models import Entry
from .transports import MATCH_ALL, SCOPE_BASE, SCOPE_SUBTREE, Transport
from .typing import AttributeValue


@dataclass
class FakeHandle:
    """
    A connection handed out by :py:class:`FakeTransport`.
    """

    url: str
    bound_dn: str | None = None
    closed: bool = False


@dataclass
class Modification:
    """
    One ``modify_replace`` call recorded by :py:class:`FakeTransport`.
    """

    dn: str
    attribute: str
    values: list[AttributeValue] = field(default_factory=list)


class FakeTransport(Transport):
    """
    A fixture-backed directory.

    Args:
        credentials: DN to password for every identity that may bind

    """

    def __init__(self, credentials: Mapping[str, str] | None = None) -> None:
        self.credentials: dict[str, str] = dict(credentials or {})
        #: DN to entry, in registration order.
        self.entries: dict[str, Entry] = {}
        #: Filter string to the DNs it matches, in match order.
        self.filters: dict[str, list[str]] = {}
        #: Filter string to the error searching with it raises.
        self.search_errors: dict[str, Exception] = {}
        #: Filter string to seconds a search with it takes.
        self.delays: dict[str, float] = {}
        #: When ``True`` every :py:meth:`dial` fails.
        self.unreachable: bool = False
        #: Every ``modify_replace`` call, in order.
        self.modifications: list[Modification] = []
        #: Every successful dial.
        self.handles: list[FakeHandle] = []
        #: Number of :py:meth:`dial` calls, successful or not.
        self.dial_count: int = 0
        self._lock = threading.Lock()

    # -----------------------
    # Fixture setup
    # -----------------------

    def register(
        self,
        dn: str,
        attributes: Mapping[str, Sequence[Any]],
        filters: Iterable[str] = (),
    ) -> Entry:
        """
        Add an entry to the directory and make each of ``filters`` match it.
        """
        entry = Entry.from_ldap(dn, attributes)
        with self._lock:
            self.entries[dn] = entry
        for searchfilter in filters:
            self.map_filter(searchfilter, dn)
        return entry

    def map_filter(self, searchfilter: str, *dns: str) -> None:
        """
        Make ``searchfilter`` match ``dns`` in addition to what it already
        matches.
        """
        with self._lock:
            self.filters.setdefault(searchfilter, []).extend(dns)

    def fail_search(self, searchfilter: str, exc: Exception | None = None) -> None:
        """
        Make searching with ``searchfilter`` raise ``exc``.
        """
        with self._lock:
            self.search_errors[searchfilter] = exc or TransportError(
                f"search {searchfilter}: error for tests"
            )

    def drop_connections(self) -> None:
        """
        Close every open handle, as if the server went away.
        """
        with self._lock:
            for handle in self.handles:
                handle.closed = True

    def open_handles(self) -> list[FakeHandle]:
        with self._lock:
            return [handle for handle in self.handles if not handle.closed]

    # -----------------------
    # Transport
    # -----------------------

    def _check(self, handle: FakeHandle, operation: str) -> None:
        if handle.closed:
            msg = f"{operation}: connection closed"
            raise DirectoryConnectionError(msg)

    def dial(self, url: str, insecure_tls: bool = False, timeout: float = 0) -> Any:
        with self._lock:
            self.dial_count += 1
            if self.unreachable:
                msg = f"dial {url}: connection refused"
                raise DirectoryConnectionError(msg)
            handle = FakeHandle(url=url)
            self.handles.append(handle)
        return handle

    def bind(self, handle: Any, dn: str, password: str) -> None:
        self._check(handle, f"bind {dn}")
        if dn not in self.credentials or self.credentials[dn] != password:
            msg = f"bind {dn}: invalid credentials"
            raise AuthError(msg)
        handle.bound_dn = dn

    def search(
        self,
        handle: Any,
        base_dn: str,
        searchfilter: str,
        scope: int = SCOPE_SUBTREE,
        attributes: Sequence[str] | None = None,
        time_limit: float | None = None,
    ) -> list[Entry]:
        self._check(handle, f"search {searchfilter}")
        if delay := self.delays.get(searchfilter):
            time.sleep(delay)
        with self._lock:
            if searchfilter in self.search_errors:
                raise self.search_errors[searchfilter]
            if scope == SCOPE_BASE:
                if searchfilter == MATCH_ALL:
                    dns = [base_dn] if base_dn in self.entries else []
                else:
                    dns = [dn for dn in self.filters.get(searchfilter, []) if dn == base_dn]
            else:
                suffix = base_dn.lower()
                dns = [
                    dn
                    for dn in self.filters.get(searchfilter, [])
                    if not suffix or dn.lower().endswith(suffix)
                ]
            return [
                self._project(self.entries[dn], attributes)
                for dn in dns
                if dn in self.entries
            ]

    def _project(self, entry: Entry, attributes: Sequence[str] | None) -> Entry:
        if not attributes:
            return entry
        wanted = {name.lower() for name in attributes}
        return Entry(
            dn=entry.dn,
            attributes={
                name: values
                for name, values in entry.attributes.items()
                if name.lower() in wanted
            },
        )

    def modify_replace(
        self, handle: Any, dn: str, attribute: str, values: Sequence[AttributeValue]
    ) -> None:
        self._check(handle, f"modify {dn}")
        with self._lock:
            if dn not in self.entries:
                msg = f"modify {dn}: no such object"
                raise TransportError(msg)
            self.modifications.append(Modification(dn, attribute, list(values)))
            entry = self.entries[dn]
            updated = dict(entry.attributes)
            if values:
                updated[attribute] = tuple(values)
            else:
                updated.pop(attribute, None)
            self.entries[dn] = Entry(dn=dn, attributes=updated)

    def add(
        self, handle: Any, dn: str, attributes: Mapping[str, Sequence[AttributeValue]]
    ) -> None:
        self._check(handle, f"add {dn}")
        with self._lock:
            if dn in self.entries:
                msg = f"add {dn}: already exists"
                raise TransportError(msg)
            self.entries[dn] = Entry(
                dn=dn,
                attributes={name: tuple(values) for name, values in attributes.items()},
            )

    def delete(self, handle: Any, dn: str) -> None:
        self._check(handle, f"delete {dn}")
        with self._lock:
            if dn not in self.entries:
                msg = f"delete {dn}: no such object"
                raise TransportError(msg)
            del self.entries[dn]
            for dns in self.filters.values():
                while dn in dns:
                    dns.remove(dn)

    def close(self, handle: Any) -> None:
        handle.closed = True
