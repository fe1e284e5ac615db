"""
Directory entries and the user/group views decoded from them.

:py:class:`Entry` is the raw record a search returns.  :py:class:`User` and
:py:class:`Group` are lossy views over an entry: every multi-valued
attribute is collapsed to its first value.  Group members and user groups are
snapshots taken when the object was resolved; they are never refreshed, so
re-resolve before deciding a membership change.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ldap_filter import Filter

from .exceptions import ValidationError
from .typing import AttributeValue


def decode_value(value: Any) -> AttributeValue:
    """
    Decode one raw attribute value.

    UTF-8 values become ``str``; anything else (``objectGUID``,
    ``objectSid``, photos) stays ``bytes``.
    """
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return value
    if isinstance(value, str):
        return value
    return str(value)


@dataclass(frozen=True)
class Entry:
    """
    A directory record as returned by a search.  Immutable.
    """

    #: The entry's distinguished name.
    dn: str
    #: Attribute name to values, in the order the server returned them.
    attributes: Mapping[str, tuple[AttributeValue, ...]] = field(default_factory=dict)

    @classmethod
    def from_ldap(cls, dn: str, attributes: Mapping[str, Iterable[Any]]) -> "Entry":
        """
        Build an entry from a python-ldap style ``(dn, {name: [bytes, ...]})``
        result.
        """
        return cls(
            dn=dn,
            attributes={
                name: tuple(decode_value(v) for v in values)
                for name, values in attributes.items()
            },
        )

    def get_attribute_values(self, name: str) -> tuple[AttributeValue, ...]:
        """
        Return all values of ``name`` (matched case-insensitively), or an
        empty tuple.
        """
        if name in self.attributes:
            return self.attributes[name]
        lowered = name.lower()
        for key, values in self.attributes.items():
            if key.lower() == lowered:
                return values
        return ()

    def get_attribute_value(self, name: str) -> AttributeValue:
        """
        Return the first value of ``name``, or ``""`` if it has none.
        """
        values = self.get_attribute_values(name)
        return values[0] if values else ""


def _first_values(entry: Entry) -> dict[str, AttributeValue]:
    return {name: values[0] for name, values in entry.attributes.items() if values}


def _identifier(entry: Entry, id_attribute: str) -> str:
    value = entry.get_attribute_value(id_attribute)
    return value if isinstance(value, str) else ""


def _string_attribute(attributes: Mapping[str, Any], name: str) -> str:
    value = attributes.get(name)
    if isinstance(value, str):
        return value
    return ""


@dataclass
class GroupMember:
    """
    One member of a :py:class:`Group` snapshot.
    """

    dn: str
    id: str


@dataclass
class UserGroup:
    """
    One group of a :py:class:`User` snapshot.
    """

    dn: str
    id: str


@dataclass
class User:
    """
    A user entry.

    ``attributes`` maps each returned attribute to its first value.
    """

    dn: str
    id: str
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    #: Groups the user belonged to when it was resolved.
    groups: list[UserGroup] = field(default_factory=list)

    @classmethod
    def from_entry(cls, entry: Entry, id_attribute: str) -> "User":
        return cls(
            dn=entry.dn,
            id=_identifier(entry, id_attribute),
            attributes=_first_values(entry),
        )

    def get_string_attribute(self, name: str) -> str:
        """
        Return attribute ``name`` if it is present and a string, else ``""``.

        Binary and missing values both come back as ``""``; this never raises.
        """
        return _string_attribute(self.attributes, name)

    def is_group_member(self, group_id: str) -> bool:
        """
        Was the user a member of group ``group_id`` when it was resolved?
        """
        return any(group.id == group_id for group in self.groups)

    def groups_dn(self) -> list[str] | None:
        """
        DNs of the user's groups, or ``None`` if it has none.
        """
        return [group.dn for group in self.groups] or None

    def groups_id(self) -> list[str] | None:
        """
        Ids of the user's groups, or ``None`` if it has none.
        """
        return [group.id for group in self.groups] or None


@dataclass
class Group:
    """
    A group entry.

    ``attributes`` maps each returned attribute to its first value.
    """

    dn: str
    id: str
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    #: Members of the group when it was resolved.
    members: list[GroupMember] = field(default_factory=list)

    @classmethod
    def from_entry(cls, entry: Entry, id_attribute: str) -> "Group":
        return cls(
            dn=entry.dn,
            id=_identifier(entry, id_attribute),
            attributes=_first_values(entry),
        )

    def get_string_attribute(self, name: str) -> str:
        """
        Return attribute ``name`` if it is present and a string, else ``""``.
        """
        return _string_attribute(self.attributes, name)

    def is_member(self, user_id: str) -> bool:
        """
        Was ``user_id`` a member when the group was resolved?
        """
        return any(member.id == user_id for member in self.members)

    def members_dn(self) -> list[str] | None:
        """
        DNs of the group's members, or ``None`` if it has none.
        """
        return [member.dn for member in self.members] or None

    def members_id(self) -> list[str] | None:
        """
        Ids of the group's members, or ``None`` if it has none.
        """
        return [member.id for member in self.members] or None


# -----------------------
# Requests
# -----------------------


@dataclass
class GetRequest:
    """
    Base for lookups of a single entry.

    Exactly one of :py:attr:`filter`, :py:attr:`dn` and :py:attr:`id` is
    used, in that order of precedence.
    """

    #: The entry's id (value of the configured id attribute).
    id: str = ""
    #: The entry's DN.  Wins over :py:attr:`id`.
    dn: str = ""
    #: A raw filter, either a string or an ``ldap_filter.Filter``.  Wins over
    #: both :py:attr:`id` and :py:attr:`dn`.
    filter: str | Filter | None = None
    #: Overrides the attributes from the config for this lookup.
    attributes: list[str] | None = None

    def validate(self) -> None:
        """
        Raises:
            ValidationError: none of id, DN or filter was given

        """
        if not self.id and not self.dn and not self.filter_string():
            msg = "neither of ID, DN or Filter provided"
            raise ValidationError(msg)

    def filter_string(self) -> str:
        if isinstance(self.filter, Filter):
            return self.filter.to_string()
        return self.filter or ""


@dataclass
class GetUserRequest(GetRequest):
    #: Skip looking up the user's groups.
    skip_groups_search: bool = False


@dataclass
class GetGroupRequest(GetRequest):
    #: Skip looking up the group's members.
    skip_members_search: bool = False


@dataclass
class CreateGroupRequest:
    #: The new group's id; also used as its CN.
    id: str
    #: Extra attributes for the new entry.
    attributes: dict[str, list[str]] = field(default_factory=dict)

    def validate(self) -> None:
        if not self.id:
            msg = "group ID is required"
            raise ValidationError(msg)


@dataclass
class CreateUserRequest:
    #: The new user's id; also used as its CN.
    id: str
    #: Initial password.  Empty means the account is created without one.
    password: str = ""
    #: Extra attributes for the new entry.
    attributes: dict[str, list[str]] = field(default_factory=dict)

    def validate(self) -> None:
        if not self.id:
            msg = "user ID is required"
            raise ValidationError(msg)
