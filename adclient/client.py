"""
The Active Directory client.

:py:class:`Client` is the public entry point: it wires a
:py:class:`~adclient.config.Config`, a transport, a
:py:class:`~adclient.session.Session` and the
:py:class:`~adclient.members.MembershipReconciler` together and turns the
raw entries the session returns into :py:class:`~adclient.models.User` and
:py:class:`~adclient.models.Group` objects.

Example::

    client = Client(Config.from_dict({
        "url": "ldaps://dc1.example.com:636",
        "search_base": "OU=Staff,DC=example,DC=com",
        "bind": {"dn": "CN=svc,OU=Staff,DC=example,DC=com", "password": "..."},
    }))
    client.connect()
    user = client.get_user(GetUserRequest(id="alice"))
    client.add_group_members("developers", "alice", "bob")

"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from django.utils.module_loading import import_string
from ldap.dn import escape_dn_chars

from .config import Config, render_filter, server_settings
from .exceptions import NotFoundError, ValidationError
from .members import MembershipReconciler
from .models import (
    CreateGroupRequest,
    CreateUserRequest,
    GetGroupRequest,
    GetUserRequest,
    Group,
    GroupMember,
    User,
    UserGroup,
)
from .session import LOGGER_NAME, Session
from .transports import LdapTransport, Transport
from .typing import AttributeValue

#: objectClass values for new users.
USER_OBJECTCLASSES = ["top", "person", "organizationalPerson", "user"]
#: objectClass values for new groups.
GROUP_OBJECTCLASSES = ["top", "group"]


def with_id_attribute(attributes: Sequence[str], id_attribute: str) -> list[str]:
    """
    Return ``attributes`` with ``id_attribute`` added if it is missing, so
    every lookup can fill in the object's id.
    """
    attributes = list(attributes)
    if id_attribute.lower() not in (a.lower() for a in attributes):
        attributes.append(id_attribute)
    return attributes


def encode_password(password: str) -> bytes:
    """
    Encode ``password`` the way Active Directory wants ``unicodePwd``: quoted,
    in UTF-16-LE.
    """
    return f'"{password}"'.encode("utf-16-le")


class Client:
    """
    A client for one Active Directory.

    Args:
        config: the directory to talk to; defaults to :py:class:`Config`
            defaults

    Keyword Args:
        transport: defaults to :py:class:`~adclient.transports.LdapTransport`
        logger: anything with a ``debug(msg, *args)`` method
        max_workers: the most member lookups a membership change runs at once

    """

    def __init__(
        self,
        config: Config | None = None,
        transport: Transport | None = None,
        logger: Any | None = None,
        max_workers: int = 8,
    ) -> None:
        self.config = config or Config()
        self.transport = transport or LdapTransport()
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.session = Session(self.config, self.transport, logger=self.logger)
        self.members = MembershipReconciler(self, max_workers=max_workers)

    @classmethod
    def from_settings(cls, name: str = "default", **kwargs) -> "Client":
        """
        Build a client from ``settings.LDAP_SERVERS[name]``.

        If the settings have a ``transport`` key, it is the dotted path of the
        :py:class:`~adclient.transports.Transport` class to use.  A
        ``transport`` keyword argument wins over it.

        Raises:
            ImproperlyConfigured: the settings are missing or malformed

        """
        data = server_settings(name)
        if kwargs.get("transport") is None and data.get("transport"):
            kwargs["transport"] = import_string(data["transport"])()
        return cls(Config.from_dict(data), **kwargs)

    # -----------------------
    # Session
    # -----------------------

    def connect(self) -> None:
        self.session.connect()

    def disconnect(self) -> None:
        self.session.disconnect()

    def reconnect(self, *args, **kwargs) -> int:
        """
        See :py:meth:`adclient.session.Session.reconnect`.
        """
        return self.session.reconnect(*args, **kwargs)

    def check_auth_by_dn(self, dn: str, password: str) -> None:
        """
        Raise unless ``dn`` can bind with ``password``.  Use this to check a
        user's login.

        Raises:
            AuthError: the credentials were rejected
            DirectoryConnectionError: the server could not be reached

        """
        self.session.check_credentials(dn, password)

    # -----------------------
    # Users
    # -----------------------

    def find_user(self, request: GetUserRequest, handle: Any | None = None) -> User | None:
        """
        Look up one user, on ``handle`` if given or else on the session's
        connection.

        Raises:
            ValidationError: the request names no id, DN or filter
            AmbiguousResultError: more than one user matched

        """
        request.validate()
        users = self.config.users
        searchfilter = request.filter_string()
        if not searchfilter:
            if request.dn:
                searchfilter = render_filter(users.filter_by_dn, request.dn)
            else:
                searchfilter = render_filter(users.filter_by_id, request.id)
        attributes = request.attributes if request.attributes is not None else users.attributes
        entry = self.session.search(
            users.search_base,
            searchfilter,
            with_id_attribute(attributes, users.id_attribute),
            handle=handle,
        )
        if entry is None:
            return None
        user = User.from_entry(entry, users.id_attribute)
        if not request.skip_groups_search:
            user.groups = self._user_groups(entry.dn, handle)
        return user

    def _user_groups(self, dn: str, handle: Any | None = None) -> list[UserGroup]:
        groups = self.config.groups
        entries = self.session.search_all(
            groups.search_base,
            render_filter(self.config.users.filter_groups_by_dn, dn),
            [groups.id_attribute],
            handle=handle,
        )
        return [
            UserGroup(dn=entry.dn, id=str(entry.get_attribute_value(groups.id_attribute)))
            for entry in entries
        ]

    def get_user(self, request: GetUserRequest) -> User | None:
        """
        Look up one user.  Returns ``None`` if there is no such user.

        Raises:
            ValidationError: the request names no id, DN or filter
            AmbiguousResultError: more than one user matched

        """
        return self.find_user(request)

    def create_user(self, request: CreateUserRequest) -> None:
        request.validate()
        users = self.config.users
        dn = f"CN={escape_dn_chars(request.id)},{users.search_base}"
        attributes: dict[str, list[AttributeValue]] = {
            "objectClass": list(USER_OBJECTCLASSES),
            users.id_attribute: [request.id],
        }
        for name, values in request.attributes.items():
            attributes[name] = list(values)
        if request.password:
            attributes["unicodePwd"] = [encode_password(request.password)]
        self.session.add(dn, attributes)
        self.logger.debug("user.create.success dn=%s", dn)

    def delete_user(self, user_id: str) -> None:
        """
        Delete user ``user_id``.  Deleting a user that does not exist does
        nothing.
        """
        if not user_id:
            msg = "user ID is required"
            raise ValidationError(msg)
        user = self.find_user(
            GetUserRequest(id=user_id, attributes=[], skip_groups_search=True)
        )
        if user is None:
            self.logger.debug("user.delete.not_found id=%s", user_id)
            return
        self.session.delete(user.dn)
        self.logger.debug("user.delete.success dn=%s", user.dn)

    def update_user_attributes(
        self, user_id: str, attributes: Mapping[str, Sequence[AttributeValue]]
    ) -> None:
        """
        Replace the values of each of ``attributes`` on user ``user_id``.  An
        empty value list removes the attribute.

        Raises:
            NotFoundError: there is no such user

        """
        user = self.find_user(
            GetUserRequest(id=user_id, attributes=[], skip_groups_search=True)
        )
        if user is None:
            msg = f"user '{user_id}' not found by ID"
            raise NotFoundError(msg)
        for name, values in attributes.items():
            self.session.modify_replace(user.dn, name, list(values))

    # -----------------------
    # Groups
    # -----------------------

    def find_group(
        self, request: GetGroupRequest, handle: Any | None = None
    ) -> Group | None:
        """
        Look up one group, on ``handle`` if given or else on the session's
        connection.

        Raises:
            ValidationError: the request names no id, DN or filter
            AmbiguousResultError: more than one group matched

        """
        request.validate()
        groups = self.config.groups
        searchfilter = request.filter_string()
        if not searchfilter:
            if request.dn:
                searchfilter = render_filter(groups.filter_by_dn, request.dn)
            else:
                searchfilter = render_filter(groups.filter_by_id, request.id)
        attributes = request.attributes if request.attributes is not None else groups.attributes
        entry = self.session.search(
            groups.search_base,
            searchfilter,
            with_id_attribute(attributes, groups.id_attribute),
            handle=handle,
        )
        if entry is None:
            return None
        group = Group.from_entry(entry, groups.id_attribute)
        if not request.skip_members_search:
            group.members = self._group_members(entry.dn, handle)
        return group

    def _group_members(self, dn: str, handle: Any | None = None) -> list[GroupMember]:
        users = self.config.users
        entries = self.session.search_all(
            users.search_base,
            render_filter(self.config.groups.filter_members_by_dn, dn),
            [users.id_attribute],
            handle=handle,
        )
        return [
            GroupMember(dn=entry.dn, id=str(entry.get_attribute_value(users.id_attribute)))
            for entry in entries
        ]

    def get_group(self, request: GetGroupRequest) -> Group | None:
        """
        Look up one group.  Returns ``None`` if there is no such group.

        Raises:
            ValidationError: the request names no id, DN or filter
            AmbiguousResultError: more than one group matched

        """
        return self.find_group(request)

    def create_group(self, request: CreateGroupRequest) -> None:
        request.validate()
        groups = self.config.groups
        dn = f"CN={escape_dn_chars(request.id)},{groups.search_base}"
        attributes: dict[str, list[AttributeValue]] = {
            "objectClass": list(GROUP_OBJECTCLASSES),
            groups.id_attribute: [request.id],
        }
        for name, values in request.attributes.items():
            attributes[name] = list(values)
        self.session.add(dn, attributes)
        self.logger.debug("group.create.success dn=%s", dn)

    def delete_group(self, group_id: str) -> None:
        """
        Delete group ``group_id``.  Deleting a group that does not exist
        (maybe already deleted) does nothing.
        """
        if not group_id:
            msg = "group ID is required"
            raise ValidationError(msg)
        group = self.find_group(
            GetGroupRequest(id=group_id, attributes=[], skip_members_search=True)
        )
        if group is None:
            self.logger.debug("group.delete.not_found id=%s", group_id)
            return
        self.session.delete(group.dn)
        self.logger.debug("group.delete.success dn=%s", group.dn)

    def add_group_members(self, group_id: str, *member_ids: str) -> int:
        """
        See :py:meth:`adclient.members.MembershipReconciler.add_members`.
        """
        return self.members.add_members(group_id, *member_ids)

    def remove_group_members(self, group_id: str, *member_ids: str) -> int:
        """
        See :py:meth:`adclient.members.MembershipReconciler.remove_members`.
        """
        return self.members.remove_members(group_id, *member_ids)
