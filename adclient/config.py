"""
Client configuration.

This module provides the passive configuration objects the
:py:class:`~adclient.client.Client` is built from, plus the helpers that load
them from ``settings.LDAP_SERVERS``.

Filter templates take exactly one ``%s`` placeholder.  The placeholder is
filled with :py:func:`ldap.filter.filter_format`, which escapes the value per
RFC 4515, so templates must not quote or escape it themselves.
"""

from dataclasses import dataclass, field
from typing import Any, cast

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from ldap_filter import Filter

from adclient import ldap

#: The attribute Active Directory uses as the logon name of users and groups.
DEFAULT_ID_ATTRIBUTE = "sAMAccountName"
#: Used when a config names no server.
DEFAULT_URL = "ldaps://127.0.0.1:636"
#: Seconds.  Used both as the dial timeout and the per-search time limit.
DEFAULT_TIMEOUT = 10.0

PLACEHOLDER = "%s"


def equality_template(
    class_attribute: str, class_value: str, attribute: str
) -> str:
    """
    Build a filter template of the form ``(&(<class>)(<attribute>=%s))``.

    Args:
        class_attribute: ``objectClass`` or ``objectCategory``
        class_value: the class to restrict the search to
        attribute: the attribute the placeholder is compared against

    Returns:
        The filter template as a string.

    """
    return Filter.AND(
        [
            Filter.attribute(class_attribute).equal_to(class_value),
            Filter.attribute(attribute).equal_to(PLACEHOLDER),
        ]
    ).to_string()


def render_filter(template: str, value: str) -> str:
    """
    Fill the placeholder in ``template`` with the escaped ``value``.
    """
    return ldap.filter.filter_format(template, [value])


@dataclass
class BindAccount:
    """
    The identity the client binds as.
    """

    #: The DN to bind as.
    dn: str
    #: The password for :py:attr:`dn`.
    password: str = ""


@dataclass
class UsersConfig:
    """
    How users are looked up.
    """

    #: The attribute whose value is a user's id.
    id_attribute: str = DEFAULT_ID_ATTRIBUTE
    #: The attributes fetched for every user lookup.
    attributes: list[str] = field(default_factory=lambda: ["givenName", "sn", "mail"])
    #: Subtree user searches are rooted at.  Empty means
    #: :py:attr:`Config.search_base`.
    search_base: str = ""
    #: Finds a user by id.
    filter_by_id: str = equality_template("objectClass", "person", DEFAULT_ID_ATTRIBUTE)
    #: Finds a user by DN.
    filter_by_dn: str = equality_template("objectClass", "person", "distinguishedName")
    #: Finds the groups a user (by DN) is a member of.
    filter_groups_by_dn: str = equality_template("objectClass", "group", "member")


@dataclass
class GroupsConfig:
    """
    How groups are looked up.
    """

    #: The attribute whose value is a group's id.
    id_attribute: str = DEFAULT_ID_ATTRIBUTE
    #: The attributes fetched for every group lookup.
    attributes: list[str] = field(default_factory=lambda: ["cn", "description"])
    #: Subtree group searches are rooted at.  Empty means
    #: :py:attr:`Config.search_base`.
    search_base: str = ""
    #: Finds a group by id.
    filter_by_id: str = equality_template("objectClass", "group", DEFAULT_ID_ATTRIBUTE)
    #: Finds a group by DN.
    filter_by_dn: str = equality_template("objectClass", "group", "distinguishedName")
    #: Finds the members of a group (by DN).
    filter_members_by_dn: str = equality_template("objectCategory", "person", "memberOf")


@dataclass
class Config:
    """
    Everything the client needs to know to talk to one directory.

    ``ldaps://`` URLs dial with TLS; :py:attr:`insecure_tls` turns off
    certificate verification for them.
    """

    url: str = DEFAULT_URL
    insecure_tls: bool = False
    #: Seconds.
    timeout: float = DEFAULT_TIMEOUT
    #: The default root of every search.
    search_base: str = ""
    #: ``None`` means the connection stays anonymous.
    bind: BindAccount | None = None
    users: UsersConfig = field(default_factory=UsersConfig)
    groups: GroupsConfig = field(default_factory=GroupsConfig)

    def __post_init__(self) -> None:
        if not self.users.search_base:
            self.users.search_base = self.search_base
        if not self.groups.search_base:
            self.groups.search_base = self.search_base

    def append_users_attributes(self, *names: str) -> None:
        """
        Fetch ``names`` in addition to the configured user attributes.
        """
        self.users.attributes.extend(names)

    def append_groups_attributes(self, *names: str) -> None:
        """
        Fetch ``names`` in addition to the configured group attributes.
        """
        self.groups.attributes.extend(names)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Config":
        """
        Build a config from a (possibly partial) mapping.

        Keys that are missing or empty keep their defaults, except
        ``insecure_tls`` and the ``attributes`` lists, which are taken as
        given.  An empty ``attributes`` list fetches only the id attribute.
        ``users.search_base`` and ``groups.search_base`` fall back to the top
        level ``search_base``.

        Example::

            Config.from_dict({
                "url": "ldaps://dc1.example.com:636",
                "search_base": "OU=Staff,DC=example,DC=com",
                "bind": {"dn": "CN=svc,DC=example,DC=com", "password": "..."},
                "groups": {"attributes": ["cn"]},
            })

        Args:
            data: the mapping to read

        Raises:
            ImproperlyConfigured: ``bind`` was given without a ``dn``

        Returns:
            A new config.

        """
        data = data or {}
        config = cls(search_base=data.get("search_base") or "")
        if data.get("url"):
            config.url = data["url"]
        config.insecure_tls = bool(data.get("insecure_tls", False))
        if data.get("timeout"):
            config.timeout = float(data["timeout"])
        if bind := data.get("bind"):
            if not bind.get("dn"):
                msg = "LDAP 'bind' settings need a 'dn'"
                raise ImproperlyConfigured(msg)
            config.bind = BindAccount(dn=bind["dn"], password=bind.get("password", ""))
        for key in ("users", "groups"):
            section = cast("UsersConfig | GroupsConfig", getattr(config, key))
            for name, value in (data.get(key) or {}).items():
                if not hasattr(section, name):
                    msg = f"Unknown LDAP '{key}' setting: {name}"
                    raise ImproperlyConfigured(msg)
                if name == "attributes":
                    if value is not None:
                        section.attributes = list(value)
                elif value:
                    setattr(section, name, value)
        return config

    @classmethod
    def from_settings(cls, name: str = "default") -> "Config":
        """
        Build a config from ``settings.LDAP_SERVERS[name]``.

        Args:
            name: the key into ``settings.LDAP_SERVERS``

        Raises:
            ImproperlyConfigured: ``LDAP_SERVERS`` or the ``name`` key is
                missing

        Returns:
            A new config.

        """
        return cls.from_dict(server_settings(name))


def server_settings(name: str = "default") -> dict[str, Any]:
    """
    Return ``settings.LDAP_SERVERS[name]``.

    Raises:
        ImproperlyConfigured: ``LDAP_SERVERS`` or the ``name`` key is missing

    """
    servers = getattr(settings, "LDAP_SERVERS", None)
    if not servers:
        msg = "settings.LDAP_SERVERS is not configured"
        raise ImproperlyConfigured(msg)
    try:
        return servers[name]
    except KeyError:
        msg = f"settings.LDAP_SERVERS has no '{name}' server"
        raise ImproperlyConfigured(msg) from None
