# mypy: disable-error-code="attr-defined"
# type: ignore
"""
Tests for loading client configuration.
"""

import unittest

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.test import override_settings

from adclient.config import (
    DEFAULT_ID_ATTRIBUTE,
    DEFAULT_TIMEOUT,
    DEFAULT_URL,
    Config,
    GroupsConfig,
    UsersConfig,
    render_filter,
    server_settings,
)

if not settings.configured:
    settings.configure()


BASE = "OU=Staff,DC=example,DC=com"


class TestConfigDefaults(unittest.TestCase):
    """Test the defaults of a bare config."""

    def test_defaults(self):
        """Test that an empty config points at the local server anonymously."""
        config = Config()
        self.assertEqual(config.url, DEFAULT_URL)
        self.assertFalse(config.insecure_tls)
        self.assertEqual(config.timeout, DEFAULT_TIMEOUT)
        self.assertIsNone(config.bind)
        self.assertEqual(config.users.id_attribute, DEFAULT_ID_ATTRIBUTE)
        self.assertEqual(config.users.attributes, ["givenName", "sn", "mail"])
        self.assertEqual(config.groups.attributes, ["cn", "description"])

    def test_search_base_inherited(self):
        """Test that the entity search bases fall back to the top level one."""
        config = Config(search_base=BASE)
        self.assertEqual(config.users.search_base, BASE)
        self.assertEqual(config.groups.search_base, BASE)

    def test_search_base_override_kept(self):
        groups_base = "OU=Groups,DC=example,DC=com"
        config = Config(search_base=BASE, groups=GroupsConfig(search_base=groups_base))
        self.assertEqual(config.users.search_base, BASE)
        self.assertEqual(config.groups.search_base, groups_base)

    def test_default_instances_not_shared(self):
        """Test that attribute lists are not shared between configs."""
        first = Config()
        second = Config()
        first.append_users_attributes("telephoneNumber")
        self.assertNotIn("telephoneNumber", second.users.attributes)

    def test_append_attributes(self):
        config = Config()
        config.append_users_attributes("title", "department")
        config.append_groups_attributes("managedBy")
        self.assertEqual(
            config.users.attributes, ["givenName", "sn", "mail", "title", "department"]
        )
        self.assertEqual(config.groups.attributes, ["cn", "description", "managedBy"])

    def test_default_templates_have_one_placeholder(self):
        users = UsersConfig()
        groups = GroupsConfig()
        for template in (
            users.filter_by_id,
            users.filter_by_dn,
            users.filter_groups_by_dn,
            groups.filter_by_id,
            groups.filter_by_dn,
            groups.filter_members_by_dn,
        ):
            self.assertEqual(template.count("%s"), 1, template)


class TestRenderFilter(unittest.TestCase):
    """Test filling filter templates."""

    def test_render_by_id(self):
        searchfilter = render_filter(UsersConfig().filter_by_id, "alice")
        self.assertIn("(sAMAccountName=alice)", searchfilter)
        self.assertIn("(objectClass=person)", searchfilter)

    def test_render_escapes_value(self):
        """Test that filter metacharacters in the value are escaped."""
        searchfilter = render_filter("(cn=%s)", "a*b(c)")
        self.assertEqual(searchfilter, r"(cn=a\2ab\28c\29)")

    def test_render_dn(self):
        dn = "CN=developers,OU=Groups,DC=example,DC=com"
        searchfilter = render_filter(GroupsConfig().filter_members_by_dn, dn)
        self.assertIn(f"(memberOf={dn})", searchfilter)


class TestConfigFromDict(unittest.TestCase):
    """Test building a config from a settings mapping."""

    def test_none(self):
        config = Config.from_dict(None)
        self.assertEqual(config.url, DEFAULT_URL)

    def test_full(self):
        config = Config.from_dict(
            {
                "url": "ldaps://dc1.example.com:636",
                "insecure_tls": True,
                "timeout": 3,
                "search_base": BASE,
                "bind": {"dn": "CN=svc,DC=example,DC=com", "password": "secret"},
                "users": {"id_attribute": "userPrincipalName", "attributes": ["mail"]},
                "groups": {"search_base": "OU=Groups,DC=example,DC=com"},
            }
        )
        self.assertEqual(config.url, "ldaps://dc1.example.com:636")
        self.assertTrue(config.insecure_tls)
        self.assertEqual(config.timeout, 3.0)
        self.assertEqual(config.bind.dn, "CN=svc,DC=example,DC=com")
        self.assertEqual(config.bind.password, "secret")
        self.assertEqual(config.users.id_attribute, "userPrincipalName")
        self.assertEqual(config.users.attributes, ["mail"])
        self.assertEqual(config.users.search_base, BASE)
        self.assertEqual(config.groups.search_base, "OU=Groups,DC=example,DC=com")

    def test_empty_values_keep_defaults(self):
        """Test that empty values do not clobber the defaults."""
        config = Config.from_dict(
            {"url": "", "timeout": 0, "users": {"attributes": None, "filter_by_id": ""}}
        )
        self.assertEqual(config.url, DEFAULT_URL)
        self.assertEqual(config.timeout, DEFAULT_TIMEOUT)
        self.assertEqual(config.users.attributes, ["givenName", "sn", "mail"])
        self.assertEqual(config.users.filter_by_id, UsersConfig().filter_by_id)

    def test_empty_attributes_list_kept(self):
        """Test that an explicit empty attribute list replaces the defaults."""
        config = Config.from_dict({"users": {"attributes": []}, "groups": {"attributes": []}})
        self.assertEqual(config.users.attributes, [])
        self.assertEqual(config.groups.attributes, [])

    def test_bind_needs_dn(self):
        with self.assertRaises(ImproperlyConfigured):
            Config.from_dict({"bind": {"password": "secret"}})

    def test_unknown_section_key(self):
        with self.assertRaises(ImproperlyConfigured):
            Config.from_dict({"groups": {"member_filter": "(member=%s)"}})


class TestConfigFromSettings(unittest.TestCase):
    """Test reading ``settings.LDAP_SERVERS``."""

    @override_settings(LDAP_SERVERS={"default": {"url": "ldap://dc1", "search_base": BASE}})
    def test_default_server(self):
        config = Config.from_settings()
        self.assertEqual(config.url, "ldap://dc1")
        self.assertEqual(config.users.search_base, BASE)

    @override_settings(LDAP_SERVERS={"other": {"url": "ldap://dc2"}})
    def test_named_server(self):
        self.assertEqual(Config.from_settings("other").url, "ldap://dc2")

    @override_settings(LDAP_SERVERS={"other": {"url": "ldap://dc2"}})
    def test_missing_server(self):
        with self.assertRaises(ImproperlyConfigured):
            server_settings("default")

    @override_settings(LDAP_SERVERS={})
    def test_no_servers(self):
        with self.assertRaises(ImproperlyConfigured):
            Config.from_settings()
