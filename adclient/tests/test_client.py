# mypy: disable-error-code="attr-defined"
# type: ignore
"""
Tests for the client's user and group operations.
"""

import unittest
from unittest.mock import MagicMock, patch

from django.conf import settings
from django.test import override_settings
from ldap_filter import Filter

from adclient.client import Client, encode_password, with_id_attribute
from adclient.exceptions import (
    AmbiguousResultError,
    AuthError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from adclient.fake import FakeTransport, Modification
from adclient.models import (
    CreateGroupRequest,
    CreateUserRequest,
    GetGroupRequest,
    GetUserRequest,
)
from adclient.transports import LdapTransport

from .directory import (
    ADMINS,
    ALICE,
    BOB,
    DEVELOPERS,
    GROUPS_BASE,
    USERS_BASE,
    make_config,
    make_directory,
    user_filter,
)

if not settings.configured:
    settings.configure()


class ClientTestCase(unittest.TestCase):

    def setUp(self):
        self.config = make_config()
        self.transport = make_directory(self.config)
        self.client = Client(self.config, transport=self.transport, logger=MagicMock())


class TestHelpers(unittest.TestCase):

    def test_with_id_attribute(self):
        self.assertEqual(
            with_id_attribute(["mail"], "sAMAccountName"), ["mail", "sAMAccountName"]
        )
        self.assertEqual(
            with_id_attribute(["samaccountname"], "sAMAccountName"), ["samaccountname"]
        )

    def test_encode_password(self):
        self.assertEqual(encode_password("pw"), '"pw"'.encode("utf-16-le"))


class TestClientConstruction(unittest.TestCase):
    """Test building clients."""

    def test_default_transport(self):
        client = Client()
        self.assertIsInstance(client.transport, LdapTransport)
        self.assertIs(client.session.transport, client.transport)

    @override_settings(
        LDAP_SERVERS={
            "default": {
                "url": "ldap://dc1.example.com",
                "search_base": USERS_BASE,
                "transport": "adclient.fake.FakeTransport",
            }
        }
    )
    def test_from_settings(self):
        client = Client.from_settings()
        self.assertIsInstance(client.transport, FakeTransport)
        self.assertEqual(client.config.url, "ldap://dc1.example.com")
        self.assertEqual(client.config.users.search_base, USERS_BASE)

    @override_settings(LDAP_SERVERS={"default": {"transport": "adclient.fake.FakeTransport"}})
    def test_from_settings_transport_argument_wins(self):
        transport = FakeTransport()
        client = Client.from_settings(transport=transport)
        self.assertIs(client.transport, transport)


class TestSessionOperations(ClientTestCase):
    """Test the session operations the client passes through."""

    def test_connect_disconnect(self):
        self.client.connect()
        self.assertTrue(self.client.session.is_connected())
        self.client.disconnect()
        self.assertFalse(self.client.session.is_connected())

    def test_reconnect(self):
        self.client.connect()
        self.transport.drop_connections()
        self.assertEqual(self.client.reconnect(poll_interval=0.01), 1)

    def test_check_auth_by_dn(self):
        self.client.check_auth_by_dn(ALICE, "wonderland")
        with self.assertRaises(AuthError):
            self.client.check_auth_by_dn(ALICE, "wrong")


class TestUsers(ClientTestCase):
    """Test user lookups and writes."""

    def test_get_user_by_id(self):
        user = self.client.get_user(GetUserRequest(id="alice"))
        self.assertEqual(user.dn, ALICE)
        self.assertEqual(user.id, "alice")
        self.assertEqual(user.get_string_attribute("mail"), "alice@example.com")
        self.assertEqual(user.groups_id(), ["developers", "admins"])
        self.assertEqual(user.groups_dn(), [DEVELOPERS, ADMINS])
        self.assertTrue(user.is_group_member("admins"))

    def test_get_user_by_dn(self):
        user = self.client.get_user(GetUserRequest(dn=BOB))
        self.assertEqual(user.id, "bob")
        self.assertEqual(user.groups_id(), ["developers"])

    def test_filter_wins(self):
        """Test that a raw filter is used even when an id is also given."""
        self.transport.map_filter("(mail=bob@example.com)", BOB)
        user = self.client.get_user(
            GetUserRequest(
                id="alice",
                filter=Filter.attribute("mail").equal_to("bob@example.com"),
                skip_groups_search=True,
            )
        )
        self.assertEqual(user.dn, BOB)

    def test_skip_groups_search(self):
        user = self.client.get_user(GetUserRequest(id="alice", skip_groups_search=True))
        self.assertEqual(user.groups, [])
        self.assertIsNone(user.groups_dn())

    def test_attributes_override(self):
        """Test that the id is filled in even when not asked for."""
        user = self.client.get_user(GetUserRequest(id="alice", attributes=["sn"]))
        self.assertEqual(user.id, "alice")
        self.assertEqual(user.get_string_attribute("sn"), "Example")
        self.assertEqual(user.get_string_attribute("mail"), "")

    def test_empty_configured_attributes(self):
        """Test that an empty configured attribute list fetches only the id."""
        self.config.users.attributes = []
        user = self.client.get_user(GetUserRequest(id="alice", skip_groups_search=True))
        self.assertEqual(user.attributes, {"sAMAccountName": "alice"})

    def test_get_unknown_user(self):
        self.assertIsNone(self.client.get_user(GetUserRequest(id="nobody")))

    def test_get_user_without_key(self):
        with self.assertRaises(ValidationError):
            self.client.get_user(GetUserRequest())

    def test_ambiguous_user(self):
        self.transport.map_filter(user_filter(self.config, "alice"), BOB)
        with self.assertRaises(AmbiguousResultError):
            self.client.get_user(GetUserRequest(id="alice"))

    def test_create_user(self):
        self.client.create_user(
            CreateUserRequest(id="erin", password="s3cret", attributes={"mail": ["erin@example.com"]})
        )
        entry = self.transport.entries[f"CN=erin,{USERS_BASE}"]
        self.assertEqual(
            entry.get_attribute_values("objectClass"),
            ("top", "person", "organizationalPerson", "user"),
        )
        self.assertEqual(entry.get_attribute_value("sAMAccountName"), "erin")
        self.assertEqual(entry.get_attribute_value("mail"), "erin@example.com")
        self.assertEqual(entry.get_attribute_value("unicodePwd"), encode_password("s3cret"))

    def test_create_user_without_password(self):
        self.client.create_user(CreateUserRequest(id="erin"))
        entry = self.transport.entries[f"CN=erin,{USERS_BASE}"]
        self.assertEqual(entry.get_attribute_values("unicodePwd"), ())

    def test_create_user_escapes_cn(self):
        self.client.create_user(CreateUserRequest(id="smith, j"))
        self.assertIn(f"CN=smith\\, j,{USERS_BASE}", self.transport.entries)

    def test_create_existing_user(self):
        self.client.create_user(CreateUserRequest(id="erin"))
        with self.assertRaises(TransportError):
            self.client.create_user(CreateUserRequest(id="erin"))

    def test_create_user_without_id(self):
        with self.assertRaises(ValidationError):
            self.client.create_user(CreateUserRequest(id=""))

    def test_delete_user(self):
        self.client.delete_user("bob")
        self.assertNotIn(BOB, self.transport.entries)
        self.assertIsNone(self.client.get_user(GetUserRequest(id="bob")))

    def test_delete_unknown_user(self):
        """Test that deleting a user that is already gone does nothing."""
        self.client.delete_user("nobody")
        self.assertIn(BOB, self.transport.entries)

    def test_delete_user_without_id(self):
        with self.assertRaises(ValidationError):
            self.client.delete_user("")

    def test_update_user_attributes(self):
        self.client.update_user_attributes(
            "alice", {"mail": ["alice@example.org"], "sn": []}
        )
        self.assertEqual(
            self.transport.modifications,
            [
                Modification(ALICE, "mail", ["alice@example.org"]),
                Modification(ALICE, "sn", []),
            ],
        )
        entry = self.transport.entries[ALICE]
        self.assertEqual(entry.get_attribute_value("mail"), "alice@example.org")
        self.assertEqual(entry.get_attribute_values("sn"), ())

    def test_update_unknown_user(self):
        with self.assertRaises(NotFoundError):
            self.client.update_user_attributes("nobody", {"mail": ["x@example.com"]})
        self.assertEqual(self.transport.modifications, [])


class TestGroups(ClientTestCase):
    """Test group lookups and writes."""

    def test_get_group_by_id(self):
        group = self.client.get_group(GetGroupRequest(id="developers"))
        self.assertEqual(group.dn, DEVELOPERS)
        self.assertEqual(group.id, "developers")
        self.assertEqual(group.get_string_attribute("description"), "The developers")
        self.assertEqual(group.members_id(), ["alice", "bob"])
        self.assertEqual(group.members_dn(), [ALICE, BOB])
        self.assertTrue(group.is_member("bob"))

    def test_get_group_by_dn(self):
        group = self.client.get_group(GetGroupRequest(dn=ADMINS))
        self.assertEqual(group.id, "admins")
        self.assertEqual(group.members_id(), ["alice"])

    def test_skip_members_search(self):
        group = self.client.get_group(GetGroupRequest(id="developers", skip_members_search=True))
        self.assertIsNone(group.members_dn())

    def test_get_unknown_group(self):
        self.assertIsNone(self.client.get_group(GetGroupRequest(id="finance")))

    def test_create_group(self):
        self.client.create_group(
            CreateGroupRequest(id="finance", attributes={"description": ["Money"]})
        )
        entry = self.transport.entries[f"CN=finance,{GROUPS_BASE}"]
        self.assertEqual(entry.get_attribute_values("objectClass"), ("top", "group"))
        self.assertEqual(entry.get_attribute_value("sAMAccountName"), "finance")
        self.assertEqual(entry.get_attribute_value("description"), "Money")

    def test_delete_group(self):
        self.client.delete_group("admins")
        self.assertNotIn(ADMINS, self.transport.entries)

    def test_delete_unknown_group(self):
        self.client.delete_group("finance")
        self.assertIn(ADMINS, self.transport.entries)

    def test_delete_group_without_id(self):
        with self.assertRaises(ValidationError):
            self.client.delete_group("")

    @patch("adclient.members.MembershipReconciler.add_members", return_value=2)
    def test_add_group_members_delegates(self, add_members):
        self.assertEqual(self.client.add_group_members("admins", "bob", "carol"), 2)
        add_members.assert_called_once_with("admins", "bob", "carol")
