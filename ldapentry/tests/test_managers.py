# mypy: disable-error-code="attr-defined"
# type: ignore
"""
Test suite for DirectoryManager using python-ldap-faker.

This test suite uses python-ldap-faker to simulate a directory server, so
that entries can be read, created and modified end to end.

"""

import copy
import threading
import unittest
from unittest.mock import patch

import django
import ldap
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from ldap_faker.unittest import LDAPFakerMixin

from ldapentry.entry import Entry, EntryState
from ldapentry.exceptions import DirectoryWriteError
from ldapentry.managers import DirectoryManager, Modlist, atomic
from ldapentry.sync import ModType, Operation

LDAP_SERVERS = {
    "test_server": {
        "basedn": "dc=example,dc=com",
        "read": {
            "url": "ldap://localhost:389",
            "user": "cn=admin,dc=example,dc=com",
            "password": "admin",
            "use_starttls": False,
            "tls_verify": "never",
            "timeout": 15.0,
            "follow_referrals": False,
        },
        "write": {
            "url": "ldap://localhost:389",
            "user": "cn=admin,dc=example,dc=com",
            "password": "admin",
            "use_starttls": False,
            "tls_verify": "never",
            "timeout": 15.0,
            "follow_referrals": False,
        },
    }
}

# Configure Django settings before any manager is built
if not settings.configured:
    settings.configure(LDAP_SERVERS=LDAP_SERVERS)
    try:
        django.setup()
    except Exception:  # noqa: BLE001, S110
        pass


class TestDirectoryManagerWithFaker(LDAPFakerMixin, unittest.TestCase):
    """Test suite for DirectoryManager using python-ldap-faker."""

    ldap_modules = ["ldapentry"]

    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        cls.test_objects = [
            [
                "cn=admin,dc=example,dc=com",
                {
                    "cn": [b"admin"],
                    "userPassword": [b"admin"],
                    "objectclass": [b"simpleSecurityObject", b"organizationalRole", b"top"],
                },
            ],
            [
                "uid=alice,ou=people,dc=example,dc=com",
                {
                    "uid": [b"alice"],
                    "cn": [b"Alice Johnson"],
                    "sn": [b"Johnson"],
                    "mail": [b"alice@example.com", b"ajohnson@example.com"],
                    "objectclass": [b"inetOrgPerson", b"top"],
                },
            ],
            [
                "uid=bob,ou=people,dc=example,dc=com",
                {
                    "uid": [b"bob"],
                    "cn": [b"Bob", b"Robert"],
                    "sn": [b"Smith"],
                    "objectclass": [b"inetOrgPerson", b"top"],
                },
            ],
        ]

    def setUp(self):
        super().setUp()
        self.settings_patcher = patch("django.conf.settings.LDAP_SERVERS", LDAP_SERVERS)
        self.settings_patcher.start()
        self.manager = DirectoryManager("test_server")

        # Reset the fake directory before each test
        self.server_factory.default.raw_objects.clear()
        self.server_factory.default.objects.clear()
        for dn, attrs in self.test_objects:
            self.server_factory.default.register_object((dn, attrs))

    def tearDown(self):
        self.settings_patcher.stop()
        super().tearDown()

    def test_manager_initialization(self):
        """Test DirectoryManager configuration from settings."""
        self.assertEqual(self.manager.server, "test_server")
        self.assertEqual(self.manager.basedn, "dc=example,dc=com")
        self.assertEqual(self.manager.config, LDAP_SERVERS["test_server"])

    def test_connection_management(self):
        """Test per-thread connection management."""
        self.assertFalse(self.manager.has_connection())
        self.manager.connect("read")
        self.assertTrue(self.manager.has_connection())
        self.assertIsNotNone(self.manager.connection)
        self.manager.disconnect()
        self.assertFalse(self.manager.has_connection())

    def test_atomic_disconnects(self):
        """Test that atomic methods leave no connection behind."""
        self.manager.read_entry("uid=alice,ou=people,dc=example,dc=com")
        self.assertFalse(self.manager.has_connection())

    def test_read_entry(self):
        """Test reading raw data for an entry."""
        dn, attrs = self.manager.read_entry("uid=alice,ou=people,dc=example,dc=com")
        self.assertEqual(dn, "uid=alice,ou=people,dc=example,dc=com")
        self.assertEqual(attrs["uid"], [b"alice"])

    def test_get_by_dn(self):
        """Test getting an Entry by its DN."""
        entry = self.manager.get_by_dn("uid=alice,ou=people,dc=example,dc=com")
        self.assertFalse(entry.is_new)
        self.assertEqual(entry.state, EntryState.CLEAN)
        self.assertIs(entry.manager, self.manager)
        self.assertEqual(entry.get_first_value("cn"), "Alice Johnson")
        self.assertEqual(
            entry.get_values("mail"), ["alice@example.com", "ajohnson@example.com"]
        )
        self.assertEqual(entry.get_values("missing"), [])

    def test_get_by_dn_nonexistent(self):
        """Test getting an Entry that does not exist."""
        with self.assertRaises(Entry.DoesNotExist):
            self.manager.get_by_dn("uid=nobody,ou=people,dc=example,dc=com")

    def test_create_entry(self):
        """Test creating a new entry with sync()."""
        entry = self.manager.new("uid=carol,ou=people,dc=example,dc=com")
        entry.add_value("objectclass", "inetOrgPerson")
        entry.add_value("uid", "carol")
        entry.add_value("cn", "Carol")
        entry.add_value("sn", "Jones")
        entry.add_value("mail", "carol@example.com")
        entry.sync()
        self.assertFalse(entry.is_new)
        self.assertFalse(entry.has_pending_changes())

        stored = self.manager.get_by_dn("uid=carol,ou=people,dc=example,dc=com")
        self.assertEqual(stored.get_values("cn"), ["Carol"])
        self.assertEqual(stored.get_values("mail"), ["carol@example.com"])

    def test_create_existing_entry_fails(self):
        """Test that creating an entry that already exists raises and keeps state."""
        entry = self.manager.new("uid=alice,ou=people,dc=example,dc=com")
        entry.add_value("objectclass", "inetOrgPerson")
        entry.add_value("uid", "alice")
        entry.add_value("cn", "Alice Again")
        with self.assertRaises(DirectoryWriteError) as ctx:
            entry.sync()
        self.assertEqual(ctx.exception.dn, "uid=alice,ou=people,dc=example,dc=com")
        self.assertEqual(ctx.exception.result, ldap.ALREADY_EXISTS.errnum)
        self.assertTrue(entry.is_new)
        self.assertEqual(entry.changes.to_add["cn"], ["Alice Again"])

    def test_remove_value(self):
        """Test removing one value from an existing entry."""
        entry = self.manager.get_by_dn("uid=bob,ou=people,dc=example,dc=com")
        entry.remove_value("cn", "Robert")
        operations = entry.sync()
        self.assertEqual(operations, [Operation(ModType.DELETE, "cn", ["Robert"])])
        self.assertEqual(entry.get_values("cn"), ["Bob"])

        stored = self.manager.get_by_dn("uid=bob,ou=people,dc=example,dc=com")
        self.assertEqual(stored.get_values("cn"), ["Bob"])

    def test_replace_value(self):
        """Test removing an old value and adding a new one in one commit."""
        entry = self.manager.get_by_dn("uid=bob,ou=people,dc=example,dc=com")
        entry.remove_value("sn", "Smith")
        entry.add_value("sn", "Smyth")
        entry.add_value("mail", "bob@example.com")
        entry.sync()

        stored = self.manager.get_by_dn("uid=bob,ou=people,dc=example,dc=com")
        self.assertEqual(stored.get_values("sn"), ["Smyth"])
        self.assertEqual(stored.get_values("mail"), ["bob@example.com"])
        self.assertEqual(stored.get_values("cn"), ["Bob", "Robert"])

    def test_modify_missing_entry_fails(self):
        """Test that modifying an entry that is gone raises and keeps state."""
        entry = Entry.from_db(
            ("uid=ghost,ou=people,dc=example,dc=com", {"cn": [b"Ghost"]}),
            manager=self.manager,
        )
        entry.add_value("description", "boo")
        with self.assertRaises(DirectoryWriteError) as ctx:
            entry.sync()
        self.assertEqual(ctx.exception.result, ldap.NO_SUCH_OBJECT.errnum)
        self.assertEqual(entry.changes.to_add, {"description": ["boo"]})
        self.assertEqual(entry.state, EntryState.MODIFIED)

    def test_clean_entry_sync_does_not_write(self):
        """Test that syncing an unchanged entry does not open a write connection."""
        entry = self.manager.get_by_dn("uid=alice,ou=people,dc=example,dc=com")
        with patch.object(self.manager, "connect") as connect:
            self.assertEqual(entry.sync(), [])
        connect.assert_not_called()

    def test_bind_failure_is_write_error(self):
        """Test that a failed bind on the write connection raises DirectoryWriteError."""
        config = copy.deepcopy(LDAP_SERVERS["test_server"])
        config["write"]["password"] = "wrong"
        manager = DirectoryManager(config=config)
        entry = manager.get_by_dn("uid=bob,ou=people,dc=example,dc=com")
        entry.remove_value("cn", "Robert")
        before = entry.changes.copy()
        with self.assertRaises(DirectoryWriteError) as ctx:
            entry.sync()
        self.assertEqual(ctx.exception.dn, "uid=bob,ou=people,dc=example,dc=com")
        self.assertEqual(ctx.exception.result, ldap.INVALID_CREDENTIALS.errnum)
        self.assertEqual(entry.changes, before)
        self.assertEqual(entry.state, EntryState.MODIFIED)
        self.assertEqual(entry.get_values("cn"), ["Bob"])
        self.assertFalse(manager.has_connection())

        stored = self.manager.get_by_dn("uid=bob,ou=people,dc=example,dc=com")
        self.assertEqual(stored.get_values("cn"), ["Bob", "Robert"])

    def test_bind_failure_on_create_keeps_new_entry(self):
        """Test that a new entry stays new when the write bind fails."""
        config = copy.deepcopy(LDAP_SERVERS["test_server"])
        config["write"]["password"] = "wrong"
        manager = DirectoryManager(config=config)
        entry = manager.new("uid=carol,ou=people,dc=example,dc=com")
        entry.add_value("objectclass", "inetOrgPerson")
        entry.add_value("uid", "carol")
        with self.assertRaises(DirectoryWriteError):
            entry.sync()
        self.assertTrue(entry.is_new)
        self.assertEqual(
            entry.changes.to_add, {"objectclass": ["inetOrgPerson"], "uid": ["carol"]}
        )
        with self.assertRaises(Entry.DoesNotExist):
            self.manager.get_by_dn("uid=carol,ou=people,dc=example,dc=com")

    def test_concurrent_syncs_on_one_manager(self):
        """Test two threads syncing different entries through the same manager."""
        errors = []

        def worker(dn, name, value):
            try:
                entry = self.manager.get_by_dn(dn)
                entry.remove_value(name, value)
                entry.sync()
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [
            threading.Thread(
                target=worker,
                args=("uid=alice,ou=people,dc=example,dc=com", "mail", "ajohnson@example.com"),
            ),
            threading.Thread(
                target=worker,
                args=("uid=bob,ou=people,dc=example,dc=com", "cn", "Robert"),
            ),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        alice = self.manager.get_by_dn("uid=alice,ou=people,dc=example,dc=com")
        self.assertEqual(alice.get_values("mail"), ["alice@example.com"])
        bob = self.manager.get_by_dn("uid=bob,ou=people,dc=example,dc=com")
        self.assertEqual(bob.get_values("cn"), ["Bob"])
        self.assertEqual(self.manager._ldap_objects, {})


class TestDirectoryManagerConfig(unittest.TestCase):
    """Tests for DirectoryManager configuration errors."""

    def test_explicit_config(self):
        """Test that an explicit config bypasses settings."""
        config = {"basedn": "dc=example,dc=org", "read": {}, "write": {}}
        manager = DirectoryManager(config=config, charset="latin-1")
        self.assertEqual(manager.basedn, "dc=example,dc=org")
        self.assertEqual(manager.charset, "latin-1")

    def test_unknown_server(self):
        """Test that an unknown server key is a configuration error."""
        with patch("django.conf.settings.LDAP_SERVERS", LDAP_SERVERS):
            with self.assertRaises(ImproperlyConfigured):
                DirectoryManager("no_such_server")

    def test_missing_connection_key(self):
        """Test that a missing read/write section is a configuration error."""
        manager = DirectoryManager(config={"basedn": "dc=example,dc=com"})
        with self.assertRaises(ImproperlyConfigured):
            manager.connect("write")

    def test_invalid_tls_verify(self):
        """Test that an invalid tls_verify value is rejected."""
        config = {
            "read": {
                "url": "ldap://localhost:389",
                "user": "cn=admin,dc=example,dc=com",
                "password": "admin",
                "tls_verify": "sometimes",
            }
        }
        manager = DirectoryManager(config=config)
        with patch("ldapentry.ldap.initialize"), self.assertRaises(ValueError):
            manager.connect("read")

    def test_missing_ca_certfile(self):
        """Test that a missing CA certificate file is reported."""
        config = {
            "read": {
                "url": "ldap://localhost:389",
                "user": "cn=admin,dc=example,dc=com",
                "password": "admin",
                "tls_ca_certfile": "/nonexistent/ca.pem",
            }
        }
        manager = DirectoryManager(config=config)
        with patch("ldapentry.ldap.initialize"), self.assertRaises(OSError):
            manager.connect("read")


class TestModlist(unittest.TestCase):
    """Tests for converting batches to python-ldap modlists."""

    def test_add(self):
        """Test the modlist for a create."""
        operations = [
            Operation(ModType.ADD, "cn", ["Bob"]),
            Operation(ModType.ADD, "jpegPhoto", [b"\xff\xd8"]),
        ]
        self.assertEqual(
            sorted(Modlist().add(operations)),
            [("cn", [b"Bob"]), ("jpegPhoto", [b"\xff\xd8"])],
        )

    def test_add_rejects_delete(self):
        """Test that a create cannot contain deletes."""
        with self.assertRaises(ValueError):
            Modlist().add([Operation(ModType.DELETE, "cn", ["Bob"])])

    def test_modify_keeps_order(self):
        """Test the modlist for a modify keeps deletes before adds."""
        operations = [
            Operation(ModType.DELETE, "cn", ["Robert"]),
            Operation(ModType.ADD, "cn", ["Bobby"]),
        ]
        self.assertEqual(
            Modlist().modify(operations),
            [
                (ldap.MOD_DELETE, "cn", [b"Robert"]),
                (ldap.MOD_ADD, "cn", [b"Bobby"]),
            ],
        )

    def test_charset(self):
        """Test that str values are encoded with the given charset."""
        operations = [Operation(ModType.ADD, "cn", ["Jörg"])]
        self.assertEqual(
            Modlist(charset="latin-1").modify(operations),
            [(ldap.MOD_ADD, "cn", [b"J\xf6rg"])],
        )


class TestAtomic(unittest.TestCase):
    """Tests for the atomic decorator."""

    class FakeManager:
        def __init__(self):
            self.connected = False
            self.calls = []

        def has_connection(self):
            return self.connected

        def connect(self, key):
            self.calls.append(("connect", key))
            self.connected = True

        def disconnect(self):
            self.calls.append(("disconnect",))
            self.connected = False

        @atomic(key="write")
        def explode(self):
            raise RuntimeError("boom")

        @atomic(key="read")
        def outer(self):
            return self.inner()

        @atomic(key="read")
        def inner(self):
            return "inner"

    def test_disconnects_on_error(self):
        """Test that the connection is closed when the method raises."""
        manager = self.FakeManager()
        with self.assertRaises(RuntimeError):
            manager.explode()
        self.assertEqual(manager.calls, [("connect", "write"), ("disconnect",)])

    def test_nested_calls_reuse_connection(self):
        """Test that nested atomic calls share one connection."""
        manager = self.FakeManager()
        self.assertEqual(manager.outer(), "inner")
        self.assertEqual(manager.calls, [("connect", "read"), ("disconnect",)])


if __name__ == "__main__":
    unittest.main()
