"""
python-ldap backed directory access for entries.

This module provides :py:class:`DirectoryManager`, which reads raw entries
from an LDAP server and applies :py:mod:`ldapentry.sync` operation batches
to it, the :py:func:`atomic` decorator that gives each wrapped call its own
per-thread connection, and :py:class:`Modlist`, which turns operation batches
into python-ldap modlists.
"""

import logging
import threading
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import Any, cast

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from ldap import modlist
from ldap_filter import Filter

from ldapentry import ldap

from .entry import Entry
from .exceptions import DirectoryWriteError
from .sync import ModType, Operation
from .typing import AddModlist, LDAPData, ModifyModList
from .utils import encode_values

logger = logging.getLogger("django-ldapentry")


# -----------------------
# Decorators
# -----------------------


def atomic(key: str = "read") -> Callable:
    """
    Decorator to wrap methods that need to talk to an LDAP server.

    Args:
        key: Either "read" or "write". Determines which LDAP server to use.

    Returns:
        A decorator that manages LDAP connection context for the wrapped method.

    """

    def real_decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> Callable:
            if self.has_connection():
                # Ensure we're not currently in a wrapped function
                return func(self, *args, **kwargs)
            self.connect(key)
            try:
                retval = func(self, *args, **kwargs)
            finally:
                # We do this in a finally: branch so that the ldap
                # connection gets cleaned up no matter what happens in
                # `func()`.
                self.disconnect()
            return retval

        return wrapper

    return real_decorator


# -----------------------
# Helper Classes
# -----------------------


class Modlist:
    """
    Helper for converting operation batches into python-ldap modlists.

    Keyword Args:
        charset: The charset to encode str values with.

    """

    #: Map our operation kinds to python-ldap modification types.
    MOD_OPS: dict[str, int] = {  # noqa: RUF012
        ModType.ADD: ldap.MOD_ADD,  # type: ignore[attr-defined]
        ModType.DELETE: ldap.MOD_DELETE,  # type: ignore[attr-defined]
    }

    def __init__(self, charset: str | None = None) -> None:
        self.charset = charset

    def add(self, operations: list[Operation]) -> AddModlist:
        """
        Convert a batch to a modlist suitable for passing to ``add_s``.

        Args:
            operations: The batch for a new entry.  Only ``ADD`` operations
                make sense here.

        Raises:
            ValueError: The batch contains something other than ``ADD``.

        Returns:
            The modlist for the add operation.

        """
        data: dict[str, list[bytes]] = {}
        for op in operations:
            if op.kind != ModType.ADD:
                msg = f"Cannot create an entry with a {op.kind} operation on {op.attribute}"
                raise ValueError(msg)
            data.setdefault(op.attribute, []).extend(
                encode_values(op.values, self.charset)
            )
        return modlist.addModlist(data)

    def modify(self, operations: list[Operation]) -> ModifyModList:
        """
        Convert a batch to a modlist suitable for passing to ``modify_s``,
        keeping the order of the batch.

        Args:
            operations: The batch for an existing entry.

        Returns:
            The modlist for the modify operation.

        """
        return [
            (self.MOD_OPS[op.kind], op.attribute, encode_values(op.values, self.charset))
            for op in operations
        ]


# -----------------------
# DirectoryManager
# -----------------------


class DirectoryManager:
    """
    Reads entries from and writes entries to an LDAP server.

    This class is thread-safe -- it will use a different LDAP connection for
    each thread.  This is important because LDAP connections are not thread-safe.
    Entries themselves are not: use each :py:class:`~ldapentry.entry.Entry`
    from one thread at a time.

    Configuration comes from ``settings.LDAP_SERVERS[server]`` unless
    ``config`` is given::

        LDAP_SERVERS = {
            "default": {
                "basedn": "dc=example,dc=com",
                "read": {"url": "ldap://ldap.example.com", "user": ..., "password": ...},
                "write": {"url": "ldap://ldap.example.com", "user": ..., "password": ...},
            }
        }

    Keyword Args:
        server: The key into ``settings.LDAP_SERVERS``.
        config: Use this dict instead of ``settings.LDAP_SERVERS[server]``.
        charset: The charset for values.  Defaults to
            ``settings.LDAPENTRY_CHARSET``, then ``utf-8``.

    Raises:
        ImproperlyConfigured: The server configuration could not be found.

    """

    def __init__(
        self,
        server: str = "default",
        config: dict[str, Any] | None = None,
        charset: str | None = None,
    ) -> None:
        self.logger = logger
        self.server = server
        self.charset = charset
        if config is None:
            try:
                config = settings.LDAP_SERVERS[server]
            except AttributeError as e:
                msg = "settings.LDAP_SERVERS does not exist!"
                raise ImproperlyConfigured(msg) from e
            except KeyError as e:
                msg = f"settings.LDAP_SERVERS has no key '{server}'"
                raise ImproperlyConfigured(msg) from e
        #: The part of settings.LDAP_SERVERS that we need
        self.config: dict[str, Any] = cast("dict[str, Any]", config)
        self.basedn: str | None = self.config.get("basedn")
        # keys in this dictionary get manipulated by .connect() and .disconnect()
        self._ldap_objects: dict[threading.Thread, ldap.ldapobject.LDAPObject] = {}  # type: ignore[name-defined]

    def disconnect(self) -> None:
        """
        Disconnect the current thread's LDAP connection.
        """
        self.connection.unbind_s()
        self.remove_connection()

    def has_connection(self) -> bool:
        """
        Check if the current thread has an active LDAP connection.

        Returns:
            True if a connection exists, False otherwise.

        """
        return threading.current_thread() in self._ldap_objects

    def set_connection(self, obj: ldap.ldapobject.LDAPObject) -> None:  # type: ignore[name-defined]
        self._ldap_objects[threading.current_thread()] = obj

    def remove_connection(self) -> None:
        del self._ldap_objects[threading.current_thread()]

    def _check_file(self, label: str, filename: str) -> None:
        path = Path(filename)
        if not path.exists():
            msg = f"{label} file does not exist: {filename}"
            raise OSError(msg)
        if not path.is_file():
            msg = f"{label} file is not a file: {filename}"
            raise OSError(msg)

    def _connect(
        self, key: str, dn: str | None = None, password: str | None = None
    ) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        Create and return a new LDAP connection object.

        Args:
            key: Configuration key for the LDAP server: "read" or "write".
            dn: Optional bind DN.
            password: Optional password.

        Raises:
            ImproperlyConfigured: There is no configuration for ``key``.
            ValueError: If the ``tls_verify`` value in the configuration is invalid.
            OSError: If a configured CA certificate, TLS certificate or TLS key
                file does not exist or is not a file.

        Returns:
            A connected LDAPObject.

        """
        try:
            config = self.config[key]
        except KeyError as e:
            msg = f"settings.LDAP_SERVERS['{self.server}'] has no '{key}' key"
            raise ImproperlyConfigured(msg) from e
        if not dn:
            dn = config["user"]
            password = config["password"]
        ldap_object: ldap.ldapobject.LDAPObject = ldap.initialize(config["url"])  # type: ignore[name-defined]
        if config.get("follow_referrals", False):
            ldap_object.set_option(ldap.OPT_REFERRALS, 1)  # type: ignore[attr-defined]
        else:
            ldap_object.set_option(ldap.OPT_REFERRALS, 0)  # type: ignore[attr-defined]
        timeout = config.get("timeout", 15.0)
        ldap_object.set_option(ldap.OPT_NETWORK_TIMEOUT, float(timeout))  # type: ignore[attr-defined]
        tls_verify = config.get("tls_verify", "never")
        if tls_verify == "never":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)  # type: ignore[attr-defined]
        elif tls_verify == "always":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)  # type: ignore[attr-defined]
        else:
            msg = f"Invalid tls_verify value: {tls_verify}"
            raise ValueError(msg)
        if tls_ca_certfile := config.get("tls_ca_certfile", None):
            self._check_file("CA Certificate", tls_ca_certfile)
            ldap_object.set_option(ldap.OPT_X_TLS_CACERTFILE, tls_ca_certfile)  # type: ignore[attr-defined]
        if tls_certfile := config.get("tls_certfile", None):
            self._check_file("TLS Certificate", tls_certfile)
            ldap_object.set_option(ldap.OPT_X_TLS_CERTFILE, tls_certfile)  # type: ignore[attr-defined]
        if tls_keyfile := config.get("tls_keyfile", None):
            self._check_file("TLS Key", tls_keyfile)
            ldap_object.set_option(ldap.OPT_X_TLS_KEYFILE, tls_keyfile)  # type: ignore[attr-defined]
        ldap_object.set_option(ldap.OPT_X_TLS_NEWCTX, 0)  # type: ignore[attr-defined]
        if config.get("use_starttls", True):
            ldap_object.start_tls_s()
        ldap_object.simple_bind_s(dn, password)
        return ldap_object

    def connect(
        self, key: str, dn: str | None = None, password: str | None = None
    ) -> None:
        """
        Set the per-thread LDAP connection object. Used by the @atomic decorator.

        Args:
            key: Configuration key for the LDAP server.
            dn: Optional bind DN.
            password: Optional password.

        """
        self.set_connection(self._connect(key, dn=dn, password=password))

    @property
    def connection(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        Get the current thread's LDAP connection object.
        """
        return self._ldap_objects[threading.current_thread()]

    @atomic(key="read")
    def read_entry(self, dn: str, attributes: list[str] | None = None) -> LDAPData:
        """
        Get the raw data for the entry at ``dn``.  To do this we do a search
        with the basedn set to ``dn``, with scope ``ldap.SCOPE_BASE``.

        Args:
            dn: The distinguished name to read.

        Keyword Args:
            attributes: Only fetch these attributes.  Defaults to all user
                attributes.

        Raises:
            Entry.DoesNotExist: There is no entry at ``dn``.

        Returns:
            A (dn, attrs) tuple.

        """
        searchfilter = Filter.attribute("objectClass").present().to_string()
        try:
            data = self.connection.search_s(
                dn, ldap.SCOPE_BASE, filterstr=searchfilter, attrlist=attributes  # type: ignore[attr-defined]
            )
        except ldap.NO_SUCH_OBJECT:  # type: ignore[attr-defined]
            data = []
        # We have to filter out any references that AD puts in
        objects = [obj for obj in data if isinstance(obj[1], dict)]
        if not objects:
            msg = f"No entry exists at {dn}"
            raise Entry.DoesNotExist(msg)
        return objects[0]

    def get_by_dn(self, dn: str, attributes: list[str] | None = None) -> Entry:
        """
        Get the entry at ``dn``, bound to this manager so that
        :py:meth:`Entry.sync` writes back here.

        Args:
            dn: The distinguished name to read.

        Keyword Args:
            attributes: Only fetch these attributes.

        Raises:
            Entry.DoesNotExist: There is no entry at ``dn``.

        Returns:
            An entry with no pending changes.

        """
        return Entry.from_db(
            self.read_entry(dn, attributes=attributes),
            manager=self,
            charset=self.charset,
        )

    def new(self, dn: str) -> Entry:
        """
        Return a new, empty entry bound to this manager.  It is created in
        the directory on its first :py:meth:`Entry.sync`.
        """
        return Entry(dn, manager=self)

    def write_batch(
        self, dn: str, is_create: bool, operations: list[Operation]
    ) -> None:
        """
        Apply a batch of operations to the entry at ``dn`` in one request:
        ``add_s`` if ``is_create``, else ``modify_s``.

        Unlike the read methods this is not wrapped with :py:func:`atomic`:
        failing to open or bind the write connection is a failed write too.

        Args:
            dn: The distinguished name of the entry.
            is_create: Whether the entry is being created.
            operations: The batch, from :py:func:`ldapentry.sync.build_operations`.

        Raises:
            DirectoryWriteError: The server could not be reached, refused our
                bind, or rejected the request.

        """
        _modlist = Modlist(charset=self.charset)
        owns_connection = not self.has_connection()
        try:
            if owns_connection:
                self.connect("write")
            if is_create:
                self.connection.add_s(dn, _modlist.add(operations))
            else:
                self.connection.modify_s(dn, _modlist.modify(operations))
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            err = DirectoryWriteError.from_ldap_error(dn, e)
            self.logger.warning(
                "ldapentry.manager.write.failed dn=%s create=%s result=%s desc=%s",
                dn,
                is_create,
                err.result,
                err.desc,
            )
            raise err from e
        finally:
            # Only close what we opened, and only if the bind got that far
            if owns_connection and self.has_connection():
                self.disconnect()
        self.logger.debug(
            "ldapentry.manager.write.success dn=%s create=%s operations=%d",
            dn,
            is_create,
            len(operations),
        )
