"""
In-memory directory entries with change tracking.

This module provides the :py:class:`Entry` class, which holds the attribute
values of one directory entry plus the edits made to it since it was read
from (or last written to) the directory.  Edits are applied to the local view
immediately and written to the directory in one batch by
:py:func:`ldapentry.sync.commit`.
"""

import copy
from io import StringIO
from typing import TYPE_CHECKING

from .ldif import write_ldif
from .sync import commit
from .typing import AttributeMap, LDAPData, Value
from .utils import decode_value

if TYPE_CHECKING:
    from .sync import Operation
    from .typing import Directory


class EntryState:
    """
    The lifecycle state of an :py:class:`Entry`.
    """

    #: The entry does not exist in the directory yet.
    NEW = "new"
    #: The entry exists in the directory and has no pending edits.
    CLEAN = "clean"
    #: The entry exists in the directory and has pending edits.
    MODIFIED = "modified"


class Changeset:
    """
    The edits made to an :py:class:`Entry` that have not been written to the
    directory yet.

    Only attributes touched since the last successful commit appear as keys.
    """

    def __init__(self) -> None:
        #: Values to add, by attribute name, in the order they were added.
        self.to_add: AttributeMap = {}
        #: Values to remove, by attribute name, in the order they were removed.
        self.to_remove: AttributeMap = {}

    def __bool__(self) -> bool:
        return bool(self.to_add or self.to_remove)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Changeset):
            return False
        return self.to_add == other.to_add and self.to_remove == other.to_remove

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<Changeset: to_add={self.to_add!r} to_remove={self.to_remove!r}>"

    def copy(self) -> "Changeset":
        """
        Return a deep copy of the pending edits.  Used to snapshot an entry's
        edits before a commit, mostly in tests.
        """
        return copy.deepcopy(self)

    def clear(self) -> None:
        self.to_add.clear()
        self.to_remove.clear()


class Entry:
    """
    A single directory entry: a distinguished name plus a multi-valued
    attribute mapping.

    Build a brand new entry with ``Entry(dn)``, or one that reflects an entry
    already in the directory with :py:meth:`from_db`.  Change it with
    :py:meth:`add_value`, :py:meth:`remove_value` and
    :py:meth:`remove_all_values`, then write the changes with :py:meth:`sync`.

    Entries are not thread-safe.  Distinct entries are independent of each
    other.

    Args:
        dn: The distinguished name of the entry.  It never changes.

    Keyword Args:
        manager: The directory that :py:meth:`sync` writes to by default.

    """

    class DoesNotExist(Exception):
        """Raised when no entry exists at the requested DN."""

    def __init__(self, dn: str, manager: "Directory | None" = None) -> None:
        self._dn = dn
        #: The default directory for :py:meth:`sync`.
        self.manager = manager
        #: True until the entry has been created in the directory.
        self.is_new: bool = True
        self._data: AttributeMap = {}
        self._changes = Changeset()

    @classmethod
    def from_db(
        cls,
        data: LDAPData,
        manager: "Directory | None" = None,
        charset: str | None = None,
    ) -> "Entry":
        """
        Create an entry from raw LDAP data.

        ``data`` looks like what python-ldap's
        :py:meth:`ldap.ldapobject.SimpleLDAPObject.search_s` returns for one
        object:

        .. code-block:: python

            (DN, {'attr1': [b'value'], 'attr2': [b'value2', b'value3'], ...})

        Attributes with no values are skipped.

        Args:
            data: A (dn, attrs) tuple.

        Keyword Args:
            manager: The directory that :py:meth:`sync` writes to by default.
            charset: The charset to decode values with.

        Raises:
            ValueError: ``data`` is a search reference rather than an entry.

        Returns:
            An entry with no pending changes.

        """
        dn, attrs = data
        if not isinstance(attrs, dict):
            msg = f"Expected an attribute dict for {dn}, got {type(attrs).__name__}"
            raise ValueError(msg)
        entry = cls(dn, manager=manager)
        entry.is_new = False
        for attr, values in attrs.items():
            if values:
                entry._data[attr] = [decode_value(v, charset) for v in values]
        return entry

    @property
    def dn(self) -> str:
        """
        The distinguished name of the entry.
        """
        return self._dn

    def get_dn(self) -> str:
        return self._dn

    @property
    def changes(self) -> Changeset:
        """
        The pending edits.  Treat this as read-only.
        """
        return self._changes

    @property
    def state(self) -> str:
        """
        The :py:class:`EntryState` of the entry.
        """
        if self.is_new:
            return EntryState.NEW
        if self._changes:
            return EntryState.MODIFIED
        return EntryState.CLEAN

    def get_keys(self) -> list[str]:
        """
        Return the names of all attributes that currently have values, e.g.
        ``["cn", "mail"]``.

        Pending additions are included; pending removals are not.

        Returns:
            The attribute names, in the order they were first seen.

        """
        return list(self._data)

    def get_values(self, name: str) -> list[Value]:
        """
        Return all current values for an attribute.

        Args:
            name: The attribute name.

        Returns:
            A copy of the values, or ``[]`` if the attribute has none.

        """
        return list(self._data.get(name, []))

    def get_first_value(self, name: str) -> Value:
        """
        Return the first value of an attribute, in the order the values were
        read or added.

        Args:
            name: The attribute name.

        Returns:
            The first value, or ``""`` if the attribute has none.

        """
        values = self._data.get(name)
        if not values:
            return ""
        return values[0]

    def add_value(self, name: str, value: Value) -> None:
        """
        Add a value to an attribute, creating the attribute if needed.  This
        is only written to the directory when :py:meth:`sync` is called.

        Adding the same value twice adds it twice.

        Args:
            name: The attribute name.
            value: The value to add.

        """
        self._data.setdefault(name, []).append(value)
        self._changes.to_add.setdefault(name, []).append(value)

    def remove_value(self, name: str, value: Value) -> None:
        """
        Remove every occurrence of ``value`` from an attribute.  Each
        occurrence is staged for removal from the directory.

        Removing a value the attribute doesn't have does nothing.

        Args:
            name: The attribute name.
            value: The value to remove.  It must match exactly.

        """
        # Bail out early if the attribute isn't on the entry.
        if name not in self._data:
            return
        kept: list[Value] = []
        for item in self._data[name]:
            if item == value:
                self._changes.to_remove.setdefault(name, []).append(value)
            else:
                kept.append(item)
        if kept:
            self._data[name] = kept
        else:
            del self._data[name]

    def remove_all_values(self, name: str) -> None:
        """
        Remove an attribute and stage all of its values for removal.

        Args:
            name: The attribute name.

        """
        if name not in self._data:
            return
        self._changes.to_remove.setdefault(name, []).extend(self._data.pop(name))

    def has_pending_changes(self) -> bool:
        return bool(self._changes)

    def sync(self, directory: "Directory | None" = None) -> list["Operation"]:
        """
        Write pending changes to the directory.  If the entry isn't in the
        directory yet, it will be created.

        Args:
            directory: Where to write.  Defaults to :py:attr:`manager`.

        Raises:
            ValueError: No directory was given and the entry has no manager.
            DirectoryWriteError: The directory rejected the write.  The entry
                is left as it was.

        Returns:
            The operations that were written.

        """
        if directory is None:
            directory = self.manager
        if directory is None:
            msg = f"No directory to write {self._dn} to: pass one or set manager"
            raise ValueError(msg)
        return commit(self, directory)

    def _mark_synced(self) -> None:
        self._changes.clear()
        self.is_new = False

    def to_ldif(self) -> str:
        """
        Return the entry as an LDIF content record.
        """
        out = StringIO()
        write_ldif(self, out)
        return out.getvalue()

    def __contains__(self, name: object) -> bool:
        return name in self._data

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self}>"

    def __str__(self) -> str:
        return f"{self.__class__.__name__} object ({self._dn}, {self.state})"

    def __eq__(self, other: object) -> bool:
        """
        Entries are equal if they have the same DN, values and pending edits.
        Mostly useful in tests, to check that a failed commit left an entry
        as it was.
        """
        if not isinstance(other, Entry):
            return False
        return (
            self._dn == other._dn
            and self.is_new == other.is_new
            and self._data == other._data
            and self._changes == other._changes
        )

    __hash__ = None  # type: ignore[assignment]
