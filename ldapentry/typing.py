"""
Type definitions for directory entries and their change batches.

This module provides type aliases for raw LDAP data and python-ldap modlists,
plus the :py:class:`Directory` protocol that the sync engine writes through.
"""

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .sync import Operation

#: A single attribute value.  Raw values from LDAP are bytes; text values are
#: kept as str after decoding.
Value = str | bytes
AttributeMap = dict[str, list[Value]]
LDAPData = tuple[str, dict[str, list[bytes]]]
AddModlist = list[tuple[str, list[bytes]]]
ModifyModList = list[tuple[int, str, list[bytes]]]


class Directory(Protocol):
    """
    Anything that can apply a batch of operations to a named entry.

    :py:class:`ldapentry.managers.DirectoryManager` is the python-ldap backed
    implementation.
    """

    def write_batch(
        self, dn: str, is_create: bool, operations: list["Operation"]
    ) -> None:
        """
        Create (``is_create=True``) or modify the entry at ``dn``.

        Raises:
            DirectoryWriteError: the directory rejected the request.

        """
