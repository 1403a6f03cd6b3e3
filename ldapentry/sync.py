"""
Turn an entry's pending edits into one directory write.

This module provides :py:func:`build_operations`, which orders an entry's
pending edits into a batch of :py:data:`Operation` tuples, and
:py:func:`commit`, which hands that batch to a
:py:class:`~ldapentry.typing.Directory` and resets the entry once the write
has succeeded.
"""

import logging
from collections import namedtuple
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .entry import Entry
    from .typing import Directory

logger = logging.getLogger("django-ldapentry")


class ModType:
    """
    The kinds of :py:data:`Operation`.
    """

    ADD = "add"
    DELETE = "delete"


#: One step of a batch: add or delete ``values`` on ``attribute``.
Operation = namedtuple("Operation", ["kind", "attribute", "values"])


def build_operations(entry: "Entry") -> list[Operation]:
    """
    Build the ordered batch of operations that would write ``entry``.

    For a new entry this is one ``ADD`` per attribute with the entry's full
    current values: there is nothing in the directory to diff against.

    For an existing entry this is one ``DELETE`` per attribute with pending
    removals, followed by one ``ADD`` per attribute with pending additions.
    Removals always come first, so that removing an old value and adding a
    new one to the same attribute works.  Within each group attributes are
    sorted by name.

    Args:
        entry: The entry to build the batch for.

    Returns:
        A list of operations, possibly empty.

    """
    if entry.is_new:
        return [
            Operation(ModType.ADD, name, entry.get_values(name))
            for name in sorted(entry.get_keys())
        ]
    changes = entry.changes
    operations = [
        Operation(ModType.DELETE, name, list(changes.to_remove[name]))
        for name in sorted(changes.to_remove)
    ]
    operations.extend(
        Operation(ModType.ADD, name, list(changes.to_add[name]))
        for name in sorted(changes.to_add)
    )
    return operations


def commit(entry: "Entry", directory: "Directory") -> list[Operation]:
    """
    Write ``entry``'s pending edits to ``directory`` as a single request.

    A new entry is created; an existing one is modified.  An existing entry
    with nothing pending is left alone and ``directory`` is not called.

    On success the entry's pending edits are cleared and it is no longer new.
    On failure the entry is not touched at all.

    Args:
        entry: The entry to write.
        directory: The directory to write to.

    Raises:
        DirectoryWriteError: The directory rejected the write.

    Returns:
        The operations that were written.

    """
    operations = build_operations(entry)
    if not entry.is_new and not operations:
        logger.debug("ldapentry.sync.no-changes dn=%s", entry.dn)
        return []
    directory.write_batch(entry.dn, entry.is_new, operations)
    logger.info(
        "ldapentry.sync.success dn=%s create=%s operations=%d",
        entry.dn,
        entry.is_new,
        len(operations),
    )
    entry._mark_synced()  # noqa: SLF001
    return operations
