"""
LDIF export for directory entries.

This module decides which view of an :py:class:`~ldapentry.entry.Entry` to
export and writes it with python-ldap's :py:class:`ldif.LDIFWriter`, which
takes care of line folding and base64-encoding unsafe values.
"""

from io import StringIO
from typing import TYPE_CHECKING, TextIO

from ldif import LDIFWriter

from . import ldap
from .sync import ModType, build_operations
from .utils import encode_value, encode_values

if TYPE_CHECKING:
    from .entry import Entry
    from .typing import Value

#: Comment written after the dn of an entry described by its staged additions.
NEW_ITEMS_COMMENT = "All items in this file are new."

#: LDIF line width used by :py:class:`ldif.LDIFWriter`.
LDIF_LINE_WIDTH = 76


def export_items(entry: "Entry") -> tuple[bool, list[tuple[str, "Value"]]]:
    """
    Return the (attribute, value) pairs that describe ``entry``.

    Normally these are the entry's current values.  If the entry has no
    current values but has staged additions, the staged additions are
    described instead.

    Args:
        entry: The entry to describe.

    Returns:
        A 2-tuple: whether the staged additions were used, and the pairs,
        grouped by attribute, one pair per value.

    """
    to_add = entry.changes.to_add
    if not entry.get_keys() and to_add:
        return True, [
            (name, value) for name, values in to_add.items() for value in values
        ]
    return False, [
        (name, value) for name in entry.get_keys() for value in entry.get_values(name)
    ]


def write_ldif(
    entry: "Entry",
    output: TextIO,
    cols: int = LDIF_LINE_WIDTH,
    charset: str | None = None,
) -> None:
    """
    Write ``entry`` to ``output`` as an LDIF content record.

    When the entry is described by its staged additions, a
    ``# All items in this file are new.`` comment follows the ``dn:`` line.

    Args:
        entry: The entry to write.
        output: A text stream.

    Keyword Args:
        cols: Fold lines longer than this.
        charset: The charset to encode str values with.

    """
    from_staged, items = export_items(entry)
    record: dict[str, list[bytes]] = {}
    for name, value in items:
        record.setdefault(name, []).append(encode_value(value, charset))
    if not from_staged:
        LDIFWriter(output, cols=cols).unparse(entry.dn, record)
        return
    buf = StringIO()
    LDIFWriter(buf, cols=cols).unparse(entry.dn, record)
    lines = buf.getvalue().splitlines(keepends=True)
    # The dn may be folded onto continuation lines, which start with a space
    end = 1
    while end < len(lines) and lines[end].startswith(" "):
        end += 1
    output.write("".join(lines[:end]))
    output.write(f"# {NEW_ITEMS_COMMENT}\n")
    output.write("".join(lines[end:]))


def write_changes_ldif(
    entry: "Entry",
    output: TextIO,
    cols: int = LDIF_LINE_WIDTH,
    charset: str | None = None,
) -> None:
    """
    Write what :py:func:`ldapentry.sync.commit` would send for ``entry`` as an
    LDIF change record: ``changetype: add`` for a new entry,
    ``changetype: modify`` otherwise.

    Nothing is written if there is nothing to send.

    Args:
        entry: The entry to write.
        output: A text stream.

    Keyword Args:
        cols: Fold lines longer than this.
        charset: The charset to encode str values with.

    """
    operations = build_operations(entry)
    if not operations:
        return
    writer = LDIFWriter(output, cols=cols)
    if entry.is_new:
        writer.unparse(
            entry.dn,
            [(op.attribute, encode_values(op.values, charset)) for op in operations],
        )
        return
    mod_ops = {ModType.ADD: ldap.MOD_ADD, ModType.DELETE: ldap.MOD_DELETE}
    writer.unparse(
        entry.dn,
        [
            (mod_ops[op.kind], op.attribute, encode_values(op.values, charset))
            for op in operations
        ],
    )
