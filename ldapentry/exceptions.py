"""
Exceptions raised by django-ldapentry.
"""

from typing import Any


class LdapEntryError(Exception):
    """Base class for all django-ldapentry errors."""


class DirectoryWriteError(LdapEntryError):
    """
    Raised when the directory rejects a create or modify request.

    The entry that was being written is left exactly as it was before the
    write was attempted, so the caller may inspect it or retry.

    Args:
        dn: The distinguished name of the entry we tried to write.

    Keyword Args:
        result: The native LDAP result code, if the directory gave one.
        desc: The directory's short description of the result code.
        info: Any additional diagnostic text from the directory.

    """

    def __init__(
        self,
        dn: str,
        result: int | None = None,
        desc: str = "",
        info: str = "",
    ) -> None:
        self.dn = dn
        self.result = result
        self.desc = desc
        self.info = info
        msg = f"Write to {dn} failed"
        if result is not None:
            msg += f" (result={result})"
        if desc:
            msg += f": {desc}"
        if info:
            msg += f" [{info}]"
        super().__init__(msg)

    @classmethod
    def from_ldap_error(cls, dn: str, exc: Exception) -> "DirectoryWriteError":
        """
        Build a :py:class:`DirectoryWriteError` from a python-ldap exception.

        python-ldap puts a dict like ``{"result": 68, "desc": "Already exists",
        "info": ""}`` in ``exc.args[0]``.

        Args:
            dn: The distinguished name of the entry we tried to write.
            exc: The exception python-ldap raised.

        Returns:
            A new :py:class:`DirectoryWriteError`.

        """
        # python-ldap exception classes carry their result code as ``errnum``
        errnum = getattr(exc, "errnum", None)
        payload: Any = exc.args[0] if exc.args else None
        if not isinstance(payload, dict):
            return cls(dn, result=errnum, desc=str(exc))
        info = payload.get("info", "")
        if isinstance(info, bytes):
            info = info.decode("utf-8", "replace")
        return cls(
            dn,
            result=payload.get("result", errnum),
            desc=payload.get("desc", ""),
            info=info,
        )
