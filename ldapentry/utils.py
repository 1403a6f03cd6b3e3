from .conf import get_charset
from .typing import Value


def decode_value(value: Value, charset: str | None = None) -> Value:
    """
    Decode a raw LDAP value to a string, if it is text.

    Values that are not valid in ``charset`` (``jpegPhoto``, certificates and
    the like) are returned unchanged as bytes.

    Args:
        value: The raw value.

    Keyword Args:
        charset: The charset to decode with.  Defaults to
            ``settings.LDAPENTRY_CHARSET``.

    Returns:
        The decoded value.

    """
    if not isinstance(value, bytes):
        return value
    try:
        return value.decode(charset or get_charset())
    except UnicodeDecodeError:
        return value


def encode_value(value: Value, charset: str | None = None) -> bytes:
    """
    Encode a value to bytes for python-ldap.
    """
    if isinstance(value, bytes):
        return value
    return value.encode(charset or get_charset())


def encode_values(values: list[Value], charset: str | None = None) -> list[bytes]:
    return [encode_value(v, charset) for v in values]
