"""
Identifier codec between raw branch names and filesystem-safe child names.

Encoding percent-escapes every byte outside a conservative safe set so the
result can be used as a directory name. Decoding is tolerant: malformed
escapes pass through unchanged and decoding never raises.
"""

import string

# Characters that survive encoding unchanged. Everything else, including
# "/", "%", space, control characters and non-ASCII, is percent-encoded.
SAFE_CHARACTERS = frozenset(
    string.ascii_letters + string.digits + "!$&'()*+,-.=@_"
)

_HEX_DIGITS = frozenset(string.hexdigits)


def encode(raw: str) -> str:
    """
    Encode a raw branch name into a filesystem-safe child name.

    Args:
        raw: Branch name as reported by the source (e.g., "feature/x")

    Returns:
        Encoded name (e.g., "feature%2Fx")
    """
    out = []
    for char in raw:
        if char in SAFE_CHARACTERS:
            out.append(char)
        else:
            out.extend(f"%{byte:02X}" for byte in char.encode("utf-8"))
    return "".join(out)


def decode(encoded: str) -> str:
    """
    Decode a child name back into the raw branch name.

    Every "%XY" with two valid hex digits becomes the byte 0xXY. An escape
    with invalid digits is kept literally. Byte sequences that are not valid
    UTF-8 are replaced with U+FFFD instead of raising.

    Args:
        encoded: Encoded child name

    Returns:
        Decoded branch name
    """
    data = encoded.encode("utf-8")
    buffer = bytearray()
    i = 0
    while i < len(data):
        byte = data[i]
        if byte == ord("%") and i + 2 < len(data):
            high = chr(data[i + 1])
            low = chr(data[i + 2])
            if high in _HEX_DIGITS and low in _HEX_DIGITS:
                buffer.append(int(high + low, 16))
                i += 3
                continue
        buffer.append(byte)
        i += 1
    return buffer.decode("utf-8", errors="replace")


def display_name_for(encoded: str) -> str:
    """Human readable name for a child, i.e. the decoded branch name."""
    return decode(encoded)
