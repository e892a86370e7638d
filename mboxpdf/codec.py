"""Header and body transfer decoding.

Pure functions: RFC 2047 encoded-words, quoted-printable and base64.
Decoding is best-effort; anything that cannot be decoded is returned as
it was found.
"""

from __future__ import annotations

import base64
import binascii
import codecs
import re

_ENCODED_WORD = re.compile(r"=\?([^?]+)\?([QqBb])\?([^?]+)\?=")
_HEX_ESCAPE = re.compile(r"=([0-9A-Fa-f]{2})")
_SOFT_LINE_BREAK = re.compile(r"=\r?\n")
_WHITESPACE = re.compile(r"\s+")

# Characters that may appear unescaped inside a Q-encoded word.
_Q_SAFE = frozenset(b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789!*+-/")


def decode_text(data: bytes, charset: str | None = None) -> str:
    """Decode *data* with *charset*, falling back to UTF-8 and then Latin-1."""
    candidates = [charset] if charset else []
    candidates.append("utf-8")
    for name in candidates:
        try:
            codecs.lookup(name)
            return data.decode(name)
        except (LookupError, UnicodeDecodeError):
            continue
    return data.decode("latin-1")


def _unescape_hex(text: str) -> bytes:
    out = bytearray()
    pos = 0
    for match in _HEX_ESCAPE.finditer(text):
        out += text[pos:match.start()].encode("utf-8")
        out.append(int(match.group(1), 16))
        pos = match.end()
    out += text[pos:].encode("utf-8")
    return bytes(out)


def decode_base64_bytes(text: str) -> bytes | None:
    """Decode base64 text, ignoring whitespace.  Returns None if invalid."""
    cleaned = _WHITESPACE.sub("", text)
    if not cleaned:
        return b""
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError):
        return None


def decode_base64_text(text: str, charset: str | None = None) -> str | None:
    data = decode_base64_bytes(text)
    if data is None:
        return None
    return decode_text(data, charset)


def _decode_word(charset: str, encoding: str, payload: str) -> str | None:
    if encoding.upper() == "Q":
        return decode_text(_unescape_hex(payload.replace("_", " ")), charset)
    data = decode_base64_bytes(payload)
    if data is None:
        return None
    return decode_text(data, charset)


def decode_encoded_words(header: str) -> str:
    """Replace every ``=?charset?Q|B?text?=`` token with its decoded text.

    Matches are replaced right-to-left so earlier offsets stay valid.
    Tokens that fail to decode are kept literally.
    """
    decoded = header
    for match in reversed(list(_ENCODED_WORD.finditer(header))):
        charset, encoding, payload = match.groups()
        text = _decode_word(charset, encoding, payload)
        if text is None:
            continue
        decoded = decoded[:match.start()] + text + decoded[match.end():]
    return decoded


def encode_q_word(text: str, charset: str = "UTF-8") -> str:
    """Encode *text* as a single RFC 2047 Q encoded-word."""
    encoded = []
    for byte in text.encode(charset):
        if byte == 0x20:
            encoded.append("_")
        elif byte in _Q_SAFE:
            encoded.append(chr(byte))
        else:
            encoded.append(f"={byte:02X}")
    return f"=?{charset}?Q?{''.join(encoded)}?="


def decode_quoted_printable_bytes(text: str) -> bytes:
    return _unescape_hex(_SOFT_LINE_BREAK.sub("", text))


def decode_quoted_printable(text: str, charset: str | None = None) -> str:
    """Remove soft line breaks and replace ``=XX`` escapes.

    Invalid escape pairs are left untouched.
    """
    return decode_text(decode_quoted_printable_bytes(text), charset)


def decode_transfer_encoding(body: str, encoding: str, charset: str | None = None) -> str:
    """Decode a text body according to its Content-Transfer-Encoding."""
    normalized = encoding.strip().lower()
    if normalized == "base64":
        text = decode_base64_text(body, charset)
        return body if text is None else text
    if normalized == "quoted-printable":
        return decode_quoted_printable(body, charset)
    return body


def decode_transfer_encoding_bytes(body: str, encoding: str) -> bytes | None:
    """Decode an attachment body to bytes.  Returns None for invalid base64."""
    normalized = encoding.strip().lower()
    if normalized == "base64":
        return decode_base64_bytes(body)
    if normalized == "quoted-printable":
        return decode_quoted_printable_bytes(body)
    return body.encode("utf-8")
