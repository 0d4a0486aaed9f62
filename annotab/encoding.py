from __future__ import annotations

import codecs
import logging

import chardet

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "utf-8"

ENCODING_MAP = {
    "utf-8": "utf-8",
    "utf8": "utf-8",
    "ascii": "utf-8",
    "utf-8-sig": "utf-8-sig",
    "shift_jis": "shift_jis",
    "shift-jis": "shift_jis",
    "sjis": "shift_jis",
    "windows-31j": "cp932",
    "cp932": "cp932",
    "euc-jp": "euc_jp",
    "euc_jp": "euc_jp",
    "iso-8859-1": "latin-1",
    "latin1": "latin-1",
    "latin-1": "latin-1",
    "windows-1252": "cp1252",
    "utf-16": "utf-16",
}


def normalize_encoding(name: str | None) -> str | None:
    if not name:
        return None
    return ENCODING_MAP.get(str(name).strip().lower())


def resolve_override(name: str | None) -> str | None:
    if not name:
        return None
    normalized = normalize_encoding(name)
    if normalized:
        return normalized
    try:
        return codecs.lookup(name).name
    except LookupError:
        logger.warning("Unknown encoding %r requested, detecting instead", name)
        return None


def detect_encoding(data: bytes) -> str:
    if not data:
        return DEFAULT_ENCODING
    label = chardet.detect(data).get("encoding") or ""
    encoding = normalize_encoding(label)
    if encoding is None:
        if label:
            logger.warning("Unrecognized encoding %r detected, using %s", label, DEFAULT_ENCODING)
        return DEFAULT_ENCODING
    if encoding != DEFAULT_ENCODING:
        logger.info("Detected encoding: %s -> %s", label, encoding)
    return encoding


def decode_bytes(data: bytes, encoding_override: str | None = None) -> tuple[str, str]:
    """Decode ``data`` and return ``(text, codec)``.

    Never raises for bad input: a byte sequence the chosen codec rejects is
    decoded again as UTF-8 with replacement characters.
    """

    encoding = resolve_override(encoding_override) or detect_encoding(data)
    try:
        return data.decode(encoding), encoding
    except (UnicodeDecodeError, LookupError) as error:
        logger.warning("Decode failed (%s): %s, falling back to %s", encoding, error, DEFAULT_ENCODING)
        return data.decode(DEFAULT_ENCODING, errors="replace"), DEFAULT_ENCODING
