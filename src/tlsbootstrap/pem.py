from __future__ import annotations

import binascii
import re
from base64 import b64decode, b64encode
from collections.abc import Iterator
from enum import Enum
from re import Pattern

from .exceptions import MalformedPEM

begin_re: Pattern[str] = re.compile(r"^-----BEGIN ([A-Z0-9 ]+)-----[ \t]*\r?$", re.M)
end_re: Pattern[str] = re.compile(r"^-----END ([A-Z0-9 ]+)-----[ \t]*\r?$", re.M)


class PEMKind(Enum):
    """Enumerates the supported PEM block types."""

    certificate = "CERTIFICATE"  #: an X.509 certificate (DER)
    ec_private_key = "EC PRIVATE KEY"  #: an elliptic curve private key (SEC 1)
    private_key = "PRIVATE KEY"  #: any private key in PKCS #8 format

    @property
    def label(self) -> str:
        """The label used in the ``BEGIN`` and ``END`` lines."""
        return self.value


def as_text(data: str | bytes) -> str:
    """
    Return PEM armored data as text.

    :raises MalformedPEM: if ``data`` contains anything but ASCII characters

    """
    if isinstance(data, str):
        if not data.isascii():
            raise MalformedPEM("PEM data must be ASCII")

        return data

    try:
        return data.decode("ascii")
    except UnicodeDecodeError as exc:
        raise MalformedPEM("PEM data must be ASCII") from exc


def encode_pem(kind: PEMKind, der: bytes) -> str:
    """
    Wrap DER encoded bytes in PEM armor.

    :param kind: the type of the block (determines the label)
    :param der: the raw bytes to encode
    :return: the armored text, with a trailing newline

    """
    encoded = b64encode(der).decode("ascii")
    lines = [f"-----BEGIN {kind.label}-----"]
    lines.extend(encoded[i : i + 64] for i in range(0, len(encoded), 64))
    lines.append(f"-----END {kind.label}-----")
    return "\n".join(lines) + "\n"


def iter_pem_blocks(data: str | bytes) -> Iterator[tuple[PEMKind, bytes]]:
    """
    Iterate over every PEM block in the given data.

    Any text outside of the blocks is ignored.

    :param data: PEM armored data, possibly containing several blocks
    :return: an iterator of ``(kind, der)`` tuples
    :raises MalformedPEM: if a block is truncated, has mismatched labels, an
        unsupported label or a body that is not valid base64

    """
    text = as_text(data)
    pos = 0
    while True:
        begin = begin_re.search(text, pos)
        if not begin:
            return

        label = begin.group(1)
        end = end_re.search(text, begin.end())
        if not end:
            raise MalformedPEM(f"PEM block {label!r} has no END line")
        elif end.group(1) != label:
            raise MalformedPEM(
                f"PEM END line {end.group(1)!r} does not match BEGIN line {label!r}"
            )

        try:
            kind = PEMKind(label)
        except ValueError:
            raise MalformedPEM(f"Unsupported PEM block type: {label}") from None

        body = "".join(text[begin.end() : end.start()].split())
        try:
            der = b64decode(body, validate=True)
        except binascii.Error as exc:
            raise MalformedPEM(f"Invalid base64 in PEM block {label!r}") from exc

        yield kind, der
        pos = end.end()


def decode_pem(data: str | bytes) -> tuple[PEMKind, bytes]:
    """
    Decode the first PEM block in the given data.

    :param data: PEM armored data
    :return: a tuple of ``(kind, der)``
    :raises MalformedPEM: if there is no well formed PEM block in ``data``

    """
    for kind, der in iter_pem_blocks(data):
        return kind, der

    raise MalformedPEM("No PEM block found")
