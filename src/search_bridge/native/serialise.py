"""Order-preserving serialisation of doubles.

Bit-compatible with the engine's on-disk value format: the byte strings
sort lexicographically in the same order as the numbers they encode, and
trailing zero bytes are dropped.
"""

from __future__ import annotations

import math

from search_bridge.native.errors import SerialisationError


_MANTISSA_MASK = (1 << 58) - 1


def sortable_serialise(value: float) -> bytes:
    if math.isnan(value):
        msg = "NaN has no sortable encoding"
        raise SerialisationError(msg)
    if value == -math.inf:
        return b""
    if value == math.inf:
        return b"\xff" * 9

    mantissa, exponent = math.frexp(value)
    if mantissa == 0.0:
        return b"\x80"

    negative = mantissa < 0
    if negative:
        mantissa = -mantissa

    # First byte: [sign of mantissa | sign of exponent | exponent length | ...]
    first = 0x00 if negative else 0xE0

    # Bias so that more small integers get the short exponent form.
    exponent -= 8
    exponent_negative = exponent < 0
    if exponent_negative:
        exponent = -exponent
        first ^= 0x60

    out = bytearray()
    if exponent < 8:
        first ^= 0x20
        first |= exponent << 2
        if negative ^ exponent_negative:
            first ^= 0x1C
    else:
        # Top 5 of 11 exponent bits here, the low 6 in the next byte.
        first |= exponent >> 6
        if negative ^ exponent_negative:
            first ^= 0x1F
        out.append(first)
        first = (exponent << 2) & 0xFF
        if negative ^ exponent_negative:
            first ^= 0xFC

    # 58 mantissa bits follow; positives drop the implicit leading one.
    mantissa *= 1 << (26 if negative else 27)
    word1 = int(mantissa)
    mantissa -= word1
    word2 = int(mantissa * 4294967296.0)
    if not negative:
        word1 &= 0x03FFFFFF
    combined = (word1 << 32) | word2
    if negative:
        combined = (-combined) & _MANTISSA_MASK
    word1 = (combined >> 32) & 0x03FFFFFF
    word2 = combined & 0xFFFFFFFF

    first |= word1 >> 24
    out.append(first)
    out.extend(
        (
            (word1 >> 16) & 0xFF,
            (word1 >> 8) & 0xFF,
            word1 & 0xFF,
            (word2 >> 24) & 0xFF,
            (word2 >> 16) & 0xFF,
            (word2 >> 8) & 0xFF,
            word2 & 0xFF,
        )
    )
    return bytes(out).rstrip(b"\x00")


def sortable_unserialise(data: bytes) -> float:
    """Inverse of :func:`sortable_serialise`.

    Never raises on arbitrary input; values too large to represent come
    back as infinities.
    """
    if not data:
        return -math.inf
    if len(data) == 9 and data == b"\xff" * 9:
        return math.inf
    if data == b"\x80":
        return 0.0

    padded = data + b"\x00" * 9
    first = padded[0]
    first ^= (first & 0xC0) >> 1
    negative = not (first & 0x80)
    exponent_negative = bool(first & 0x40)
    long_exponent = not (first & 0x20)
    index = 1
    if long_exponent:
        exponent = ((first & 0x1F) << 6) | (padded[index] >> 2)
        if negative ^ exponent_negative:
            exponent ^= 0x7FF
        high = padded[index] & 0x03
        index += 1
    else:
        exponent = (first & 0x1C) >> 2
        if negative ^ exponent_negative:
            exponent ^= 7
        high = first & 0x03

    word1 = (high << 24) | (padded[index] << 16) | (padded[index + 1] << 8) | padded[index + 2]
    word2 = (
        (padded[index + 3] << 24)
        | (padded[index + 4] << 16)
        | (padded[index + 5] << 8)
        | padded[index + 6]
    )
    combined = (word1 << 32) | word2
    if negative:
        combined = (-combined) & _MANTISSA_MASK
        word1 = combined >> 32
        word2 = combined & 0xFFFFFFFF
        mantissa = (word1 + word2 / 4294967296.0) / (1 << 26)
    else:
        word1 |= 1 << 26
        mantissa = (word1 + word2 / 4294967296.0) / (1 << 27)

    if exponent_negative:
        exponent = -exponent
    exponent += 8
    if negative:
        mantissa = -mantissa

    try:
        return math.ldexp(mantissa, exponent)
    except OverflowError:
        return -math.inf if negative else math.inf
