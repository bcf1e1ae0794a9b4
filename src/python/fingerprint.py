"""
Rabin Fingerprints

64-bit fingerprints of arbitrary byte strings, computed as the remainder of
the string's polynomial over GF(2) modulo a fixed irreducible polynomial P
of degree 64:

  M. O. Rabin, "Fingerprinting by Random Polynomials",
  Center for Research in Computing Technology, Harvard, TR-15-81, 1981.

  A. Z. Broder, "Some applications of Rabin's fingerprinting method",
  Sequences II: Methods in Communications, Security, and Computer
  Science, Springer, 1993, pp. 143-152.

Fingerprints are small, stable identities for content addressing and
change detection.  They are NOT cryptographic: an adversary who can choose
inputs can force collisions.

Implements:
  - Table-driven word reduction (four lookups per 32-bit word)
  - Byte reduction for the 1-3 bytes around an aligned run
  - Incremental extension, order-sensitive combination, bucket hashing
  - Canonical 8-byte form: low half LE, then high half LE, on any host

Usage:
  import fingerprint
  fingerprint.initialize()
  fp = fingerprint.from_buffer(b"some bytes")
  fp = fingerprint.extend(fp, "more text")
  key = fingerprint.fingerprint_hash(fp)
"""

import struct
import sys
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from poly_tables import POLY64, POLY72, POLY80, POLY88


# ============================================================================
# Polynomial Representation
#
# A remainder mod P is a polynomial of degree < 64, held as two unsigned
# 32-bit halves (low, high).  Addition is XOR.  P is never materialized;
# it lives only in the reduction tables and in ONE, the polynomial "1".
#
# Fingerprint wire form (8 bytes, host independent):
#   bytes 0-3: low half,  little-endian
#   bytes 4-7: high half, little-endian
# ============================================================================

POLY_MASK = 0xFFFFFFFF
WORD_SIZE = 4               # bytes per reduction step
FINGERPRINT_SIZE = 8        # canonical encoding
TABLE_ENTRIES = 256
TERMINATOR = 0              # text ends at the first zero byte

POLY_ONE = (0x00000000, 0x80000000)

Poly = Tuple[int, int]

_FP_STRUCT = struct.Struct('<II')

# Split the (low, high) pairs so the inner loop indexes flat tuples.
_LO64 = tuple(e[0] for e in POLY64)
_HI64 = tuple(e[1] for e in POLY64)
_LO72 = tuple(e[0] for e in POLY72)
_HI72 = tuple(e[1] for e in POLY72)
_LO80 = tuple(e[0] for e in POLY80)
_HI80 = tuple(e[1] for e in POLY80)
_LO88 = tuple(e[0] for e in POLY88)
_HI88 = tuple(e[1] for e in POLY88)


# ── Combine mixing ───────────────────────────────────────────────────────
# lo' = lo*A + hi*B, hi' = lo*C + hi*D (mod 2^32), then each output byte is
# passed through FINGERPRINT_PERM.  The table is kept exactly as published:
# 55 occurs twice (indices 0 and 194) and 255 never occurs.

MIX_A = 0xFF208489
MIX_B = 0xF4872E10
MIX_C = 0x402D619B
MIX_D = 0x0BF359A7

FINGERPRINT_PERM = (
    55, 254, 252, 251, 250, 248, 240, 245, 246, 238, 237, 244, 7, 189, 214,
    236, 235, 20, 33, 8, 227, 14, 233, 178, 172, 60, 229, 133, 152, 19,
    210, 203, 221, 208, 76, 18, 13, 199, 113, 62, 40, 190, 213, 194, 43,
    181, 21, 15, 201, 162, 90, 186, 71, 117, 107, 70, 191, 5, 173, 44, 39,
    12, 174, 183, 99, 11, 176, 163, 161, 72, 86, 105, 2, 83, 42, 52, 179,
    135, 103, 110, 151, 58, 108, 96, 166, 25, 115, 66, 142, 10, 141, 48,
    104, 34, 159, 120, 22, 140, 64, 82, 78, 68, 207, 125, 123, 150, 144,
    138, 128, 139, 136, 114, 119, 53, 148, 185, 41, 124, 216, 143, 49, 92,
    98, 51, 112, 73, 50, 63, 16, 46, 158, 126, 206, 122, 94, 132, 88, 184,
    28, 84, 127, 156, 167, 223, 118, 89, 116, 17, 111, 121, 109, 77, 146,
    61, 224, 101, 81, 218, 97, 188, 243, 155, 57, 102, 54, 129, 93, 192,
    153, 106, 36, 145, 79, 31, 137, 26, 67, 85, 175, 80, 168, 65, 91, 1,
    147, 149, 6, 29, 37, 69, 182, 165, 4, 74, 55, 47, 171, 169, 75, 134,
    193, 195, 198, 131, 38, 180, 56, 196, 23, 154, 177, 200, 205, 27, 209,
    95, 204, 160, 3, 30, 157, 32, 9, 212, 211, 45, 202, 170, 0, 219, 187,
    87, 35, 100, 217, 232, 164, 228, 220, 197, 231, 215, 226, 130, 225,
    234, 241, 239, 59, 230, 247, 24, 249, 242, 222, 253,
)

_PERM_BYTES = bytes(FINGERPRINT_PERM)


# ============================================================================
# Errors and Configuration
# ============================================================================

class ConfigurationError(Exception):
    """The host cannot support the fixed-width fingerprint representation."""


class NotInitializedError(RuntimeError):
    """A fingerprint was requested before initialize() ran."""


LITTLE = 'little'
BIG = 'big'
BYTE_ORDERS = (LITTLE, BIG)

_PROBE_PATTERN = 0x12345678


@dataclass(frozen=True)
class Config:
    """Process-wide settings, resolved once by initialize()."""
    byteorder: str
    probed: bool


@dataclass(frozen=True)
class Fingerprint:
    """Canonical 8-byte fingerprint: low half LE followed by high half LE."""
    raw: bytes

    def __post_init__(self):
        raw = _as_bytes(self.raw)
        if len(raw) != FINGERPRINT_SIZE:
            raise ValueError(f"fingerprint must be {FINGERPRINT_SIZE} bytes, "
                             f"got {len(raw)}")
        object.__setattr__(self, 'raw', raw)

    def __bytes__(self):
        return self.raw

    def __repr__(self):
        return f"Fingerprint({self.raw.hex()})"

    def hex(self) -> str:
        return self.raw.hex()

    @classmethod
    def fromhex(cls, s: str) -> 'Fingerprint':
        return cls(bytes.fromhex(s))


FingerprintLike = Union[Fingerprint, bytes]


def _as_bytes(value) -> bytes:
    """Copy a fingerprint or bytes-like value; anything else is a TypeError.

    bytes(n) would quietly turn an int into n zero bytes.
    """
    if isinstance(value, Fingerprint):
        return value.raw
    return memoryview(value).tobytes()


ZERO = Fingerprint(bytes(FINGERPRINT_SIZE))

# The canonical encoding of ONE; initialize() re-checks it.
EMPTY = Fingerprint(_FP_STRUCT.pack(*POLY_ONE))

# Written once by initialize(); read-only afterwards.
_config: Optional[Config] = None


# ── Byte-order abstraction ───────────────────────────────────────────────

def find_byte_order(native: Optional[bytes] = None) -> str:
    """Determine how the host lays out a native 32-bit word.

    The probe pattern is decomposed by shift/mask into its bytes, least
    significant first, and compared against the host's native packing of
    the same pattern.  `native` overrides that packing, which lets callers
    check the behaviour on layouts this host does not have.

    Raises ConfigurationError for any permutation other than the two
    supported ones; there is no degraded mode.
    """
    if native is None:
        native = struct.pack('=I', _PROBE_PATTERN)
    native = _as_bytes(native)
    lsb_first = bytes((_PROBE_PATTERN >> s) & 0xFF for s in (0, 8, 16, 24))
    if native == lsb_first:
        return LITTLE
    if native == lsb_first[::-1]:
        return BIG
    raise ConfigurationError(f"unsupported byte order: 0x{_PROBE_PATTERN:08x} "
                             f"packs as {native.hex()}")


def _check_widths() -> None:
    """Validate the fixed-width assumptions the reducers depend on."""
    native_word = struct.calcsize('I')
    if native_word != WORD_SIZE:
        raise ConfigurationError(f"native word is {native_word} bytes, "
                                 f"need {WORD_SIZE}")
    for name, table in (('POLY64', POLY64), ('POLY72', POLY72),
                        ('POLY80', POLY80), ('POLY88', POLY88)):
        if len(table) != TABLE_ENTRIES:
            raise ConfigurationError(f"{name} has {len(table)} entries, "
                                     f"need {TABLE_ENTRIES}")
        for lo, hi in table:
            if lo & ~POLY_MASK or hi & ~POLY_MASK:
                raise ConfigurationError(f"{name} entry wider than 32 bits")
    if len(_PERM_BYTES) != TABLE_ENTRIES:
        raise ConfigurationError("permutation table must have 256 entries")


def initialize(byteorder: Optional[str] = None, verbose: bool = False) -> Config:
    """Resolve the process-wide configuration and verify EMPTY.

    byteorder=None probes the host; 'little' or 'big' states the order up
    front and skips the probe.  Both orders yield identical fingerprints;
    only the internal word path differs.

    Must complete before any concurrent fingerprinting.  Not thread-safe.
    """
    global _config
    _check_widths()
    if _poly_to_fingerprint(POLY_ONE) != EMPTY:
        raise ConfigurationError(f"EMPTY is {EMPTY!r}, expected the encoding of ONE")
    if byteorder is None:
        order, probed = find_byte_order(), True
    elif byteorder in BYTE_ORDERS:
        order, probed = byteorder, False
    else:
        raise ConfigurationError(f"unknown byte order {byteorder!r}; "
                                 f"expected one of {BYTE_ORDERS}")
    _config = Config(byteorder=order, probed=probed)
    if verbose:
        how = 'probed' if probed else 'configured'
        print(f"  fingerprint: byte order {order} ({how}), "
              f"empty={EMPTY.hex()}", file=sys.stderr)
    return _config


def _require_config() -> Config:
    if _config is None:
        raise NotInitializedError("fingerprint.initialize() has not been called")
    return _config


def configuration_summary() -> dict:
    """Report the resolved configuration."""
    cfg = _require_config()
    return {
        'byteorder': cfg.byteorder,
        'probed': cfg.probed,
        'word_size': WORD_SIZE,
        'fingerprint_size': FINGERPRINT_SIZE,
        'empty': EMPTY.hex(),
    }


# ============================================================================
# Word-Granularity Reducer
#
# One step folds a 32-bit input word w into (p0, p1).  With b0..b3 the
# bytes of the old p0, least significant first:
#
#   p0' = p1 ^ T88[b0].lo ^ T80[b1].lo ^ T72[b2].lo ^ T64[b3].lo
#   p1' = w  ^ T88[b0].hi ^ T80[b1].hi ^ T72[b2].hi ^ T64[b3].hi
#
# A little-endian host reads w and b0..b3 in canonical order.  A big-endian
# host reads w natively, byte-swaps it, and walks its own decomposition of
# p0 backwards.  Both paths agree byte for byte.
# ============================================================================

def _byteswap32(w: int) -> int:
    return (((w & 0xFF) << 24) | ((w & 0xFF00) << 8)
            | ((w >> 8) & 0xFF00) | (w >> 24))


def _extend_words_le(p0: int, p1: int, view: memoryview) -> Poly:
    """Fold len(view) // 4 words into (p0, p1), little-endian host."""
    for (w,) in struct.iter_unpack('<I', view):
        b0 = p0 & 0xFF
        b1 = (p0 >> 8) & 0xFF
        b2 = (p0 >> 16) & 0xFF
        b3 = p0 >> 24
        p0, p1 = (p1 ^ _LO88[b0] ^ _LO80[b1] ^ _LO72[b2] ^ _LO64[b3],
                  w ^ _HI88[b0] ^ _HI80[b1] ^ _HI72[b2] ^ _HI64[b3])
    return p0, p1


def _extend_words_be(p0: int, p1: int, view: memoryview) -> Poly:
    """Fold len(view) // 4 words into (p0, p1), big-endian host."""
    for (y,) in struct.iter_unpack('>I', view):
        w = _byteswap32(y)
        # Native decomposition of p0 on a big-endian host: most significant first.
        b = ((p0 >> 24) & 0xFF, (p0 >> 16) & 0xFF, (p0 >> 8) & 0xFF, p0 & 0xFF)
        p0, p1 = (p1 ^ _LO88[b[3]] ^ _LO80[b[2]] ^ _LO72[b[1]] ^ _LO64[b[0]],
                  w ^ _HI88[b[3]] ^ _HI80[b[2]] ^ _HI72[b[1]] ^ _HI64[b[0]])
    return p0, p1


def _extend_words(poly: Poly, view: memoryview, little: bool) -> Poly:
    if little:
        return _extend_words_le(poly[0], poly[1], view)
    return _extend_words_be(poly[0], poly[1], view)


# ============================================================================
# Byte-Granularity Reducer
#
# Extends the remainder by 1-3 literal bytes.  The 64-bit remainder is
# shifted up by n = 8*len bits; the n bits pushed out of the high half are
# carried, least significant byte first, in front of the literal bytes to
# make up one 4-byte group, which the word reducer then folds in.
# ============================================================================

def _extend_bytes(poly: Poly, tail: memoryview, little: bool) -> Poly:
    """Extend poly by 1, 2 or 3 bytes."""
    count = len(tail)
    if not 1 <= count < WORD_SIZE:
        raise ValueError(f"byte reducer takes 1-3 bytes, got {count}")
    n_bits = 8 * count
    x_bits = 32 - n_bits
    t0 = poly[0] & POLY_MASK
    t1 = poly[1] & POLY_MASK

    shifted = ((t0 << x_bits) & POLY_MASK,
               ((t0 >> n_bits) ^ (t1 << x_bits)) & POLY_MASK)

    carry = t1 >> n_bits
    group = bytearray((carry >> s) & 0xFF for s in range(0, x_bits, 8))
    group += tail
    return _extend_words(shifted, memoryview(group), little)


# ============================================================================
# Buffer Reduction
#
# Returns (init * x^(8*len) + A(x)) mod P, where A(x) is the polynomial of
# the bytes.  Leading bytes up to the next 4-byte boundary (measured from
# the start of the buffer) go through the byte reducer, the aligned bulk
# through the word reducer, and any 1-3 trailing bytes through the byte
# reducer again.  The split does not change the result.
# ============================================================================

def _compute_mod(init: Poly, view: memoryview, start: int, end: int,
                 little: bool) -> Poly:
    result = init
    length = end - start

    j = start % WORD_SIZE
    if length >= WORD_SIZE and j != 0:
        j = WORD_SIZE - j
        result = _extend_bytes(result, view[start:start + j], little)
        start += j
        length -= j

    if length >= WORD_SIZE:
        k = length - length % WORD_SIZE
        result = _extend_words(result, view[start:start + k], little)
        start += k
        length -= k

    if length > 0:
        result = _extend_bytes(result, view[start:end], little)

    return result


def _byte_view(data) -> memoryview:
    """Flat unsigned-byte view of a bytes-like object."""
    view = memoryview(data)
    if view.format != 'B' or view.ndim != 1:
        view = view.cast('B')
    return view


def _text_bytes(text: Union[str, bytes, bytearray, memoryview]) -> bytes:
    """Bytes of text up to, not including, the first terminator."""
    if isinstance(text, str):
        text = text.encode('utf-8')
    data = _as_bytes(text)
    end = data.find(TERMINATOR)
    return data if end < 0 else data[:end]


def _poly_to_fingerprint(poly: Poly) -> Fingerprint:
    return Fingerprint(_FP_STRUCT.pack(poly[0] & POLY_MASK, poly[1] & POLY_MASK))


def _poly_from_fingerprint(fp: FingerprintLike) -> Poly:
    raw = _as_bytes(fp)
    if len(raw) != FINGERPRINT_SIZE:
        raise ValueError(f"fingerprint must be {FINGERPRINT_SIZE} bytes, "
                         f"got {len(raw)}")
    return _FP_STRUCT.unpack(raw)


# ============================================================================
# Public API
# ============================================================================

def from_buffer(data, offset: int = 0,
                length: Optional[int] = None) -> Fingerprint:
    """Fingerprint data[offset:offset+length] (default: to the end).

    Any bytes-like object is accepted, including bytes with value zero.
    A zero-length range yields EMPTY.
    """
    little = _require_config().byteorder == LITTLE
    view = _byte_view(data)
    end = len(view) if length is None else offset + length
    if offset < 0 or end < offset or end > len(view):
        raise ValueError(f"range [{offset}, {end}) outside buffer of "
                         f"{len(view)} bytes")
    return _poly_to_fingerprint(_compute_mod(POLY_ONE, view, offset, end, little))


def from_text(text) -> Fingerprint:
    """Fingerprint text up to its first zero byte.

    str is encoded as UTF-8.  Data containing a zero byte is silently
    truncated there; use from_buffer for binary data.
    """
    return from_buffer(_text_bytes(text))


def extend_buffer(fp: FingerprintLike, data) -> Fingerprint:
    """Continue fingerprint fp through the bytes of data.

    extend_buffer(from_buffer(a), b) == from_buffer(a + b) for all a, b.
    """
    little = _require_config().byteorder == LITTLE
    view = _byte_view(data)
    if len(view) == 0:
        return fp if isinstance(fp, Fingerprint) else Fingerprint(fp)
    poly = _compute_mod(_poly_from_fingerprint(fp), view, 0, len(view), little)
    return _poly_to_fingerprint(poly)


def extend(fp: FingerprintLike, text) -> Fingerprint:
    """Continue fingerprint fp through text, up to its first zero byte.

    Returns fp itself when there is nothing to add.
    """
    _require_config()
    _poly_from_fingerprint(fp)
    data = _text_bytes(text)
    if not data:
        return fp
    return extend_buffer(fp, data)


def combine(fp1: FingerprintLike, fp2: FingerprintLike) -> Fingerprint:
    """Fingerprint of the ordered pair (fp1, fp2).

    combine(a, b) and combine(b, a) differ in general.
    """
    little = _require_config().byteorder == LITTLE
    buf = memoryview(_as_bytes(fp1) + _as_bytes(fp2))
    if len(buf) != 2 * FINGERPRINT_SIZE:
        raise ValueError("combine takes two 8-byte fingerprints")
    lo, hi = _compute_mod(POLY_ONE, buf, 0, len(buf), little)
    mixed = _FP_STRUCT.pack((lo * MIX_A + hi * MIX_B) & POLY_MASK,
                            (lo * MIX_C + hi * MIX_D) & POLY_MASK)
    return Fingerprint(mixed.translate(_PERM_BYTES))


def equal(fp1: FingerprintLike, fp2: FingerprintLike) -> bool:
    """Exact comparison of the canonical 8-byte forms."""
    return _as_bytes(fp1) == _as_bytes(fp2)


def fingerprint_hash(fp: FingerprintLike) -> int:
    """Reduce fp to an unsigned 32-bit bucket key (low ^ high).

    The key is not itself a fingerprint.
    """
    lo, hi = _poly_from_fingerprint(fp)
    return lo ^ hi
