#!/usr/bin/env python3
"""Tests for fingerprint.py: 64-bit Rabin fingerprints over GF(2).

Run:  python3 test_fingerprint.py [-v]
"""

import array
import contextlib
import io
import random
import sys
import unittest
from unittest import mock

import fingerprint
from fingerprint import (
    BIG, LITTLE, FINGERPRINT_SIZE, POLY_ONE, ZERO, EMPTY,
    ConfigurationError, NotInitializedError, Fingerprint,
    initialize, find_byte_order, configuration_summary,
    from_buffer, from_text, extend, extend_buffer, combine, equal,
    fingerprint_hash,
    _extend_bytes, _byteswap32,
)
from poly_tables import POLY64, POLY72, POLY80, POLY88


GOOD_MEN = "Now is the time for all good men to come to the aid of their country."
QUICK_FOX = "The quick brown fox jumped over the lazy dog."

FP_GOOD_MEN = bytes([0x79, 0x62, 0xbf, 0x45, 0xa3, 0x53, 0xb2, 0x2b])
FP_QUICK_FOX = bytes([0x53, 0x3e, 0x7b, 0x88, 0x06, 0x19, 0xba, 0x38])
FP_COMBINE = bytes([0xd4, 0x18, 0x54, 0x06, 0xa7, 0x68, 0x8c, 0x35])


def setUpModule():
    initialize()


# ── helpers ──────────────────────────────────────────────────────────────

@contextlib.contextmanager
def byte_order(order):
    """Run the block with the word path for `order`, then re-probe."""
    initialize(byteorder=order)
    try:
        yield
    finally:
        initialize()


def random_bytes(rng, n):
    return bytes(rng.getrandbits(8) for _ in range(n))


# ── reference vectors ────────────────────────────────────────────────────

class TestReferenceVectors(unittest.TestCase):
    """Published fingerprints; any drift here breaks stored corpora."""

    def test_empty_text(self):
        self.assertEqual(from_text(""), fingerprint.EMPTY)

    def test_good_men(self):
        self.assertEqual(bytes(from_text(GOOD_MEN)), FP_GOOD_MEN)

    def test_quick_fox(self):
        self.assertEqual(bytes(from_text(QUICK_FOX)), FP_QUICK_FOX)

    def test_combine(self):
        fp = combine(from_text(GOOD_MEN), from_text(QUICK_FOX))
        self.assertEqual(bytes(fp), FP_COMBINE)

    def test_from_buffer_matches_text(self):
        self.assertEqual(bytes(from_buffer(GOOD_MEN.encode())), FP_GOOD_MEN)

    def test_vectors_on_both_word_paths(self):
        for order in (LITTLE, BIG):
            with byte_order(order):
                self.assertEqual(bytes(from_text(GOOD_MEN)), FP_GOOD_MEN, order)
                self.assertEqual(bytes(from_text(QUICK_FOX)), FP_QUICK_FOX, order)
                fp = combine(from_text(GOOD_MEN), from_text(QUICK_FOX))
                self.assertEqual(bytes(fp), FP_COMBINE, order)


class TestEmpty(unittest.TestCase):

    def test_canonical_one(self):
        # ONE is (low=0, high=0x80000000), serialized low-LE then high-LE.
        self.assertEqual(bytes(fingerprint.EMPTY), b'\x00' * 7 + b'\x80')
        self.assertEqual(POLY_ONE, (0, 0x80000000))

    def test_empty_buffer(self):
        self.assertEqual(from_buffer(b''), fingerprint.EMPTY)
        self.assertEqual(from_buffer(b'abc', 3, 0), fingerprint.EMPTY)

    def test_stable_across_initialize(self):
        before = fingerprint.EMPTY
        initialize()
        self.assertEqual(fingerprint.EMPTY, before)

    def test_bound_at_import(self):
        self.assertEqual(EMPTY, fingerprint.EMPTY)
        self.assertEqual(bytes(EMPTY), b'\x00' * 7 + b'\x80')
        self.assertEqual(from_buffer(b''), EMPTY)

    def test_zero_is_not_empty(self):
        self.assertEqual(bytes(ZERO), bytes(FINGERPRINT_SIZE))
        self.assertNotEqual(ZERO, fingerprint.EMPTY)


# ── buffer reduction ─────────────────────────────────────────────────────

class TestFromBuffer(unittest.TestCase):

    def test_deterministic(self):
        rng = random.Random(7)
        for n in range(0, 40):
            data = random_bytes(rng, n)
            self.assertEqual(from_buffer(data), from_buffer(data), f"n={n}")

    def test_zero_bytes_are_content(self):
        self.assertNotEqual(from_buffer(b'\x00'), fingerprint.EMPTY)
        self.assertNotEqual(from_buffer(b'\x00' * 4), from_buffer(b'\x00' * 5))
        self.assertNotEqual(from_buffer(b'ab\x00cd'), from_buffer(b'ab'))

    def test_distinct_inputs(self):
        seen = {}
        for n in range(1, 12):
            for b in (b'a', b'b', b'\xff'):
                fp = from_buffer(b * n)
                self.assertNotIn(fp, seen, f"{b * n!r} collides with {seen.get(fp)!r}")
                seen[fp] = b * n

    def test_offset_independent(self):
        """Leading-byte alignment must not change the result."""
        data = bytes(range(256)) * 2
        for offset in range(8):
            for length in (0, 1, 2, 3, 4, 5, 7, 8, 11, 16, 33, 100):
                self.assertEqual(from_buffer(data, offset, length),
                                 from_buffer(data[offset:offset + length]),
                                 f"offset={offset} length={length}")

    def test_default_length_runs_to_end(self):
        data = b'0123456789abcdef'
        self.assertEqual(from_buffer(data, 5), from_buffer(data[5:]))

    def test_bytes_like_inputs(self):
        data = b'fingerprint me, please'
        expected = from_buffer(data)
        self.assertEqual(from_buffer(bytearray(data)), expected)
        self.assertEqual(from_buffer(memoryview(data)), expected)

    def test_typed_array_is_read_as_bytes(self):
        words = array.array('I', [0x01020304, 0x05060708])
        self.assertEqual(from_buffer(words), from_buffer(words.tobytes()))

    def test_range_out_of_bounds(self):
        with self.assertRaises(ValueError):
            from_buffer(b'abc', 2, 5)
        with self.assertRaises(ValueError):
            from_buffer(b'abc', -1)
        with self.assertRaises(ValueError):
            from_buffer(b'abc', 1, -1)

    def test_str_rejected(self):
        with self.assertRaises(TypeError):
            from_buffer("not bytes")


class TestByteOrderTransparency(unittest.TestCase):
    """Forcing either word path yields identical canonical output."""

    def _all(self, samples):
        return [from_buffer(data, off) for data, off in samples]

    def test_random_buffers(self):
        rng = random.Random(1234)
        samples = [(random_bytes(rng, n), rng.randrange(4)) for n in range(4, 70)]
        with byte_order(LITTLE):
            le = self._all(samples)
        with byte_order(BIG):
            be = self._all(samples)
        self.assertEqual(le, be)

    def test_combine_and_extend(self):
        a, b = from_text("alpha"), from_text("beta")
        with byte_order(LITTLE):
            le = (combine(a, b), extend(a, "gamma"))
        with byte_order(BIG):
            be = (combine(a, b), extend(a, "gamma"))
        self.assertEqual(le, be)

    def test_byteswap(self):
        self.assertEqual(_byteswap32(0x12345678), 0x78563412)
        self.assertEqual(_byteswap32(0xFF000001), 0x010000FF)


class TestByteReducer(unittest.TestCase):

    def test_rejects_bad_lengths(self):
        for n in (0, 4, 5):
            with self.assertRaises(ValueError):
                _extend_bytes(POLY_ONE, memoryview(b'x' * n), True)

    def test_short_tails(self):
        # 1-3 bytes never reach the word reducer directly.
        for tail in (b'a', b'ab', b'abc'):
            self.assertNotEqual(from_buffer(tail), fingerprint.EMPTY)
            self.assertEqual(from_buffer(tail), extend_buffer(fingerprint.EMPTY, tail))


# ── incremental extension ────────────────────────────────────────────────

class TestExtend(unittest.TestCase):

    def test_extend_matches_concatenation(self):
        rng = random.Random(99)
        for n in range(0, 20):
            a = random_bytes(rng, n)
            for b in ("x", "yz", "tail", "a longer textual fragment"):
                self.assertEqual(extend(from_buffer(a), b),
                                 from_buffer(a + b.encode()), f"n={n} b={b!r}")

    def test_empty_text_returns_input(self):
        fp = from_text(QUICK_FOX)
        self.assertIs(extend(fp, ""), fp)
        self.assertIs(extend(fp, "\x00ignored"), fp)

    def test_empty_text_still_checks_width(self):
        with self.assertRaises(ValueError):
            extend(b'abc', "")
        with self.assertRaises(ValueError):
            extend(b'\x00' * 9, "\x00")

    def test_stops_at_terminator(self):
        fp = from_text("head")
        self.assertEqual(extend(fp, b"body\x00junk"), extend(fp, "body"))

    def test_accepts_raw_bytes_fingerprint(self):
        fp = from_text("head")
        self.assertEqual(extend(bytes(fp), "body"), extend(fp, "body"))

    def test_builds_sentence_from_fragments(self):
        words = GOOD_MEN.split(" ")
        fp = from_text(words[0])
        for word in words[1:]:
            fp = extend(fp, " " + word)
        self.assertEqual(bytes(fp), FP_GOOD_MEN)


class TestExtendBuffer(unittest.TestCase):

    def test_chunked_fold(self):
        rng = random.Random(5)
        data = random_bytes(rng, 500)
        fp = fingerprint.EMPTY
        pos = 0
        while pos < len(data):
            step = rng.randint(1, 9)
            fp = extend_buffer(fp, data[pos:pos + step])
            pos += step
        self.assertEqual(fp, from_buffer(data))

    def test_binary_fragments(self):
        a, b = b'\x00\x01\x02', b'\x00\x00\xff\x00'
        self.assertEqual(extend_buffer(from_buffer(a), b), from_buffer(a + b))

    def test_empty_fragment(self):
        fp = from_text("x")
        self.assertEqual(extend_buffer(fp, b''), fp)


class TestFromText(unittest.TestCase):

    def test_truncates_at_terminator(self):
        self.assertEqual(from_text("abc\x00def"), from_text("abc"))
        self.assertEqual(from_text("abc"), from_buffer(b"abc"))
        self.assertNotEqual(from_text("abc\x00def"), from_buffer(b"abc\x00def"))

    def test_str_is_utf8(self):
        self.assertEqual(from_text("café"), from_buffer("café".encode("utf-8")))

    def test_bytes_text(self):
        self.assertEqual(from_text(QUICK_FOX.encode()), from_text(QUICK_FOX))


# ── combine / equal / hash ───────────────────────────────────────────────

class TestCombine(unittest.TestCase):

    def test_deterministic(self):
        a, b = from_text("left"), from_text("right")
        self.assertEqual(combine(a, b), combine(a, b))

    def test_order_sensitive(self):
        a, b = from_text(GOOD_MEN), from_text(QUICK_FOX)
        self.assertNotEqual(combine(a, b), combine(b, a))

    def test_result_is_fingerprint(self):
        fp = combine(fingerprint.EMPTY, fingerprint.EMPTY)
        self.assertIsInstance(fp, Fingerprint)
        self.assertEqual(len(bytes(fp)), FINGERPRINT_SIZE)

    def test_accepts_raw_bytes(self):
        self.assertEqual(bytes(combine(FP_GOOD_MEN, FP_QUICK_FOX)), FP_COMBINE)

    def test_rejects_wrong_width(self):
        with self.assertRaises(ValueError):
            combine(b'short', FP_QUICK_FOX)


class TestEqualAndHash(unittest.TestCase):

    def test_equal(self):
        self.assertTrue(equal(from_text(GOOD_MEN), Fingerprint(FP_GOOD_MEN)))
        self.assertTrue(equal(from_text(GOOD_MEN), FP_GOOD_MEN))
        self.assertFalse(equal(from_text(GOOD_MEN), from_text(QUICK_FOX)))

    def test_hash_of_empty(self):
        self.assertEqual(fingerprint_hash(fingerprint.EMPTY), 0x80000000)

    def test_hash_of_vector(self):
        # low 0x45bf6279 ^ high 0x2bb253a3
        self.assertEqual(fingerprint_hash(FP_GOOD_MEN), 0x6e0d31da)

    def test_hash_is_32_bit(self):
        rng = random.Random(3)
        for _ in range(50):
            h = fingerprint_hash(from_buffer(random_bytes(rng, 16)))
            self.assertTrue(0 <= h <= 0xFFFFFFFF)


class TestFingerprintValue(unittest.TestCase):

    def test_wrong_size(self):
        for n in (0, 7, 9):
            with self.assertRaises(ValueError):
                Fingerprint(b'\x00' * n)

    def test_hex_roundtrip(self):
        fp = Fingerprint(FP_QUICK_FOX)
        self.assertEqual(fp.hex(), '533e7b880619ba38')
        self.assertEqual(Fingerprint.fromhex(fp.hex()), fp)
        self.assertEqual(repr(fp), 'Fingerprint(533e7b880619ba38)')

    def test_bytearray_is_frozen_copy(self):
        buf = bytearray(FP_GOOD_MEN)
        fp = Fingerprint(buf)
        buf[0] = 0
        self.assertEqual(bytes(fp), FP_GOOD_MEN)

    def test_dict_key(self):
        d = {from_text(GOOD_MEN): 'good men'}
        self.assertEqual(d[Fingerprint(FP_GOOD_MEN)], 'good men')


class TestIntegerRejected(unittest.TestCase):
    """An int is not a buffer; bytes(n) would read it as n zero bytes."""

    def test_fingerprint(self):
        with self.assertRaises(TypeError):
            Fingerprint(8)

    def test_equal(self):
        with self.assertRaises(TypeError):
            equal(ZERO, 8)

    def test_hash(self):
        with self.assertRaises(TypeError):
            fingerprint_hash(8)

    def test_text(self):
        with self.assertRaises(TypeError):
            from_text(42)
        with self.assertRaises(TypeError):
            extend(from_text("head"), 7)

    def test_fingerprint_arguments(self):
        with self.assertRaises(TypeError):
            extend(8, "x")
        with self.assertRaises(TypeError):
            combine(8, 8)
        with self.assertRaises(TypeError):
            extend_buffer(8, b"")

    def test_byte_order_override(self):
        with self.assertRaises(TypeError):
            find_byte_order(4)


# ── configuration ────────────────────────────────────────────────────────

class TestFindByteOrder(unittest.TestCase):

    def test_host(self):
        self.assertEqual(find_byte_order(), sys.byteorder)

    def test_little(self):
        self.assertEqual(find_byte_order(b'\x78\x56\x34\x12'), LITTLE)

    def test_big(self):
        self.assertEqual(find_byte_order(b'\x12\x34\x56\x78'), BIG)

    def test_unsupported_permutation(self):
        with self.assertRaises(ConfigurationError):
            find_byte_order(b'\x34\x12\x78\x56')


class TestInitialize(unittest.TestCase):

    def tearDown(self):
        initialize()

    def test_probed(self):
        cfg = initialize()
        self.assertTrue(cfg.probed)
        self.assertEqual(cfg.byteorder, sys.byteorder)

    def test_configured(self):
        cfg = initialize(byteorder=BIG)
        self.assertFalse(cfg.probed)
        self.assertEqual(cfg.byteorder, BIG)

    def test_unknown_order(self):
        with self.assertRaises(ConfigurationError):
            initialize(byteorder='middle')

    def test_verbose(self):
        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            initialize(byteorder=LITTLE, verbose=True)
        self.assertIn('byte order little (configured)', err.getvalue())

    def test_quiet_by_default(self):
        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            initialize()
            from_text(GOOD_MEN)
        self.assertEqual(err.getvalue(), '')

    def test_summary(self):
        initialize(byteorder=LITTLE)
        summary = configuration_summary()
        self.assertEqual(summary['byteorder'], LITTLE)
        self.assertFalse(summary['probed'])
        self.assertEqual(summary['word_size'], 4)
        self.assertEqual(summary['fingerprint_size'], 8)
        self.assertEqual(summary['empty'], '0000000000000080')

    def test_malformed_permutation(self):
        with mock.patch.object(fingerprint, '_PERM_BYTES', bytes(255)):
            with self.assertRaises(ConfigurationError):
                initialize()

    def test_native_word_width(self):
        with mock.patch.object(fingerprint.struct, 'calcsize', return_value=8):
            with self.assertRaises(ConfigurationError):
                initialize()

    def test_empty_rechecked(self):
        with mock.patch.object(fingerprint, 'EMPTY', ZERO):
            with self.assertRaises(ConfigurationError):
                initialize()

    def test_not_initialized(self):
        with mock.patch.object(fingerprint, '_config', None):
            with self.assertRaises(NotInitializedError):
                from_text(GOOD_MEN)
            with self.assertRaises(NotInitializedError):
                combine(FP_GOOD_MEN, FP_QUICK_FOX)
            with self.assertRaises(NotInitializedError):
                extend(FP_GOOD_MEN, "x")
            with self.assertRaises(NotInitializedError):
                configuration_summary()


# ── reduction tables ─────────────────────────────────────────────────────

class TestTables(unittest.TestCase):
    """T[b] = b(x) * x^k mod P is GF(2)-linear in b."""

    TABLES = {'POLY64': POLY64, 'POLY72': POLY72,
              'POLY80': POLY80, 'POLY88': POLY88}

    def test_shape(self):
        for name, table in self.TABLES.items():
            self.assertEqual(len(table), 256, name)
            for lo, hi in table:
                self.assertTrue(0 <= lo <= 0xFFFFFFFF and 0 <= hi <= 0xFFFFFFFF, name)

    def test_zero_entry(self):
        for name, table in self.TABLES.items():
            self.assertEqual(table[0], (0, 0), name)

    def test_linear(self):
        for name, table in self.TABLES.items():
            for b in range(256):
                lo = hi = 0
                for bit in range(8):
                    if b & (1 << bit):
                        lo ^= table[1 << bit][0]
                        hi ^= table[1 << bit][1]
                self.assertEqual(table[b], (lo, hi), f"{name}[{b}]")

    def test_tables_differ(self):
        self.assertNotEqual(POLY64[1], POLY72[1])
        self.assertNotEqual(POLY80[1], POLY88[1])


if __name__ == '__main__':
    unittest.main()
