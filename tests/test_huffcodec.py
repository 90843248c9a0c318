import io
import random
import struct

import pytest

from bitio import BitInputStream, BitOutputStream
from huffcodec import (
    ALPH_SIZE,
    HUFF_NUMBER,
    PSEUDO_EOF,
    BadMagicNumber,
    HuffException,
    Internal,
    Leaf,
    MalformedHeader,
    TruncatedStream,
    build_tree,
    compress,
    compress_bytes,
    count_frequencies,
    decompress,
    decompress_bytes,
    make_codes,
    read_tree,
    write_header,
)


def _counts(data: bytes):
    return count_frequencies(BitInputStream(io.BytesIO(data)))


def _shape(node):
    if node.is_leaf:
        return node.sym
    return (_shape(node.left), _shape(node.right))


def _header_round_trip(root):
    buf = io.BytesIO()
    bit_out = BitOutputStream(buf)
    write_header(root, bit_out)
    bit_out.flush()
    return read_tree(BitInputStream(io.BytesIO(buf.getvalue())))


def _bits(*writes) -> BitInputStream:
    buf = io.BytesIO()
    bit_out = BitOutputStream(buf)
    for n, value in writes:
        bit_out.write_bits(n, value)
    bit_out.flush()
    return BitInputStream(io.BytesIO(buf.getvalue()))


# ---------------------------------
# Counting
# ---------------------------------
def test_count_frequencies():
    counts = _counts(b"AAB")
    assert len(counts) == ALPH_SIZE + 1
    assert counts[65] == 2
    assert counts[66] == 1
    assert counts[PSEUDO_EOF] == 1
    assert sum(counts) == 4


def test_count_empty_input_only_has_sentinel():
    counts = _counts(b"")
    assert [i for i, c in enumerate(counts) if c] == [PSEUDO_EOF]


# ---------------------------------
# Tree + codes
# ---------------------------------
def test_tree_for_aab():
    root = build_tree(_counts(b"AAB"))
    assert _shape(root) == (65, (66, PSEUDO_EOF))
    assert root.weight == 4
    assert root.right.weight == 2
    assert make_codes(root) == {65: "0", 66: "10", PSEUDO_EOF: "11"}


def test_ties_go_to_earliest_inserted():
    # five weight-1 leaves: a, b, c, d, EOF
    root = build_tree(_counts(b"abcd"))
    assert _shape(root) == ((ord("c"), ord("d")), (PSEUDO_EOF, (ord("a"), ord("b"))))
    codes = make_codes(root)
    assert codes[ord("c")] == "00"
    assert codes[ord("a")] == "110"
    assert codes[PSEUDO_EOF] == "10"


def test_tree_is_deterministic():
    data = bytes(random.Random(3).getrandbits(8) for _ in range(2000))
    assert _shape(build_tree(_counts(data))) == _shape(build_tree(_counts(data)))


def test_internal_weights_are_sums():
    root = build_tree(_counts(b"mississippi river"))

    def check(node):
        if node.is_leaf:
            return node.weight
        assert node.weight == check(node.left) + check(node.right)
        return node.weight

    assert check(root) == len(b"mississippi river") + 1


def test_single_leaf_tree_gets_one_bit_code():
    root = build_tree(_counts(b""))
    assert isinstance(root, Leaf)
    assert root.sym == PSEUDO_EOF
    assert make_codes(root) == {PSEUDO_EOF: "0"}


def test_make_codes_none():
    assert make_codes(None) == {}


def test_build_tree_rejects_empty_table():
    with pytest.raises(ValueError):
        build_tree([0] * (ALPH_SIZE + 1))


@pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
def test_codes_are_prefix_free(seed):
    rng = random.Random(seed)
    counts = [rng.choice([0, 0, 1, 2, 5, 40, 1000]) for _ in range(ALPH_SIZE)] + [1]
    codes = list(make_codes(build_tree(counts)).values())
    assert len(codes) == sum(1 for c in counts if c)
    for i, a in enumerate(codes):
        for j, b in enumerate(codes):
            if i != j:
                assert not b.startswith(a)


# ---------------------------------
# Header
# ---------------------------------
@pytest.mark.parametrize("data", [b"", b"AAB", b"abcd", bytes(range(256)) * 3 + b"zzzz"])
def test_header_round_trip(data):
    root = build_tree(_counts(data))
    assert _shape(_header_round_trip(root)) == _shape(root)


def test_read_tree_truncated():
    with pytest.raises(MalformedHeader):
        read_tree(BitInputStream(io.BytesIO(b"")))
    # leaf tag present but only 3 of its 9 symbol bits
    with pytest.raises(MalformedHeader):
        read_tree(_bits((1, 1), (3, 0)))


def test_read_tree_rejects_symbol_outside_alphabet():
    with pytest.raises(MalformedHeader):
        read_tree(_bits((1, 1), (9, 300)))


def test_read_tree_requires_sentinel():
    with pytest.raises(MalformedHeader):
        read_tree(_bits((1, 0), (1, 1), (9, 65), (1, 1), (9, 66)))


def test_read_tree_rejects_absurd_depth():
    with pytest.raises(MalformedHeader):
        read_tree(BitInputStream(io.BytesIO(b"\x00" * 64)))


def test_error_hierarchy():
    assert issubclass(MalformedHeader, TruncatedStream)
    assert issubclass(TruncatedStream, HuffException)
    assert issubclass(BadMagicNumber, HuffException)
    assert issubclass(HuffException, ValueError)


# ---------------------------------
# Compress / decompress
# ---------------------------------
def test_compress_aab_exact_bytes():
    # magic, header 0 1:65 0 1:66 1:EOF, payload 0 0 10 11, two pad bits
    assert compress_bytes(b"AAB") == bytes.fromhex("face8201" "48290b002c")


def test_compress_empty_exact_bytes():
    # magic, header 1:EOF, one-bit sentinel code
    assert compress_bytes(b"") == bytes.fromhex("face8201" "c000")


def test_compress_reports_stats():
    stats = {}
    out = io.BytesIO()
    root = compress(BitInputStream(io.BytesIO(b"AAB")), BitOutputStream(out), stats)
    assert isinstance(root, Internal)
    assert stats["unique_symbols"] == 2
    assert stats["total_symbols"] == 3
    assert stats["header_bits"] == 32
    assert stats["payload_bits"] == 6
    assert stats["time_encode"] >= 0


@pytest.mark.parametrize("data", [
    b"",
    b"a",
    b"AAB",
    b"\x00" * 10,
    bytes(range(256)),
    b"the quick brown fox jumps over the lazy dog " * 50,
    bytes(random.Random(7).getrandbits(8) for _ in range(10 * 1024)),
])
def test_round_trip(data):
    assert decompress_bytes(compress_bytes(data)) == data


def test_single_symbol_input():
    data = bytes([7]) * 1000
    blob = compress_bytes(data)
    assert len(blob) < 1000
    assert decompress_bytes(blob) == data
    assert make_codes(build_tree(_counts(data))) == {PSEUDO_EOF: "0", 7: "1"}


def test_decompress_returns_symbol_count():
    blob = compress_bytes(b"hello")
    assert decompress(BitInputStream(io.BytesIO(blob)), BitOutputStream(io.BytesIO())) == 5


def test_bad_magic_writes_nothing():
    out = io.BytesIO()
    blob = b"NOPE" + compress_bytes(b"hello")[4:]
    with pytest.raises(BadMagicNumber):
        decompress(BitInputStream(io.BytesIO(blob)), BitOutputStream(out))
    assert out.getvalue() == b""


def test_legacy_magic_is_named():
    blob = struct.pack(">I", HUFF_NUMBER) + b"\x00" * 16
    with pytest.raises(BadMagicNumber, match="Legacy"):
        decompress_bytes(blob)


def test_too_short_for_magic():
    with pytest.raises(BadMagicNumber):
        decompress_bytes(b"\xfa\xce")


def test_truncated_payload():
    blob = compress_bytes(b"hello world")
    with pytest.raises(TruncatedStream):
        decompress_bytes(blob[:-1])


def test_truncated_header():
    blob = compress_bytes(b"hello world")
    with pytest.raises(MalformedHeader):
        decompress_bytes(blob[:6])


def test_compress_needs_rewindable_input():
    class OneShot(io.BytesIO):
        def seek(self, *args):
            raise io.UnsupportedOperation("seek")

    with pytest.raises(io.UnsupportedOperation):
        compress(BitInputStream(OneShot(b"abc")), BitOutputStream(io.BytesIO()))
