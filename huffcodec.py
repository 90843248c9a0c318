#!/usr/bin/env python3
import argparse
import heapq
import io
import itertools
import logging
import struct
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from bitio import EOF, BitInputStream, BitOutputStream

log = logging.getLogger(__name__)

BITS_PER_WORD = 8
BITS_PER_INT = 32
ALPH_SIZE = 1 << BITS_PER_WORD
PSEUDO_EOF = ALPH_SIZE
HEADER_SYMBOL_BITS = BITS_PER_WORD + 1  # 0..256 inclusive

HUFF_NUMBER = 0xFACE8200  # legacy fixed-table files
HUFF_TREE = HUFF_NUMBER | 1
MAGIC = struct.pack(">I", HUFF_TREE)  # file signature


# ---------------------------------
# Errors
# ---------------------------------
class HuffException(ValueError):
    """Base class for every failure caused by the compressed input."""


class BadMagicNumber(HuffException):
    pass


class TruncatedStream(HuffException):
    pass


class MalformedHeader(TruncatedStream):
    pass


# ---------------------------------
# Run-time options
# ---------------------------------
@dataclass
class StudioConfig:
    already_compressed_exts: Tuple[str, ...] = (
        ".zip", ".gz", ".7z", ".rar", ".jpeg", ".jpg", ".png", ".gif",
        ".mp3", ".mp4", ".avi", ".mov", ".odt", ".docx", ".xlsx",
    )
    force: bool = False
    chunk_size: int = 8192
    tree_dot_depth: int = 3


# ---------------------------------
# Tree nodes
# ---------------------------------
class Node:
    is_leaf = False

    def __init__(self, weight: int):
        self.weight = weight


class Leaf(Node):
    is_leaf = True

    def __init__(self, sym: int, weight: int = 0):
        super().__init__(weight)
        self.sym = sym

    def __repr__(self):
        return f"Leaf({self.sym}, {self.weight})"


class Internal(Node):
    def __init__(self, left: Node, right: Node, weight: Optional[int] = None):
        # decoded trees carry no weights, so callers may pass 0
        super().__init__(left.weight + right.weight if weight is None else weight)
        self.left = left
        self.right = right

    def __repr__(self):
        return f"Internal({self.left!r}, {self.right!r})"


def iter_leaves(root: Node):
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_leaf:
            yield node
        else:
            stack.append(node.right)
            stack.append(node.left)


# ------------------------------------
# 1) Count 8-bit symbols
# ------------------------------------
def count_frequencies(bit_in: BitInputStream) -> List[int]:
    counts = [0] * (ALPH_SIZE + 1)
    value = bit_in.read_bits(BITS_PER_WORD)
    while value != EOF:
        counts[value] += 1
        value = bit_in.read_bits(BITS_PER_WORD)
    # the sentinel never occurs in real input
    counts[PSEUDO_EOF] = 1
    log.debug("Counted %d symbols, %d distinct",
              sum(counts[:ALPH_SIZE]), sum(1 for c in counts[:ALPH_SIZE] if c))
    return counts


# -------------------------------------
# 2) Greedy tree from the counts
# -------------------------------------
def build_tree(counts: Sequence[int]) -> Node:
    """
    Merge the two lightest nodes until one is left.

    Heap entries are (weight, seq, node). seq grows with every push, so of two
    equal weights the node inserted first is popped first, and the first node
    popped becomes the left child.
    """
    if len(counts) > ALPH_SIZE + 1:
        raise ValueError(f"frequency table has {len(counts)} entries, max is {ALPH_SIZE + 1}")
    seq = itertools.count()
    heap = [(weight, next(seq), Leaf(sym, weight))
            for sym, weight in enumerate(counts) if weight > 0]
    if not heap:
        raise ValueError("frequency table has no symbols")
    heapq.heapify(heap)

    while len(heap) > 1:
        _, _, left = heapq.heappop(heap)
        _, _, right = heapq.heappop(heap)
        merged = Internal(left, right)
        heapq.heappush(heap, (merged.weight, next(seq), merged))
    return heap[0][2]


# ---------------------------
# 3) Walk tree -> code map
# ---------------------------
def make_codes(root: Optional[Node]) -> Dict[int, str]:
    codes: Dict[int, str] = {}
    if root is None:
        return codes
    if root.is_leaf:
        # lone leaf (empty input): one bit per code, value ignored by the decoder
        codes[root.sym] = "0"
        return codes

    def walk(node: Node, prefix: str):
        if node.is_leaf:
            codes[node.sym] = prefix
            return
        walk(node.left, prefix + "0")
        walk(node.right, prefix + "1")

    walk(root, "")
    return codes


# ----------------------------------------------------------------------
# 4) Header (preorder): bit 0 = internal, bit 1 + 9-bit symbol = leaf
# ----------------------------------------------------------------------
def write_header(root: Node, bit_out: BitOutputStream) -> None:
    if root.is_leaf:
        bit_out.write_bits(1, 1)
        bit_out.write_bits(HEADER_SYMBOL_BITS, root.sym)
        return
    bit_out.write_bits(1, 0)
    write_header(root.left, bit_out)
    write_header(root.right, bit_out)


def read_tree(bit_in: BitInputStream) -> Node:
    root = _read_node(bit_in, 0)
    if not any(leaf.sym == PSEUDO_EOF for leaf in iter_leaves(root)):
        raise MalformedHeader("Bad tree: no end-of-stream leaf")
    return root


def _read_node(bit_in: BitInputStream, depth: int) -> Node:
    # 257 leaves can't sit deeper than 256 levels
    if depth > ALPH_SIZE:
        raise MalformedHeader(f"Bad tree: nested deeper than {ALPH_SIZE} levels")
    bit = bit_in.read_bit()
    if bit == EOF:
        raise MalformedHeader("Bad tree data: ran out")
    if bit == 0:
        left = _read_node(bit_in, depth + 1)
        right = _read_node(bit_in, depth + 1)
        return Internal(left, right, weight=0)
    sym = bit_in.read_bits(HEADER_SYMBOL_BITS)
    if sym == EOF:
        raise MalformedHeader("Bad tree: leaf missing symbol")
    if sym > PSEUDO_EOF:
        raise MalformedHeader(f"Bad tree: leaf symbol {sym} outside the alphabet")
    return Leaf(sym)


# -------------------------
# 5) Compressor
# -------------------------
def compress(bit_in: BitInputStream, bit_out: BitOutputStream,
             stats: Optional[Dict[str, object]] = None) -> Node:
    """
    Two passes over bit_in: count, then encode. bit_in must support reset().
    Returns the tree; if stats is a dict it is filled with sizes and timings.
    """
    t0 = time.perf_counter()
    counts = count_frequencies(bit_in)
    t_count = time.perf_counter()

    root = build_tree(counts)
    t_tree = time.perf_counter()

    codes = make_codes(root)
    t_codes = time.perf_counter()

    start = bit_out.bits_written
    bit_out.write_bits(BITS_PER_INT, HUFF_TREE)
    write_header(root, bit_out)
    header_bits = bit_out.bits_written - start - BITS_PER_INT

    bit_in.reset()
    _write_compressed_bits(codes, bit_in, bit_out)
    payload_bits = bit_out.bits_written - start - BITS_PER_INT - header_bits
    bit_out.flush()
    t_encode = time.perf_counter()

    log.debug("Header %d bits, payload %d bits, %d bits read",
              header_bits, payload_bits, bit_in.bits_read)
    if stats is not None:
        stats.update({
            "unique_symbols": sum(1 for c in counts[:ALPH_SIZE] if c),
            "total_symbols": sum(counts[:ALPH_SIZE]),
            "header_bits": header_bits,
            "payload_bits": payload_bits,
            "time_count": t_count - t0,
            "time_tree_build": t_tree - t_count,
            "time_codes": t_codes - t_tree,
            "time_encode": t_encode - t_codes,
        })
    return root


def _write_compressed_bits(codes: Dict[int, str], bit_in: BitInputStream,
                           bit_out: BitOutputStream) -> None:
    # int(code, 2) drops leading zeros, so the width always comes from len(code)
    packed = {sym: (len(code), int(code, 2)) for sym, code in codes.items()}
    value = bit_in.read_bits(BITS_PER_WORD)
    while value != EOF:
        try:
            nbits, bits = packed[value]
        except KeyError:
            raise HuffException(f"symbol {value} was not seen while counting; input changed") from None
        bit_out.write_bits(nbits, bits)
        value = bit_in.read_bits(BITS_PER_WORD)
    bit_out.write_bits(*packed[PSEUDO_EOF])


# -------------------------
# 6) Decompressor
# -------------------------
def decompress(bit_in: BitInputStream, bit_out: BitOutputStream) -> int:
    """Decode one compressed stream; returns how many bytes were written."""
    magic = bit_in.read_bits(BITS_PER_INT)
    if magic != HUFF_TREE:
        if magic == HUFF_NUMBER:
            raise BadMagicNumber("Legacy fixed-table .huff format is not supported")
        if magic == EOF:
            raise BadMagicNumber("Not a .huff file (too small)")
        raise BadMagicNumber(f"Not a .huff file (magic {magic:#010x})")

    root = read_tree(bit_in)
    current = root
    written = 0
    while True:
        bit = bit_in.read_bit()
        if bit == EOF:
            raise TruncatedStream("Bad input: stream ended before end-of-stream code")
        if not root.is_leaf:
            current = current.right if bit else current.left
        if current.is_leaf:
            if current.sym == PSEUDO_EOF:
                break
            bit_out.write_bits(BITS_PER_WORD, current.sym)
            written += 1
            current = root

    bit_out.flush()
    log.debug("Decoded %d symbols from %d bits", written, bit_in.bits_read)
    return written


def compress_bytes(data: bytes) -> bytes:
    out = io.BytesIO()
    compress(BitInputStream(io.BytesIO(data)), BitOutputStream(out))
    return out.getvalue()


def decompress_bytes(blob: bytes) -> bytes:
    out = io.BytesIO()
    decompress(BitInputStream(io.BytesIO(blob)), BitOutputStream(out))
    return out.getvalue()


# -------------------------
# 7) Files + stats
# -------------------------
def _skip_reason(src: Path, cfg: StudioConfig) -> Optional[str]:
    with open(src, "rb") as f:
        head = f.read(len(MAGIC))
    if head == MAGIC or src.suffix.lower() == ".huff":
        return "Input file is already in .huff format (double-compression prevented)."
    if src.suffix.lower() in cfg.already_compressed_exts:
        return "This file type is likely already compressed (skipped compression)."
    return None


def compress_file(src, dst, cfg: Optional[StudioConfig] = None) -> Tuple[Optional[Node], Dict[str, object]]:
    """
    Returns (root, stats). If compression is skipped (already compressed type
    or .huff input), returns (None, stats) with stats['skipped']=True,
    stats['note'] explaining why, and dst is not created.
    """
    if cfg is None:
        cfg = StudioConfig()
    src = Path(src)
    t0 = time.perf_counter()
    original_bytes = src.stat().st_size

    note = None if cfg.force else _skip_reason(src, cfg)
    if note:
        log.info("Skipping %s: %s", src, note)
        return None, {
            "input": str(src),
            "output": str(dst),
            "original_bytes": original_bytes,
            "compressed_bytes": original_bytes,
            "unique_symbols": 0,
            "pad_count": None,
            "compression_ratio": None,
            "space_saved_percent": None,
            "skipped": True,
            "note": note,
            "time_total": time.perf_counter() - t0,
        }

    stats: Dict[str, object] = {}
    with BitInputStream(open(src, "rb"), cfg.chunk_size) as bit_in, \
            BitOutputStream(open(dst, "wb")) as bit_out:
        root = compress(bit_in, bit_out, stats)
        pad_count = bit_out.pad_count
        compressed_bytes = (bit_out.bits_written + 7) // 8

    if original_bytes > 0:
        compression_ratio = compressed_bytes / original_bytes
        space_saved_percent = ((original_bytes - compressed_bytes) / original_bytes) * 100.0
    else:
        compression_ratio = None
        space_saved_percent = None

    note = None
    if compressed_bytes >= original_bytes:
        note = "Compressed output is not smaller than the input (header overhead)."

    stats.update({
        "input": str(src),
        "output": str(dst),
        "original_bytes": original_bytes,
        "compressed_bytes": compressed_bytes,
        "pad_count": pad_count,
        "compression_ratio": compression_ratio,
        "space_saved_percent": space_saved_percent,
        "skipped": False,
        "note": note,
        "time_total": time.perf_counter() - t0,
    })
    log.info("Compressed %s (%dB) -> %s (%dB)", src, original_bytes, dst, compressed_bytes)
    return root, stats


def decompress_file(src, dst, cfg: Optional[StudioConfig] = None) -> Dict[str, object]:
    if cfg is None:
        cfg = StudioConfig()
    t0 = time.perf_counter()
    # dst is flushed and closed even when decoding fails; the caller owns cleanup
    with BitInputStream(open(src, "rb"), cfg.chunk_size) as bit_in, \
            BitOutputStream(open(dst, "wb")) as bit_out:
        restored = decompress(bit_in, bit_out)
    t_decode = time.perf_counter()

    stats = {
        "input_huff": str(src),
        "output": str(dst),
        "compressed_size": Path(src).stat().st_size,
        "restored_size": restored,
        "time_decode": t_decode - t0,
        "time_total": time.perf_counter() - t0,
    }
    log.info("Decompressed %s (%dB) -> %s (%dB)", src, stats["compressed_size"], dst, restored)
    return stats


# --------------------------------
# Convert Tree to Graphviz format
# --------------------------------
def _symbol_label(sym: int) -> str:
    if sym == PSEUDO_EOF:
        return "EOF"
    if 33 <= sym <= 126 and chr(sym) not in '"\\':
        return chr(sym)
    return f"0x{sym:02x}"


def tree_to_dot(root: Optional[Node], max_depth: int = 3) -> str:
    dot = "digraph G {\n"
    dot += "node [shape=circle, style=filled, color=lightblue];\n"
    ids = itertools.count()

    def traverse(n: Node, depth: int) -> int:
        nonlocal dot
        node_id = next(ids)
        if n.is_leaf:
            label = _symbol_label(n.sym)
            if n.weight:
                label = f"{n.weight}\\n{label}"
        else:
            label = str(n.weight) if n.weight else ""
        dot += f'n{node_id} [label="{label}"];\n'
        if not n.is_leaf and depth < max_depth:
            for bit, child in (("0", n.left), ("1", n.right)):
                child_id = traverse(child, depth + 1)
                dot += f'n{node_id} -> n{child_id} [label="{bit}"];\n'
        return node_id

    if root is not None:
        traverse(root, 0)
    dot += "}"
    return dot


# -------------------------
# 8) Command line
# -------------------------
def _restored_name(src: Path) -> Path:
    if src.suffix.lower() == ".huff":
        candidate = src.with_suffix("")
        if not candidate.exists():
            return candidate
    return src.with_name(src.name + "_restored")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="huffstudio",
        description="Compress and decompress files with a tree-header Huffman code.")
    parser.add_argument("-v", "--verbose", action="store_true", help="log codec details")
    sub = parser.add_subparsers(dest="command", required=True)

    p_comp = sub.add_parser("compress", help="compress SRC into SRC.huff")
    p_comp.add_argument("src", type=Path)
    p_comp.add_argument("-o", "--output", type=Path, default=None)
    p_comp.add_argument("--force", action="store_true",
                        help="compress even .huff or already-compressed file types")

    p_dec = sub.add_parser("decompress", help="restore a .huff file")
    p_dec.add_argument("src", type=Path)
    p_dec.add_argument("-o", "--output", type=Path, default=None)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        if args.command == "compress":
            dst = args.output or args.src.with_name(args.src.name + ".huff")
            _, stats = compress_file(args.src, dst, StudioConfig(force=args.force))
            if stats["skipped"]:
                print(stats["note"])
            elif stats["space_saved_percent"] is not None:
                print(f"{stats['original_bytes']} -> {stats['compressed_bytes']} bytes "
                      f"({stats['space_saved_percent']:.2f}% saved)")
            else:
                print(f"Empty input -> {stats['compressed_bytes']} bytes")
        else:
            dst = args.output or _restored_name(args.src)
            stats = decompress_file(args.src, dst)
            print(f"{stats['compressed_size']} -> {stats['restored_size']} bytes ({dst})")
    except (HuffException, OSError) as e:
        log.error("%s failed: %s", args.command, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
