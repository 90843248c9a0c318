"""Bit-level reading and writing on top of ordinary byte streams.

Bits are packed MSB-first inside each byte. Reads report end of input with
the ``EOF`` marker instead of raising, so callers can decide whether running
out of bits is fatal.
"""
from typing import BinaryIO

from bitarray import bitarray
from bitarray.util import ba2int, int2ba

EOF = -1


class BitInputStream:
    def __init__(self, stream: BinaryIO, chunk_size: int = 8192):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.stream = stream
        self.chunk_size = chunk_size
        self._bits = bitarray(endian="big")
        self._pos = 0
        self.bits_read = 0

    def _available(self) -> int:
        return len(self._bits) - self._pos

    def _fill(self, n: int) -> bool:
        # pull more bytes until n bits are buffered or the stream is dry
        while self._available() < n:
            chunk = self.stream.read(self.chunk_size)
            if not chunk:
                return False
            del self._bits[:self._pos]
            self._pos = 0
            self._bits.frombytes(chunk)
        return True

    def read_bits(self, n: int) -> int:
        if n <= 0:
            raise ValueError(f"bit count must be positive, got {n}")
        if not self._fill(n):
            return EOF
        value = ba2int(self._bits[self._pos:self._pos + n])
        self._pos += n
        self.bits_read += n
        return value

    def read_bit(self) -> int:
        if not self._fill(1):
            return EOF
        bit = self._bits[self._pos]
        self._pos += 1
        self.bits_read += 1
        return bit

    def reset(self) -> None:
        """Rewind to the start of the underlying stream."""
        self.stream.seek(0)
        self._bits = bitarray(endian="big")
        self._pos = 0
        self.bits_read = 0

    def close(self) -> None:
        self.stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class BitOutputStream:
    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self._bits = bitarray(endian="big")
        self.bits_written = 0

    def write_bits(self, n: int, value: int) -> None:
        """Write the low ``n`` bits of ``value``, leading zeros included."""
        if n < 0:
            raise ValueError(f"bit count must not be negative, got {n}")
        if value < 0 or value >= (1 << n):
            raise ValueError(f"value {value} does not fit in {n} bits")
        if n == 0:
            return
        self._bits.extend(int2ba(value, length=n, endian="big"))
        self.bits_written += n
        if len(self._bits) >= 8 * 4096:
            self._drain()

    def _drain(self) -> None:
        whole = len(self._bits) - len(self._bits) % 8
        if whole:
            self.stream.write(self._bits[:whole].tobytes())
            del self._bits[:whole]

    def flush(self) -> None:
        """Write everything buffered; the last byte is padded with zero bits."""
        if self._bits:
            self.stream.write(self._bits.tobytes())
            self._bits = bitarray(endian="big")
        self.stream.flush()

    @property
    def pad_count(self) -> int:
        return (8 - self.bits_written % 8) % 8

    def close(self) -> None:
        try:
            self.flush()
        finally:
            self.stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
