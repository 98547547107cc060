import collections
import concurrent.futures
import contextlib
import io
import itertools
import logging
import zlib

import pysam
from construct import Bytes, Const, ConstructError, GreedyRange, Int8ul, Int16ul, Int32ul, Struct, this

from .constants import FASTQ_HEADER_PREFIX, FASTQ_LINES_PER_RECORD

logger = logging.getLogger(__name__)

# gzip member header (RFC 1952).  BGZF blocks are gzip members with an extra field.
# More on the BGZF format at https://samtools.github.io/hts-specs/SAMv1.pdf (section 4.1).
GZIP_HEADER = Struct(
    "magic" / Const(b"\x1f\x8b"),
    "cm" / Int8ul,
    "flg" / Int8ul,
    "mtime" / Int32ul,
    "xfl" / Int8ul,
    "os" / Int8ul,
)
GZIP_FEXTRA = 0x04

BGZF_HEADER = Struct(
    "gzip" / GZIP_HEADER,
    "xlen" / Int16ul,
)

GZIP_EXTRA_SUBFIELDS = GreedyRange(
    Struct(
        "si" / Bytes(2),
        "slen" / Int16ul,
        "data" / Bytes(this.slen),
    )
)
BGZF_SUBFIELD_ID = b"BC"


def _get_bgzf_block_size(extra):
    """Total size of a BGZF block from its gzip extra field, or None if it has no BC subfield."""
    for subfield in GZIP_EXTRA_SUBFIELDS.parse(extra):
        if subfield.si == BGZF_SUBFIELD_ID and subfield.slen == 2:
            # BSIZE is the total block size minus 1:
            return Int16ul.parse(subfield.data) + 1
    return None


def is_bgzf(path):
    """True if the given file starts with a BGZF block (a gzip member with a BC extra subfield)."""

    with open(path, "rb") as f:
        header = f.read(BGZF_HEADER.sizeof())

        try:
            fields = BGZF_HEADER.parse(header)
        except ConstructError:
            return False

        if not fields.gzip.flg & GZIP_FEXTRA:
            return False

        return _get_bgzf_block_size(f.read(fields.xlen)) is not None


def _inflate_block(block):
    try:
        # wbits=31: expect a gzip wrapper, which also checks the CRC32 and ISIZE trailer.
        return zlib.decompress(block, 31)
    except zlib.error as e:
        raise OSError(f"Corrupt BGZF block: {e}") from e


class BgzfReader(io.RawIOBase):
    """Read-only BGZF stream that inflates blocks on a bounded pool of worker threads.

    Blocks are submitted in file order and consumed in the same order, so the decompressed
    stream is identical to a single threaded read for any number of threads.
    """

    def __init__(self, path, threads, max_pending_blocks=None):
        super().__init__()
        self._fh = None
        self._pool = None
        self._pending = collections.deque()

        self.name = str(path)
        self._fh = open(path, "rb")
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=threads, thread_name_prefix="bgzf"
        )
        self._max_pending = max_pending_blocks if max_pending_blocks else threads * 4

        self._block = b""
        self._block_offset = 0
        self._exhausted = False
        self.num_blocks = 0

    def readable(self):
        return True

    def _read_block(self):
        header = self._fh.read(BGZF_HEADER.sizeof())
        if not header:
            return None

        if len(header) < BGZF_HEADER.sizeof():
            raise EOFError(f"BGZF file ended in the middle of a block header: {self.name}")

        try:
            fields = BGZF_HEADER.parse(header)
        except ConstructError as e:
            raise OSError(
                f"Invalid BGZF block header at block {self.num_blocks}: {self.name}"
            ) from e

        if not fields.gzip.flg & GZIP_FEXTRA:
            raise OSError(f"Block {self.num_blocks} is not a BGZF block (no extra field): {self.name}")

        extra = self._fh.read(fields.xlen)
        if len(extra) < fields.xlen:
            raise EOFError(f"BGZF file ended in the middle of block {self.num_blocks}: {self.name}")

        block_size = _get_bgzf_block_size(extra)
        if block_size is None:
            raise OSError(f"BGZF block {self.num_blocks} has no BC subfield: {self.name}")

        remaining = block_size - len(header) - len(extra)
        if remaining < 0:
            raise OSError(f"BGZF block {self.num_blocks} has an invalid size: {self.name}")

        body = self._fh.read(remaining)
        if len(body) < remaining:
            raise EOFError(f"BGZF file ended in the middle of block {self.num_blocks}: {self.name}")

        self.num_blocks += 1
        return header + extra + body

    def _submit_blocks(self):
        while not self._exhausted and len(self._pending) < self._max_pending:
            block = self._read_block()
            if block is None:
                self._exhausted = True
                logger.debug("Read %d BGZF blocks from %s", self.num_blocks, self.name)
                break
            self._pending.append(self._pool.submit(_inflate_block, block))

    def readinto(self, b):
        # Skip over empty blocks (including the EOF marker block):
        while self._block_offset >= len(self._block):
            self._submit_blocks()
            if not self._pending:
                return 0
            self._block = self._pending.popleft().result()
            self._block_offset = 0

        n = min(len(b), len(self._block) - self._block_offset)
        b[:n] = self._block[self._block_offset:self._block_offset + n]
        self._block_offset += n

        return n

    def close(self):
        if not self.closed:
            for future in self._pending:
                future.cancel()
            self._pending.clear()
            if self._pool is not None:
                self._pool.shutdown(wait=True)
            if self._fh is not None:
                self._fh.close()
        super().close()


@contextlib.contextmanager
def open_fastq(path, threads=1):
    """Open a plain, gzip, or bgzip compressed FASTQ file as a text stream.

    htslib detects the framing.  BGZF files are decompressed on `threads` worker threads
    when threads > 1, everything else is read with a single thread.
    """

    if threads > 1 and is_bgzf(path):
        logger.debug(f"Reading BGZF file with {threads} threads: {path}")
        fh = io.TextIOWrapper(io.BufferedReader(BgzfReader(path, threads)), encoding="utf-8")
    else:
        fh = io.TextIOWrapper(pysam.BGZFile(str(path), "rb"), encoding="utf-8")

    with fh:
        yield fh


def iter_fastq_headers(lines):
    """Yield the header line of each 4-line FASTQ record in the given lines."""
    lines = iter(lines)
    for header in lines:
        # Consume sequence, separator and quality lines to stay aligned on record boundaries:
        for _ in itertools.islice(lines, FASTQ_LINES_PER_RECORD - 1):
            pass

        yield header.rstrip("\r\n")


def get_read_name(header):
    """Read name from a FASTQ header: the leading '@' removed, up to the first whitespace."""
    if header.startswith(FASTQ_HEADER_PREFIX):
        header = header[len(FASTQ_HEADER_PREFIX):]

    fields = header.split(maxsplit=1)
    return fields[0] if fields else ""
