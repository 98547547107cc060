import collections

from .constants import (
    PERFECT_QUALITY_CHAR,
    READ_NAME_BARCODE_DELIMITER,
    READ_NAME_FIELD_DELIMITER,
    READ_NAME_NUM_BARCODES,
    READ_NAME_NUM_FIELDS,
)
from .errors import ReadNameDecodeError


# Named tuple to store the parts of a read name:
class ReadNameComponents(
    collections.namedtuple("ReadNameComponents", ["i7", "i5", "cbc", "umi"])
):
    @property
    def barcode(self):
        """Cell barcode: i7, i5 and CBC concatenated without separators."""
        return f"{self.i7}{self.i5}{self.cbc}"


# Barcode qualities recovered from a FASTQ BQ token.  umi_quality is None if the token had no UMI field.
BarcodeQualities = collections.namedtuple(
    "BarcodeQualities", ["barcode_quality", "umi_quality"], defaults=[None]
)


def parse_read_name(name):
    """Parse a read name of the form {uuid}_{i7}-{i5}-{CBC}_{UMI}.

    Example:
        2efc6b85-aa0d-4c1d-ab33-bf5f442fe47c_TTGGCTCC-GGTCGGCG-ACTTGA_GAAGCAGT
    yields:
        ReadNameComponents(i7='TTGGCTCC', i5='GGTCGGCG', cbc='ACTTGA', umi='GAAGCAGT')

    The uuid is discarded.  Empty components are allowed - only the structure is checked.
    Raises ReadNameDecodeError if the name does not have that structure.
    """

    if name is None:
        name = ""

    parts = name.split(READ_NAME_FIELD_DELIMITER)
    if len(parts) != READ_NAME_NUM_FIELDS:
        raise ReadNameDecodeError(
            f"Expected {READ_NAME_NUM_FIELDS} underscore-separated parts in read name, "
            f"found {len(parts)}: '{name}'",
            name,
            name,
            len(parts),
        )

    barcode_parts = parts[1].split(READ_NAME_BARCODE_DELIMITER)
    if len(barcode_parts) != READ_NAME_NUM_BARCODES:
        raise ReadNameDecodeError(
            f"Expected {READ_NAME_NUM_BARCODES} hyphen-separated barcode parts, "
            f"found {len(barcode_parts)}: '{parts[1]}'",
            name,
            parts[1],
            len(barcode_parts),
        )

    i7, i5, cbc = barcode_parts
    return ReadNameComponents(i7, i5, cbc, parts[2])


def perfect_quality(length):
    """Quality string of the given length where every base is Phred 40 ('I')."""
    return PERFECT_QUALITY_CHAR * length
