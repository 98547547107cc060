class TagBamError(Exception):
    """Base class for all errors raised by tagbam."""


class TagBamConfigError(TagBamError):
    """Invalid combination of options, detected before any I/O."""


class TagBamIOError(TagBamError):
    """Failure opening, reading, writing, or renaming a file."""


class ReadNameDecodeError(TagBamError, ValueError):
    """A read name does not follow {uuid}_{i7}-{i5}-{CBC}_{UMI}."""

    def __init__(self, message, name, part, num_parts):
        super().__init__(message)
        self.name = name
        self.part = part
        self.num_parts = num_parts


class BqLoadError(TagBamError):
    """Failure loading barcode qualities from a FASTQ or its cache."""


class BqCacheFormatError(BqLoadError):
    """A BQ cache file is corrupt, truncated, or of an unknown format version."""
