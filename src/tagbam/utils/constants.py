################################################################################
# Read tags written by tagbam:
#######################################
CELL_BARCODE_TAG = "CB"  # Cell barcode: i7 + i5 + CBC concatenated
CELL_BARCODE_QUAL_TAG = "CY"  # Cell barcode base qualities
UMI_TAG = "UB"  # UMI sequence
UMI_QUAL_TAG = "UY"  # UMI base qualities

# Presence of any one of these on a read blocks all four from being written:
TAGBAM_TAGS = (CELL_BARCODE_TAG, CELL_BARCODE_QUAL_TAG, UMI_TAG, UMI_QUAL_TAG)

################################################################################
# Read name format: {uuid}_{i7}-{i5}-{CBC}_{UMI}
#######################################
READ_NAME_FIELD_DELIMITER = "_"
READ_NAME_BARCODE_DELIMITER = "-"
READ_NAME_NUM_FIELDS = 3
READ_NAME_NUM_BARCODES = 3

# Phred 40 (ASCII 73):
PERFECT_QUALITY_CHAR = "I"

################################################################################
# FASTQ barcode quality (BQ) token, e.g.:
#   @name cell|Barcodes:...|BQ:i7:<q>;i5:<q>;CBC:<q>;UMI:<q>
#######################################
BQ_TOKEN_MARKER = "|BQ:"
BQ_FIELD_DELIMITER = ";"
BQ_LABEL_DELIMITER = ":"
BQ_I7_LABEL = "i7"
BQ_I5_LABEL = "i5"
BQ_CBC_LABEL = "CBC"
BQ_UMI_LABEL = "UMI"

FASTQ_HEADER_PREFIX = "@"
FASTQ_LINES_PER_RECORD = 4

# Format name + version of the binary BQ map cache:
BQ_CACHE_MAGIC = b"TBQMAP01"

################################################################################
# Defaults:
#######################################
DEFAULT_THREADS = 4
TEMP_FILE_SUFFIX = ".tmp"
