import logging
import os

import pytest

from tagbam import pipeline
from tagbam.pipeline import TagCounts, tag_bam
from tagbam.utils.bq_utils import BqMapQualitySource
from tagbam.utils.errors import ReadNameDecodeError, TagBamConfigError, TagBamError, TagBamIOError
from tagbam.utils.read_utils import BarcodeQualities

from ..utils import (
    assert_read_tags_are_equal,
    assert_reads_are_equal,
    create_test_bam,
    get_tag_string,
    read_bam,
    read_bam_header,
)

READ_NAMES = [
    "uuid1_AAA-BBB-CCC_UUU",
    "uuid2_AAAAAAAA-BBBBBBBB-CCCCCCCC_UUUUUUUU",
    "uuid3_A-B-C_U",
]


def test_tag_bam_counts(tmpdir, caplog):
    caplog.set_level(logging.INFO)
    input_bam = tmpdir.join("input.bam")
    output_bam = tmpdir.join("output.bam")
    create_test_bam(input_bam, READ_NAMES)

    counts = tag_bam(str(input_bam), str(output_bam), disable_pbar=True)

    assert counts == TagCounts(total=3, tagged=3, skipped=0)
    assert "Reads tagged: 3/3 (100.0000%)" in caplog.text
    assert "No reads were tagged" not in caplog.text


def test_tag_bam_preserves_order_header_and_fields(tmpdir):
    input_bam = tmpdir.join("input.bam")
    output_bam = tmpdir.join("output.bam")
    names = [f"uuid{i}_AC-GT-{'A' * (i % 5)}_U{i}" for i in range(500)]
    create_test_bam(input_bam, names)

    tag_bam(str(input_bam), str(output_bam), threads=2, disable_pbar=True)

    assert read_bam_header(output_bam) == read_bam_header(input_bam)

    actual = read_bam(output_bam)
    expected = read_bam(input_bam)
    assert [r.query_name for r in actual] == names
    for actual_read, expected_read in zip(actual, expected):
        assert_reads_are_equal(actual_read, expected_read)


def test_tag_bam_default_quality_source(tmpdir):
    input_bam = tmpdir.join("input.bam")
    output_bam = tmpdir.join("output.bam")
    create_test_bam(input_bam, READ_NAMES[:1])

    tag_bam(str(input_bam), str(output_bam), disable_pbar=True)

    read = read_bam(output_bam)[0]
    assert get_tag_string(read, "CB") == "AAABBBCCC"
    assert get_tag_string(read, "CY") == "IIIIIIIII"
    assert get_tag_string(read, "UB") == "UUU"
    assert get_tag_string(read, "UY") == "III"


def test_tag_bam_with_quality_source(tmpdir):
    input_bam = tmpdir.join("input.bam")
    output_bam = tmpdir.join("output.bam")
    create_test_bam(input_bam, READ_NAMES)

    source = BqMapQualitySource({"uuid1_AAA-BBB-CCC_UUU": BarcodeQualities(b"123456789", b"XYZ")})
    tag_bam(str(input_bam), str(output_bam), quality_source=source, disable_pbar=True)

    reads = read_bam(output_bam)
    assert (get_tag_string(reads[0], "CY"), get_tag_string(reads[0], "UY")) == ("123456789", "XYZ")
    assert (get_tag_string(reads[2], "CY"), get_tag_string(reads[2], "UY")) == ("III", "I")


def test_tag_bam_pre_tagged(tmpdir, caplog):
    input_bam = tmpdir.join("input.bam")
    output_bam = tmpdir.join("output.bam")
    create_test_bam(input_bam, ["uuid_AAA-BBB-CCC_UUU"], {"uuid_AAA-BBB-CCC_UUU": [("CB", "EXISTING")]})

    counts = tag_bam(str(input_bam), str(output_bam), disable_pbar=True)

    assert counts == TagCounts(total=1, tagged=0, skipped=1)
    assert_read_tags_are_equal(read_bam(output_bam)[0], read_bam(input_bam)[0])
    assert "No reads were tagged" in caplog.text


def test_tag_bam_skip_unparseable(tmpdir):
    input_bam = tmpdir.join("input.bam")
    output_bam = tmpdir.join("output.bam")
    create_test_bam(input_bam, ["uuid1_AAA-BBB-CCC_UUU", "invalid_format", "uuid2_DDD-EEE-FFF_VVV"])

    counts = tag_bam(str(input_bam), str(output_bam), skip_unparseable=True, disable_pbar=True)

    assert counts == TagCounts(total=3, tagged=2, skipped=1)
    reads = read_bam(output_bam)
    assert [get_tag_string(r, "CB") for r in reads] == ["AAABBBCCC", None, "DDDEEEFFF"]
    assert reads[1].get_tags() == []


def test_tag_bam_unparseable_is_fatal(tmpdir):
    input_bam = tmpdir.join("input.bam")
    output_bam = tmpdir.join("output.bam")
    create_test_bam(input_bam, ["uuid1_AAA-BBB-CCC_UUU", "invalid_format", "uuid2_DDD-EEE-FFF_VVV"])

    with pytest.raises(TagBamError, match="invalid_format") as exc_info:
        tag_bam(str(input_bam), str(output_bam), disable_pbar=True)

    assert isinstance(exc_info.value.__cause__, ReadNameDecodeError)


def test_tag_bam_requires_output_or_in_place(tmpdir):
    input_bam = tmpdir.join("input.bam")
    create_test_bam(input_bam, READ_NAMES)

    with pytest.raises(TagBamConfigError):
        tag_bam(str(input_bam), disable_pbar=True)


def test_tag_bam_missing_input(tmpdir):
    with pytest.raises(TagBamIOError, match="missing.bam"):
        tag_bam(str(tmpdir.join("missing.bam")), str(tmpdir.join("output.bam")), disable_pbar=True)


def test_tag_bam_in_place(tmpdir):
    input_bam = tmpdir.join("test.bam")
    create_test_bam(input_bam, READ_NAMES)

    counts = tag_bam(str(input_bam), in_place=True, disable_pbar=True)

    assert counts == TagCounts(total=3, tagged=3, skipped=0)
    assert [get_tag_string(r, "CB") for r in read_bam(input_bam)] == [
        "AAABBBCCC",
        "AAAAAAAABBBBBBBBCCCCCCCC",
        "ABC",
    ]
    assert [p.basename for p in tmpdir.listdir()] == ["test.bam"]


def test_tag_bam_in_place_failure_leaves_input_untouched(tmpdir):
    input_bam = tmpdir.join("test.bam")
    create_test_bam(input_bam, ["uuid1_AAA-BBB-CCC_UUU", "invalid_format"])
    original = input_bam.read_binary()

    with pytest.raises(TagBamError):
        tag_bam(str(input_bam), in_place=True, disable_pbar=True)

    assert input_bam.read_binary() == original
    assert [p.basename for p in tmpdir.listdir()] == ["test.bam"]


def test_tag_bam_in_place_rename_failure_keeps_temp_file(tmpdir, monkeypatch):
    input_bam = tmpdir.join("test.bam")
    create_test_bam(input_bam, READ_NAMES)
    original = input_bam.read_binary()

    def fail_replace(src, dst):
        raise PermissionError("no renaming today")

    monkeypatch.setattr(pipeline.os, "replace", fail_replace)

    with pytest.raises(TagBamIOError, match=r"\.test\.bam\.tmp") as exc_info:
        tag_bam(str(input_bam), in_place=True, disable_pbar=True)

    assert isinstance(exc_info.value.__cause__, PermissionError)
    assert input_bam.read_binary() == original

    temp_bam = tmpdir.join(".test.bam.tmp")
    assert temp_bam.exists()
    assert [get_tag_string(r, "UB") for r in read_bam(temp_bam)] == ["UUU", "UUUUUUUU", "U"]


def test_tag_bam_direct_failure_leaves_partial_output(tmpdir):
    input_bam = tmpdir.join("input.bam")
    output_bam = tmpdir.join("output.bam")
    create_test_bam(input_bam, ["uuid1_AAA-BBB-CCC_UUU", "invalid_format"])

    with pytest.raises(TagBamError):
        tag_bam(str(input_bam), str(output_bam), disable_pbar=True)

    assert os.path.exists(output_bam)
    assert os.path.exists(input_bam)


def test_tag_bam_empty_input(tmpdir):
    input_bam = tmpdir.join("input.bam")
    output_bam = tmpdir.join("output.bam")
    create_test_bam(input_bam, [])

    assert tag_bam(str(input_bam), str(output_bam), disable_pbar=True) == TagCounts()
    assert read_bam(output_bam) == []
