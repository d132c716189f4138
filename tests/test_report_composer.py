"""Tests for report composition and range evaluation."""

import math

import pytest

from labcenter.core.exceptions import ValidationException
from labcenter.lifecycle.report_composer import (
    annotate_report,
    compose_report_data,
    is_value_out_of_range,
    merge_report_values,
    missing_values,
    parse_number,
    range_flag,
    split_test_ids,
)

CBC_FORMAT = {
    "test_id": "CBC",
    "test_name": "Complete Blood Count",
    "parameters": [
        {"name": "Hemoglobin", "unit": "g/dL", "normal_range": "13.5-17.5"},
        {"name": "WBC Count", "unit": "cells/mcL", "normal_range": "4000-11000"},
    ],
}


def test_split_test_ids_accepts_legacy_form():
    assert split_test_ids("CBC, LFT ,, CBC") == ["CBC", "LFT"]
    assert split_test_ids(["FBS", " ", "FBS", "TSH"]) == ["FBS", "TSH"]
    assert split_test_ids("") == []


def test_parse_number_reads_leading_number():
    assert parse_number("14.2 g/dL") == 14.2
    assert parse_number("-3") == -3.0
    assert parse_number(".5") == 0.5
    assert math.isnan(parse_number("Positive"))
    assert math.isnan(parse_number(None))


def test_compose_seeds_blocks_in_booking_order():
    report = compose_report_data(
        ["FBS", "CBC", "XRAY"],
        None,
        {"CBC": CBC_FORMAT},
        test_names=["Fasting Blood Sugar", "CBC snapshot", "Chest X-Ray"],
    )

    assert [block["test_id"] for block in report] == ["FBS", "CBC", "XRAY"]
    # Tests without a format get an empty block named from the booking
    assert report[0] == {"test_id": "FBS", "test_name": "Fasting Blood Sugar", "parameters": []}
    assert report[1]["test_name"] == "Complete Blood Count"
    assert report[1]["parameters"][0] == {
        "name": "Hemoglobin",
        "value": "",
        "unit": "g/dL",
        "range": "13.5-17.5",
    }
    assert report[2]["parameters"] == []


def test_compose_keeps_existing_blocks():
    """Edited formats never rewrite a captured block."""
    existing = [
        {
            "test_id": "CBC",
            "test_name": "Complete Blood Count",
            "parameters": [{"name": "Hemoglobin", "value": "12.1", "unit": "g/dL", "range": "13-17"}],
        }
    ]
    report = compose_report_data(["CBC"], existing, {"CBC": CBC_FORMAT})

    assert report == existing
    assert report[0] is not existing[0]


def test_compose_without_names_falls_back_to_id():
    assert compose_report_data(["LFT"], [], {})[0]["test_name"] == "LFT"


def test_merge_report_values_updates_only_values():
    report = compose_report_data(["CBC"], None, {"CBC": CBC_FORMAT})
    merged = merge_report_values(
        report,
        [{"test_id": "CBC", "parameters": [{"name": "Hemoglobin", "value": " 15.1 "}]}],
    )

    assert merged[0]["parameters"][0]["value"] == "15.1"
    assert merged[0]["parameters"][0]["range"] == "13.5-17.5"
    assert merged[0]["parameters"][1]["value"] == ""
    assert report[0]["parameters"][0]["value"] == ""


@pytest.mark.parametrize(
    "submitted",
    [
        [{"test_id": "LFT", "parameters": []}],
        [{"test_id": "CBC", "parameters": [{"name": "Platelets", "value": "2"}]}],
    ],
)
def test_merge_report_values_rejects_unknown_entries(submitted):
    report = compose_report_data(["CBC"], None, {"CBC": CBC_FORMAT})
    with pytest.raises(ValidationException):
        merge_report_values(report, submitted)


def test_missing_values_lists_blank_parameters():
    report = compose_report_data(["CBC"], None, {"CBC": CBC_FORMAT})
    report[0]["parameters"][0]["value"] = "14"
    assert missing_values(report) == [("CBC", "WBC Count")]


@pytest.mark.parametrize(
    ("value", "normal_range", "expected"),
    [
        ("14.0", "13.5-17.5", False),
        ("12.9", "13.5-17.5", True),
        ("12", "13.5-17.5", True),
        ("15", "13.5-17.5", False),
        ("", "4.0-11.0", False),
        ("18", "13.5-17.5", True),
        ("13.5", "13.5-17.5", False),
        ("5", ">10", True),
        ("10", ">10", True),
        ("11", ">10", False),
        ("200", "<200", True),
        ("150", "<200", False),
        ("", "13.5-17.5", False),
        ("Negative", "13.5-17.5", False),
        ("14", "", False),
        ("14", "Negative", False),
    ],
)
def test_is_value_out_of_range(value, normal_range, expected):
    assert is_value_out_of_range(value, normal_range) is expected


def test_range_flag_direction():
    assert range_flag("18", "13.5-17.5") == "H"
    assert range_flag("12", "13.5-17.5") == "L"
    assert range_flag("250", "<200") == "H"
    assert range_flag("5", ">10") == "L"
    assert range_flag("14", "13.5-17.5") == ""


def test_annotate_report_marks_each_parameter():
    report = compose_report_data(["CBC"], None, {"CBC": CBC_FORMAT})
    report[0]["parameters"][0]["value"] = "19"

    annotated = annotate_report(report)

    hemoglobin, wbc = annotated[0]["parameters"]
    assert hemoglobin["out_of_range"] is True
    assert hemoglobin["flag"] == "H"
    assert wbc["out_of_range"] is False
    assert wbc["flag"] == ""
    assert "out_of_range" not in report[0]["parameters"][0]


def test_composing_twice_keeps_entered_values():
    names = ["Complete Blood Count", "Fasting Blood Sugar"]
    first = compose_report_data(["CBC", "FBS"], [], {"CBC": CBC_FORMAT}, names)
    first[0]["parameters"][0]["value"] = "14.1"

    second = compose_report_data(["CBC", "FBS"], first, {"CBC": CBC_FORMAT}, names)

    assert [p["value"] for block in second for p in block["parameters"]] == [
        p["value"] for block in first for p in block["parameters"]
    ]
