"""Composition of per-appointment report data and out-of-range evaluation.

Report data is a list of blocks, one per test on the appointment::

    {"test_id": "CBC", "test_name": "Complete Blood Count",
     "parameters": [{"name": "Hemoglobin", "value": "", "unit": "g/dL", "range": "13.5-17.5"}]}

A block is seeded from the test's report format the first time report entry
begins and is kept as-is afterwards, so later format edits never rewrite an
appointment's captured parameters.
"""

import copy
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from labcenter.core.exceptions import ValidationException

_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def split_test_ids(value: str | Sequence[str]) -> list[str]:
    """
    Normalize a list of test ids.

    Accepts the legacy comma-joined form (``"CBC, LFT"``) as well as a list.
    Blank entries are dropped and duplicates removed, keeping first occurrence.
    """
    parts = value.split(",") if isinstance(value, str) else list(value)
    seen: set[str] = set()
    result = []
    for part in parts:
        test_id = str(part).strip()
        if test_id and test_id not in seen:
            seen.add(test_id)
            result.append(test_id)
    return result


def parse_number(text: Any) -> float:
    """Parse the leading number of ``text``; NaN when there is none."""
    if text is None:
        return math.nan
    match = _LEADING_NUMBER.match(str(text))
    if not match:
        return math.nan
    return float(match.group(1))


def _new_block(test_id: str, test_name: str, fmt: Mapping[str, Any] | None) -> dict[str, Any]:
    parameters = []
    if fmt is not None:
        parameters = [
            {
                "name": param["name"],
                "value": "",
                "unit": param.get("unit", ""),
                "range": param.get("normal_range", ""),
            }
            for param in fmt.get("parameters", [])
        ]
    return {"test_id": test_id, "test_name": test_name, "parameters": parameters}


def compose_report_data(
    test_ids: Sequence[str],
    existing: Iterable[Mapping[str, Any]] | None,
    formats: Mapping[str, Mapping[str, Any]],
    test_names: Sequence[str] | None = None,
) -> list[dict[str, Any]]:
    """
    Build the report data for an appointment.

    Args:
        test_ids: Test ids on the appointment, in booking order
        existing: Report data already stored on the appointment (may be empty)
        formats: Report formats keyed by test id
        test_names: Display names snapshotted at booking, aligned with ``test_ids``

    Returns:
        One block per test id, ordered like ``test_ids``. Existing blocks are
        returned unchanged; missing ones are seeded from the format with empty
        values (or with no parameters when the test has no format).
    """
    by_test = {block["test_id"]: block for block in existing or []}
    names = list(test_names or [])

    composed = []
    for index, test_id in enumerate(test_ids):
        if test_id in by_test:
            composed.append(copy.deepcopy(dict(by_test[test_id])))
            continue

        fmt = formats.get(test_id)
        if fmt is not None and fmt.get("test_name"):
            name = fmt["test_name"]
        elif index < len(names):
            name = names[index]
        else:
            name = test_id
        composed.append(_new_block(test_id, name, fmt))

    return composed


def merge_report_values(
    report_data: Sequence[Mapping[str, Any]],
    submitted: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    """
    Apply submitted parameter values onto composed report data.

    Only ``value`` is taken from the submission; names, units and ranges stay
    as captured.

    Raises:
        ValidationException: If a block or parameter is not part of the report
    """
    merged = copy.deepcopy([dict(block) for block in report_data])
    index = {block["test_id"]: block for block in merged}

    for block in submitted:
        test_id = block.get("test_id")
        target = index.get(test_id)
        if target is None:
            raise ValidationException(f"Test {test_id!r} is not part of this appointment")

        params = {param["name"]: param for param in target["parameters"]}
        for param in block.get("parameters", []):
            name = param.get("name")
            if name not in params:
                raise ValidationException(
                    f"Parameter {name!r} is not part of the report for test {test_id!r}"
                )
            value = param.get("value")
            params[name]["value"] = "" if value is None else str(value).strip()

    return merged


def missing_values(report_data: Iterable[Mapping[str, Any]]) -> list[tuple[str, str]]:
    """(test id, parameter name) pairs that still have no value."""
    return [
        (block["test_id"], param["name"])
        for block in report_data
        for param in block.get("parameters", [])
        if not str(param.get("value") or "").strip()
    ]


def check_report_matches_tests(report_data: Sequence[Mapping[str, Any]], test_ids: Sequence[str]) -> None:
    """Raise unless there is exactly one block per test id."""
    block_ids = [block.get("test_id") for block in report_data]
    if sorted(block_ids) != sorted(test_ids):
        raise ValidationException("Report data must contain exactly one block per booked test")


def is_value_out_of_range(value: str | None, normal_range: str | None) -> bool:
    """
    Decide whether a result value should be highlighted.

    ``"min-max"`` flags values below min or above max. ``">limit"`` flags
    values that do not exceed the limit and ``"<limit"`` flags values that are
    not below it. Empty or non-numeric values, and ranges that cannot be
    parsed, are never flagged.
    """
    if not value or not normal_range:
        return False
    number = parse_number(value)
    if math.isnan(number):
        return False

    if "-" in normal_range:
        bounds = normal_range.split("-")
        low, high = parse_number(bounds[0]), parse_number(bounds[1])
        if not math.isnan(low) and not math.isnan(high):
            return number < low or number > high

    if normal_range.startswith(">"):
        return number <= parse_number(normal_range[1:])
    if normal_range.startswith("<"):
        return number >= parse_number(normal_range[1:])
    return False


def range_flag(value: str | None, normal_range: str | None) -> str:
    """``"H"`` or ``"L"`` marker for an out-of-range value, ``""`` otherwise."""
    if not is_value_out_of_range(value, normal_range):
        return ""

    number = parse_number(value)
    normal_range = normal_range or ""
    if normal_range.startswith("<"):
        return "H"
    if normal_range.startswith(">"):
        return "L"
    high = parse_number(normal_range.split("-")[1])
    return "H" if number > high else "L"


def annotate_report(report_data: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Copy of ``report_data`` with ``out_of_range`` and ``flag`` on each parameter."""
    annotated = []
    for block in report_data:
        parameters = []
        for param in block.get("parameters", []):
            value, normal_range = param.get("value"), param.get("range")
            parameters.append(
                {
                    **param,
                    "out_of_range": is_value_out_of_range(value, normal_range),
                    "flag": range_flag(value, normal_range),
                }
            )
        annotated.append({**block, "parameters": parameters})
    return annotated
