"""Tests for excluding devices by configured tokens."""
from __future__ import annotations

import dataclasses

import pytest

from smartctl_tap.exclusion import find_exclusion, is_excluded
from smartctl_tap.metadata import DeviceMetadata

BASE = DeviceMetadata(device_token="tok", device_path="/p")


@pytest.mark.parametrize(
    "field,value",
    [
        ("device_token", "/dev/sdq"),
        ("device_path", "/dev/sdq"),
        ("serial", "XSDQX"),
        ("model", "Model SDQ"),
        ("name", "name-sdq"),
        ("info_name", "info sdq"),
        ("open_device", "open/sdq"),
        ("platform_device_id", "\\\\.\\SDQ"),
        ("platform_friendly_name", "Friendly sdq"),
        ("volume_labels", ("C:", "SdQ-volume")),
    ],
)
def test_token_matches_every_field(field, value):
    metadata = dataclasses.replace(BASE, **{field: value})

    assert is_excluded(metadata, ["sdq"]) is True


def test_match_is_case_insensitive_substring():
    metadata = dataclasses.replace(BASE, model="Samsung SSD 870 EVO")

    assert is_excluded(metadata, ["ssd 870"]) is True
    assert is_excluded(metadata, ["ssd 860"]) is False


def test_empty_token_list_excludes_nothing():
    metadata = dataclasses.replace(BASE, model="anything")

    assert is_excluded(metadata, []) is False
    assert is_excluded(metadata, ["", "   "]) is False


def test_firmware_and_type_are_not_searched():
    metadata = dataclasses.replace(BASE, firmware="FW123", type_argument="sat")

    assert is_excluded(metadata, ["FW123"]) is False
    assert is_excluded(metadata, ["sat"]) is False


def test_find_exclusion_reports_token():
    metadata = dataclasses.replace(BASE, serial="S-1")

    assert find_exclusion(metadata, ["nope", "s-1"]) == "s-1"
