"""Signature parsing and command catalogs"""

import pytest

from energy_console.common.config import DeviceKind
from energy_console.services.device.catalog import (
    CommandCatalog,
    known_catalog,
    parse_signature,
)


def test_signature_with_both_arities():
    descriptor = parse_signature("name>2<1")

    assert descriptor.name == "name"
    assert descriptor.output_arity == 2
    assert descriptor.input_arity == 1
    assert descriptor.signature == "name>2<1"


@pytest.mark.parametrize(
    "line, expected",
    [
        # (line, (name, input_arity, output_arity))
        ("getKW>1", ("getKW", 0, 1)),
        ("setLoad<1", ("setLoad", 1, 0)),
        ("EPr>1<1", ("EPr", 1, 1)),
        ("EPw>2", ("EPw", 0, 2)),
        ("init", ("init", 0, 0)),
        ("  getAll>7  ", ("getAll", 0, 7)),
        ("_raw<3>4", ("_raw", 3, 4)),
    ],
)
def test_signature_table(line, expected):
    descriptor = parse_signature(line)
    assert (descriptor.name, descriptor.input_arity, descriptor.output_arity) == expected


@pytest.mark.parametrize("line", ["", "   ", "<3", ">1", "9lives"])
def test_signature_without_identifier(line):
    assert parse_signature(line) is None


def test_first_signature_wins():
    catalog = CommandCatalog.from_signatures(["getKW>1", "getKW>3", "eoc", "setLoad<1"])

    assert catalog.names() == ["getKW", "setLoad"]
    assert catalog.get("getKW").output_arity == 1
    assert "eoc" not in catalog


def test_mutating_commands():
    catalog = CommandCatalog.from_signatures(["setLoad<1", "SetVolts<1", "getKW>1"])

    assert catalog.get("setLoad").is_mutating
    assert catalog.get("SetVolts").is_mutating
    assert not catalog.get("getKW").is_mutating


def test_to_list_keeps_raw_signature():
    catalog = CommandCatalog.from_signatures(["EPr>1<1", "init"])

    assert catalog.to_list() == [
        {"name": "EPr", "input_arity": 1, "output_arity": 1, "signature": "EPr>1<1"},
        {"name": "init", "input_arity": 0, "output_arity": 0, "signature": "init"},
    ]


def test_built_in_catalogs():
    generator = known_catalog(DeviceKind.GENERATOR)
    assert generator.get("setLoad").input_arity == 1
    assert generator.get("getAll").output_arity == 7

    house = known_catalog(DeviceKind.HOUSE_LOAD)
    assert house.get("EPr").input_arity == 1
    assert house.get("EPr").output_arity == 1

    assert known_catalog(DeviceKind.FAN) is None
    assert known_catalog(DeviceKind.UNKNOWN) is None
