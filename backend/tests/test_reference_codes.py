from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor

import pytest

from storyprint.core.snowflake import (
    ReferenceCodeGenerator,
    Snowflake,
    generate_id,
    generate_reference_code,
    verify_reference_code,
)

_FORMAT = re.compile(r"^SPH-[0-9A-Z]+-[0-9A-F]{8}-[0-9A-F]{4}-[0-9A-Z]+-[0-9A-F]{4}$")


def test_reference_code_format_and_checksum():
    code = generate_reference_code()
    assert _FORMAT.match(code), code
    assert verify_reference_code(code)


def test_tampered_reference_code_fails_checksum():
    code = generate_reference_code()
    body, _, check = code.rpartition("-")
    other = "0000" if check != "0000" else "FFFF"
    assert not verify_reference_code(f"{body}-{other}")
    assert not verify_reference_code("XX-" + code[4:])
    assert not verify_reference_code("garbage")


def test_reference_codes_unique_across_threads():
    gen = ReferenceCodeGenerator()
    with ThreadPoolExecutor(max_workers=8) as pool:
        codes = list(pool.map(lambda _: gen.generate(), range(2000)))
    assert len(set(codes)) == len(codes)


def test_snowflake_ids_are_unique_and_increasing():
    ids = [generate_id() for _ in range(5000)]
    assert len(set(ids)) == len(ids)
    assert ids == sorted(ids)


def test_snowflake_rejects_invalid_node():
    with pytest.raises(ValueError):
        Snowflake(node_id=1024)
