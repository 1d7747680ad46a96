"""Property-based tests for the YAML subscriber mirror.

Feature: subscriber-sync
"""

import os

import pytest
import structlog
import yaml
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from subsync.storage import YamlMirrorSource

log = structlog.stdlib.get_logger()

msisdns = st.text(min_size=6, max_size=12, alphabet="0123456789").map(lambda digits: "+" + digits)


def write_mirror(path, subscribers, mtime=None) -> None:
    path.write_text(yaml.safe_dump({"subscribers": subscribers}))
    if mtime is not None:
        os.utime(path, (mtime, mtime))


@given(
    entries=st.dictionaries(
        msisdns,
        st.fixed_dictionaries({"status": st.sampled_from(["ACTIVE", "SUSPENDED", "BARRED"])}),
        max_size=10,
    )
)
@settings(max_examples=30, suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_property_24_mirror_returns_every_entry_keyed_by_msisdn(tmp_path, entries):
    """Property 24: Mirror lookup.

    For any mirror file, each subscriber is returned under its MSISDN with
    the MSISDN filled into the snapshot.

    **Feature: subscriber-sync, Property 24: Mirror lookup**
    """
    log.info("test_property_24_mirror_returns_every_entry_keyed_by_msisdn", count=len(entries))
    path = tmp_path / "mirror.yaml"
    write_mirror(path, entries)
    mirror = YamlMirrorSource(str(path))

    assert set(mirror.all()) == set(entries)
    for msisdn, fields in entries.items():
        assert mirror.get(msisdn) == {**fields, "msisdn": msisdn}


def test_missing_file_has_no_subscribers(tmp_path):
    mirror = YamlMirrorSource(str(tmp_path / "absent.yaml"))
    assert mirror.get("+1234567890") is None
    assert mirror.all() == {}


def test_file_is_reloaded_when_modified(tmp_path):
    path = tmp_path / "mirror.yaml"
    write_mirror(path, {"+1234567890": {"status": "ACTIVE"}}, mtime=1_700_000_000)
    mirror = YamlMirrorSource(str(path))
    assert mirror.get("+1234567890")["status"] == "ACTIVE"

    write_mirror(path, {"+1234567890": {"status": "SUSPENDED"}}, mtime=1_700_000_100)

    assert mirror.get("+1234567890")["status"] == "SUSPENDED"


def test_returned_snapshots_are_copies(tmp_path):
    path = tmp_path / "mirror.yaml"
    write_mirror(path, {"+1234567890": {"status": "ACTIVE"}})
    mirror = YamlMirrorSource(str(path))

    mirror.get("+1234567890")["status"] = "BARRED"

    assert mirror.get("+1234567890")["status"] == "ACTIVE"


def test_malformed_document_is_rejected(tmp_path):
    path = tmp_path / "mirror.yaml"
    path.write_text("subscribers:\n  - not\n  - a mapping\n")

    with pytest.raises(ValueError, match="subscribers"):
        YamlMirrorSource(str(path)).get("+1234567890")
