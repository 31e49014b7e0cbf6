import json

from app.importer import migrate_from_legacy
from app.models import Mapping
from app.service import get_active_target, get_mapping
from tests.conftest import FakeLegacySource


def _value(**fields) -> str:
    return json.dumps(fields)


def test_imports_valid_records_and_skips_invalid(db):
    source = FakeLegacySource({
        "alpha": _value(target="https://example.com/a", name="Alpha"),
        "beta": _value(target="https://example.com/b", enabled=False),
        "gamma": _value(target="not a url"),
    })

    report = migrate_from_legacy(db, source, page_size=2)

    assert report.imported == 2
    assert list(report.failed) == ["gamma"]
    assert {m.path for m in db.query(Mapping)} == {"alpha", "beta"}
    assert get_mapping(db, "alpha").name == "Alpha"
    assert get_mapping(db, "beta").enabled is False
    assert source.scan_calls == 2


def test_fields_mapped_one_to_one(db):
    source = FakeLegacySource({
        "wx": _value(
            target="https://example.com/wx",
            name="WeChat group",
            expiry="2099-01-01T00:00:00Z",
            enabled=True,
            isWechat=True,
            qrCodeData="RAW",
        ),
    })

    migrate_from_legacy(db, source)

    row = get_mapping(db, "wx")
    assert row.is_wechat is True
    assert row.qr_code_data == "RAW"
    assert row.expiry.year == 2099
    assert get_active_target(db, "wx") == "https://example.com/wx"


def test_reserved_and_empty_keys_are_skipped(db):
    source = FakeLegacySource({
        "admin": _value(target="https://example.com/admin"),
        "favicon.svg": _value(target="https://example.com/icon"),
        "ok": _value(target="https://example.com/ok"),
    })
    source.data["empty"] = None

    report = migrate_from_legacy(db, source)

    assert report.imported == 1
    assert report.skipped == 3
    assert report.failed == {}
    assert {m.path for m in db.query(Mapping)} == {"ok"}


def test_bad_records_do_not_abort_the_run(db):
    source = FakeLegacySource(
        {
            "a": "{not json",
            "b": json.dumps(["not", "an", "object"]),
            "c": _value(target="https://example.com", isWechat=True),
            "d": _value(target="https://example.com", expiry="someday"),
            "e": _value(target="https://example.com/e"),
            "f": _value(target="https://example.com/f"),
        },
        broken={"e"},
    )

    report = migrate_from_legacy(db, source, page_size=4)

    assert report.imported == 1
    assert set(report.failed) == {"a", "b", "c", "d", "e"}
    assert {m.path for m in db.query(Mapping)} == {"f"}


def test_rerun_reports_conflicts_without_changes(db):
    source = FakeLegacySource({
        "one": _value(target="https://example.com/1"),
        "two": _value(target="https://example.com/2"),
    })
    migrate_from_legacy(db, source)

    source.data["one"] = _value(target="https://example.com/changed")
    report = migrate_from_legacy(db, source)

    assert report.imported == 0
    assert set(report.failed) == {"one", "two"}
    assert get_mapping(db, "one").target == "https://example.com/1"


def test_non_string_fields_fail_only_their_record(db):
    source = FakeLegacySource({
        "a": json.dumps({"target": "https://example.com/a", "name": {"zh": "x"}}),
        "b": json.dumps({"target": "https://example.com/b"}),
        "c": json.dumps({"target": "https://example.com/c", "isWechat": True, "qrCodeData": ["raw"]}),
    })

    report = migrate_from_legacy(db, source)

    assert report.imported == 1
    assert set(report.failed) == {"a", "c"}
    assert {m.path for m in db.query(Mapping)} == {"b"}


def test_non_boolean_flags_are_rejected(db):
    source = FakeLegacySource({
        "off": _value(target="https://example.com/off", enabled="false"),
        "wx": _value(target="https://example.com/wx", isWechat="yes", qrCodeData="RAW"),
        "nulls": _value(target="https://example.com/n", enabled=None, isWechat=None),
    })

    report = migrate_from_legacy(db, source)

    assert set(report.failed) == {"off", "wx"}
    assert db.get(Mapping, "off") is None
    row = get_mapping(db, "nulls")
    assert row.enabled is True
    assert row.is_wechat is False
