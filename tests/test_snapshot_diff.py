from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from audit_history.schemas import AuditAction, CaptureLevel
from audit_history.services.snapshot_diff import (
    UnsupportedCaptureError,
    compute_diff,
    read_code_value,
    serialize_row,
    serialize_value,
)


def test_serialize_value_renders_common_types_as_text():
    assert serialize_value(None) is None
    assert serialize_value(True) == "true"
    assert serialize_value(False) == "false"
    assert serialize_value(42) == "42"
    assert serialize_value(Decimal("10.50")) == "10.50"
    assert serialize_value(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)) == "2024-01-02T03:04:05+00:00"
    assert serialize_value(b"abc") == "abc"
    assert serialize_value(b"\xff\x00") == "ff00"
    assert serialize_value({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
    assert serialize_value(UUID("12345678-1234-5678-1234-567812345678")) == "12345678-1234-5678-1234-567812345678"


def test_insert_records_new_row_without_excluded_columns():
    diff = compute_diff(
        AuditAction.INSERT,
        CaptureLevel.ROW,
        new_row={"id": 7, "alias": "S7", "secret": "x"},
        excluded_columns=["secret"],
    )

    assert diff.statement_only is False
    assert dict(diff.row_data) == {"id": "7", "alias": "S7"}
    assert diff.changed_fields is None
    assert diff.suppressed is False
    # The anchor row keeps excluded columns so links and codes stay resolvable.
    assert diff.anchor_row["secret"] == "x"


def test_delete_records_old_row():
    diff = compute_diff(
        AuditAction.DELETE,
        CaptureLevel.ROW,
        old_row={"id": 1, "code": "M1"},
    )

    assert dict(diff.row_data) == {"id": "1", "code": "M1"}
    assert diff.changed_fields is None


def test_update_records_only_changed_fields():
    diff = compute_diff(
        AuditAction.UPDATE,
        CaptureLevel.ROW,
        old_row={"id": 7, "alias": "S7", "formula_id": 10},
        new_row={"id": 7, "alias": "S7b", "formula_id": 10},
    )

    assert dict(diff.row_data) == {"id": "7", "alias": "S7", "formula_id": "10"}
    assert dict(diff.changed_fields) == {"alias": "S7b"}
    assert diff.suppressed is False


def test_update_includes_columns_missing_from_old_row():
    diff = compute_diff(
        AuditAction.UPDATE,
        CaptureLevel.ROW,
        old_row={"id": 7},
        new_row={"id": 7, "alias": "new"},
    )

    assert dict(diff.changed_fields) == {"alias": "new"}


def test_update_touching_only_excluded_columns_is_suppressed():
    diff = compute_diff(
        AuditAction.UPDATE,
        CaptureLevel.ROW,
        old_row={"id": 7, "alias": "S7", "updated_at": "2024-01-01"},
        new_row={"id": 7, "alias": "S7", "updated_at": "2024-02-01"},
        excluded_columns={"updated_at"},
    )

    assert diff.suppressed is True
    assert diff.changed_fields is None


def test_update_with_identical_rows_is_suppressed():
    diff = compute_diff(
        AuditAction.UPDATE,
        CaptureLevel.ROW,
        old_row={"id": 7, "alias": "S7"},
        new_row={"id": 7, "alias": "S7"},
    )

    assert diff.suppressed is True


def test_excluding_unknown_column_is_a_no_op():
    diff = compute_diff(
        AuditAction.INSERT,
        CaptureLevel.ROW,
        new_row={"id": 1},
        excluded_columns=["does_not_exist"],
    )

    assert dict(diff.row_data) == {"id": "1"}


@pytest.mark.parametrize("action", list(AuditAction))
def test_statement_level_capture_has_no_payload(action):
    diff = compute_diff(action, CaptureLevel.STATEMENT)

    assert diff.statement_only is True
    assert diff.row_data is None
    assert diff.changed_fields is None


def test_row_level_truncate_is_rejected():
    with pytest.raises(UnsupportedCaptureError):
        compute_diff(AuditAction.TRUNCATE, CaptureLevel.ROW)


def test_row_level_update_without_new_row_is_rejected():
    with pytest.raises(UnsupportedCaptureError):
        compute_diff(AuditAction.UPDATE, CaptureLevel.ROW, old_row={"id": 1})


def test_compute_diff_accepts_plain_strings():
    diff = compute_diff("INSERT", "row", new_row={"id": 1})

    assert diff.action is AuditAction.INSERT


def test_read_code_value():
    snapshot = serialize_row({"id": 1, "code": "M1"})

    assert read_code_value(snapshot, "code") == "M1"
    assert read_code_value(snapshot, None) is None
    assert read_code_value(None, "code") is None
    assert read_code_value(serialize_row({"id": 1, "code": None}), "code") is None
