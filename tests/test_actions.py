import pytest

from recordview.services.actions import (
    DELETE_CONFIRMATION,
    NO_SELECTION_MESSAGE,
    ActionDescriptor,
    ActionDispatcher,
    ActionMode,
    bulk_delete_action,
    coerce_actions,
    default_actions,
    merge_additive,
    normalize_result,
)
from recordview.services.exceptions import ActionError, BuilderError
from recordview.services.request_context import RequestContext

from tests.mocks import FakeDataSource


def _context(action: str | None, ids: str = "") -> RequestContext:
    return RequestContext.from_params({"table_action": action, "table_ids": ids}, "bookings")


def _dispatch(context, actions=(), bulk_actions=(), data_source=None, filters=None):
    return ActionDispatcher("bookings").dispatch(
        context,
        list(actions),
        list(bulk_actions),
        data_source or FakeDataSource(["1", "2", "3"]),
        filters=filters,
    )


def test_descriptor_requires_exactly_one_target():
    with pytest.raises(BuilderError):
        ActionDescriptor(label="Edit")
    with pytest.raises(BuilderError):
        ActionDescriptor(label="Edit", link="?id=%id%", callback=lambda records, ctx: None)


def test_descriptor_derives_key_and_mode():
    action = ActionDescriptor(label="Mark Paid", callback=lambda records, ctx: None, mode="batch")

    assert action.key == "mark_paid"
    assert action.mode is ActionMode.batch
    assert action.kind == "callback"
    with pytest.raises(BuilderError):
        ActionDescriptor(label="Bad", callback=lambda records, ctx: None, mode="parallel")


def test_coerce_actions_accepts_dicts_and_rejects_duplicates():
    actions = coerce_actions([{"label": "Edit", "link": "?id=%id%"}])

    assert actions[0].key == "edit"
    with pytest.raises(BuilderError):
        coerce_actions([{"label": "Edit", "link": "?a"}, {"label": "Edit", "link": "?b"}])


def test_visibility_requires_every_condition():
    action = ActionDescriptor(
        label="Refund",
        callback=lambda records, ctx: None,
        show_if_filter={"status": "cancelled", "paid": "1"},
    )

    assert action.visible_for({"status": "cancelled", "paid": "1"}) is True
    assert action.visible_for({"status": "cancelled"}) is False
    assert ActionDescriptor(label="Any", link="?x").visible_for({}) is True


def test_no_pending_action_is_a_no_op():
    result = _dispatch(_context(None), default_actions("bookings"))

    assert result.executed is False
    assert result.action is None


def test_link_action_substitutes_placeholders():
    source = FakeDataSource(["1", "2"])

    result = _dispatch(_context("edit", "2,1"), default_actions("bookings"), data_source=source)

    assert result.executed is True
    assert result.response == {
        "links": [
            "?page=bookings&action=edit&id=2",
            "?page=bookings&action=edit&id=1",
        ]
    }


def test_row_callback_result_is_normalized():
    calls = []

    def _archive(records, context):
        calls.append([record["id"] for record in records])
        context.success("Archived")
        return True

    action = ActionDescriptor(label="Archive", callback=_archive)

    result = _dispatch(_context("archive", "3"), [action])

    assert calls == [["3"]]
    assert result.response == {"success": True}
    assert [(m.level, m.text) for m in result.messages] == [("success", "Archived")]


def test_row_action_is_matched_before_bulk_action():
    row = ActionDescriptor(label="Touch", callback=lambda records, ctx: {"row": True})
    bulk = ActionDescriptor(label="Touch", callback=lambda records, ctx: {"bulk": True})

    result = _dispatch(_context("touch", "1"), [row], [bulk])

    assert result.response == {"row": True}
    assert result.bulk_outcome is None


def test_hidden_action_does_not_run():
    calls = []
    action = ActionDescriptor(
        label="Refund",
        callback=lambda records, ctx: calls.append(records),
        show_if_filter={"status": "cancelled"},
    )

    result = _dispatch(_context("refund", "1"), [action], filters={"status": "confirmed"})

    assert result.executed is False
    assert calls == []


def test_unknown_action_is_ignored():
    assert _dispatch(_context("explode", "1"), default_actions("bookings")).executed is False


def test_bulk_action_without_selection_reports_error():
    calls = []
    bulk = ActionDescriptor(label="Confirm", callback=lambda records, ctx: calls.append(records))

    result = _dispatch(_context("confirm"), bulk_actions=[bulk])

    assert result.executed is False
    assert calls == []
    assert [(m.level, m.text) for m in result.messages] == [("error", NO_SELECTION_MESSAGE)]


def test_single_mode_halts_at_first_failure():
    source = FakeDataSource(["1", "2", "3"], fail_on={"2"})

    result = _dispatch(_context("delete_selected", "1,2,3"), bulk_actions=[bulk_delete_action()], data_source=source)

    assert source.deleted == ["1"]
    assert "3" in source.records
    assert result.bulk_outcome.succeeded == ["1"]
    assert result.bulk_outcome.failed_id == "2"
    assert result.bulk_outcome.error == "Record 2 is locked"
    assert result.bulk_outcome.ok is False
    assert result.response == {"deleted": 1}
    assert [(m.level, m.text) for m in result.messages] == [("error", "Record 2 is locked")]


def test_single_mode_stops_on_unresolved_record():
    source = FakeDataSource(["1", "3"])
    bulk = ActionDescriptor(label="Confirm", callback=lambda records, ctx: {"confirmed": 1})

    result = _dispatch(_context("confirm", "1,2,3"), bulk_actions=[bulk], data_source=source)

    assert source.lookups == ["1", "2"]
    assert result.bulk_outcome.succeeded == ["1"]
    assert result.bulk_outcome.failed_id == "2"
    assert result.response == {"confirmed": 1}


def test_single_mode_merges_results_additively():
    def _confirm(records, context):
        return {"confirmed": 1, "titles": [records[0]["title"]]}

    bulk = ActionDescriptor(label="Confirm", callback=_confirm)

    result = _dispatch(_context("confirm", "1,2,3"), bulk_actions=[bulk])

    assert result.response == {
        "confirmed": 3,
        "titles": ["Record 1", "Record 2", "Record 3"],
    }
    assert result.bulk_outcome.ok is True
    assert result.bulk_outcome.succeeded == ["1", "2", "3"]


def test_single_mode_action_error_marks_failed_id():
    def _confirm(records, context):
        if records[0]["id"] == "3":
            raise ActionError("Booking 3 overlaps another booking")
        return {"confirmed": 1}

    bulk = ActionDescriptor(label="Confirm", callback=_confirm)

    result = _dispatch(_context("confirm", "1,2,3"), bulk_actions=[bulk])

    assert result.bulk_outcome.succeeded == ["1", "2"]
    assert result.bulk_outcome.failed_id == "3"
    assert result.bulk_outcome.error == "Booking 3 overlaps another booking"


def test_batch_mode_calls_once_with_all_records():
    calls = []

    def _export(records, context):
        calls.append([record["id"] for record in records])
        context.info("Exported")
        return {"count": len(records)}

    bulk = ActionDescriptor(label="Export", callback=_export, mode=ActionMode.batch, update_table=False)

    result = _dispatch(_context("export", "3,1"), bulk_actions=[bulk])

    assert calls == [["3", "1"]]
    assert result.response == {"count": 2}
    assert result.update_table is False
    assert result.bulk_outcome.succeeded == ["3", "1"]


def test_batch_mode_failure_covers_whole_selection():
    def _export(records, context):
        raise ActionError("Export service unavailable")

    bulk = ActionDescriptor(label="Export", callback=_export, mode="batch")

    result = _dispatch(_context("export", "1,2"), bulk_actions=[bulk])

    assert result.bulk_outcome.failed_id is None
    assert result.bulk_outcome.error == "Export service unavailable"
    assert result.bulk_outcome.succeeded == []


def test_default_delete_removes_records_in_order():
    source = FakeDataSource(["1", "2", "3"])

    result = _dispatch(_context("delete", "3,1"), default_actions("bookings"), data_source=source)

    assert source.deleted == ["3", "1"]
    assert result.response == {"success": True, "deleted": 2}
    assert [m.text for m in result.messages] == ["Item deleted successfully"] * 2


def test_default_delete_stops_at_first_failure():
    source = FakeDataSource(["1", "2", "3"], fail_on={"2"})

    result = _dispatch(_context("delete", "1,2,3"), default_actions("bookings"), data_source=source)

    assert source.deleted == ["1"]
    assert "3" in source.records
    assert result.response == {"success": False, "deleted": 1}
    assert [(m.level, m.text) for m in result.messages] == [
        ("success", "Item deleted successfully"),
        ("error", "Record 2 is locked"),
    ]


def test_default_delete_without_selection_reports_error():
    result = _dispatch(_context("delete"), default_actions("bookings"))

    assert result.response == {"success": False, "deleted": 0}
    assert [m.text for m in result.messages] == [NO_SELECTION_MESSAGE]


def test_default_actions_shape():
    edit, delete = default_actions("bookings")

    assert edit.kind == "link"
    assert delete.confirm == DELETE_CONFIRMATION
    assert bulk_delete_action().key == "delete_selected"


def test_normalize_result():
    assert normalize_result(None) == {}
    assert normalize_result(False) == {"success": False}
    assert normalize_result({"a": 1}) == {"a": 1}
    assert normalize_result(["x"]) == {"function_results": ["x"]}


def test_merge_additive():
    target = {"count": 1, "ids": [1], "flag": True, "name": "a"}

    merge_additive(target, {"count": 2, "ids": [2], "flag": True, "name": "b"})

    assert target == {"count": 3, "ids": [1, 2], "flag": True, "name": "b"}
