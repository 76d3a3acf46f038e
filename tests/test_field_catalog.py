from types import SimpleNamespace

import pytest

from recordview.config import settings
from recordview.models.booking import Booking, Resource
from recordview.services.exceptions import BuilderError
from recordview.services.field_catalog import (
    FieldCatalog,
    FieldConfigurator,
    FieldDescriptor,
    FieldType,
    ModelRuleSource,
    default_label,
)


def _catalog(*keys: str) -> FieldCatalog:
    return FieldCatalog([FieldDescriptor(key=key, label=default_label(key)) for key in keys], widget_id="t")


def _configurator(catalog: FieldCatalog, key: str) -> FieldConfigurator:
    return FieldConfigurator(SimpleNamespace(catalog=catalog, settings=settings), key)


def test_model_rules_follow_column_order_and_overrides():
    catalog = FieldCatalog.from_rule_source(ModelRuleSource(Booking), widget_id="bookings")

    assert catalog.keys() == [
        "id",
        "resource_id",
        "title",
        "status",
        "starts_at",
        "ends_at",
        "is_paid",
        "amount",
        "attachments",
        "resource.name",
    ]
    assert catalog.require("resource_id").hidden is True
    assert catalog.require("resource_id").label == "Resource"
    assert catalog.require("starts_at").field_type is FieldType.datetime
    assert catalog.require("attachments").field_type is FieldType.file
    assert catalog.require("attachments").sortable is False
    assert catalog.require("resource.name").label == "Room"
    assert catalog.require("resource.name").is_path is True


def test_model_rules_derive_select_options():
    catalog = FieldCatalog.from_rule_source(ModelRuleSource(Booking))

    assert catalog.require("status").options == {
        "pending": "Pending",
        "confirmed": "Confirmed",
        "cancelled": "Cancelled",
    }
    assert catalog.require("is_paid").options == {True: "Yes", False: "No"}


def test_edit_scope_keeps_list_excluded_fields():
    rules = ModelRuleSource(Booking).get_rules("edit")

    assert "notes" in [rule.key for rule in rules]


def test_model_without_overrides_uses_defaults():
    catalog = FieldCatalog.from_rule_source(ModelRuleSource(Resource))

    assert catalog.keys() == ["id", "name", "location", "is_active"]
    assert catalog.require("is_active").label == "Is Active"


def test_duplicate_key_is_rejected():
    catalog = _catalog("title")

    with pytest.raises(BuilderError):
        catalog.add(FieldDescriptor(key="title", label="Again"))


@pytest.mark.parametrize("key", ["", "   "])
def test_blank_key_is_rejected(key):
    with pytest.raises(BuilderError):
        _catalog().ensure(key)


def test_ensure_declares_virtual_field_once():
    catalog = _catalog("title")

    first = catalog.ensure("duration")
    second = catalog.ensure("duration")

    assert first is second
    assert first.virtual is True
    assert catalog.ensure("resource.name").virtual is False


def test_locked_catalog_rejects_changes():
    catalog = _catalog("title")
    catalog.lock()

    with pytest.raises(BuilderError):
        catalog.configure("title", label="Name")
    with pytest.raises(BuilderError):
        catalog.delete("title")
    with pytest.raises(BuilderError):
        catalog.add(FieldDescriptor(key="other", label="Other"))


def test_reorder_moves_named_fields_first():
    catalog = _catalog("id", "title", "status", "amount")

    catalog.reorder(["status", "title"])

    assert catalog.keys() == ["status", "title", "id", "amount"]


def test_reorder_unknown_field_raises():
    with pytest.raises(BuilderError):
        _catalog("id").reorder(["missing"])


def test_sort_target_honours_mapping_and_sortability():
    catalog = _catalog("title", "resource.name", "attachments")
    catalog.configure("resource.name", sort_mapping="resource.location")
    catalog.configure("attachments", sortable=False)

    assert catalog.sort_target("title") == "title"
    assert catalog.sort_target("resource.name") == "resource.location"
    assert catalog.sort_target("attachments") is None
    assert catalog.sort_target("undeclared") is None


def test_relation_names_are_unique_and_ordered():
    catalog = _catalog("resource.name", "title", "resource.location", "owner.email")

    assert catalog.path_keys() == ["resource.name", "resource.location", "owner.email"]
    assert catalog.relation_names() == ["resource", "owner"]


def test_configurator_chain_applies_to_current_field_only():
    catalog = _catalog("title", "status")

    _configurator(catalog, "title").label("Booking").truncate(10).field("status").hide()

    title = catalog.require("title")
    assert title.label == "Booking"
    assert title.truncate.length == 10
    assert title.truncate.suffix == settings.truncate_suffix
    assert title.hidden is False
    assert catalog.require("status").hidden is True


def test_configurator_rejects_non_callable_formatter():
    with pytest.raises(BuilderError):
        _configurator(_catalog("title"), "title").format("upper")


def test_configurator_type_accepts_strings():
    catalog = _catalog("when")

    _configurator(catalog, "when").type("Date")

    assert catalog.require("when").field_type is FieldType.date
    with pytest.raises(BuilderError):
        _configurator(catalog, "when").type("colour")


def test_link_renders_href_and_text():
    catalog = _catalog("name")

    _configurator(catalog, "name").link("?page=rooms&id=%id%")
    descriptor = catalog.require("name")

    assert descriptor.field_type is FieldType.html
    assert descriptor.formatter({"id": 7, "name": "Room A"}) == {
        "href": "?page=rooms&id=7",
        "text": "Room A",
    }


def test_show_if_filter_controls_visibility():
    catalog = _catalog("refund")

    _configurator(catalog, "refund").show_if_filter(status="cancelled")
    descriptor = catalog.require("refund")

    assert descriptor.visible_for({"status": "cancelled"}) is True
    assert descriptor.visible_for({"status": "confirmed"}) is False
    assert descriptor.visible_for({}) is False
