"""Unit tests verifying the business logic layer with a mocked data access layer."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from pos_engine import constants, core_logic, data_manager
from pos_engine.cash_session import open_cash_session
from pos_engine.checkout import CheckoutError
from pos_engine.suggestions import UpsellSuggestion

from conftest import OPENED_AT, SAMPLE_PRODUCTS, TODAY, make_promotion


CHECKOUT_AT = datetime(2026, 10, 16, 10, 0, 0, tzinfo=UTC)


@pytest.fixture
def catalog_context(monkeypatch, context):
    """Context whose DAL readers serve the sample catalog and one open session."""

    session = open_cash_session(Decimal("50000"), "W1", when=OPENED_AT)
    monkeypatch.setattr(data_manager, "iter_products", Mock(return_value=list(SAMPLE_PRODUCTS)))
    monkeypatch.setattr(data_manager, "iter_promotions", Mock(return_value=[make_promotion()]))
    monkeypatch.setattr(
        data_manager,
        "iter_customers",
        Mock(return_value=[data_manager.CustomerRow("1", "Consumidor Final")]),
    )
    monkeypatch.setattr(data_manager, "iter_cash_sessions", Mock(return_value=[session]))
    monkeypatch.setattr(data_manager, "iter_invoices", Mock(return_value=[]))
    return context


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path):
    """load_runtime_context should assemble settings and workbook into a context."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    parsed_settings = data_manager.ConfigSettings(
        data_file=tmp_path / "pos.xlsx",
        store_name="Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        warehouse_id="W1",
        walk_in_customer_id="1",
    )
    workbook = Mock(name="workbook")

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=parsed_settings)
    open_workbook = Mock(return_value=workbook)

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "open_workbook", open_workbook)

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is parsed_settings
    assert context.workbook is workbook
    find_config_file.assert_called_once_with(config_path)
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    open_workbook.assert_called_once_with(parsed_settings.data_file)


def test_ensure_schema_version_rejects_mismatch(context):
    bad_settings = replace(context.settings, schema_version="0.9")
    bad_context = core_logic.RuntimeContext(settings=bad_settings, workbook=context.workbook)
    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(bad_context)


def test_list_products_is_cached(monkeypatch, context):
    iter_mock = Mock(return_value=list(SAMPLE_PRODUCTS))
    monkeypatch.setattr(data_manager, "iter_products", iter_mock)

    first = core_logic.list_products(context)
    second = core_logic.list_products(context)

    assert first == second == list(SAMPLE_PRODUCTS)
    assert first is not second
    iter_mock.assert_called_once_with(context.workbook)


def test_list_sellable_products_uses_terminal_warehouse(catalog_context):
    result = core_logic.list_sellable_products(catalog_context)

    assert [row.product_id for row in result] == ["P1", "P2", "P4"]
    assert [row.product_id for row in core_logic.list_sellable_products(catalog_context, "W2")] == ["P3"]


def test_list_categories_starts_with_all(catalog_context):
    assert core_logic.list_categories(catalog_context) == ["all", "Alimentos", "Accesorios"]


def test_browse_catalog_combines_search_and_category(catalog_context):
    by_name = core_logic.browse_catalog(catalog_context, "SNACK")
    by_id = core_logic.browse_catalog(catalog_context, "p2")
    in_category = core_logic.browse_catalog(catalog_context, "", "Alimentos")
    nothing = core_logic.browse_catalog(catalog_context, "collar", "Alimentos")

    assert [row.product_id for row in by_name] == ["P4"]
    assert [row.product_id for row in by_id] == ["P2"]
    assert [row.product_id for row in in_category] == ["P1", "P4"]
    assert nothing == []


def test_list_promotions_can_filter_by_day(monkeypatch, context):
    expired = make_promotion("OLD", start_date=TODAY.replace(year=2020), end_date=TODAY.replace(year=2021))
    current = make_promotion()
    monkeypatch.setattr(data_manager, "iter_promotions", Mock(return_value=[expired, current]))

    assert core_logic.list_promotions(context) == [expired, current]
    assert core_logic.list_promotions(context, active_on=TODAY) == [current]


def test_get_product_unknown_raises(catalog_context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.get_product(catalog_context, "NOPE")


def test_get_customer_resolves_and_rejects(catalog_context):
    assert core_logic.get_customer(catalog_context, "1").customer_name == "Consumidor Final"
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.get_customer(catalog_context, "C-404")


def test_active_cash_session_matches_terminal_warehouse(catalog_context):
    session = core_logic.active_cash_session(catalog_context)

    assert session is not None
    assert session.warehouse_id == "W1"


def test_open_session_appends_row_and_invalidates_cache(monkeypatch, context):
    monkeypatch.setattr(data_manager, "iter_cash_sessions", Mock(return_value=[]))
    append_mock = Mock()
    monkeypatch.setattr(data_manager, "append_cash_session", append_mock)
    core_logic.list_cash_sessions(context)

    session = core_logic.open_session(context, Decimal("20000"), when=OPENED_AT)

    append_mock.assert_called_once_with(context.workbook, session)
    assert "cash_sessions" not in context._cache
    assert session.opening_balance == Decimal("20000")


def test_open_session_rejects_negative_float(monkeypatch, context):
    monkeypatch.setattr(data_manager, "iter_cash_sessions", Mock(return_value=[]))
    with pytest.raises(ValueError):
        core_logic.open_session(context, Decimal("-5"))


def test_open_session_refuses_when_one_is_open(catalog_context):
    with pytest.raises(core_logic.SessionStateError):
        core_logic.open_session(catalog_context, Decimal("0"))


def test_close_session_without_open_session_raises(monkeypatch, context):
    monkeypatch.setattr(data_manager, "iter_cash_sessions", Mock(return_value=[]))
    with pytest.raises(core_logic.SessionStateError):
        core_logic.close_session(context, {})


def test_close_session_updates_row(monkeypatch, catalog_context):
    update_mock = Mock()
    append_closing = Mock()
    monkeypatch.setattr(data_manager, "update_cash_session", update_mock)
    monkeypatch.setattr(data_manager, "append_cash_closing", append_closing)
    closed_at = datetime(2026, 10, 16, 21, 0, tzinfo=UTC)
    core_logic.list_cash_sessions(catalog_context)

    closing = core_logic.close_session(
        catalog_context,
        {constants.PaymentMethod.CASH: Decimal("50000")},
        when=closed_at,
    )

    assert closing.balanced
    update_mock.assert_called_once_with(
        catalog_context.workbook,
        closing.session_id,
        field_values={"ClosedAt": closed_at.isoformat(), "Status": "closed"},
    )
    append_closing.assert_called_once_with(catalog_context.workbook, closing)
    assert closing.closed_at_iso == closed_at.isoformat()
    assert "cash_sessions" not in catalog_context._cache


def test_list_cash_closings_is_cached(monkeypatch, context):
    closing = Mock(session_id="CS1")
    iter_mock = Mock(return_value=[closing])
    monkeypatch.setattr(data_manager, "iter_cash_closings", iter_mock)

    assert core_logic.list_cash_closings(context) == [closing]
    assert core_logic.list_cash_closings(context) == [closing]
    iter_mock.assert_called_once_with(context.workbook)


def test_session_total_requires_open_session(monkeypatch, context):
    monkeypatch.setattr(data_manager, "iter_cash_sessions", Mock(return_value=[]))
    with pytest.raises(core_logic.SessionStateError):
        core_logic.session_total(context)


def test_record_invoice_refuses_duplicate_id(monkeypatch, context):
    existing = Mock(invoice_id="INV-1")
    monkeypatch.setattr(data_manager, "iter_invoices", Mock(return_value=[existing]))
    append_mock = Mock()
    monkeypatch.setattr(data_manager, "append_invoice", append_mock)

    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.record_invoice(context, Mock(invoice_id="INV-1"))
    append_mock.assert_not_called()


def test_start_terminal_uses_settings(catalog_context):
    terminal = core_logic.start_terminal(catalog_context, clock=lambda: TODAY)

    assert terminal.active_bill.customer_id == catalog_context.settings.walk_in_customer_id
    assert terminal.vat_rate == catalog_context.settings.vat_rate
    assert set(terminal.catalog) == {"P1", "P2", "P3", "P4"}


def test_start_advisor_uses_configured_debounce_and_sellable_catalog(catalog_context):
    tuned = core_logic.RuntimeContext(
        settings=replace(catalog_context.settings, suggestion_debounce=0.25),
        workbook=catalog_context.workbook,
    )

    advisor = core_logic.start_advisor(tuned, AsyncMock(), Mock())

    assert advisor.debounce == 0.25
    assert [row.product_id for row in advisor.products] == ["P1", "P2", "P4"]


def test_start_advisor_delivers_suggestion_for_terminal_cart(catalog_context):
    received = []
    fetch = AsyncMock(return_value=UpsellSuggestion("Lleva el snack", "P4"))
    instant = core_logic.RuntimeContext(
        settings=replace(catalog_context.settings, suggestion_debounce=0),
        workbook=catalog_context.workbook,
    )
    terminal = core_logic.start_terminal(instant, clock=lambda: TODAY)
    terminal.add_product_by_id(terminal.active_bill.bill_id, "P1")

    async def scenario():
        advisor = core_logic.start_advisor(instant, fetch, received.append)
        await advisor.cart_changed(terminal.active_bill.items)

    asyncio.run(scenario())

    assert received == [UpsellSuggestion("Lleva el snack", "P4")]
    fetch.assert_awaited_once()


def test_checkout_bill_records_invoice_through_dal(monkeypatch, catalog_context):
    append_mock = Mock()
    monkeypatch.setattr(data_manager, "append_invoice", append_mock)
    terminal = core_logic.start_terminal(catalog_context, clock=lambda: TODAY)
    bill_id = terminal.active_bill.bill_id
    terminal.add_product_by_id(bill_id, "P1")
    terminal.add_product_by_id(bill_id, "P1")

    result = core_logic.checkout_bill(
        catalog_context,
        terminal,
        constants.PaymentMethod.CASH,
        Decimal("100000"),
        when=CHECKOUT_AT,
    )

    assert result.ok
    assert result.invoice.total == Decimal("85680")
    assert result.invoice.warehouse_id == "W1"
    append_mock.assert_called_once_with(catalog_context.workbook, result.invoice)


def test_checkout_bill_rejection_writes_nothing(monkeypatch, catalog_context):
    append_mock = Mock()
    monkeypatch.setattr(data_manager, "append_invoice", append_mock)
    terminal = core_logic.start_terminal(catalog_context, clock=lambda: TODAY)
    terminal.add_product_by_id(terminal.active_bill.bill_id, "P2")

    result = core_logic.checkout_bill(catalog_context, terminal, constants.PaymentMethod.CASH, Decimal("100"))

    assert result.error is CheckoutError.INSUFFICIENT_FUNDS
    append_mock.assert_not_called()


def test_require_positive_quantity_rejects_zero():
    with pytest.raises(ValueError):
        core_logic.require_positive_quantity(Decimal("0"))


def test_require_nonnegative_money_rejects_negative():
    with pytest.raises(ValueError):
        core_logic.require_nonnegative_money(Decimal("-0.01"))


def test_persist_context_saves_to_configured_path(monkeypatch, context):
    save_mock = Mock()
    monkeypatch.setattr(data_manager, "save_workbook", save_mock)

    core_logic.persist_context(context)

    save_mock.assert_called_once_with(context.workbook, destination=context.settings.data_file)


def test_refresh_context_returns_fresh_cache(monkeypatch, context):
    fresh_workbook = Mock(name="fresh")
    monkeypatch.setattr(data_manager, "refresh_workbook", Mock(return_value=fresh_workbook))
    context._cache["products"] = {"all": []}

    refreshed = core_logic.refresh_context(context)

    assert refreshed.workbook is fresh_workbook
    assert refreshed._cache == {}
    assert refreshed.settings is context.settings
