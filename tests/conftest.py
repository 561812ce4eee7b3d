"""Shared pytest fixtures and utilities for POS engine tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from pos_engine import cli, constants, core_logic, data_manager  # noqa: E402
from pos_engine.cash_session import open_cash_session  # noqa: E402
from pos_engine.tabs import TerminalSession  # noqa: E402
from setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_WAREHOUSE_ID = "W1"
DEFAULT_WALK_IN_ID = "1"
TODAY = date(2026, 10, 16)
OPENED_AT = datetime(2026, 10, 16, 8, 0, 0, tzinfo=UTC)

_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Terminal]\n"
    "WarehouseID = {warehouse_id}\n\n"
    "[Defaults]\n"
    "WalkInCustomer = {walk_in_customer_id}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    walk_in_customer_id: str
    warehouse_id: str
    schema_version: str
    store_name: str


def make_product(
    product_id: str = "P1",
    product_name: str = "Concentrado Premium",
    unit_price: str = "40000",
    category: str = "Alimentos",
    *,
    unit_cost: str = "30000",
    stock: dict[str, str] | None = None,
) -> data_manager.ProductRow:
    """Build a catalog product; stock defaults to 10 units in ``W1``."""

    levels = stock if stock is not None else {DEFAULT_WAREHOUSE_ID: "10"}
    return data_manager.ProductRow(
        product_id=product_id,
        product_name=product_name,
        unit_price=Decimal(unit_price),
        unit_cost=Decimal(unit_cost),
        category=category,
        stock_by_warehouse={warehouse: Decimal(quantity) for warehouse, quantity in levels.items()},
    )


def make_promotion(
    promotion_id: str = "PR1",
    name: str = "10% Alimentos",
    *,
    target_type: constants.PromotionTarget = constants.PromotionTarget.CATEGORY,
    target_value: str = "Alimentos",
    discount_kind: constants.DiscountKind = constants.DiscountKind.PERCENTAGE,
    value: str = "10",
    start_date: date = date(2026, 1, 1),
    end_date: date = date(2026, 12, 31),
) -> data_manager.PromotionRow:
    """Build a promotion that is active on ``TODAY`` unless overridden."""

    return data_manager.PromotionRow(
        promotion_id=promotion_id,
        name=name,
        target_type=target_type,
        target_value=target_value,
        discount_kind=discount_kind,
        value=Decimal(value),
        start_date=start_date,
        end_date=end_date,
    )


SAMPLE_PRODUCTS = (
    make_product(),
    make_product("P2", "Collar Antipulgas", "25000", "Accesorios", unit_cost="12000", stock={"W1": "5"}),
    make_product("P3", "Shampoo Avena", "18000", "Higiene", unit_cost="9000", stock={"W1": "0", "W2": "3"}),
    make_product("P4", "Snack Dental", "8000", "Alimentos", unit_cost="4000", stock={"W1": "20"}),
)


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized store workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        walk_in_customer_id: str = DEFAULT_WALK_IN_ID,
        filename: str = "pos_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, walk_in_customer_id=walk_in_customer_id, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh store workbook ready for use in a test."""

    unique_dir = f"workbook_{uuid.uuid4().hex}"
    return workbook_factory(subdir=unique_dir)


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        warehouse_id: str = DEFAULT_WAREHOUSE_ID,
        walk_in_customer_id: str = DEFAULT_WALK_IN_ID,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(
            subdir=f"bundle_{bundle_id}",
            walk_in_customer_id=walk_in_customer_id,
        )
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                warehouse_id=warehouse_id,
                walk_in_customer_id=walk_in_customer_id,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            walk_in_customer_id=walk_in_customer_id,
            warehouse_id=warehouse_id,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


def seed_catalog(workbook, *, promotions: tuple[data_manager.PromotionRow, ...] | None = None) -> None:
    """Write the sample catalog, a promotion and a named customer."""

    for product in SAMPLE_PRODUCTS:
        data_manager.append_product(workbook, product)
    for promotion in promotions if promotions is not None else (make_promotion(start_date=date(2000, 1, 1), end_date=date(2999, 12, 31)),):
        data_manager.append_promotion(workbook, promotion)
    data_manager.append_customer(workbook, data_manager.CustomerRow(customer_id="C-100", customer_name="Ana Gómez"))


@pytest.fixture
def seeded_config(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    """Config bundle whose workbook already holds the sample catalog on disk."""

    bundle = config_factory()
    workbook = data_manager.open_workbook(bundle.workbook_path)
    seed_catalog(workbook)
    data_manager.save_workbook(workbook, bundle.workbook_path)
    return bundle


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def seeded_context(seeded_config: ConfigBundle) -> core_logic.RuntimeContext:
    """Runtime context over a workbook holding the sample catalog."""

    context = core_logic.load_runtime_context(seeded_config.config_path)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def products() -> tuple[data_manager.ProductRow, ...]:
    return SAMPLE_PRODUCTS


@pytest.fixture
def category_promotion() -> data_manager.PromotionRow:
    return make_promotion()


@pytest.fixture
def terminal(products) -> TerminalSession:
    """Terminal over the sample catalog with no promotions."""

    return TerminalSession(products, (), clock=lambda: TODAY)


@pytest.fixture
def promo_terminal(products, category_promotion) -> TerminalSession:
    """Terminal over the sample catalog with the 10% category promotion."""

    return TerminalSession(products, (category_promotion,), clock=lambda: TODAY)


@pytest.fixture
def open_session() -> data_manager.CashSessionRow:
    return open_cash_session(Decimal("50000"), DEFAULT_WAREHOUSE_ID, when=OPENED_AT)


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="pos-cli", description="POS CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """Provide a placeholder command table entry for dispatch tests."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    def register(
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> argparse.ArgumentParser:
        return subparsers.add_parser("catalog-test")

    spec = cli.CommandSpec(
        name="catalog-test",
        help_text="help",
        register=register,
        execute=execute,
    )
    return "catalog-test", spec


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "pos_workbook.xlsx",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        warehouse_id=DEFAULT_WAREHOUSE_ID,
        walk_in_customer_id=DEFAULT_WALK_IN_ID,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)
