"""Shared pytest fixtures and utilities for Comanda POS tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Set

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from comanda_pos import cli, constants, core_logic, data_manager  # noqa: E402
from comanda_pos.setup_store import create_data_file  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_STARTING_NUMBER = 1000
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Orders]\n"
    "StartingNumber = {starting_number}\n\n"
    "[Output]\n"
    "ExportDir = {export_dir}\n"
    "ReceiptDir = {receipt_dir}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    data_file: Path
    export_dir: Path
    receipt_dir: Path
    starting_number: int
    schema_version: str
    store_name: str


class MemoryStore:
    """Dict-backed key-value store that can be told to fail writes per key."""

    def __init__(self, data: Dict[str, Any] | None = None):
        self.data: Dict[str, Any] = dict(data or {})
        self.fail_keys: Set[str] = set()
        self.writes: list[str] = []

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if key in self.fail_keys:
            raise data_manager.PersistenceError(f"simulated failure writing {key}")
        self.writes.append(key)
        self.data[key] = value


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/data-file bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        starting_number: int = DEFAULT_STARTING_NUMBER,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        data_file = create_data_file(
            bundle_dir / "pos_data.json",
            starting_order_number=starting_number,
        )
        export_dir = bundle_dir / "exports"
        receipt_dir = bundle_dir / "receipts"
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file.name if make_relative else str(data_file),
                store_name=store_name,
                schema_version=schema_version,
                starting_number=starting_number,
                export_dir=export_dir.name if make_relative else str(export_dir),
                receipt_dir=receipt_dir.name if make_relative else str(receipt_dir),
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            data_file=data_file,
            export_dir=export_dir,
            receipt_dir=receipt_dir,
            starting_number=starting_number,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for in-memory sessions."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "pos_data.json",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        starting_order_number=DEFAULT_STARTING_NUMBER,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def context(settings: data_manager.ConfigSettings, store: MemoryStore) -> core_logic.RuntimeContext:
    """Assemble a session on top of an in-memory store."""

    return core_logic.build_runtime_context(settings, store)


@pytest.fixture
def coxinha(context: core_logic.RuntimeContext) -> data_manager.Product:
    return context.catalog.add_product("Coxinha", Decimal("5.00"), code="001")


@pytest.fixture
def suco(context: core_logic.RuntimeContext) -> data_manager.Product:
    return context.catalog.add_product("Suco", "3,50", code="002")


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` so ``now`` returns a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime(datetime):
            @classmethod
            def now(cls, tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="comanda-cli", description="Comanda CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


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
