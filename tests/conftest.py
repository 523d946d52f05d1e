import logging
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

TOOL_DIR = Path(__file__).resolve().parent.parent
if str(TOOL_DIR) not in sys.path:
    sys.path.insert(0, str(TOOL_DIR))

import combo  # noqa: E402

FIXTURE_LIBDIR = TOOL_DIR / "tests" / "fixtures"


@pytest.fixture(autouse=True)
def restore_root_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def fixture_libdir() -> Path:
    return FIXTURE_LIBDIR


@pytest.fixture
def make_context() -> Callable[..., combo.RunContext]:
    def _make_context(**overrides: object) -> combo.RunContext:
        base: dict[str, object] = {
            "printer_id": "HP-LaserJet_4",
            "driver": "ljet4",
            "make": "HP",
            "model": "LaserJet 4",
        }
        base.update(overrides)
        return combo.RunContext(**base)

    return _make_context


@pytest.fixture
def run_mode() -> Callable[..., tuple[combo.Document, bool]]:
    def _run_mode(
        mode_class: type[combo.ModeStrategy],
        text: str,
        context: combo.RunContext,
        name: str = "test.xml",
    ) -> tuple[combo.Document, bool]:
        doc = combo.Document(text, name)
        confirmed = combo.parse_document(doc, mode_class(context))
        return doc, confirmed

    return _run_mode
