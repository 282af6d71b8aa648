from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from nullrelay.config import EngineConfig
from nullrelay.engine import Engine
from nullrelay.host import InMemoryBuffers, RecordingDiagnosticsSink, RecordingEditSink


@pytest.fixture
def buffers() -> InMemoryBuffers:
    return InMemoryBuffers()


@pytest.fixture
def diagnostics_sink() -> RecordingDiagnosticsSink:
    return RecordingDiagnosticsSink()


@pytest.fixture
def edit_sink() -> RecordingEditSink:
    return RecordingEditSink()


@pytest.fixture
def make_engine(buffers, diagnostics_sink, edit_sink):
    def _make(**overrides) -> Engine:
        config = overrides.pop("config", EngineConfig())
        return Engine(
            buffers=buffers,
            diagnostics_sink=diagnostics_sink,
            edit_sink=edit_sink,
            config=config,
            **overrides,
        )

    return _make
