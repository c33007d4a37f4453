"""Pytest configuration and fixtures."""

import io
import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from lakeexport.cursor import RecordCursor  # noqa: E402


class FailingSink(io.BytesIO):
    """Binary sink that rejects writes after ``fail_after`` successful ones."""

    def __init__(self, fail_after: int = 0) -> None:
        super().__init__()
        self.fail_after = fail_after
        self.writes = 0

    def write(self, data: Any) -> int:
        if self.writes >= self.fail_after:
            raise OSError("disk full")
        self.writes += 1
        return super().write(data)


@pytest.fixture
def sink() -> io.BytesIO:
    return io.BytesIO()


@pytest.fixture
def people_rows() -> List[Dict[str, Any]]:
    return [
        {"id": "1", "name": "A"},
        {"id": "2", "name": "B"},
        {"id": "3", "name": "C"},
    ]


@pytest.fixture
def people_cursor(people_rows) -> RecordCursor:
    return RecordCursor(people_rows)


@pytest.fixture
def cache_url(tmp_path: Path) -> str:
    # File-backed so timer threads see the same database
    return f"sqlite:///{tmp_path / 'cache.db'}"


@pytest.fixture
def failing_sink():
    return FailingSink
