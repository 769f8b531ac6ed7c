"""Shared fixtures: an in-memory column-store fake and an API test client."""

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest
from fastapi.testclient import TestClient

from axaou_server.errors import DataTransform
from axaou_server.main import create_app
from axaou_server.models import AnalysisMetadata
from axaou_server.state import AppState, get_state

Row = Dict[str, Any]
Responder = Callable[[str, List[Any]], List[Row]]


class FakeClickHouse:
    """Records every query and answers from canned rows.

    ``routes`` is checked in order; the first entry whose marker occurs in
    the SQL text answers. A route may hold a row list or a callable taking
    ``(sql, params)``. Markers in ``failing`` raise DataTransform instead.
    """

    def __init__(self, routes: Optional[Sequence[Tuple[str, Any]]] = None, failing: Sequence[str] = ()):
        self.routes: List[Tuple[str, Any]] = list(routes or [])
        self.failing = list(failing)
        self.calls: List[Tuple[str, List[Any]]] = []
        self.closed = False

    def route(self, marker: str, rows: Any) -> "FakeClickHouse":
        self.routes.append((marker, rows))
        return self

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        params = list(params)
        self.calls.append((sql, params))
        for marker in self.failing:
            if marker in sql:
                raise DataTransform(f"ClickHouse query error: boom ({marker})")
        for marker, answer in self.routes:
            if marker in sql:
                return answer(sql, params) if callable(answer) else list(answer)
        return []

    async def fetch_optional(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None

    async def health_check(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True


def metadata_record(analysis_id: str, ancestry: str, category: str = "AxAoU > Anthropometric") -> AnalysisMetadata:
    return AnalysisMetadata(
        analysis_id=analysis_id,
        ancestry_group=ancestry,
        category=category,
        description=f"{analysis_id} description",
        description_more=f"{analysis_id} description",
        n_cases=1000,
        trait_type="continuous",
    )


@pytest.fixture
def fake_clickhouse():
    return FakeClickHouse()


@pytest.fixture
def app_state(fake_clickhouse):
    return AppState(
        clickhouse=fake_clickhouse,
        metadata=[
            metadata_record("height", "eur"),
            metadata_record("height", "meta"),
            metadata_record("BMI", "meta"),
            metadata_record("250.2", "afr", category="AxAoU > Endocrine/metabolic"),
        ],
    )


@pytest.fixture
def client(app_state):
    app = create_app()
    app.state.axaou = app_state
    app.dependency_overrides[get_state] = lambda: app_state
    return TestClient(app)
