from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fastapi import Request
from pydantic import BaseModel

from axaou_server import config
from axaou_server.assets import AssetCache, discover_assets
from axaou_server.metadata import get_valid_phenotypes
from axaou_server.models import AnalysisAssets, AnalysisMetadata, LookupResult
from axaou_server.storage import GcsBucket


@dataclass
class AppState:
    """Process-wide handles shared by every request."""

    clickhouse: Any
    metadata: List[AnalysisMetadata] = field(default_factory=list)
    assets: AssetCache = field(default_factory=AssetCache)
    assets_bucket: str = config.ASSETS_BUCKET
    assets_root: str = config.ASSETS_ROOT
    # Tests swap in a fake object store here.
    asset_store: Optional[Any] = None
    image_store_factory: Optional[Any] = None
    image_stores: Dict[str, Any] = field(default_factory=dict)

    async def discover(self) -> AnalysisAssets:
        valid = get_valid_phenotypes(self.metadata) if self.metadata else None
        return await discover_assets(
            bucket=self.assets_bucket,
            root=self.assets_root,
            valid_phenotypes=valid,
            store=self.asset_store,
        )

    async def get_assets(self, refresh: bool = False) -> AnalysisAssets:
        return await self.assets.get(self.discover, refresh=refresh)

    async def image_store(self, bucket: str) -> Any:
        """One store per bucket, constructed on a worker thread."""
        store = self.image_stores.get(bucket)
        if store is None:
            factory = self.image_store_factory or GcsBucket
            store = await asyncio.to_thread(factory, bucket)
            self.image_stores[bucket] = store
        return store


def get_state(request: Request) -> AppState:
    return request.app.state.axaou


class Timer:
    """Wall time since handler entry, for ``LookupResult.time_seconds``."""

    def __init__(self) -> None:
        self.t0 = time.perf_counter()

    def elapsed(self) -> float:
        return round(time.perf_counter() - self.t0, 6)

    def lookup(self, data: List[Any]) -> LookupResult:
        rows = [d.model_dump(mode="json") if isinstance(d, BaseModel) else d for d in data]
        return LookupResult(data=rows, count=len(rows), time_seconds=self.elapsed())
