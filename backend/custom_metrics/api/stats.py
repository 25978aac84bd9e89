"""プロバイダ自身の処理件数を返す API。"""

from fastapi import APIRouter

from ..models.metrics import ProviderStats
from .custom_metrics import ProviderDep

router = APIRouter(prefix="/internal", tags=["internal"])


@router.get("/stats", response_model=ProviderStats)
async def get_stats(provider: ProviderDep) -> ProviderStats:
    """クエリ種別・結果ごとの処理件数と、カウンタを持つ識別子の数を返す。"""
    return ProviderStats(tracked_metrics=len(provider.counters), counters=provider.metrics.snapshot())
