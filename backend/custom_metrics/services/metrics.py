"""クエリ処理件数を数える軽量レコーダー。"""

import threading
from collections import defaultdict
from typing import Dict, FrozenSet, List, Optional, Tuple

from ..models.metrics import CounterSnapshot

LabelKey = FrozenSet[Tuple[str, str]]


class MetricsRecorder:
    """プロバイダ自身の処理件数を保持する。"""

    def __init__(self) -> None:
        self._counters: Dict[Tuple[str, LabelKey], int] = defaultdict(int)
        self._lock = threading.Lock()

    def _normalize_labels(self, labels: Optional[Dict[str, str]]) -> LabelKey:
        """ラベルをソート済みの不変キーへ変換する。"""
        if not labels:
            return frozenset()
        return frozenset(sorted(labels.items()))

    def increment(
        self, name: str, labels: Optional[Dict[str, str]] = None, value: int = 1
    ) -> None:
        """カウンタをインクリメントする。"""
        key = (name, self._normalize_labels(labels))
        with self._lock:
            self._counters[key] += value

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        """指定ラベルのカウンタ値を返す（存在しなければ 0）。"""
        key = (name, self._normalize_labels(labels))
        with self._lock:
            return self._counters.get(key, 0)

    def snapshot(self) -> List[CounterSnapshot]:
        """名前とラベルでソートした全カウンタを返す。"""
        with self._lock:
            items = list(self._counters.items())
        return [
            CounterSnapshot(name=name, labels=dict(label_key), value=value)
            for (name, label_key), value in sorted(items, key=lambda item: (item[0][0], sorted(item[0][1])))
        ]
