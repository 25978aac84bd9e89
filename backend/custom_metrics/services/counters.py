"""メトリクス識別子ごとの単調増加カウンタ。"""

import threading
from typing import Dict

from ..models.metrics import MetricIdentifier


class CounterStore:
    """正規化済み識別子からカウンタ値へのスレッドセーフな対応表。

    プロセス内のみで保持し、永続化はしない。
    """

    def __init__(self) -> None:
        self._values: Dict[MetricIdentifier, int] = {}
        self._lock = threading.Lock()

    def next_value(self, identifier: MetricIdentifier) -> int:
        """カウンタを 1 進めて新しい値を返す（未登録なら 0 から開始）。"""
        with self._lock:
            value = self._values.get(identifier, 0) + 1
            self._values[identifier] = value
            return value

    def peek(self, identifier: MetricIdentifier) -> int:
        """カウンタを進めずに現在値を返す。"""
        with self._lock:
            return self._values.get(identifier, 0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
