from __future__ import annotations

import os
from typing import Iterator

import pytest
from hypothesis import settings

from custom_metrics.api import custom_metrics as custom_metrics_api
from custom_metrics.main import app
from custom_metrics.models.metrics import GroupResource
from custom_metrics.services.discovery import StaticResourceMapper
from custom_metrics.services.listing import InMemoryResourceLister
from custom_metrics.services.provider import MetricsProvider

_DEFAULT_MAX_EXAMPLES = int(os.getenv("HYPOTHESIS_MAX_EXAMPLES", "25"))

# CI/コンテナ環境ではスレッド起動などで 200ms を超えることがあるため、
# デッドラインを無効化してフレークを防ぐ。
if "HYPOTHESIS_PROFILE" not in os.environ:
    try:
        settings.register_profile(
            "ci",
            settings(
                deadline=None,
                max_examples=_DEFAULT_MAX_EXAMPLES,
            ),
        )
    except ValueError:
        # プロファイルが既に存在する場合は無視して既定プロファイルを読み込む
        pass
    settings.load_profile("ci")

PODS = GroupResource(group="", resource="pods")
SERVICES = GroupResource(group="", resource="services")
NAMESPACES = GroupResource(group="", resource="namespaces")
DEPLOYMENTS = GroupResource(group="apps", resource="deployments")


def build_inventory() -> InMemoryResourceLister:
    """テスト用の小さなインベントリを組み立てる。"""
    lister = InMemoryResourceLister()
    lister.add(PODS, "web-1", "default", {"app": "web", "tier": "frontend"})
    lister.add(PODS, "web-2", "default", {"app": "web", "tier": "frontend"})
    lister.add(PODS, "web-3", "default", {"app": "web", "tier": "backend"})
    lister.add(PODS, "db-1", "default", {"app": "db"})
    lister.add(PODS, "web-1", "staging", {"app": "web"})
    lister.add(SERVICES, "web", "default", {"app": "web"})
    lister.add(NAMESPACES, "default", None, {"env": "prod"})
    lister.add(NAMESPACES, "staging", None, {"env": "dev"})
    lister.add(DEPLOYMENTS, "web", "default", {"app": "web"})
    return lister


@pytest.fixture
def resolver() -> StaticResourceMapper:
    return StaticResourceMapper()


@pytest.fixture
def lister() -> InMemoryResourceLister:
    return build_inventory()


@pytest.fixture
def provider(resolver: StaticResourceMapper, lister: InMemoryResourceLister) -> MetricsProvider:
    """テストごとに新しいカウンタ状態を持つプロバイダ。"""
    return MetricsProvider(resolver, lister, list_timeout_seconds=1.0)


@pytest.fixture(autouse=True)
def _reset_api_state() -> Iterator[None]:
    """API モジュールのシングルトンと依存関係の上書きをテスト間で共有しない。"""
    app.dependency_overrides.clear()
    custom_metrics_api._metrics_provider = None
    custom_metrics_api._discovery_mapper = None
    custom_metrics_api._kubernetes_client = None
    yield
    app.dependency_overrides.clear()
    custom_metrics_api._metrics_provider = None
    custom_metrics_api._discovery_mapper = None
    custom_metrics_api._kubernetes_client = None
