"""Waiver, policy and report stores.

Each store has an in-memory implementation and a file-backed one; the
factories below pick one from ``EngineConfig``.
"""

from __future__ import annotations

from complycore.config import EngineConfig
from complycore.stores.waivers import (
    InMemoryWaiverStore,
    JsonFileWaiverStore,
    Waiver,
    WaiverSnapshot,
    WaiverStore,
    create_waiver,
)
from complycore.stores.policies import InMemoryPolicyStore, PolicyStore, YamlDirectoryPolicyStore
from complycore.stores.reports import InMemoryReportStore, JsonlReportStore, ReportStore


def open_waiver_store(config: EngineConfig | None = None) -> WaiverStore:
    config = config or EngineConfig()
    if config.waiver_store_path:
        return JsonFileWaiverStore(config.waiver_store_path, config.default_waiver_days)
    return InMemoryWaiverStore(default_days=config.default_waiver_days)


def open_report_store(config: EngineConfig | None = None) -> ReportStore:
    config = config or EngineConfig()
    if config.report_store_path:
        return JsonlReportStore(config.report_store_path)
    return InMemoryReportStore()


def open_policy_store(config: EngineConfig | None = None) -> PolicyStore:
    config = config or EngineConfig()
    if config.policy_dir:
        return YamlDirectoryPolicyStore(config.policy_dir)
    return InMemoryPolicyStore()


__all__ = [
    "InMemoryPolicyStore",
    "InMemoryReportStore",
    "InMemoryWaiverStore",
    "JsonFileWaiverStore",
    "JsonlReportStore",
    "PolicyStore",
    "ReportStore",
    "Waiver",
    "WaiverSnapshot",
    "WaiverStore",
    "YamlDirectoryPolicyStore",
    "create_waiver",
    "open_policy_store",
    "open_report_store",
    "open_waiver_store",
]
