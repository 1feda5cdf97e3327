from __future__ import annotations

from prometheus_client import Counter, Gauge

SYNC_CYCLES = Counter(
    "archnode_sync_cycles_total",
    "Reconciliation cycles run against the manager",
    labelnames=["result"],
)
ENGINE_RESTARTS = Counter(
    "archnode_engine_restarts_total",
    "Xray restarts performed by the node",
    labelnames=["result"],
)
CONFIG_UPDATES = Counter(
    "archnode_config_updates_total",
    "Running config replacements by source",
    labelnames=["source"],
)
RUNNING_INBOUNDS = Gauge(
    "archnode_running_inbounds",
    "Number of inbounds in the config currently held by the engine",
)
