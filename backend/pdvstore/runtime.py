# Overview: Per-app engine wiring; one PersistenceManager, inventory counter and remote client per Flask app.

"""
Store runtime.

One StoreRuntime is created by create_app() and kept in
app.extensions["pdvstore"]. The manager's init() (migrate, normalize,
re-persist) runs once, on first use inside an app context.
"""
from __future__ import annotations

import logging
import threading

from flask import Flask, current_app

from .services.count_service import InventoryCounter
from .services.kv_service import KeyValueStore, SqlKeyValueStore
from .services.persistence_service import BackupPolicy, PersistenceManager
from .services.sync_service import HttpRemoteStore, RemoteStore

logger = logging.getLogger(__name__)

EXTENSION_KEY = "pdvstore"


class StoreRuntime:
    def __init__(
        self,
        manager: PersistenceManager,
        *,
        remote: RemoteStore | None = None,
        remote_token: str = "",
    ):
        self.manager = manager
        self.counter = InventoryCounter(manager)
        self.remote = remote
        self.remote_token = remote_token
        self.init_result = None
        self._lock = threading.Lock()

    def ensure_initialized(self):
        with self._lock:
            if self.init_result is None:
                self.init_result = self.manager.init()
                for warning in self.init_result.warnings:
                    logger.warning("Store init: %s", warning)
        return self.init_result

    @classmethod
    def from_config(cls, config, kv: KeyValueStore | None = None) -> "StoreRuntime":
        manager = PersistenceManager(
            kv or SqlKeyValueStore(),
            storage_key=config.get("PDV_STORAGE_KEY", "erp_db"),
            policy=BackupPolicy(
                max_snapshots=int(config.get("PDV_MAX_SNAPSHOTS", 20)),
                cooldown_ms=int(config.get("PDV_SNAPSHOT_COOLDOWN_MS", 3000)),
            ),
        )
        remote = None
        if config.get("PDV_REMOTE_URL"):
            remote = HttpRemoteStore(
                config["PDV_REMOTE_URL"],
                timeout=float(config.get("PDV_REMOTE_TIMEOUT", 15)),
            )
        return cls(manager, remote=remote, remote_token=config.get("PDV_REMOTE_TOKEN", ""))


def init_runtime(app: Flask, kv: KeyValueStore | None = None) -> StoreRuntime:
    runtime = StoreRuntime.from_config(app.config, kv=kv)
    app.extensions[EXTENSION_KEY] = runtime
    return runtime


def get_runtime() -> StoreRuntime:
    """The current app's runtime, initialized on first access."""
    runtime: StoreRuntime = current_app.extensions[EXTENSION_KEY]
    runtime.ensure_initialized()
    return runtime
