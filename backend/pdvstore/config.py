# backend/pdvstore/config.py
from __future__ import annotations
import os


class Config:
    # SQLite file holding the kv_entries table
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///pdvstore.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Local store
    PDV_STORAGE_KEY = os.environ.get("PDV_STORAGE_KEY", "erp_db")
    PDV_MAX_SNAPSHOTS = int(os.environ.get("PDV_MAX_SNAPSHOTS", "20"))
    PDV_SNAPSHOT_COOLDOWN_MS = int(os.environ.get("PDV_SNAPSHOT_COOLDOWN_MS", "3000"))

    # Remote key-value service (sync disabled when PDV_REMOTE_URL is empty)
    PDV_REMOTE_URL = os.environ.get("PDV_REMOTE_URL", "")
    PDV_REMOTE_TIMEOUT = float(os.environ.get("PDV_REMOTE_TIMEOUT", "15"))
    PDV_REMOTE_TOKEN = os.environ.get("PDV_REMOTE_TOKEN", "")

    # Key-value collaborator override (a KeyValueStore instance); None uses kv_entries
    PDV_KV_STORE = None
