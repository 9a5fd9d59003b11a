from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class KeyValueEntry(db.Model):
    """
    Device-local key -> string store.

    WHY: The engine persists every value (database, tmp write buffer,
    snapshots, safety backups, sync state) as serialized text under a key.
    This table is the durable backing for that interface.

    DESIGN: Values are opaque to SQL. The engine owns serialization,
    validation and recovery; this table never interprets a value.
    """
    __tablename__ = "kv_entries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(255), nullable=False, unique=True, index=True)
    value = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "key": self.key,
            "bytes": len(self.value or ""),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
