from __future__ import annotations

from ..extensions import db
from pdv.time_utils import to_utc_z


class LegacyIdMapping(db.Model):
    """
    Old-id -> new-id map produced while copying the legacy local store.

    Dependent collections read it to rewrite foreign keys; a second run
    skips legacy rows that already have a mapping.
    """
    __tablename__ = "legacy_id_mappings"
    __table_args__ = (
        db.UniqueConstraint("entity_type", "legacy_id", name="uq_legacy_mapping_entity_legacy"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(32), nullable=False, index=True)
    legacy_id = db.Column(db.String(64), nullable=False)
    new_id = db.Column(db.Integer, nullable=False)
    migrated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "legacy_id": self.legacy_id,
            "new_id": self.new_id,
            "migrated_at": to_utc_z(self.migrated_at),
        }
