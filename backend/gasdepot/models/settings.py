from __future__ import annotations

from ..extensions import db
from gasdepot.time_utils import to_utc_z


class ConfigurationSetting(db.Model):
    """
    Key-value business settings (loyalty rates, redemption thresholds).

    Values are stored as text; settings_service parses and validates them.
    """
    __tablename__ = "configuration"

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "key": self.key,
            "value": self.value,
            "description": self.description,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
