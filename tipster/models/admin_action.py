from datetime import datetime, timezone

from tipster import db


class AdminAction(db.Model):
    """Stored audit event for a mutating core operation"""

    __tablename__ = "admin_actions"

    id = db.Column(db.Integer, primary_key=True)

    # Who acted (None for cron and other system triggers)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Action type and target
    action_type = db.Column(
        db.String(50), nullable=False
    )  # 'toggle_bonus_mode', 'activate_cup', 'retroactive_award', etc.
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)

    # State change and additional context data (JSON)
    before_state = db.Column(db.JSON, nullable=True)
    after_state = db.Column(db.JSON, nullable=True)
    action_metadata = db.Column(db.JSON, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    actor = db.relationship("User", backref="admin_actions_performed")

    # Indexes
    __table_args__ = (
        db.Index("idx_admin_action_actor", "actor_id"),
        db.Index("idx_admin_action_type", "action_type"),
        db.Index("idx_admin_action_entity", "entity_type", "entity_id"),
        db.Index("idx_admin_action_created", "created_at"),
    )

    def __repr__(self):
        return f'<AdminAction {self.action_type} on {self.entity_type}:{self.entity_id} by {self.actor.username if self.actor else "system"}>'

    @staticmethod
    def log_action(
        action_type,
        entity_type,
        entity_id=None,
        actor_id=None,
        before=None,
        after=None,
        action_metadata=None,
    ):
        """Log an admin action"""
        action = AdminAction(
            actor_id=actor_id,
            action_type=action_type,
            entity_type=entity_type,
            entity_id=entity_id,
            before_state=before,
            after_state=after,
            action_metadata=action_metadata or {},
        )

        db.session.add(action)
        return action

    @staticmethod
    def get_recent(limit=50, entity_type=None):
        query = AdminAction.query
        if entity_type:
            query = query.filter_by(entity_type=entity_type)
        return query.order_by(AdminAction.created_at.desc()).limit(limit).all()

    def to_dict(self):
        """Convert action to dictionary for API responses"""
        return {
            "id": self.id,
            "actor": self.actor.username if self.actor else None,
            "action_type": self.action_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "before": self.before_state,
            "after": self.after_state,
            "action_metadata": self.action_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
