"""
Database Models

Key Models:
- User: account with Stripe subscription state and monthly usage
- Note: uploaded study note (text and/or file) owned by a user
- AuditLog: account activity tracking
- SubscriptionEvent: raw Stripe webhook events
"""
from datetime import datetime, timezone
import enum
import uuid

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from studyflow import db


def _utcnow():
    return datetime.now(timezone.utc)


def _new_id():
    return uuid.uuid4().hex


class SubscriptionStatus(enum.Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"


class SubscriptionTier(enum.Enum):
    FREE = "free"
    PREMIUM = "premium"


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    is_active_account = db.Column(db.Boolean, default=True)

    # Stripe
    stripe_customer_id = db.Column(db.String(100), index=True)
    stripe_subscription_id = db.Column(db.String(100), index=True)
    subscription_status = db.Column(db.Enum(SubscriptionStatus), default=SubscriptionStatus.TRIAL)
    subscription_tier = db.Column(db.Enum(SubscriptionTier), default=SubscriptionTier.FREE)
    subscription_end_date = db.Column(db.DateTime(timezone=True))

    # Usage
    monthly_transform_count = db.Column(db.Integer, default=0)
    usage_period = db.Column(db.String(7))  # YYYY-MM the count belongs to

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    last_login_at = db.Column(db.DateTime(timezone=True))

    notes = db.relationship('Note', back_populates='user', lazy='dynamic', cascade='all, delete-orphan')

    @property
    def is_active(self):
        return bool(self.is_active_account if self.is_active_account is not None else True)

    @property
    def is_subscribed(self):
        return (
            self.subscription_tier == SubscriptionTier.PREMIUM
            and self.subscription_status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE)
        )

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def _roll_usage_period(self):
        period = _utcnow().strftime("%Y-%m")
        if self.usage_period != period:
            self.usage_period = period
            self.monthly_transform_count = 0

    def can_transform(self, free_limit):
        """Premium accounts are unlimited; free accounts get free_limit per month"""
        if self.is_subscribed:
            return True
        self._roll_usage_period()
        return (self.monthly_transform_count or 0) < free_limit

    def increment_transform_count(self):
        self._roll_usage_period()
        self.monthly_transform_count = (self.monthly_transform_count or 0) + 1

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'subscribed': self.is_subscribed,
            'subscription_status': self.subscription_status.value if self.subscription_status else None,
            'subscription_tier': self.subscription_tier.value if self.subscription_tier else None,
            'subscription_end': self.subscription_end_date.isoformat() if self.subscription_end_date else None,
            'monthly_transform_count': self.monthly_transform_count or 0,
        }


class Note(db.Model):
    """
    Study note owned by an authenticated user.

    text_content stays NULL until extraction produces real text; a file
    reference is an upload-store path, a URL or an embedded data URL.
    """
    __tablename__ = 'notes'

    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    text_content = db.Column(db.Text)
    file_reference = db.Column(db.Text)
    file_name = db.Column(db.String(255))
    file_type = db.Column(db.String(255))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = db.relationship('User', back_populates='notes')


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    event_type = db.Column(db.String(100), nullable=False)
    event_description = db.Column(db.Text)
    ip_address = db.Column(db.String(45))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)


class SubscriptionEvent(db.Model):
    __tablename__ = 'subscription_events'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    stripe_event_id = db.Column(db.String(100), unique=True)
    stripe_subscription_id = db.Column(db.String(100))
    event_type = db.Column(db.String(100), nullable=False)
    event_data = db.Column(db.JSON)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
