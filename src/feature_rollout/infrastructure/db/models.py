from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base: Any = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeatureFlagModel(Base):
    __tablename__ = "feature_flags"
    __table_args__ = (
        UniqueConstraint("name", "environment", name="uix_flag_name_environment"),
        Index("idx_feature_flags_environment", "environment"),
    )
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=False)
    rollout_percentage = Column(Integer, nullable=False, default=0)
    rollout_strategy = Column(String(50), nullable=False, default="percentage")
    environment = Column(String(50), nullable=False, default="production")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)
    created_by = Column(String(255), nullable=True)


class UserSegmentModel(Base):
    __tablename__ = "user_segments"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    criteria = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class FeatureTargetingModel(Base):
    __tablename__ = "feature_targeting"
    id = Column(Integer, primary_key=True)
    feature_flag_id = Column(
        Integer, ForeignKey("feature_flags.id", ondelete="CASCADE"), nullable=False
    )
    segment_id = Column(Integer, ForeignKey("user_segments.id", ondelete="CASCADE"), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    rollout_percentage = Column(Integer, nullable=False, default=100)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    segment = relationship("UserSegmentModel")

    __table_args__ = (Index("idx_feature_targeting_flag", "feature_flag_id"),)


class UserFeatureAssignmentModel(Base):
    __tablename__ = "user_feature_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "feature_flag_id", name="uix_assignment_user_flag"),
    )
    id = Column(Integer, primary_key=True)
    user_id = Column(String(255), nullable=False)
    feature_flag_id = Column(
        Integer, ForeignKey("feature_flags.id", ondelete="CASCADE"), nullable=False
    )
    assigned = Column(Boolean, nullable=False)
    assignment_reason = Column(String(100), nullable=False)
    assigned_at = Column(DateTime(timezone=True), default=_utcnow)


class FeatureAnalyticsModel(Base):
    __tablename__ = "feature_analytics"
    id = Column(Integer, primary_key=True)
    feature_flag_id = Column(
        Integer, ForeignKey("feature_flags.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(255), nullable=False)
    event_type = Column(String(20), nullable=False)
    event_data = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_feature_analytics_flag_ts", "feature_flag_id", "timestamp"),)


class FeatureFlagHistoryModel(Base):
    __tablename__ = "feature_flag_history"
    id = Column(Integer, primary_key=True)
    feature_flag_id = Column(
        Integer, ForeignKey("feature_flags.id", ondelete="CASCADE"), nullable=False
    )
    action = Column(String(50), nullable=False)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    changed_by = Column(String(255), nullable=True)
    changed_at = Column(DateTime(timezone=True), default=_utcnow)
