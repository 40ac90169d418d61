"""Badge models: catalog definitions, per-user progress, and bonus markers."""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from allowance.models.base import Base, new_id


class BadgeCategory(str, Enum):
    """Badge categories. New badges within a category need no code change."""
    SAVINGS = "savings"
    EXPENSES = "expenses"
    TASKS = "tasks"
    GOALS = "goals"
    ACTIVITY = "activity"


class Badge(Base):
    """Static badge definitions - seeded once, shared by all users."""

    __tablename__ = "badges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text)
    icon: Mapped[str] = mapped_column(String(50))  # Symbolic key, resolved by the client
    # Use String to avoid PostgreSQL enum mapping issues - values validated at app layer
    category: Mapped[str] = mapped_column(String(50))
    required_count: Mapped[int] = mapped_column(Integer)

    user_badges: Mapped[list["UserBadge"]] = relationship(
        "UserBadge",
        back_populates="badge",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_badge_category", "category"),
    )


class UserBadge(Base):
    """A user's progress towards one badge."""

    __tablename__ = "user_badges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    badge_id: Mapped[str] = mapped_column(
        ForeignKey("badges.id", ondelete="CASCADE"),
        index=True,
    )

    progress: Mapped[int] = mapped_column(Integer, default=0)
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    earned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    badge: Mapped["Badge"] = relationship(
        "Badge",
        back_populates="user_badges",
    )

    __table_args__ = (
        Index("ix_user_badge_unique", "user_id", "badge_id", unique=True),
        Index("ix_user_badge_completed", "user_id", "completed"),
    )


class BadgeBonusGrant(Base):
    """Marks a full-completion bonus as paid for one collection epoch."""

    __tablename__ = "badge_bonus_grants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    category: Mapped[str] = mapped_column(String(50))  # Source collection, e.g. "tasks"
    epoch_key: Mapped[str] = mapped_column(String(64))  # Fingerprint of the completed collection
    amount: Mapped[int] = mapped_column(Integer)

    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_bonus_grant_epoch", "user_id", "category", "epoch_key", unique=True),
    )
