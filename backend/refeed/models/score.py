from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from refeed.database import Base


class Score(Base):
    """Derived readiness scores, one row per user and day."""
    __tablename__ = "scores"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_scores_user_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    date: Mapped[date] = mapped_column(Date, index=True, nullable=False)

    # v1
    mas: Mapped[float | None] = mapped_column(Float, nullable=True)  # -3..3
    rrs: Mapped[float | None] = mapped_column(Float, nullable=True)  # 0..1
    plateau_flag: Mapped[bool] = mapped_column(Boolean, default=False)
    deficit_streak: Mapped[int] = mapped_column(Integer, default=0)
    training_load_factor: Mapped[float | None] = mapped_column(Float, nullable=True)

    # v2 (refeed aware)
    rrs_v2: Mapped[float | None] = mapped_column(Float, nullable=True)
    rrs_display: Mapped[float | None] = mapped_column(Float, nullable=True)
    rrs_effective: Mapped[float | None] = mapped_column(Float, nullable=True)
    refeed_cooldown: Mapped[float | None] = mapped_column(Float, nullable=True)
    refeed_response: Mapped[float | None] = mapped_column(Float, nullable=True)
    hard_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    effective_window: Mapped[float | None] = mapped_column(Float, nullable=True)  # days
    observed_days: Mapped[int] = mapped_column(Integer, default=0)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="scores")
