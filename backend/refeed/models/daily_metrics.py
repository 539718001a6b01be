from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from refeed.database import Base


class DailyMetric(Base):
    __tablename__ = "metrics_daily"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_metrics_user_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    date: Mapped[date] = mapped_column(Date, index=True, nullable=False)

    # Body
    weight_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    rhr_bpm: Mapped[float | None] = mapped_column(Float, nullable=True)
    temp_c: Mapped[float | None] = mapped_column(Float, nullable=True)
    hrv_ms: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Recovery / subjective
    sleep_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    fatigue_1_5: Mapped[float | None] = mapped_column(Float, nullable=True)  # 1..5

    # Load and energy balance
    training_load: Mapped[float | None] = mapped_column(Float, nullable=True)
    calorie_intake_kcal: Mapped[float | None] = mapped_column(Float, nullable=True)
    energy_expenditure_kcal: Mapped[float | None] = mapped_column(Float, nullable=True)

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="daily_metrics")
