from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from refeed.database import Base


class Recommendation(Base):
    """Refeed day recommendation and its execution state."""
    __tablename__ = "recommendations"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_recommendations_user_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    date: Mapped[date] = mapped_column(Date, index=True, nullable=False)

    # Targets
    kcal_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    carb_g: Mapped[int | None] = mapped_column(Integer, nullable=True)
    protein_g: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fat_g: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_days: Mapped[int] = mapped_column(Integer, default=1)
    rationale_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Execution
    executed: Mapped[bool] = mapped_column(Boolean, default=False)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    refeed_effect_window: Mapped[int | None] = mapped_column(Integer, nullable=True)  # days

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="recommendations")

    @property
    def executed_date(self):
        """Day the refeed actually happened."""
        if self.executed_at is not None:
            return self.executed_at.date()
        return self.date
