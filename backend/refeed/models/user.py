from datetime import datetime

from sqlalchemy import DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from refeed.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    auth_uid: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    timezone: Mapped[str] = mapped_column(String(50), default="Asia/Tokyo")

    # Profile
    estimated_tdee: Mapped[float | None] = mapped_column(Float, nullable=True)  # kcal/day
    goal_weight: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    daily_metrics = relationship("DailyMetric", back_populates="user", cascade="all, delete-orphan")
    scores = relationship("Score", back_populates="user", cascade="all, delete-orphan")
    recommendations = relationship("Recommendation", back_populates="user", cascade="all, delete-orphan")
