# SQLAlchemy Models
from refeed.models.user import User
from refeed.models.daily_metrics import DailyMetric
from refeed.models.score import Score
from refeed.models.recommendation import Recommendation

__all__ = [
    "User",
    "DailyMetric",
    "Score",
    "Recommendation",
]
