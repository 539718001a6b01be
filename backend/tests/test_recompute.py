"""Integration tests for per-user score recompute against the database."""
from datetime import date, datetime

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from refeed.models import DailyMetric, Recommendation, Score, User
from refeed.schemas.metrics import DailyMetricRecord
from refeed.services.recompute import MetricNotFoundError, RecommendationNotFoundError, ScoreRecomputer

from conftest import STEADY_DAY, build_history


async def _seed_metrics(db: AsyncSession, user: User, records) -> None:
    for record in records:
        db.add(DailyMetric(user_id=user.id, **record.model_dump() | {"date": date.fromisoformat(record.date)}))
    await db.commit()


async def _scores(db: AsyncSession, user: User) -> list[Score]:
    result = await db.execute(
        select(Score)
        .where(Score.user_id == user.id)
        .order_by(Score.date)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _recommendation(db: AsyncSession, user: User, day: str):
    result = await db.execute(
        select(Recommendation).where(
            Recommendation.user_id == user.id,
            Recommendation.date == date.fromisoformat(day),
        ).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


class TestRecomputeFromDate:
    """Full-history recompute and score persistence."""

    @pytest.mark.asyncio
    async def test_scores_every_day(self, db_session: AsyncSession, test_user: User):
        """Test that every day gets a stored score."""
        await _seed_metrics(db_session, test_user, build_history(28, **STEADY_DAY))
        recomputer = ScoreRecomputer(db_session, test_user.id)

        day = await recomputer.recompute_from_date("2025-01-01")
        await db_session.commit()

        assert day.date == "2025-01-01"
        scores = await _scores(db_session, test_user)
        assert len(scores) == 28

        last = scores[-1]
        assert last.date == date(2025, 1, 28)
        assert last.mas == 0.0
        assert last.plateau_flag is True
        assert last.deficit_streak == 28
        assert last.training_load_factor == 0.2
        assert last.rrs == pytest.approx(0.848129, abs=1e-5)
        assert last.rrs_v2 == pytest.approx(0.746495, abs=1e-5)
        assert last.hard_locked is False
        assert last.observed_days == 0

    @pytest.mark.asyncio
    async def test_plateau_only_after_two_weeks(self, db_session: AsyncSession, test_user: User):
        """Test plateau flags across the first weeks."""
        await _seed_metrics(db_session, test_user, build_history(20, **STEADY_DAY))
        await ScoreRecomputer(db_session, test_user.id).recompute_from_date("2025-01-01")

        flags = [score.plateau_flag for score in await _scores(db_session, test_user)]
        assert flags == [False] * 13 + [True] * 7

    @pytest.mark.asyncio
    async def test_recompute_is_idempotent(self, db_session: AsyncSession, test_user: User):
        """Test that recomputing from a later date changes nothing."""
        await _seed_metrics(
            db_session,
            test_user,
            build_history(
                30,
                weight_kg=lambda i: 75.0 - 0.03 * i,
                temp_c=lambda i: 36.3 + (i % 4) * 0.1,
                rhr_bpm=lambda i: 54.0 + (i % 3),
                calorie_intake_kcal=1900.0,
                energy_expenditure_kcal=2350.0,
            ),
        )
        recomputer = ScoreRecomputer(db_session, test_user.id)

        await recomputer.recompute_from_date("2025-01-01")
        first = [
            (s.date, s.mas, s.rrs, s.rrs_v2, s.deficit_streak)
            for s in await _scores(db_session, test_user)
        ]
        await recomputer.recompute_from_date("2025-01-10")
        second = [
            (s.date, s.mas, s.rrs, s.rrs_v2, s.deficit_streak)
            for s in await _scores(db_session, test_user)
        ]
        assert first == second

    @pytest.mark.asyncio
    async def test_missing_start_day_returns_none(self, db_session: AsyncSession, test_user: User):
        """Test recompute from a day without metrics."""
        await _seed_metrics(db_session, test_user, build_history(3, **STEADY_DAY))
        day = await ScoreRecomputer(db_session, test_user.id).recompute_from_date("2024-12-01")
        assert day is None
        assert len(await _scores(db_session, test_user)) == 3

    @pytest.mark.asyncio
    async def test_executed_refeed_locks_following_days(self, db_session: AsyncSession, test_user: User):
        """Test that a stored execution locks later scores."""
        await _seed_metrics(db_session, test_user, build_history(28, **STEADY_DAY))
        db_session.add(
            Recommendation(
                user_id=test_user.id,
                date=date(2025, 1, 26),
                executed=True,
                executed_at=datetime(2025, 1, 27, 8, 0),
            )
        )
        await db_session.commit()

        recomputer = ScoreRecomputer(db_session, test_user.id)
        execution = await recomputer.last_executed_refeed("2025-01-28")
        assert execution.executed_date == "2025-01-27"
        assert await recomputer.last_executed_refeed("2025-01-26") is None

        await recomputer.recompute_from_date("2025-01-20")
        by_date = {s.date.isoformat(): s for s in await _scores(db_session, test_user)}

        assert by_date["2025-01-26"].hard_locked is False
        assert by_date["2025-01-26"].refeed_cooldown == 0.0
        assert by_date["2025-01-27"].hard_locked is True
        assert by_date["2025-01-27"].rrs_v2 == 0.0
        assert by_date["2025-01-28"].hard_locked is True
        assert by_date["2025-01-28"].refeed_cooldown == pytest.approx(0.888889)
        # v1 ignores refeeds
        assert by_date["2025-01-28"].rrs == pytest.approx(0.848129, abs=1e-5)


class TestSaveMetric:
    """Saving a day's metrics and the resulting recommendation."""

    @pytest.mark.asyncio
    async def test_save_creates_metric_and_score(self, db_session: AsyncSession, test_user: User):
        """Test saving the first metric."""
        recomputer = ScoreRecomputer(db_session, test_user.id)
        record = DailyMetricRecord(date="2025-01-01", **STEADY_DAY)

        result = await recomputer.save_metric(record, notes="first day")

        assert result.score.date == "2025-01-01"
        assert result.score.scores.deficit_streak == 1
        assert result.suppressed is False
        assert result.recommendation is None

        history = await recomputer.load_history()
        assert [r.model_dump() for r in history] == [record.model_dump()]
        assert len(await _scores(db_session, test_user)) == 1

    @pytest.mark.asyncio
    async def test_save_updates_existing_day(self, db_session: AsyncSession, test_user: User):
        """Test saving a day twice."""
        recomputer = ScoreRecomputer(db_session, test_user.id)
        await recomputer.save_metric(DailyMetricRecord(date="2025-01-01", weight_kg=70.0))
        await recomputer.save_metric(DailyMetricRecord(date="2025-01-01", weight_kg=69.5))

        history = await recomputer.load_history()
        assert len(history) == 1
        assert history[0].weight_kg == 69.5

    @pytest.mark.asyncio
    async def test_ready_day_gets_recommendation(self, db_session: AsyncSession, test_user: User):
        """Test that a ready day stores refeed targets."""
        await _seed_metrics(db_session, test_user, build_history(27, **STEADY_DAY))
        recomputer = ScoreRecomputer(db_session, test_user.id)

        result = await recomputer.save_metric(DailyMetricRecord(date="2025-01-28", **STEADY_DAY))

        assert result.score.scores.rrs >= 0.65
        assert result.recommendation is not None
        assert result.recommendation.kcal_total == 2640
        assert result.recommendation.protein_g == 140

        stored = await _recommendation(db_session, test_user, "2025-01-28")
        assert stored.kcal_total == 2640
        assert stored.carb_g == 88
        assert stored.fat_g == 192
        assert stored.executed is False
        assert stored.rationale_json["deficit_streak"] == 28
        assert stored.rationale_json["guards"] == {"fever_like": False, "acute_weight_gain": False}

    @pytest.mark.asyncio
    async def test_fever_suppresses_recommendation(self, db_session: AsyncSession, test_user: User):
        """Test that the fever guard removes the recommendation."""
        await _seed_metrics(db_session, test_user, build_history(27, **STEADY_DAY))
        recomputer = ScoreRecomputer(db_session, test_user.id)
        await recomputer.save_metric(DailyMetricRecord(date="2025-01-28", **STEADY_DAY))
        assert await _recommendation(db_session, test_user, "2025-01-28") is not None

        feverish = DailyMetricRecord(date="2025-01-28", **(STEADY_DAY | {"temp_c": 38.2}))
        result = await recomputer.save_metric(feverish)

        assert result.suppressed is True
        assert result.guards.fever_like is True
        assert result.recommendation is None
        assert await _recommendation(db_session, test_user, "2025-01-28") is None

    @pytest.mark.asyncio
    async def test_no_recommendation_without_tdee(self, db_session: AsyncSession):
        """Test that users without TDEE get no targets."""
        user = User(auth_uid="user-no-tdee")
        db_session.add(user)
        await db_session.commit()

        await _seed_metrics(db_session, user, build_history(27, **STEADY_DAY))
        result = await ScoreRecomputer(db_session, user.id).save_metric(
            DailyMetricRecord(date="2025-01-28", **STEADY_DAY)
        )

        assert result.score.scores.rrs >= 0.65
        assert result.recommendation is None
        assert await _recommendation(db_session, user, "2025-01-28") is None

    @pytest.mark.asyncio
    async def test_backfilled_day_rescores_later_days(self, db_session: AsyncSession, test_user: User):
        """Test that a backfilled day rescores later days."""
        records = build_history(10, **STEADY_DAY)
        await _seed_metrics(db_session, test_user, records[:4] + records[5:])
        recomputer = ScoreRecomputer(db_session, test_user.id)
        await recomputer.recompute_from_date("2025-01-01")

        no_intake = DailyMetricRecord(date="2025-01-05", **(STEADY_DAY | {"calorie_intake_kcal": None}))
        await recomputer.save_metric(no_intake)

        by_date = {s.date.isoformat(): s for s in await _scores(db_session, test_user)}
        assert by_date["2025-01-05"].deficit_streak == 0
        assert by_date["2025-01-10"].deficit_streak == 5


class TestDeleteMetric:
    @pytest.mark.asyncio
    async def test_delete_rescores_following_days(self, db_session: AsyncSession, test_user: User):
        """Test that deleting a day rescores later days."""
        records = build_history(10, **(STEADY_DAY | {"calorie_intake_kcal": lambda i: None if i == 4 else 2000.0}))
        await _seed_metrics(db_session, test_user, records)
        recomputer = ScoreRecomputer(db_session, test_user.id)
        await recomputer.recompute_from_date("2025-01-01")

        before = {s.date.isoformat(): s.deficit_streak for s in await _scores(db_session, test_user)}
        assert before["2025-01-10"] == 5

        day = await recomputer.delete_metric("2025-01-05")

        assert day is None
        after = {s.date.isoformat(): s.deficit_streak for s in await _scores(db_session, test_user)}
        assert "2025-01-05" not in after
        assert after["2025-01-10"] == 9

    @pytest.mark.asyncio
    async def test_delete_keeps_executed_refeed(self, db_session: AsyncSession, test_user: User):
        """Test that executed refeeds survive a metric delete."""
        await _seed_metrics(db_session, test_user, build_history(3, **STEADY_DAY))
        db_session.add(
            Recommendation(user_id=test_user.id, date=date(2025, 1, 2), executed=True)
        )
        await db_session.commit()

        await ScoreRecomputer(db_session, test_user.id).delete_metric("2025-01-02")

        assert await _recommendation(db_session, test_user, "2025-01-02") is not None

    @pytest.mark.asyncio
    async def test_delete_missing_day(self, db_session: AsyncSession, test_user: User):
        """Test deleting a day without metrics."""
        with pytest.raises(MetricNotFoundError):
            await ScoreRecomputer(db_session, test_user.id).delete_metric("2025-01-01")


class TestSetRefeedExecuted:
    """Toggling a recommendation's execution and the resulting cooldown."""

    async def _seed_pending(self, db: AsyncSession, user: User) -> ScoreRecomputer:
        await _seed_metrics(db, user, build_history(10, **STEADY_DAY))
        db.add(Recommendation(user_id=user.id, date=date(2025, 1, 5), kcal_total=2640))
        await db.commit()
        recomputer = ScoreRecomputer(db, user.id)
        await recomputer.recompute_from_date("2025-01-01")
        await db.commit()
        return recomputer

    @pytest.mark.asyncio
    async def test_execution_locks_next_three_days(self, db_session: AsyncSession, test_user: User):
        """Marking a refeed executed hard-locks it and the two days after."""
        recomputer = await self._seed_pending(db_session, test_user)

        day = await recomputer.set_refeed_executed("2025-01-05", True, effect_window=7)

        assert day.readiness.hard_locked is True
        stored = await _recommendation(db_session, test_user, "2025-01-05")
        assert stored.executed is True
        assert stored.refeed_effect_window == 7

        locked = {s.date.isoformat(): s.hard_locked for s in await _scores(db_session, test_user)}
        assert locked["2025-01-04"] is False
        assert locked["2025-01-05"] is True
        assert locked["2025-01-06"] is True
        assert locked["2025-01-07"] is True
        assert locked["2025-01-08"] is False

    @pytest.mark.asyncio
    async def test_clearing_execution_lifts_lock(self, db_session: AsyncSession, test_user: User):
        """Un-marking the refeed removes the cooldown from later scores."""
        recomputer = await self._seed_pending(db_session, test_user)
        await recomputer.set_refeed_executed("2025-01-05", True, effect_window=7)

        await recomputer.set_refeed_executed("2025-01-05", False)

        stored = await _recommendation(db_session, test_user, "2025-01-05")
        assert stored.executed is False
        assert stored.refeed_effect_window is None
        scores = await _scores(db_session, test_user)
        assert not any(s.hard_locked for s in scores)
        assert all(s.refeed_cooldown == 0.0 for s in scores)

    @pytest.mark.asyncio
    async def test_executed_at_moves_lock(self, db_session: AsyncSession, test_user: User):
        """The lock starts on the day the refeed was actually eaten."""
        recomputer = await self._seed_pending(db_session, test_user)

        await recomputer.set_refeed_executed("2025-01-05", True, executed_at=datetime(2025, 1, 6, 19, 0))

        locked = {s.date.isoformat(): s.hard_locked for s in await _scores(db_session, test_user)}
        assert locked["2025-01-05"] is False
        assert locked["2025-01-08"] is True
        assert locked["2025-01-09"] is False

    @pytest.mark.asyncio
    async def test_missing_recommendation(self, db_session: AsyncSession, test_user: User):
        """Toggling a day without a recommendation is an error."""
        with pytest.raises(RecommendationNotFoundError):
            await ScoreRecomputer(db_session, test_user.id).set_refeed_executed("2025-01-05", True)
