"""
Score Recompute - Keeps persisted scores in step with a user's metrics.

Whenever a daily metric is saved or deleted, every score from that date
forward is recomputed in ascending date order (the rolling windows make each
day depend on the days before it) and upserted by (user, date). The
recommendation for the edited day is then written or removed.
"""
import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from refeed.models import DailyMetric, Recommendation, Score, User
from refeed.schemas.metrics import DailyMetricRecord, sort_records, upsert_record
from refeed.schemas.score import RefeedTargets, ScoreRecord
from refeed.services.guards import GuardFlags, evaluate_guard_flags, should_suppress_recommendation
from refeed.services.readiness import ScoreResult, calculate_scores
from refeed.services.readiness_v2 import RefeedReadiness, RefeedReadinessInput, compute_rrs_v2
from refeed.services.refeed_targets import compute_refeed_targets
from refeed.services.scoring_config import ScoringConfig, get_scoring_config
from refeed.services.statistics import round_fixed

logger = logging.getLogger(__name__)

STORED_DIGITS = 6

METRIC_FIELDS = [
    "weight_kg",
    "rhr_bpm",
    "temp_c",
    "hrv_ms",
    "sleep_min",
    "fatigue_1_5",
    "training_load",
    "calorie_intake_kcal",
    "energy_expenditure_kcal",
]

SCORE_FIELDS = [
    "mas",
    "rrs",
    "plateau_flag",
    "deficit_streak",
    "training_load_factor",
    "rrs_v2",
    "rrs_display",
    "rrs_effective",
    "refeed_cooldown",
    "refeed_response",
    "hard_locked",
    "effective_window",
    "observed_days",
]

TARGET_FIELDS = ["kcal_total", "carb_g", "protein_g", "fat_g", "duration_days", "rationale_json"]


class MetricNotFoundError(LookupError):
    """No daily metric exists for the requested user and date."""


class RecommendationNotFoundError(LookupError):
    """No recommendation exists for the requested user and date."""


@dataclass(frozen=True)
class RefeedExecution:
    """An executed refeed used as the cooldown reference."""
    executed_date: str
    effect_window: Optional[float] = None


@dataclass
class DayScore:
    """Both readiness engines evaluated for one day."""
    record: DailyMetricRecord
    scores: ScoreResult
    readiness: RefeedReadiness

    @property
    def date(self) -> str:
        return self.record.date

    def to_score_record(self) -> ScoreRecord:
        """Rounded row as persisted in the scores table."""
        return ScoreRecord(
            date=self.record.date,
            mas=round_fixed(self.scores.mas, STORED_DIGITS),
            rrs=round_fixed(self.scores.rrs, STORED_DIGITS),
            plateau_flag=self.scores.plateau_flag,
            deficit_streak=self.scores.deficit_streak,
            training_load_factor=round_fixed(self.scores.training_load_factor, STORED_DIGITS),
            rrs_v2=round_fixed(self.readiness.rrs, STORED_DIGITS),
            rrs_display=round_fixed(self.readiness.display_rrs, STORED_DIGITS),
            rrs_effective=round_fixed(self.readiness.effective_rrs, STORED_DIGITS),
            refeed_cooldown=round_fixed(self.readiness.cooldown, STORED_DIGITS),
            refeed_response=round_fixed(self.readiness.response, STORED_DIGITS),
            hard_locked=self.readiness.hard_locked,
            effective_window=self.readiness.effective_window,
            observed_days=self.readiness.observed_days,
        )


@dataclass
class MetricSaveResult:
    record: DailyMetricRecord
    score: Optional[DayScore]
    guards: GuardFlags
    suppressed: bool
    recommendation: Optional[RefeedTargets] = None
    rationale: dict[str, Any] = field(default_factory=dict)


def latest_execution(
    executions: Sequence[RefeedExecution],
    on_or_before: str,
) -> Optional[RefeedExecution]:
    """Most recent execution on or before the given day (executions date ordered)."""
    latest = None
    for execution in executions:
        if execution.executed_date <= on_or_before:
            latest = execution
    return latest


def score_history(
    records: Iterable[DailyMetricRecord],
    executions: Sequence[RefeedExecution] = (),
    estimated_tdee: Optional[float] = None,
    start_date: Optional[str] = None,
    config: Optional[ScoringConfig] = None,
) -> Iterator[DayScore]:
    """
    Score every day of a history in ascending order.

    Each day only sees the records up to and including itself. Days before
    `start_date` feed the rolling windows but are not yielded.
    """
    cfg = config or get_scoring_config()
    executions = sorted(executions, key=lambda execution: execution.executed_date)
    accumulator: list[DailyMetricRecord] = []

    for record in sort_records(records):
        accumulator.append(record)
        if start_date is not None and record.date < start_date:
            continue

        scores = calculate_scores(accumulator, estimated_tdee=estimated_tdee, config=cfg)
        execution = latest_execution(executions, record.date)
        readiness = compute_rrs_v2(
            RefeedReadinessInput(
                today=record.date,
                mas=scores.mas,
                plateau_flag=scores.plateau_flag,
                deficit_streak=scores.deficit_streak,
                training_load_factor=scores.training_load_factor,
                last_refeed_date=execution.executed_date if execution else None,
                refeed_effect_window=execution.effect_window if execution else None,
                records=list(accumulator),
            ),
            cfg,
        )
        yield DayScore(record=record, scores=scores, readiness=readiness)


def upsert_statement(db: AsyncSession, model, rows: list[dict], index_elements: list[str], update_fields: list[str]):
    """INSERT ... ON CONFLICT DO UPDATE for the session's dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert not supported for dialect {dialect!r}")

    stmt = insert(model).values(rows)
    return stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={name: stmt.excluded[name] for name in update_fields},
    )


def score_row(user_id: int, record: ScoreRecord) -> dict:
    row = record.model_dump()
    row["date"] = date.fromisoformat(record.date)
    row["user_id"] = user_id
    row["updated_at"] = datetime.utcnow()
    return row


async def upsert_scores(db: AsyncSession, user_id: int, records: Sequence[ScoreRecord]) -> None:
    if not records:
        return
    stmt = upsert_statement(
        db,
        Score,
        [score_row(user_id, record) for record in records],
        index_elements=["user_id", "date"],
        update_fields=SCORE_FIELDS + ["updated_at"],
    )
    await db.execute(stmt)


class ScoreRecomputer:
    """Recomputes and persists scores for one user."""

    def __init__(
        self,
        db: AsyncSession,
        user_id: int,
        config: Optional[ScoringConfig] = None,
    ):
        self.db = db
        self.user_id = user_id
        self.config = config or get_scoring_config()

    async def load_history(self) -> list[DailyMetricRecord]:
        """The user's complete metric history, oldest first."""
        result = await self.db.execute(
            select(DailyMetric)
            .where(DailyMetric.user_id == self.user_id)
            .order_by(DailyMetric.date.asc())
            .execution_options(populate_existing=True)
        )
        return [DailyMetricRecord.model_validate(row) for row in result.scalars().all()]

    async def load_executions(self) -> list[RefeedExecution]:
        result = await self.db.execute(
            select(Recommendation)
            .where(
                Recommendation.user_id == self.user_id,
                Recommendation.executed.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        executions = [
            RefeedExecution(
                executed_date=row.executed_date.isoformat(),
                effect_window=row.refeed_effect_window,
            )
            for row in result.scalars().all()
        ]
        return sorted(executions, key=lambda execution: execution.executed_date)

    async def last_executed_refeed(self, on_or_before: str) -> Optional[RefeedExecution]:
        return latest_execution(await self.load_executions(), on_or_before)

    async def _estimated_tdee(self) -> Optional[float]:
        user = await self.db.get(User, self.user_id)
        return user.estimated_tdee if user is not None else None

    async def recompute_from_date(
        self,
        start_date: str,
        estimated_tdee: Optional[float] = None,
        history: Optional[list[DailyMetricRecord]] = None,
    ) -> Optional[DayScore]:
        """
        Replace all scores on or after `start_date`.

        Returns the score for `start_date` itself, or None when no metric
        exists for that day. The caller owns the transaction.
        """
        if history is None:
            history = await self.load_history()
        executions = await self.load_executions()

        await self.db.execute(
            delete(Score).where(
                Score.user_id == self.user_id,
                Score.date >= date.fromisoformat(start_date),
            )
        )

        day_scores = list(
            score_history(history, executions, estimated_tdee, start_date, self.config)
        )
        await upsert_scores(self.db, self.user_id, [day.to_score_record() for day in day_scores])

        logger.info(
            "Scores recomputed",
            extra={
                "user_id": self.user_id,
                "start_date": start_date,
                "days": len(day_scores),
            },
        )

        for day in day_scores:
            if day.date == start_date:
                return day
        return None

    async def save_metric(self, record: DailyMetricRecord, notes: Optional[str] = None) -> MetricSaveResult:
        """Upsert one day's metrics, recompute scores and refresh its recommendation."""
        try:
            values = {name: getattr(record, name) for name in METRIC_FIELDS}
            stmt = upsert_statement(
                self.db,
                DailyMetric,
                [{
                    "user_id": self.user_id,
                    "date": date.fromisoformat(record.date),
                    "notes": notes[:500] if notes else None,
                    **values,
                }],
                index_elements=["user_id", "date"],
                update_fields=METRIC_FIELDS + ["notes"],
            )
            await self.db.execute(stmt)

            estimated_tdee = await self._estimated_tdee()
            history = upsert_record(await self.load_history(), record)

            guards = evaluate_guard_flags(record, history, self.config.guards)
            suppressed = should_suppress_recommendation(guards)
            if suppressed:
                logger.info(
                    "Recommendation guards triggered",
                    extra={
                        "user_id": self.user_id,
                        "date": record.date,
                        "triggered_rules": [rule.rule_id for rule in guards.triggered_rules],
                    },
                )

            day_score = await self.recompute_from_date(record.date, estimated_tdee, history)
            result = MetricSaveResult(
                record=record,
                score=day_score,
                guards=guards,
                suppressed=suppressed,
            )

            threshold = self.config.recommendation.action_threshold
            if not suppressed and day_score is not None and day_score.scores.rrs >= threshold:
                latest_weight = next(
                    (r.weight_kg for r in reversed(history) if r.weight_kg is not None),
                    None,
                )
                targets = compute_refeed_targets(
                    estimated_tdee,
                    latest_weight,
                    config=self.config.refeed_targets,
                )
                if targets is not None:
                    result.recommendation = targets
                    result.rationale = {
                        "mas": day_score.scores.mas,
                        "deficit_streak": day_score.scores.deficit_streak,
                        "training_load_factor": day_score.scores.training_load_factor,
                        "rrs_v2": day_score.readiness.rrs,
                        "guards": guards.to_dict(),
                    }
                    await self._upsert_recommendation(record.date, targets, result.rationale)
            else:
                await self._delete_recommendation(record.date)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Metric saved",
            extra={
                "user_id": self.user_id,
                "date": record.date,
                "rrs": day_score.scores.rrs if day_score else None,
                "recommended": result.recommendation is not None,
            },
        )
        return result

    async def delete_metric(self, day: str) -> Optional[DayScore]:
        """Delete one day's metrics and recompute everything after it."""
        try:
            result = await self.db.execute(
                delete(DailyMetric).where(
                    DailyMetric.user_id == self.user_id,
                    DailyMetric.date == date.fromisoformat(day),
                )
            )
            if result.rowcount == 0:
                raise MetricNotFoundError(f"No metrics for user {self.user_id} on {day}")

            await self._delete_recommendation(day)
            day_score = await self.recompute_from_date(day, await self._estimated_tdee())
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Metric deleted", extra={"user_id": self.user_id, "date": day})
        return day_score

    async def set_refeed_executed(
        self,
        day: str,
        executed: bool,
        executed_at: Optional[datetime] = None,
        effect_window: Optional[int] = None,
    ) -> Optional[DayScore]:
        """
        Mark the recommendation for `day` as executed (or not) and rescore.

        An executed recommendation is the cooldown reference for v2 readiness,
        so every score from the earliest affected day onward is recomputed.
        Clearing the flag also clears `executed_at` and the effect window.
        """
        try:
            result = await self.db.execute(
                select(Recommendation)
                .where(
                    Recommendation.user_id == self.user_id,
                    Recommendation.date == date.fromisoformat(day),
                )
                .execution_options(populate_existing=True)
            )
            recommendation = result.scalar_one_or_none()
            if recommendation is None:
                raise RecommendationNotFoundError(f"No recommendation for user {self.user_id} on {day}")

            affected = [day]
            if recommendation.executed:
                affected.append(recommendation.executed_date.isoformat())

            recommendation.executed = executed
            recommendation.executed_at = executed_at if executed else None
            recommendation.refeed_effect_window = effect_window if executed else None
            if executed:
                affected.append(recommendation.executed_date.isoformat())
            await self.db.flush()

            day_score = await self.recompute_from_date(min(affected), await self._estimated_tdee())
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Refeed execution updated",
            extra={"user_id": self.user_id, "date": day, "executed": executed},
        )
        return day_score

    async def _upsert_recommendation(self, day: str, targets: RefeedTargets, rationale: dict) -> None:
        stmt = upsert_statement(
            self.db,
            Recommendation,
            [{
                "user_id": self.user_id,
                "date": date.fromisoformat(day),
                "duration_days": self.config.recommendation.duration_days,
                "rationale_json": rationale,
                **targets.model_dump(),
            }],
            index_elements=["user_id", "date"],
            update_fields=TARGET_FIELDS,
        )
        await self.db.execute(stmt)

    async def _delete_recommendation(self, day: str) -> None:
        # Executed refeeds are history for the cooldown and are never removed
        await self.db.execute(
            delete(Recommendation).where(
                Recommendation.user_id == self.user_id,
                Recommendation.date == date.fromisoformat(day),
                Recommendation.executed.is_(False),
            )
        )
