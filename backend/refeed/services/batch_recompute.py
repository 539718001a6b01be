"""
Batch recompute of every user's score history.

Walks each user's metrics in date order, scores every day with both
readiness engines, upserts the results in chunks and writes a CSV snapshot
of metrics and scores for offline analysis.

Usage:
    refeed-recompute --output data/rrs_v2_metrics_with_scores.csv --batch-size 500
"""
import argparse
import asyncio
import csv
import logging
import sys
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from refeed.config import get_settings
from refeed.models import DailyMetric, Recommendation, User
from refeed.schemas.metrics import DailyMetricRecord
from refeed.schemas.score import ScoreRecord
from refeed.services.recompute import DayScore, RefeedExecution, score_history, upsert_scores
from refeed.services.scoring_config import ScoringConfig, get_scoring_config
from refeed.services.statistics import finite_or_none, format_fixed

logger = logging.getLogger(__name__)

SNAPSHOT_COLUMNS = [
    "auth_uid",
    "user_id",
    "date",
    "weight_kg",
    "rhr_bpm",
    "temp_c",
    "hrv_ms",
    "sleep_min",
    "fatigue_1_5",
    "training_load",
    "calorie_intake_kcal",
    "energy_expenditure_kcal",
    "mas",
    "rrs_v1",
    "rrs_v2",
    "rrs_display",
    "rrs_effective",
    "refeed_cooldown",
    "refeed_response",
    "deficit_streak",
    "training_load_factor",
    "plateau_flag",
    "hard_locked",
    "observed_days",
]

# Decimal places per numeric column; anything missing here is written as is
COLUMN_DIGITS = {
    "weight_kg": 2,
    "rhr_bpm": 2,
    "temp_c": 2,
    "hrv_ms": 2,
    "sleep_min": 0,
    "fatigue_1_5": 0,
    "training_load": 0,
    "calorie_intake_kcal": 0,
    "energy_expenditure_kcal": 0,
    "mas": 4,
    "rrs_v1": 4,
    "rrs_v2": 4,
    "rrs_display": 4,
    "rrs_effective": 4,
    "refeed_cooldown": 3,
    "refeed_response": 3,
    "training_load_factor": 3,
}

DEFAULT_BATCH_SIZE = 500


@dataclass
class BatchRecomputeResult:
    users: int = 0
    scores: int = 0
    snapshot_path: Optional[Path] = None


def format_cell(column: str, value) -> str:
    """Render one snapshot cell; absent or non-finite values are empty."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    digits = COLUMN_DIGITS.get(column)
    if digits is None:
        return str(value)
    number = finite_or_none(value)
    if number is None:
        return ""
    return format_fixed(number, digits)


def snapshot_row(
    day: DayScore,
    user_id=None,
    auth_uid: Optional[str] = None,
) -> dict:
    """
    Unformatted snapshot values for one scored day.

    Scores come straight from the engines, not from the stored row, so each
    cell is rounded exactly once by `format_cell`.
    """
    record = day.record
    return {
        "auth_uid": auth_uid if auth_uid is not None else user_id,
        "user_id": user_id,
        "date": record.date,
        "weight_kg": record.weight_kg,
        "rhr_bpm": record.rhr_bpm,
        "temp_c": record.temp_c,
        "hrv_ms": record.hrv_ms,
        "sleep_min": record.sleep_min,
        "fatigue_1_5": record.fatigue_1_5,
        "training_load": record.training_load,
        "calorie_intake_kcal": record.calorie_intake_kcal,
        "energy_expenditure_kcal": record.energy_expenditure_kcal,
        "mas": day.scores.mas,
        "rrs_v1": day.scores.rrs,
        "rrs_v2": day.readiness.rrs,
        "rrs_display": day.readiness.display_rrs,
        "rrs_effective": day.readiness.effective_rrs,
        "refeed_cooldown": day.readiness.cooldown,
        "refeed_response": day.readiness.response,
        "deficit_streak": day.scores.deficit_streak,
        "training_load_factor": day.scores.training_load_factor,
        "plateau_flag": day.scores.plateau_flag,
        "hard_locked": day.readiness.hard_locked,
        "observed_days": day.readiness.observed_days,
    }


def recompute_user_history(
    records: Sequence[DailyMetricRecord],
    executions: Sequence[RefeedExecution] = (),
    config: Optional[ScoringConfig] = None,
    user_id=None,
    auth_uid: Optional[str] = None,
) -> list[tuple[ScoreRecord, dict]]:
    """
    Score one user's whole history, oldest day first.

    No TDEE fallback is used here: the deficit streak only counts days with a
    recorded energy expenditure.
    """
    results = []
    for day in score_history(records, executions, config=config):
        score = day.to_score_record()
        results.append((score, snapshot_row(day, user_id, auth_uid)))
    return results


def write_snapshot(path: Path, rows: Sequence[dict]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    ordered = sorted(rows, key=lambda row: (row["user_id"], row["date"]))
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(SNAPSHOT_COLUMNS)
        for row in ordered:
            writer.writerow([format_cell(column, row[column]) for column in SNAPSHOT_COLUMNS])


async def _load_metrics(db: AsyncSession) -> dict[int, list[DailyMetricRecord]]:
    result = await db.execute(
        select(DailyMetric).order_by(DailyMetric.user_id.asc(), DailyMetric.date.asc())
    )
    by_user: dict[int, list[DailyMetricRecord]] = defaultdict(list)
    for row in result.scalars().all():
        by_user[row.user_id].append(DailyMetricRecord.model_validate(row))
    return by_user


async def _load_executions(db: AsyncSession) -> dict[int, list[RefeedExecution]]:
    result = await db.execute(select(Recommendation).where(Recommendation.executed.is_(True)))
    by_user: dict[int, list[RefeedExecution]] = defaultdict(list)
    for row in result.scalars().all():
        by_user[row.user_id].append(
            RefeedExecution(
                executed_date=row.executed_date.isoformat(),
                effect_window=row.refeed_effect_window,
            )
        )
    for executions in by_user.values():
        executions.sort(key=lambda execution: execution.executed_date)
    return by_user


async def _load_auth_uids(db: AsyncSession) -> dict[int, str]:
    result = await db.execute(select(User.id, User.auth_uid))
    return {user_id: auth_uid for user_id, auth_uid in result.all()}


async def run_batch_recompute(
    db: AsyncSession,
    snapshot_path: Optional[str | Path] = None,
    batch_size: Optional[int] = None,
    config: Optional[ScoringConfig] = None,
) -> BatchRecomputeResult:
    """Recompute and upsert every user's scores, then write the CSV snapshot."""
    settings = get_settings()
    cfg = config or get_scoring_config()
    batch_size = batch_size or settings.recompute_batch_size or DEFAULT_BATCH_SIZE
    path = Path(snapshot_path or settings.snapshot_path)

    metrics = await _load_metrics(db)
    executions = await _load_executions(db)
    auth_uids = await _load_auth_uids(db)

    result = BatchRecomputeResult(snapshot_path=path)
    snapshot_rows: list[dict] = []

    try:
        for user_id in sorted(metrics):
            scored = recompute_user_history(
                metrics[user_id],
                executions.get(user_id, []),
                cfg,
                user_id=user_id,
                auth_uid=auth_uids.get(user_id),
            )
            scores = [score for score, _ in scored]
            for start in range(0, len(scores), batch_size):
                await upsert_scores(db, user_id, scores[start:start + batch_size])
            await db.commit()

            snapshot_rows.extend(row for _, row in scored)
            result.users += 1
            result.scores += len(scores)
            logger.info(
                "User history recomputed",
                extra={"user_id": user_id, "days": len(scores)},
            )
    except Exception:
        await db.rollback()
        raise

    write_snapshot(path, snapshot_rows)
    logger.info(
        "Batch recompute finished",
        extra={
            "users": result.users,
            "scores": result.scores,
            "snapshot_path": str(path),
        },
    )
    return result


async def _run(output: Optional[str], batch_size: Optional[int]) -> BatchRecomputeResult:
    from refeed.database import init_models, session_scope

    await init_models()
    async with session_scope() as session:
        return await run_batch_recompute(session, output, batch_size)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Recompute refeed readiness scores for all users")
    parser.add_argument("--output", help="CSV snapshot path")
    parser.add_argument("--batch-size", type=int, help="Scores per upsert statement")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        result = asyncio.run(_run(args.output, args.batch_size))
    except Exception:
        logger.exception("Batch recompute failed")
        return 1

    print(f"Recomputed {result.scores} scores for {result.users} users -> {result.snapshot_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
