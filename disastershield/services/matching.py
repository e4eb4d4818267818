"""Contractor-to-claim scoring and selection"""

import logging
import math
from collections.abc import Iterable, Mapping
from datetime import datetime, time, timedelta, timezone
from uuid import UUID

from disastershield.config import settings
from disastershield.db.models import CapacityStatus, Peril, Trade
from disastershield.schemas.claims import ClaimDetails, ContractorProfile
from disastershield.schemas.matching import (
    ContractorMatchScores,
    FitLevel,
    ScoredContractor,
)

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)

# Relevant trades per peril, most specific first
PERIL_TRADE_MAP: dict[Peril, tuple[Trade, ...]] = {
    Peril.WATER: (Trade.WATER_MITIGATION, Trade.MOLD, Trade.GENERAL),
    Peril.FLOOD: (Trade.WATER_MITIGATION, Trade.REBUILD, Trade.GENERAL),
    Peril.WIND: (Trade.ROOFING, Trade.REBUILD, Trade.GENERAL),
    Peril.FIRE: (Trade.REBUILD, Trade.SMOKE_RESTORATION, Trade.GENERAL),
    Peril.MOLD: (Trade.MOLD, Trade.WATER_MITIGATION, Trade.GENERAL),
    Peril.OTHER: (Trade.REBUILD, Trade.GENERAL),
}


def relevant_trades(peril: Peril) -> tuple[Trade, ...]:
    return PERIL_TRADE_MAP.get(peril, (Trade.REBUILD, Trade.GENERAL))


def _geographic_fit(
    claim: ClaimDetails,
    contractor: ContractorProfile,
) -> tuple[FitLevel, float, str | None]:
    """Match service areas against the claim's ZIP, city and state"""
    if not contractor.service_areas:
        return FitLevel.NEUTRAL, settings.neutral_area_points, "Serves all areas"

    areas = {area.lower() for area in contractor.service_areas}

    if claim.zip.strip().lower() in areas:
        return FitLevel.MATCH, settings.zip_match_points, "Serves your ZIP code"
    if claim.city.strip().lower() in areas:
        return FitLevel.MATCH, settings.city_match_points, "Serves your city"
    if claim.state.strip().lower() in areas:
        return FitLevel.MATCH, settings.state_match_points, "Serves your state"

    return FitLevel.MISMATCH, settings.area_mismatch_points, None


def _trade_fit(
    claim: ClaimDetails,
    contractor: ContractorProfile,
) -> tuple[FitLevel, float, str | None]:
    if not contractor.trades:
        return FitLevel.NEUTRAL, settings.neutral_trade_points, "Handles all job types"

    if contractor.trades.intersection(relevant_trades(claim.peril)):
        return (
            FitLevel.MATCH,
            settings.trade_match_points,
            f"Specialized in {claim.peril.value} damage",
        )

    return FitLevel.MISMATCH, 0.0, None


def _workload_points(open_projects: int) -> float:
    """Fewer open assigned projects scores higher"""
    return settings.workload_points / (1 + max(0, open_projects))


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _urgency(claim: ClaimDetails, now: datetime) -> tuple[float, str | None]:
    """Recent incidents earn a response bonus, counted in whole days"""
    days_since_incident = (_as_utc(now) - _as_utc(claim.incident_at)) // ONE_DAY

    if days_since_incident <= 1:
        return settings.emergency_response_points, "Emergency response available"
    if days_since_incident <= 3:
        return settings.quick_response_points, "Quick response available"
    return 0.0, None


def _preferred_date(claim: ClaimDetails, now: datetime) -> tuple[float, str | None]:
    if claim.preferred_date is None:
        return 0.0, None

    preferred = datetime.combine(claim.preferred_date, time.min, tzinfo=timezone.utc)
    days_until_preferred = (preferred - _as_utc(now)) // ONE_DAY

    if 1 <= days_until_preferred <= 7:
        return settings.preferred_date_points, "Available for preferred date"
    return 0.0, None


def score_contractor(
    claim: ClaimDetails,
    contractor: ContractorProfile,
    open_projects: int = 0,
    now: datetime | None = None,
) -> ScoredContractor:
    """
    Score one contractor against a claim.

    Time-based signals (incident urgency, preferred date) apply only when
    ``now`` is given, so the same inputs always produce the same score.
    """
    reasons = ["Available"]

    geographic_fit, geographic_points, geo_reason = _geographic_fit(claim, contractor)
    if geo_reason:
        reasons.append(geo_reason)

    trade_fit, trade_points, trade_reason = _trade_fit(claim, contractor)
    if trade_reason:
        reasons.append(trade_reason)

    workload = _workload_points(open_projects)
    if open_projects == 0:
        reasons.append("No open projects")

    scheduling = 0.0
    if contractor.calendly_url:
        scheduling = settings.online_scheduling_points
        reasons.append("Online scheduling available")

    urgency = preferred_date = 0.0
    if now is not None:
        urgency, urgency_reason = _urgency(claim, now)
        preferred_date, preferred_reason = _preferred_date(claim, now)
        reasons.extend(reason for reason in (urgency_reason, preferred_reason) if reason)

    availability = settings.base_availability_points
    final_score = (
        availability + geographic_points + trade_points + workload
        + scheduling + urgency + preferred_date
    )

    return ScoredContractor(
        contractor=contractor,
        scores=ContractorMatchScores(
            availability=availability,
            geographic=geographic_points,
            trade=trade_points,
            workload=workload,
            scheduling=scheduling,
            urgency=urgency,
            preferred_date=preferred_date,
            final_score=round(final_score, 4),
        ),
        geographic_fit=geographic_fit,
        trade_fit=trade_fit,
        open_projects=open_projects,
        reasons=reasons,
    )


def score_contractors(
    claim: ClaimDetails,
    contractors: Iterable[ContractorProfile],
    workloads: Mapping[UUID, int] | None = None,
    now: datetime | None = None,
) -> list[ScoredContractor]:
    """
    Score every active contractor against a claim.

    Pure function: output order follows input order, paused contractors are
    dropped, and scores are never negative.
    """
    workloads = workloads or {}
    scored = []

    for contractor in contractors:
        if contractor.capacity != CapacityStatus.ACTIVE:
            logger.debug(f"Skipping paused contractor {contractor.id}")
            continue

        result = score_contractor(claim, contractor, workloads.get(contractor.id, 0), now)
        logger.debug(
            f"Contractor {contractor.company_name}: score={result.score:.2f} "
            f"geo={result.geographic_fit.value} trade={result.trade_fit.value}"
        )
        scored.append(result)

    return scored


def _creation_sort_key(contractor: ContractorProfile) -> float:
    created_at = contractor.created_at
    if created_at is None:
        return math.inf
    return _as_utc(created_at).timestamp()


def select_top_contractors(
    scored: Iterable[ScoredContractor],
    limit: int | None = None,
) -> list[ScoredContractor]:
    """
    Rank scored contractors and keep the top ``limit``.

    Only plausible candidates are proposed: a contractor must match the claim
    on location or trade, or carry the no-restriction default on either.
    Ties are broken by earliest creation time, then by id.
    """
    if limit is None:
        limit = settings.matching_max_contractors
    if limit <= 0:
        return []

    candidates = [candidate for candidate in scored if candidate.is_plausible]

    ranked = sorted(
        candidates,
        key=lambda c: (
            -c.score,
            _creation_sort_key(c.contractor),
            str(c.contractor.id),
        ),
    )

    return ranked[:limit]


def rank_contractors(
    claim: ClaimDetails,
    contractors: Iterable[ContractorProfile],
    limit: int | None = None,
    workloads: Mapping[UUID, int] | None = None,
    now: datetime | None = None,
) -> list[ScoredContractor]:
    """Score then select in one call"""
    return select_top_contractors(score_contractors(claim, contractors, workloads, now), limit)