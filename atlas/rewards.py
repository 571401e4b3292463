"""Retro Funding rewards read model used by the dashboard."""
from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from typing import Iterable

from atlas.models import ProjectReward

PROGRAMS = {
    "7": "Dev Tooling",
    "8": "Onchain Builders",
}

PROGRAM_YEAR = 2025

# Measurement months of the 2025 programs, in order
MONTHS = ("February", "March", "April", "May", "June", "July")
_FIRST_MONTH = 2


def program_name(round_id: str) -> str | None:
    return PROGRAMS.get(str(round_id))


def rewards_summary(rewards: Iterable[ProjectReward]) -> dict:
    """Total OP per program and overall; rounds outside known programs count only in the total."""
    by_round: dict[str, float] = defaultdict(float)
    total = 0.0
    for reward in rewards:
        total += reward.amount
        by_round[reward.round_id] += reward.amount
    by_program = [
        {"round_id": rid, "program": PROGRAMS[rid], "amount": amount}
        for rid, amount in sorted(by_round.items())
        if rid in PROGRAMS
    ]
    return {"total": total, "by_program": by_program}


def eligible_months(application_date: date | datetime) -> list[str]:
    """Months a project is enrolled in: the month it applied and every later one."""
    if isinstance(application_date, datetime):
        application_date = application_date.date()
    if application_date.year < PROGRAM_YEAR:
        return list(MONTHS)
    if application_date.year > PROGRAM_YEAR:
        return []
    start = max(application_date.month - _FIRST_MONTH, 0)
    return list(MONTHS[start:])
