"""
Weekly lieu ledger.

The ledger is a materialized view: every recompute rebuilds all weeks of one
user from the current entries, the current threshold and the user's initial
balance, then swaps the stored rows in one transaction. Nothing is patched in
place, so entries may move between weeks, disappear or arrive in bulk without
any bookkeeping on the write side.
"""
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional
import math
import threading
import uuid
from sqlalchemy.orm import Session
from lieutime.models.ledger import WeeklyLedgerRow
from lieutime.services.config_provider import ConfigProvider, LedgerConfig
from lieutime.services.repositories import EntryRepository, LedgerRepository, UserRepository
from lieutime.utils.timezone import start_of_week, utc_now, week_end
import logging

logger = logging.getLogger(__name__)

_TWO_PLACES = Decimal("0.01")


def round2(value: float) -> float:
    """Round half-up to 2 decimals."""
    return float(Decimal(str(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class LedgerWeek:
    week_start_date: date
    week_end_date: date
    total_hours: float
    overtime_hours: float
    lieu_earned: float
    running_balance: float

    @classmethod
    def from_row(cls, row: WeeklyLedgerRow) -> "LedgerWeek":
        return cls(
            week_start_date=row.week_start_date,
            week_end_date=row.week_end_date,
            total_hours=row.total_hours,
            overtime_hours=row.overtime_hours,
            lieu_earned=row.lieu_earned,
            running_balance=row.running_balance,
        )

    @classmethod
    def empty(cls, week_start: date, carried_balance: float) -> "LedgerWeek":
        """A week with no hours: no overtime, balance carried forward."""
        return cls(
            week_start_date=week_start,
            week_end_date=week_end(week_start),
            total_hours=0.0,
            overtime_hours=0.0,
            lieu_earned=0.0,
            running_balance=carried_balance,
        )

    def as_dict(self) -> dict:
        data = asdict(self)
        data["week_start_date"] = self.week_start_date.isoformat()
        data["week_end_date"] = self.week_end_date.isoformat()
        return data

    def to_record(self, user_id: str) -> dict:
        record = asdict(self)
        record["id"] = f"{user_id}-{self.week_start_date.isoformat()}"
        record["user_id"] = user_id
        return record


@dataclass(frozen=True)
class LedgerRecomputation:
    user_id: str
    initial_balance: float
    previous: List[LedgerWeek]
    current: List[LedgerWeek]
    revision: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def changed(self) -> bool:
        return self.previous != self.current


def weekly_totals(entries: Iterable) -> Dict[date, float]:
    """Sum hours per week start. Non-finite and non-positive hours are ignored."""
    totals: Dict[date, float] = defaultdict(float)
    for entry in entries:
        hours = entry.hours
        if hours is None or not math.isfinite(hours) or hours <= 0:
            continue
        totals[start_of_week(entry.date)] += hours
    return dict(totals)


def compute_ledger(entries: Iterable, threshold: float, initial_balance: float = 0.0) -> List[LedgerWeek]:
    """
    Build the ordered ledger for one user's entries.

    Weeks without hours produce no row; the balance simply carries over them.
    """
    balance = round2(initial_balance or 0.0)
    weeks: List[LedgerWeek] = []
    for week_start, total in sorted(weekly_totals(entries).items()):
        total_hours = round2(total)
        overtime = round2(max(0.0, total_hours - threshold))
        lieu_earned = overtime
        balance = round2(balance + lieu_earned)
        weeks.append(LedgerWeek(
            week_start_date=week_start,
            week_end_date=week_end(week_start),
            total_hours=total_hours,
            overtime_hours=overtime,
            lieu_earned=lieu_earned,
            running_balance=balance,
        ))
    return weeks


_user_locks: Dict[str, threading.Lock] = {}
_user_locks_guard = threading.Lock()


def user_lock(user_id: str) -> threading.Lock:
    """Process-wide lock serializing ledger recomputes for one user."""
    with _user_locks_guard:
        lock = _user_locks.get(user_id)
        if lock is None:
            lock = _user_locks[user_id] = threading.Lock()
        return lock


class LedgerService:
    def __init__(self, db: Session):
        self.db = db
        self.entries = EntryRepository(db)
        self.ledger = LedgerRepository(db)
        self.users = UserRepository(db)
        self.config = ConfigProvider(db)

    def get_ledger(self, user_id: str) -> List[LedgerWeek]:
        return [LedgerWeek.from_row(row) for row in self.ledger.list_by_user(user_id)]

    def recalculate_ledger(self, user_id: str, config: Optional[LedgerConfig] = None) -> LedgerRecomputation:
        """
        Rebuild and persist the full ledger for `user_id`.

        Raises RecomputeTransactionError if the replace fails; the previously
        stored ledger is then left untouched.
        """
        config = config or self.config.load()
        with user_lock(user_id):
            previous = self.get_ledger(user_id)
            initial_balance = self.users.get_initial_balance(user_id)
            entries = self.entries.list_by_user(user_id)

            current = compute_ledger(entries, config.weekly_threshold_hours, initial_balance)
            self.ledger.replace_ledger(user_id, [week.to_record(user_id) for week in current])

        logger.info(
            f"Recomputed ledger for {user_id}: {len(entries)} entries, {len(current)} weeks, "
            f"balance {current[-1].running_balance if current else round2(initial_balance)}"
        )
        return LedgerRecomputation(
            user_id=user_id,
            initial_balance=round2(initial_balance),
            previous=previous,
            current=current,
        )

    def recalculate_all(self, config: Optional[LedgerConfig] = None) -> Dict[str, LedgerRecomputation]:
        config = config or self.config.load()
        results = {}
        for user_id in self.users.list_ids():
            results[user_id] = self.recalculate_ledger(user_id, config)
        logger.info(f"Recomputed ledgers for {len(results)} users")
        return results

    def get_lieu_summary(self, user_id: str, now: Optional[datetime] = None) -> dict:
        """Current balance and this week's hours, as shown on the dashboard."""
        now = now or utc_now()
        config = self.config.load()
        latest = self.ledger.latest(user_id)
        balance = latest.running_balance if latest else round2(self.users.get_initial_balance(user_id))

        week_start = start_of_week(now)
        this_week = self.entries.list_in_week(user_id, week_start)
        this_week_hours = round2(sum(e.hours for e in this_week if e.hours and e.hours > 0))

        return {
            "lieu_balance": balance,
            "week_start_date": week_start.isoformat(),
            "this_week_hours": this_week_hours,
            "this_week_overtime": round2(max(0.0, this_week_hours - config.weekly_threshold_hours)),
            "weekly_threshold_hours": config.weekly_threshold_hours,
            "total_entries": self.entries.count_by_user(user_id),
        }
