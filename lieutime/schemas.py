"""
Request bodies for the HTTP API. Range and precision checks on hours are left
to the service layer so every entry point reports them the same way.
"""
from pydantic import BaseModel, Field
import datetime as dt
from typing import List, Optional


class RowKeyIn(BaseModel):
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    role_id: Optional[str] = None
    entry_type: str = "Work"


class EntryUpsert(RowKeyIn):
    date: dt.date
    hours: float
    description: Optional[str] = None


class EntryUpdate(BaseModel):
    hours: Optional[float] = None
    date: Optional[dt.date] = None
    row_key: Optional[RowKeyIn] = None
    description: Optional[str] = None


class RowReassign(BaseModel):
    week_start: dt.date
    previous: RowKeyIn
    next: RowKeyIn


class RowDelete(BaseModel):
    week_start: dt.date
    row_key: RowKeyIn


class ImportRow(RowKeyIn):
    date: dt.date
    hours: float
    description: Optional[str] = None


class ImportRequest(BaseModel):
    rows: List[ImportRow] = Field(default_factory=list)


class WeekGridRow(RowKeyIn):
    # Sunday first
    hours: List[float] = Field(default_factory=list)


class WeekGridImport(BaseModel):
    week_start: dt.date
    rows: List[WeekGridRow] = Field(default_factory=list)


class BalanceUpdate(BaseModel):
    initial_lieu_balance: float


class ConfigUpdate(BaseModel):
    value: float
