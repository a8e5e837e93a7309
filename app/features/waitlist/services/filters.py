"""
Composable entrant filters for admin list/search queries.

Filters are small value objects that render a SQLAlchemy clause, combined
with ``&``:

    flt = StatusIs(EntrantStatus.pending) & EmailVerifiedIs(True)
    stmt = select(Entrant).where(flt.clause())

The ranking engine's own queries do not go through this module.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import and_, true
from sqlalchemy.sql.elements import ColumnElement

from app.features.waitlist.models.entrant import Entrant, EntrantStatus


class EntrantFilter:
    def clause(self) -> ColumnElement:
        raise NotImplementedError

    def __and__(self, other: "EntrantFilter") -> "AllOf":
        left = self.filters if isinstance(self, AllOf) else (self,)
        right = other.filters if isinstance(other, AllOf) else (other,)
        return AllOf(left + right)


@dataclass(frozen=True)
class AllOf(EntrantFilter):
    filters: Tuple[EntrantFilter, ...] = ()

    def clause(self) -> ColumnElement:
        if not self.filters:
            return true()
        return and_(*(f.clause() for f in self.filters))


@dataclass(frozen=True)
class StatusIs(EntrantFilter):
    status: EntrantStatus

    def clause(self) -> ColumnElement:
        return Entrant.status == self.status


@dataclass(frozen=True)
class EmailVerifiedIs(EntrantFilter):
    verified: bool

    def clause(self) -> ColumnElement:
        return Entrant.email_verified == self.verified


@dataclass(frozen=True)
class ReferredBy(EntrantFilter):
    referrer_id: str

    def clause(self) -> ColumnElement:
        return Entrant.referred_by_id == self.referrer_id


@dataclass(frozen=True)
class EmailContains(EntrantFilter):
    term: str

    def clause(self) -> ColumnElement:
        return Entrant.email.ilike(f"%{self.term.strip()}%")


@dataclass(frozen=True)
class CreatedBetween(EntrantFilter):
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def clause(self) -> ColumnElement:
        parts = []
        if self.start is not None:
            parts.append(Entrant.created_at >= self.start)
        if self.end is not None:
            parts.append(Entrant.created_at < self.end)
        return and_(*parts) if parts else true()


def build_filter(
    status: Optional[EntrantStatus] = None,
    verified: Optional[bool] = None,
    referred_by: Optional[str] = None,
    search: Optional[str] = None,
) -> EntrantFilter:
    """Turn optional query parameters into one composed filter."""
    flt: EntrantFilter = AllOf()
    if status is not None:
        flt = flt & StatusIs(status)
    if verified is not None:
        flt = flt & EmailVerifiedIs(verified)
    if referred_by:
        flt = flt & ReferredBy(referred_by)
    if search:
        flt = flt & EmailContains(search)
    return flt
