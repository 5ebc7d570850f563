"""
Storage contract of the presence engine.

The engine only needs lookups by id, "the open session of employee X", and
"employee X's recent check-ins / locations", plus append-only writes. The
SQLAlchemy implementation lives in pairwatch.services.storage; the in-memory
one below backs tests and single-process demos.
"""
from __future__ import annotations

import copy
from datetime import datetime
from typing import Protocol

from pairwatch.engine.domain import (
    AIAlert,
    CheckIn,
    Employee,
    LocationSample,
    Pair,
    PresenceSession,
    Site,
)
from pairwatch.errors import NotFoundError


class PresenceRepository(Protocol):
    async def get_employee(self, employee_id: str) -> Employee | None: ...

    async def add_employee(self, employee: Employee) -> Employee: ...

    async def get_site(self, site_id: str) -> Site | None: ...

    async def add_site(self, site: Site) -> Site: ...

    async def list_sites(self) -> list[Site]: ...

    async def get_pair(self, pair_id: str) -> Pair | None: ...

    async def add_pair(self, pair: Pair) -> Pair: ...

    async def set_pair_active(self, pair_id: str, active: bool) -> Pair: ...

    async def active_pairs_for(self, employee_id: str) -> list[Pair]: ...

    async def get_session(self, session_id: str) -> PresenceSession | None: ...

    async def get_open_session(self, employee_id: str) -> PresenceSession | None: ...

    async def list_open_sessions(self) -> list[PresenceSession]: ...

    async def save_session(self, session: PresenceSession) -> PresenceSession: ...

    async def add_location(self, employee_id: str, sample: LocationSample) -> None: ...

    async def recent_locations(self, employee_id: str, limit: int) -> list[LocationSample]: ...

    async def recent_check_ins(self, employee_id: str, limit: int) -> list[CheckIn]: ...

    async def add_alerts(self, alerts: list[AIAlert]) -> list[AIAlert]: ...

    async def list_alerts(
        self, employee_id: str | None = None, unresolved_only: bool = False
    ) -> list[AIAlert]: ...

    async def resolve_alert(self, alert_id: str, resolved_by: str, at: datetime) -> AIAlert: ...


class InMemoryRepository:
    """Dict-backed repository. Returns copies so callers can't mutate stored state."""

    def __init__(self):
        self.employees: dict[str, Employee] = {}
        self.sites: dict[str, Site] = {}
        self.pairs: dict[str, Pair] = {}
        self.sessions: dict[str, PresenceSession] = {}
        self.locations: dict[str, list[LocationSample]] = {}
        self.alerts: dict[str, AIAlert] = {}

    async def get_employee(self, employee_id: str) -> Employee | None:
        return self.employees.get(employee_id)

    async def add_employee(self, employee: Employee) -> Employee:
        self.employees[employee.id] = employee
        return employee

    async def get_site(self, site_id: str) -> Site | None:
        return self.sites.get(site_id)

    async def add_site(self, site: Site) -> Site:
        self.sites[site.id] = site
        return site

    async def list_sites(self) -> list[Site]:
        return sorted(self.sites.values(), key=lambda s: s.name)

    async def get_pair(self, pair_id: str) -> Pair | None:
        return self.pairs.get(pair_id)

    async def add_pair(self, pair: Pair) -> Pair:
        self.pairs[pair.id] = pair
        return pair

    async def set_pair_active(self, pair_id: str, active: bool) -> Pair:
        pair = self.pairs.get(pair_id)
        if pair is None:
            raise NotFoundError(f"Pair {pair_id} not found")
        updated = Pair(pair.id, pair.employee_a_id, pair.employee_b_id, pair.site_id, active)
        self.pairs[pair_id] = updated
        return updated

    async def active_pairs_for(self, employee_id: str) -> list[Pair]:
        return [p for p in self.pairs.values() if p.active and p.includes(employee_id)]

    async def get_session(self, session_id: str) -> PresenceSession | None:
        session = self.sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def get_open_session(self, employee_id: str) -> PresenceSession | None:
        for session in self.sessions.values():
            if session.employee_id == employee_id and not session.is_ended:
                return copy.deepcopy(session)
        return None

    async def list_open_sessions(self) -> list[PresenceSession]:
        return [copy.deepcopy(s) for s in self.sessions.values() if not s.is_ended]

    async def save_session(self, session: PresenceSession) -> PresenceSession:
        self.sessions[session.id] = copy.deepcopy(session)
        return session

    async def add_location(self, employee_id: str, sample: LocationSample) -> None:
        self.locations.setdefault(employee_id, []).append(sample)

    async def recent_locations(self, employee_id: str, limit: int) -> list[LocationSample]:
        samples = sorted(self.locations.get(employee_id, []), key=lambda l: l.timestamp)
        return samples[-limit:]

    async def recent_check_ins(self, employee_id: str, limit: int) -> list[CheckIn]:
        check_ins = [
            c
            for s in self.sessions.values()
            if s.employee_id == employee_id
            for c in s.check_ins
        ]
        check_ins.sort(key=lambda c: c.timestamp)
        return check_ins[-limit:]

    async def add_alerts(self, alerts: list[AIAlert]) -> list[AIAlert]:
        for alert in alerts:
            self.alerts[alert.id] = copy.copy(alert)
        return alerts

    async def list_alerts(
        self, employee_id: str | None = None, unresolved_only: bool = False
    ) -> list[AIAlert]:
        out = [
            copy.copy(a)
            for a in self.alerts.values()
            if (employee_id is None or a.employee_id == employee_id)
            and not (unresolved_only and a.resolved)
        ]
        return sorted(out, key=lambda a: a.timestamp, reverse=True)

    async def resolve_alert(self, alert_id: str, resolved_by: str, at: datetime) -> AIAlert:
        alert = self.alerts.get(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        alert.resolved = True
        alert.resolved_by = resolved_by
        alert.resolved_at = at
        return copy.copy(alert)
