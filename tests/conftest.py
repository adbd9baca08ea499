"""
Test fixtures for the grievance service.

Provides:
- Async SQLite in-memory database per test (shared through a StaticPool)
- Unit-of-work session context matching production wiring
- Reference data: one citizen, one category, three authorities, default rules
- Complaint factory with ages relative to a fixed clock
- Recording notification sink
"""

from datetime import datetime, timedelta, timezone
from functools import partial
from itertools import count
from typing import List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from grievance.escalation.application import INotificationSink
from grievance.escalation.infrastructure.models import (
    AuthorityModel, CategoryModel, ComplaintModel, EscalationRuleModel, UserModel,
)
from grievance.escalation.services import EscalationEngine
from grievance.infrastructure.database import Base, build_session_maker, session_scope

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

# Fixed "now" for every engine built by these fixtures
NOW = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)

CITIZEN_ID = 1
ADMIN_ID = 2
COMMISSIONER_ID = 1
WARD_OFFICER_ID = 2
CLOSED_OFFICE_ID = 3


class RecordingSink(INotificationSink):
    """Notification sink that remembers every call."""

    def __init__(self, result: bool = True, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.escalations: List[tuple] = []
        self.status_changes: List[tuple] = []

    async def notify_escalation(self, complaint, reason, authority=None) -> bool:
        self.escalations.append((complaint.ucn, reason, authority.id if authority else None))
        if self.error:
            raise self.error
        return self.result

    async def notify_status_change(self, complaint, old_status, new_status, remarks=None) -> bool:
        self.status_changes.append((complaint.ucn, old_status, new_status, remarks))
        if self.error:
            raise self.error
        return self.result


class Seeder:
    """Writes fixture rows in their own committed sessions."""

    def __init__(self, session_maker):
        self._maker = session_maker
        self._ucn = count(1)

    async def add(self, *models):
        async with self._maker() as session:
            session.add_all(models)
            await session.commit()
        return models

    async def complaint(
        self,
        hours_old: float,
        severity: str = "High",
        status: str = "Submitted",
        authority_id: Optional[int] = WARD_OFFICER_ID,
        user_id: int = CITIZEN_ID,
        updated_hours_ago: Optional[float] = None,
    ) -> int:
        created = NOW - timedelta(hours=hours_old)
        updated = NOW - timedelta(hours=updated_hours_ago) if updated_hours_ago is not None else created
        model = ComplaintModel(
            ucn=f"GRV-2024-{next(self._ucn):06d}",
            user_id=user_id,
            category_id=1,
            assigned_authority_id=authority_id,
            title="Pothole on main road",
            severity=severity,
            status=status,
            created_at=created,
            updated_at=updated,
        )
        await self.add(model)
        return model.id

    async def rule(
        self,
        severity: str,
        hours: int,
        authority_id: Optional[int] = None,
        is_active: bool = True,
    ) -> int:
        model = EscalationRuleModel(
            severity=severity,
            time_limit_hours=hours,
            escalation_authority_id=authority_id,
            is_active=is_active,
        )
        await self.add(model)
        return model.id

    async def count(self, model, *criteria) -> int:
        async with self._maker() as session:
            stmt = select(func.count()).select_from(model)
            for criterion in criteria:
                stmt = stmt.where(criterion)
            return (await session.execute(stmt)).scalar_one()

    async def update(self, model, pk, **values):
        async with self._maker() as session:
            row = await session.get(model, pk)
            for key, value in values.items():
                setattr(row, key, value)
            await session.commit()

    async def get(self, model, pk):
        async with self._maker() as session:
            return await session.get(model, pk)

    async def all(self, model, *criteria):
        async with self._maker() as session:
            stmt = select(model)
            for criterion in criteria:
                stmt = stmt.where(criterion)
            return list((await session.execute(stmt.order_by(model.id))).scalars().all())


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database with all tables."""
    import grievance.escalation.infrastructure.models  # noqa: F401 - register models

    engine = create_async_engine(
        TEST_DB_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return build_session_maker(db_engine)


@pytest.fixture
def session_context(session_maker):
    """Zero-arg unit-of-work factory, as the engine expects."""
    return partial(session_scope, session_maker)


@pytest_asyncio.fixture
async def seeder(session_maker) -> Seeder:
    """Reference data without escalation rules."""
    seeder = Seeder(session_maker)
    await seeder.add(
        UserModel(id=CITIZEN_ID, name="Asha Rao", email="asha@example.com", role="citizen"),
        UserModel(id=ADMIN_ID, name="Admin", email="admin@example.com", role="admin"),
        CategoryModel(id=1, name="Roads"),
        CategoryModel(id=2, name="Water Supply"),
        AuthorityModel(id=COMMISSIONER_ID, name="Municipal Commissioner", department="Administration"),
        AuthorityModel(id=WARD_OFFICER_ID, name="Ward Officer", department="Public Works"),
        AuthorityModel(id=CLOSED_OFFICE_ID, name="Closed Office", department="Legacy", is_active=False),
    )
    return seeder


@pytest_asyncio.fixture
async def seeded(seeder) -> Seeder:
    """Reference data plus the default rules (High 72h, Medium 168h, Low 360h)."""
    await seeder.rule("High", 72)
    await seeder.rule("Medium", 168)
    await seeder.rule("Low", 360)
    return seeder


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_engine(session_context, sink):
    """Build an engine on the test database with a fixed clock."""
    def _make(**overrides) -> EscalationEngine:
        options = {
            "notification_sink": sink,
            "interval_seconds": 3600,
            "min_age_hours": 1,
            "clock": lambda: NOW,
        }
        options.update(overrides)
        return EscalationEngine(session_context, **options)
    return _make
