"""Pytest fixtures for approval engine tests."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from approval_engine.api.app import create_app
from approval_engine.config import Settings
from approval_engine.database import make_session_factory
from approval_engine.events import AsyncEventEmitter
from approval_engine.models import (
    Base,
    BudgetApprover,
    BudgetConfig,
    Organization,
    UserProfile,
    UserRole,
)
from approval_engine.notify import StubNotifyService
from approval_engine.services.request_service import RequestNumberAllocator, RequestService
from approval_engine.services.workflow import WorkflowOrchestrator

# In-memory SQLite shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ROOT_ORG = "org-root"
CHILD_ORG = "org-child"
OTHER_ORG = "org-other"

L1_APPROVER = "user-a"
L1_BACKUP = "user-e"
L2_APPROVER = "user-b"
L3_APPROVER = "user-c"
REQUESTOR = "user-d"
BUDGET_OWNER = "admin-1"
PAYROLL_ROOT = "payroll-1"
PAYROLL_CHILD = "payroll-2"
PAYROLL_OTHER_TENANT = "payroll-x"
OUTSIDER = "user-z"


def years_ago(years: int) -> date:
    return date.today() - timedelta(days=int(365.25 * years))


def line_item(employee_id: str, amount: Any, **overrides: Any) -> dict[str, Any]:
    """Line item payload with sensible defaults."""
    item = {
        "employee_id": employee_id,
        "employee_name": f"Employee {employee_id}",
        "amount": amount,
        "location": "Manila",
        "hire_date": years_ago(3),
        "item_type": "bonus",
    }
    item.update(overrides)
    return item


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        smtp_host="localhost",
        smtp_port=587,
        smtp_username=None,
        smtp_password=None,
        smtp_use_tls=True,
        mail_from=None,
        app_base_url="http://dashboard.test",
        payroll_role_keyword="payroll",
    )


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def directory(session: AsyncSession) -> dict[str, UserProfile]:
    """Two org trees: root ← child, and an unrelated tenant."""
    session.add_all(
        [
            Organization(org_id=ROOT_ORG, name="Acme Holdings"),
            Organization(org_id=OTHER_ORG, name="Other Tenant"),
        ]
    )
    await session.flush()
    session.add(Organization(org_id=CHILD_ORG, name="Acme Manila", parent_org_id=ROOT_ORG))
    await session.flush()

    people = [
        (L1_APPROVER, "Alice Approver", CHILD_ORG, "Department Manager"),
        (L1_BACKUP, "Eve Backup", CHILD_ORG, "Team Lead"),
        (L2_APPROVER, "Bob Director", ROOT_ORG, "Director of Operations"),
        (L3_APPROVER, "Carol VP", CHILD_ORG, "VP of Human Resources"),
        (REQUESTOR, "Dan Requestor", CHILD_ORG, "Employee"),
        (BUDGET_OWNER, "Ada Admin", ROOT_ORG, "Company Admin"),
        (PAYROLL_ROOT, "Pat Payroll", ROOT_ORG, "Payroll Specialist"),
        (PAYROLL_CHILD, "Paz Payroll", CHILD_ORG, "payroll admin"),
        (PAYROLL_OTHER_TENANT, "Xavier Payroll", OTHER_ORG, "Payroll Specialist"),
        (OUTSIDER, "Zed Outsider", OTHER_ORG, "Department Manager"),
    ]
    users: dict[str, UserProfile] = {}
    for user_id, name, org_id, role in people:
        user = UserProfile(
            user_id=user_id,
            full_name=name,
            email=f"{user_id}@example.com",
            org_id=org_id,
        )
        user.roles = [UserRole(user_id=user_id, role_name=role)]
        users[user_id] = user
    session.add_all(users.values())
    await session.commit()
    return users


async def create_budget(
    session: AsyncSession,
    approvers: dict[int, tuple[str, str | None]] | None = None,
    **fields: Any,
) -> BudgetConfig:
    """Persist a budget with an approver per level."""
    budget = BudgetConfig(
        budget_name=fields.pop("budget_name", "Q1 Employee Rewards"),
        created_by=fields.pop("created_by", BUDGET_OWNER),
        start_date=fields.pop("start_date", date.today() - timedelta(days=30)),
        **fields,
    )
    session.add(budget)
    await session.flush()

    if approvers is None:
        approvers = {
            1: (L1_APPROVER, L1_BACKUP),
            2: (L2_APPROVER, None),
            3: (L3_APPROVER, None),
        }
    for level, (primary, backup) in approvers.items():
        session.add(
            BudgetApprover(
                budget_id=budget.budget_id,
                approval_level=level,
                primary_approver=primary,
                backup_approver=backup,
            )
        )
    await session.commit()
    return budget


@pytest.fixture
async def budget(session: AsyncSession, directory) -> BudgetConfig:
    """Three-level budget owned by the root org admin."""
    return await create_budget(session)


@pytest.fixture
def notify() -> StubNotifyService:
    return StubNotifyService()


@pytest.fixture
def emitter() -> AsyncEventEmitter:
    return AsyncEventEmitter()


@pytest.fixture
def allocator() -> RequestNumberAllocator:
    return RequestNumberAllocator()


@pytest.fixture
def request_service(session, allocator, emitter) -> RequestService:
    return RequestService(session, allocator=allocator, emitter=emitter)


@pytest.fixture
def orchestrator(session, notify, emitter, test_settings) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(session, notify, emitter=emitter, settings=test_settings)


@pytest.fixture
def make_request(request_service: RequestService, budget: BudgetConfig):
    """Factory: draft request with line items against the default budget."""

    async def _make(
        created_by: str = REQUESTOR,
        items: list[dict[str, Any]] | None = None,
        budget_id: str | None = None,
    ):
        request = await request_service.create_request(
            budget_id or budget.budget_id,
            created_by,
            description="Quarterly rewards",
        )
        if items is None:
            items = [
                line_item("EMP-001", 500),
                line_item("EMP-002", 100, is_deduction=True, item_type="incentive"),
            ]
        if items:
            await request_service.add_line_items_bulk(request.request_id, items, created_by)
        return request

    return _make


@pytest.fixture
def app(test_settings, engine, notify):
    """Application wired to the test engine and stub notifier."""
    return create_app(settings=test_settings, engine=engine, notify=notify)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
