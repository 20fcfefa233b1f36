"""
Payroll Workflow - Test Configuration

Pytest fixtures and configuration.
"""

from decimal import Decimal
from typing import AsyncGenerator, Dict
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

import payroll_workflow.models  # noqa: F401
from payroll_workflow.database import Base, get_async_session
from payroll_workflow.models.department import Department
from payroll_workflow.models.salary_grade import SalaryGrade
from payroll_workflow.models.user import User, UserRole
from payroll_workflow.utils.permissions import ActorContext
from payroll_workflow.utils.security import create_access_token
from main import app


# In-memory SQLite shared across connections of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

async def _add(db_session: AsyncSession, obj):
    db_session.add(obj)
    await db_session.commit()
    await db_session.refresh(obj)
    return obj


@pytest_asyncio.fixture
async def engineering(db_session: AsyncSession) -> Department:
    return await _add(db_session, Department(id=uuid4(), name="Engineering", code="ENG"))


@pytest_asyncio.fixture
async def hr_department(db_session: AsyncSession) -> Department:
    return await _add(db_session, Department(id=uuid4(), name="Human Resources", code="HR"))


@pytest_asyncio.fixture
async def finance_department(db_session: AsyncSession) -> Department:
    return await _add(db_session, Department(id=uuid4(), name="Finance", code="FIN"))


@pytest_asyncio.fixture
async def salary_grade(db_session: AsyncSession) -> SalaryGrade:
    """GL-08: basic 500,000 and allowances bringing gross to 650,000."""
    return await _add(db_session, SalaryGrade(
        id=uuid4(),
        level="GL-08",
        name="Senior Officer",
        basic_salary=Decimal("500000.00"),
        allowances=[
            {"name": "Housing", "calculation_method": "percentage", "value": "25"},
            {"name": "Transport", "calculation_method": "fixed", "value": "25000"},
        ],
        is_active=True,
    ))


def _user(department: Department = None, **kwargs) -> User:
    defaults = {
        "id": uuid4(),
        "role": UserRole.USER,
        "capabilities": [],
        "is_active": True,
        "department_id": department.id if department is not None else None,
    }
    defaults.update(kwargs)
    return User(**defaults)


@pytest_asyncio.fixture
async def employee(db_session: AsyncSession, engineering: Department, salary_grade: SalaryGrade) -> User:
    return await _add(db_session, _user(
        engineering,
        email="ada.obi@example.com",
        first_name="Ada",
        last_name="Obi",
        staff_id="ENG-001",
        position="Software Engineer",
        grade_level="GL-08",
        bank_name="First Bank",
        account_number="3012345678",
        account_name="Ada Obi",
    ))


@pytest_asyncio.fixture
async def second_employee(db_session: AsyncSession, engineering: Department, salary_grade: SalaryGrade) -> User:
    return await _add(db_session, _user(
        engineering,
        email="bayo.eze@example.com",
        first_name="Bayo",
        last_name="Eze",
        staff_id="ENG-002",
        position="QA Engineer",
        grade_level="GL-08",
    ))


@pytest_asyncio.fixture
async def department_head(db_session: AsyncSession, engineering: Department) -> User:
    return await _add(db_session, _user(
        engineering,
        email="chidi.head@example.com",
        first_name="Chidi",
        last_name="Nwosu",
        position="Head of Department",
        grade_level="GL-12",
    ))


@pytest_asyncio.fixture
async def hr_head(db_session: AsyncSession, hr_department: Department) -> User:
    return await _add(db_session, _user(
        hr_department,
        email="funke.hr@example.com",
        first_name="Funke",
        last_name="Adeyemi",
        position="HR Manager",
    ))


@pytest_asyncio.fixture
async def finance_director(db_session: AsyncSession, finance_department: Department) -> User:
    return await _add(db_session, _user(
        finance_department,
        email="musa.finance@example.com",
        first_name="Musa",
        last_name="Bello",
        position="Finance Director",
    ))


@pytest_asyncio.fixture
async def super_admin(db_session: AsyncSession) -> User:
    return await _add(db_session, _user(
        None,
        email="root.admin@example.com",
        first_name="Root",
        last_name="Admin",
        role=UserRole.SUPER_ADMIN,
    ))


@pytest.fixture
def approval_chain(
    engineering, hr_department, finance_department,
    employee, department_head, hr_head, finance_director, super_admin,
) -> Dict[str, ActorContext]:
    """Actors for every approval level, keyed by role."""
    return {
        "employee": ActorContext.from_user(employee, engineering),
        "department_head": ActorContext.from_user(department_head, engineering),
        "hr_head": ActorContext.from_user(hr_head, hr_department),
        "finance_director": ActorContext.from_user(finance_director, finance_department),
        "super_admin": ActorContext.from_user(super_admin, None),
    }


@pytest.fixture
def auth_headers():
    """Builds a bearer header for a user ID."""

    def _headers(user_id) -> Dict[str, str]:
        token = create_access_token({"sub": str(user_id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers
