"""
Pytest configuration and fixtures
"""
import os

# Must be set before lms.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_ENV", "local")

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lms.main import app
from lms.db.base import Base
from lms.core.deps import get_db
from lms.core.security import create_access_token
from lms.models import Employee, Role, LeaveType  # noqa: F401  (registers every model)
from lms.services import balance_ledger as ledger


# Use in-memory SQLite for testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Enable foreign keys for SQLite
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Test client fixture with database override"""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(employee: Employee) -> dict:
    token = create_access_token({"sub": str(employee.id)})
    return {"Authorization": f"Bearer {token}"}


def upcoming_monday(days_ahead: int = 14) -> date:
    """A Monday at least `days_ahead` days from today"""
    d = date.today() + timedelta(days=days_ahead)
    return d + timedelta(days=(7 - d.weekday()) % 7)


def weekdays_span(start: date, working_days: int) -> date:
    """End date such that [start, end] holds `working_days` weekdays (start must be a weekday)"""
    end = start
    counted = 1
    while counted < working_days:
        end += timedelta(days=1)
        if end.weekday() < 5:
            counted += 1
    return end


def set_balance(db, employee: Employee, leave_type: LeaveType, year: int, opening: int):
    balance = ledger.ensure_balance(db, employee.id, leave_type, year, opening=opening)
    db.commit()
    db.refresh(balance)
    return balance


@pytest.fixture
def make_employee(db):
    counter = {"n": 0}

    def _make(role: Role = Role.EMPLOYEE, name: str = None, department: str = "Engineering",
              join_date: date = date(2020, 1, 1), active: bool = True) -> Employee:
        counter["n"] += 1
        emp = Employee(
            emp_code=f"{role.value[:3]}{counter['n']:03d}",
            name=name or f"{role.value.title()} {counter['n']}",
            email=f"user{counter['n']}@example.com",
            role=role,
            department=department,
            join_date=join_date,
            active=active,
        )
        db.add(emp)
        db.commit()
        db.refresh(emp)
        return emp
    return _make


@pytest.fixture
def employee(make_employee):
    return make_employee(Role.EMPLOYEE, name="Asha Employee")


@pytest.fixture
def hr_admin(make_employee):
    return make_employee(Role.HR_ADMIN, name="Hana HR Admin", department="HR")


@pytest.fixture
def dept_head(make_employee):
    return make_employee(Role.DEPT_HEAD, name="Dev Dept Head")


@pytest.fixture
def hr_head(make_employee):
    return make_employee(Role.HR_HEAD, name="Harun HR Head", department="HR")


@pytest.fixture
def ceo(make_employee):
    return make_employee(Role.CEO, name="Chitra CEO", department="Management")


@pytest.fixture
def system_admin(make_employee):
    return make_employee(Role.SYSTEM_ADMIN, name="Sam Sysadmin", department="IT")


@pytest.fixture
def approvers(hr_admin, dept_head, hr_head, ceo):
    """Role -> employee for every chain role"""
    return {
        Role.HR_ADMIN: hr_admin,
        Role.DEPT_HEAD: dept_head,
        Role.HR_HEAD: hr_head,
        Role.CEO: ceo,
    }
