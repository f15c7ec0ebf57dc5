import pytest
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from app.database import Base, configure_sqlite, get_db
from app.main import app
from app.core.policy import PolicyBundle
from app.schemas.auth import TenantContext, UserRole
from fastapi.testclient import TestClient

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = configure_sqlite(create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
))
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function", autouse=True)
def setup_database():
    """Fresh schema per test; services commit for real."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def org(db_session):
    """Create a default organization for tests."""
    from app.models.organization import Organization
    import uuid
    org = Organization(name="Alpha Corp", slug=f"alpha-corp-{uuid.uuid4()}")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope="function")
def department(db_session, org):
    from app.models.department import Department
    dept = Department(organization_id=org.id, name="Engineering", code="ENG")
    db_session.add(dept)
    db_session.commit()
    return dept


@pytest.fixture(scope="function")
def other_department(db_session, org):
    from app.models.department import Department
    dept = Department(organization_id=org.id, name="Finance", code="FIN")
    db_session.add(dept)
    db_session.commit()
    return dept


@pytest.fixture(scope="function")
def make_employee(db_session, org):
    """Factory for employees of the default organization."""
    from app.models.employee import Employee

    def _make(full_name, department=None, manager=None, salary=6000.0, status="active", organization=None):
        emp = Employee(
            organization_id=(organization or org).id,
            department_id=department.id if department else None,
            manager_id=manager.id if manager else None,
            full_name=full_name,
            email=f"{full_name.lower().replace(' ', '.')}@alphacorp.com",
            employment_status=status,
            salary=salary,
        )
        db_session.add(emp)
        db_session.commit()
        return emp
    return _make


@pytest.fixture(scope="function")
def hr_admin(make_employee):
    return make_employee("Hana Admin")


@pytest.fixture(scope="function")
def manager(make_employee, department):
    return make_employee("Maya Manager", department=department)


@pytest.fixture(scope="function")
def employee(make_employee, department, manager):
    return make_employee("Eli Employee", department=department, manager=manager)


@pytest.fixture(scope="function")
def teammate(make_employee, department, manager):
    return make_employee("Tara Teammate", department=department, manager=manager)


@pytest.fixture(scope="function")
def annual_leave(db_session, org):
    from app.models.leave_type import LeaveType
    lt = LeaveType(organization_id=org.id, name="Annual Leave", code="ANNUAL", default_days=20.0, is_paid=True)
    db_session.add(lt)
    db_session.commit()
    return lt


@pytest.fixture(scope="function")
def unpaid_leave(db_session, org):
    from app.models.leave_type import LeaveType
    lt = LeaveType(organization_id=org.id, name="Unpaid Leave", code="UNPAID", default_days=10.0, is_paid=False)
    db_session.add(lt)
    db_session.commit()
    return lt


@pytest.fixture(scope="function")
def policy():
    return PolicyBundle()


@pytest.fixture(scope="function")
def ctx_for(org):
    """Build a TenantContext for an employee and role."""
    def _ctx(emp=None, role=UserRole.EMPLOYEE):
        return TenantContext(
            organization_id=org.id,
            employee_id=emp.id if emp is not None else None,
            role=role,
        )
    return _ctx


@pytest.fixture(scope="function")
def headers_for(org):
    """Tenant-context headers as the identity layer would send them."""
    def _headers(emp=None, role="EMPLOYEE"):
        headers = {"X-Organization-ID": str(org.id), "X-Role": role}
        if emp is not None:
            headers["X-Employee-ID"] = str(emp.id)
        return headers
    return _headers


@pytest.fixture(scope="function")
def client(db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
