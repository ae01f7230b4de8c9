import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./fee_ledger_test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from decimal import Decimal
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.hooks import hooks
from app.core.models import FeeStructure, Product, Role, SchoolClass, Student, Tenant, User
from app.db.session import Base, get_db, make_engine, make_sessionmaker
from app.main import app


@pytest.fixture()
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite file database per test. A file (not :memory:) so separate sessions share it."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return make_sessionmaker(engine)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def clear_hooks():
    hooks.clear()
    yield
    hooks.clear()


@pytest.fixture()
async def school(session_factory: async_sessionmaker) -> SimpleNamespace:
    """One school with two classes, three students, three fee structures and two products,
    plus a second school used for cross-school checks.

    Seeded in its own session so a rollback in the session under test cannot expire these objects."""
    async with session_factory() as db_session:
        tenant = Tenant(organization_code="SCH-0001", organization_name="Green Valley School")
        other_tenant = Tenant(organization_code="SCH-0002", organization_name="Hill Top School")
        db_session.add_all([tenant, other_tenant])
        await db_session.flush()

        admin = User(tenant_id=tenant.id, full_name="Asha Admin", email="admin@greenvalley.test", role="SUPER_ADMIN")
        accountant = User(tenant_id=tenant.id, full_name="Ravi Accounts", email="ravi@greenvalley.test", role="ACCOUNTANT")
        outsider = User(tenant_id=other_tenant.id, full_name="Hill Admin", email="admin@hilltop.test", role="SUPER_ADMIN")
        role = Role(
            tenant_id=tenant.id,
            name="ACCOUNTANT",
            permissions={"fees": {"read": True, "collect": True}, "promo_codes": {"read": True}},
        )
        class_10a = SchoolClass(tenant_id=tenant.id, name="10th", section="A")
        class_9 = SchoolClass(tenant_id=tenant.id, name="9th", section=None)
        db_session.add_all([admin, accountant, outsider, role, class_10a, class_9])
        await db_session.flush()

        alice = Student(
            tenant_id=tenant.id,
            full_name="Alice Kumar",
            admission_number="ADM-001",
            roll_number="1",
            class_id=class_10a.id,
            email="alice@family.test",
            phone=None,
            parent_phone="98450-11111",
        )
        bob = Student(
            tenant_id=tenant.id,
            full_name="Bob Mehta",
            admission_number=None,
            roll_number="R-7",
            class_id=class_10a.id,
            phone="98450-22222",
        )
        carol = Student(tenant_id=tenant.id, full_name="Carol Das", class_id=class_9.id)
        stranger = Student(tenant_id=other_tenant.id, full_name="Other School Kid", class_id=None)

        tuition = FeeStructure(
            tenant_id=tenant.id,
            name="Tuition Fee",
            category="tuition",
            class_id=None,
            academic_year="2024-2025",
            amount=Decimal("1000.00"),
            frequency="monthly",
            due_day=10,
        )
        lab = FeeStructure(
            tenant_id=tenant.id,
            name="Lab Fee",
            category="lab",
            class_id=class_10a.id,
            academic_year="2024-2025",
            amount=Decimal("500.00"),
            frequency="one-time",
            discount_enabled=True,
            discount_type="percentage",
            discount_value=Decimal("10"),
        )
        transport = FeeStructure(
            tenant_id=tenant.id,
            name="Transport Fee",
            category="transport",
            class_id=None,
            academic_year="2024-2025",
            amount=Decimal("200.00"),
            frequency="monthly",
            late_fee_enabled=True,
            late_fee_type="fixed",
            late_fee_value=Decimal("5.00"),
            grace_period_days=3,
        )
        textbook = Product(tenant_id=tenant.id, name="Science Textbook", category="books", price=Decimal("1000.00"))
        badge = Product(tenant_id=tenant.id, name="School Badge", category="uniforms", price=Decimal("10.00"))
        db_session.add_all([alice, bob, carol, stranger, tuition, lab, transport, textbook, badge])
        await db_session.commit()

        return SimpleNamespace(
            tenant=tenant,
            other_tenant=other_tenant,
            admin=admin,
            accountant=accountant,
            outsider=outsider,
            class_10a=class_10a,
            class_9=class_9,
            alice=alice,
            bob=bob,
            carol=carol,
            stranger=stranger,
            tuition=tuition,
            lab=lab,
            transport=transport,
            textbook=textbook,
            badge=badge,
        )


@pytest.fixture()
def current_user(school: SimpleNamespace) -> CurrentUser:
    return CurrentUser(id=school.admin.id, tenant_id=school.tenant.id, role="SUPER_ADMIN", permissions={})


@pytest.fixture()
async def client(
    session_factory: async_sessionmaker,
    current_user: CurrentUser,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app; every request gets its own session on the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_current_user() -> CurrentUser:
        return current_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
