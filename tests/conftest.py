"""
Shared fixtures

Provides:
- db: in-memory SQLite session, schema rebuilt for every test
- orgs / users: internal, partner, client and unrelated client tenants
- api: TestClient factory authenticated as a given user
- queued_webhooks: events the request handlers scheduled for Zapier
"""

import os

# Configure before the portal package reads its settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ.pop("RESEND_API_KEY", None)
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("AWS_S3_BUCKET_NAME", None)

from types import SimpleNamespace  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi import Depends, Request  # noqa: E402
from fastapi.security import HTTPAuthorizationCredentials  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from portal.auth import get_current_user, security  # noqa: E402
from portal.database import Base, SessionLocal, engine, get_db  # noqa: E402
from portal.main import app  # noqa: E402
from portal.models import Organization, User  # noqa: E402
from portal.services import zapier_webhooks  # noqa: E402


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture
def db():
    """Fresh schema per test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def orgs(db):
    """internal, partner, client (managed by partner) and other (unrelated client)"""
    internal = Organization(name="Portal Support", slug="portal-support", type="internal")
    partner = Organization(name="Northwind Partners", slug="northwind", type="partner")
    db.add_all([internal, partner])
    db.flush()

    client = Organization(
        name="Contoso Ltd",
        slug="contoso",
        type="client",
        parent_id=partner.id,
        billing_email="billing@contoso.example",
    )
    other = Organization(name="Fabrikam Inc", slug="fabrikam", type="client")
    db.add_all([client, other])
    db.commit()
    return SimpleNamespace(internal=internal, partner=partner, client=client, other=other)


def make_user(db, email: str, role: str, organization: Organization, **fields) -> User:
    user = User(
        auth_id=f"auth-{email}",
        email=email,
        full_name=fields.pop("full_name", email.split("@")[0].title()),
        role=role,
        organization_id=organization.id if organization is not None else None,
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def users(db, orgs):
    return SimpleNamespace(
        admin=make_user(db, "admin@portal.example", "super_admin", orgs.internal),
        manager=make_user(db, "manager@portal.example", "staff", orgs.internal, is_account_manager=True),
        agent=make_user(db, "agent@portal.example", "staff", orgs.internal),
        partner=make_user(db, "owner@northwind.example", "partner", orgs.partner),
        client=make_user(db, "jane@contoso.example", "client", orgs.client),
        other_client=make_user(db, "bob@fabrikam.example", "client", orgs.other),
    )


# =============================================================================
# API FIXTURES
# =============================================================================


TEST_USER_HEADER = "X-Test-User-Id"


@pytest.fixture
def api(db):
    """Factory: api(user) returns a TestClient whose requests run as that user"""

    def override_get_db():
        yield db

    async def resolve_user(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
        session=Depends(get_db),
    ) -> User:
        user_id = request.headers.get(TEST_USER_HEADER)
        if user_id is None:
            return await get_current_user(credentials, session)
        return session.get(User, int(user_id))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = resolve_user

    def _client(user=None) -> TestClient:
        headers = {TEST_USER_HEADER: str(user.id)} if user is not None else {}
        return TestClient(app, headers=headers, raise_server_exceptions=False)

    yield _client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def queued_webhooks(monkeypatch):
    """Record Zapier events instead of delivering them after the response"""
    events = []

    async def fake_run(event, organization_id, data):
        events.append({"event": event, "organization_id": organization_id, "data": data})

    monkeypatch.setattr(zapier_webhooks, "run_webhooks_in_background", fake_run)
    return events
