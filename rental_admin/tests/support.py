import os
import unittest
from datetime import date

os.environ.setdefault("RENTAL_ADMIN_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SESSION_SIGNING_SECRET", "x" * 48)
os.environ.setdefault("POLICY_API_BASE_URL", "http://policy.invalid")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rental_admin import RentalAdmin as app_module
from rental_admin.db.base import Base
from rental_admin.models.rental_models import Outlet, Rental, Tool, User
from rental_admin.services.policy_service import AccessDeniedError
from rental_admin.services.session_service import create_session


class AppTestCase(unittest.TestCase):
    """Runs the app against a fresh in-memory database with a scripted policy check."""

    def setUp(self):
        self.engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False, future=True)

        def _override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app_module.app.dependency_overrides[app_module.get_db] = _override_get_db
        self.access_calls = []
        self.denied = set()
        self.original_check_access = app_module.check_access
        app_module.check_access = self._fake_check_access

        self.client = TestClient(app_module.app)
        self.token = create_session({"roqUserId": "roq-1", "tenantId": "tenant-1", "roles": ["owner"]})
        self.headers = {"X-Session-Token": self.token}
        self._seed()

    def tearDown(self):
        app_module.check_access = self.original_check_access
        app_module.app.dependency_overrides.clear()
        self.client.close()
        self.engine.dispose()

    def _fake_check_access(self, session, entity, operation, entity_id=None):
        self.access_calls.append((entity, operation, entity_id))
        if (entity, operation) in self.denied:
            raise AccessDeniedError(f"Access to {entity} denied.")

    def _seed(self):
        with self.SessionLocal() as db:
            db.add_all(
                [
                    User(
                        id="user-1",
                        email="ana@example.com",
                        firstName="Ana",
                        lastName="Lee",
                        roq_user_id="roq-1",
                        tenant_id="tenant-1",
                    ),
                    User(id="user-2", email="ben@example.com", roq_user_id="roq-2", tenant_id="tenant-2"),
                    Outlet(id="outlet-1", name="Downtown", user_id="user-1", tenant_id="tenant-1"),
                    Tool(id="tool-1", name="Hammer drill", outlet_id="outlet-1"),
                    Tool(id="tool-2", name="Ladder", outlet_id="outlet-1"),
                    Rental(
                        id="rental-1",
                        rental_date=date(2024, 5, 1),
                        return_date=date(2024, 5, 3),
                        tool_id="tool-1",
                        user_id="user-1",
                        outlet_id="outlet-1",
                    ),
                ]
            )
            db.commit()

    def fetch(self, model, record_id):
        with self.SessionLocal() as db:
            return db.get(model, record_id)

    def login_cookie(self):
        response = self.client.post("/api/auth/session", json={"sessionToken": self.token})
        self.assertEqual(response.status_code, 200)
        return response
