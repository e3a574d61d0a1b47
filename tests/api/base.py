import os
import unittest
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure settings can be initialized in test environments
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from portal.core.config import settings
from portal.core.security import create_jwt, hash_password
from portal.db.session import get_db
from portal.main import app
from portal.models.activity_log import ActivityLog
from portal.models.agent import Agent
from portal.models.assignment_change_request import AssignmentChangeRequest
from portal.models.company import Company
from portal.models.insured_account import InsuredAccount
from portal.models.notification import Notification
from portal.models.request_attachment import RequestAttachment
from portal.models.request_note import RequestNote
from portal.models.service_request import ServiceRequest
from portal.models.sub_task import SubTask
from portal.models.user import User

TABLES = (
    Company,
    User,
    InsuredAccount,
    Agent,
    ServiceRequest,
    SubTask,
    AssignmentChangeRequest,
    RequestNote,
    RequestAttachment,
    ActivityLog,
    Notification,
)


class _FakeBody:
    def __init__(self, payload: bytes):
        self.payload = payload

    def iter_chunks(self, chunk_size=65536):
        for i in range(0, len(self.payload), chunk_size):
            yield self.payload[i : i + chunk_size]


class _FakeS3Storage:
    def __init__(self, fail_put: bool = False, fail_delete: bool = False):
        self.objects = {}
        self.fail_put = fail_put
        self.fail_delete = fail_delete

    def put_object(self, key: str, content: bytes, mime_type: str) -> None:
        if self.fail_put:
            raise ClientError({"Error": {"Code": "500", "Message": "Boom"}}, "PutObject")
        self.objects[key] = {"content": content, "mime": mime_type, "size": len(content)}

    def get_object(self, key: str) -> dict:
        obj = self.objects.get(key)
        if obj is None:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "GetObject")
        return {"Body": _FakeBody(obj["content"]), "ContentType": obj["mime"], "ContentLength": obj["size"]}

    def delete_object(self, key: str) -> None:
        if self.fail_delete:
            raise ClientError({"Error": {"Code": "500", "Message": "Boom"}}, "DeleteObject")
        self.objects.pop(key, None)


class PortalApiBase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)
        for model in TABLES:
            model.__table__.create(bind=cls.engine)

    @classmethod
    def tearDownClass(cls):
        for model in reversed(TABLES):
            model.__table__.drop(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self):
        with self.SessionLocal() as db:
            for model in reversed(TABLES):
                db.execute(delete(model))
            db.commit()

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)
        self._seed_directory()

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()

    def _seed_directory(self):
        with self.SessionLocal() as db:
            acme = Company(name="Acme Insurance", company_code="ACME01", responsible="seed")
            globex = Company(name="Globex Mutual", company_code="GLBX01", responsible="seed")
            db.add_all([acme, globex])
            db.flush()
            self.company_id = acme.id
            self.other_company_id = globex.id
            db.commit()
        self.customer_id = self._create_user("customer", "cust@acme.test", company_id=self.company_id)
        self.customer_admin_id = self._create_user("customer_admin", "boss@acme.test", company_id=self.company_id)
        self.other_customer_id = self._create_user("customer", "cust@globex.test", company_id=self.other_company_id)
        self.agent_id = self._create_user("agent", "agent@portal.test", agent_companies=[self.company_id])
        self.agent2_id = self._create_user("agent", "agent2@portal.test", agent_companies=[self.company_id])
        self.outside_agent_id = self._create_user("agent", "outside@portal.test", agent_companies=[self.other_company_id])
        self.manager_id = self._create_user("agent_manager", "manager@portal.test", agent_companies=[self.company_id])
        self.admin_id = self._create_user("super_admin", "admin@portal.test", password="admin123")

    def _create_user(
        self,
        role: str,
        email: str,
        *,
        company_id: UUID | None = None,
        agent_companies: list[UUID] | None = None,
        password: str | None = None,
        login_code: str | None = None,
        is_active: bool = True,
    ) -> UUID:
        with self.SessionLocal() as db:
            user = User(
                first_name=email.split("@")[0].capitalize(),
                last_name="Test",
                email=email,
                login_code=login_code,
                password_hash=hash_password(password) if password else None,
                role=role,
                company_id=company_id,
                is_active=is_active,
                timezone="UTC",
                responsible="seed",
            )
            db.add(user)
            db.flush()
            if agent_companies is not None:
                db.add(
                    Agent(
                        user_id=user.id,
                        assigned_company_ids=[str(value) for value in agent_companies],
                        is_active=True,
                        responsible="seed",
                    )
                )
            db.commit()
            return user.id

    def _create_request(self, *, company_id: UUID | None = None, assigned_by_id: UUID | None = None, **fields) -> UUID:
        with self.SessionLocal() as db:
            now = datetime.now(timezone.utc)
            row = ServiceRequest(
                service_queue_id=fields.pop("service_queue_id", f"SQ{uuid4().hex[:10].upper()}"),
                insured=fields.pop("insured", "Acme Corp"),
                service_request_narrative=fields.pop("service_request_narrative", "Policy question"),
                service_queue_category=fields.pop("service_queue_category", "policy_inquiry"),
                company_id=company_id or self.company_id,
                task_status=fields.pop("task_status", "new"),
                assigned_by_id=assigned_by_id or self.customer_id,
                created_at=now,
                updated_at=now,
                responsible="seed",
                **fields,
            )
            db.add(row)
            db.commit()
            return row.id

    def _add_note(self, request_id: UUID, author_id: UUID, content: str = "Called the insured") -> None:
        with self.SessionLocal() as db:
            db.add(RequestNote(request_id=request_id, author_id=author_id, note_content=content, responsible="seed"))
            db.commit()

    def _activity_types(self, request_id: UUID) -> list[str]:
        with self.SessionLocal() as db:
            rows = (
                db.query(ActivityLog)
                .filter(ActivityLog.request_id == request_id)
                .order_by(ActivityLog.created_at.asc())
                .all()
            )
            return [row.type for row in rows]

    def _headers(self, user_id: UUID) -> dict[str, str]:
        with self.SessionLocal() as db:
            user = db.get(User, user_id)
            return self._auth_headers(user.role, sub=str(user.id), email=user.email, company_id=user.company_id)

    @staticmethod
    def _auth_headers(
        role: str,
        email: str | None = None,
        sub: str | None = None,
        company_id: UUID | None = None,
    ) -> dict[str, str]:
        token = create_jwt(
            {
                "sub": str(sub or uuid4()),
                "email": email or f"{role}@example.com",
                "role": role,
                "company_id": str(company_id) if company_id else None,
            },
            settings.JWT_SECRET,
            timedelta(minutes=30),
        )
        return {"Authorization": f"Bearer {token}"}
