"""Shared pytest fixtures.

The app runs against an in-memory SQLite database shared between the test
session and request sessions through ``StaticPool``. ``TestClient`` is used
without a context manager so the startup hook (maintenance loop, seeding)
never runs.

Fixture overview
----------------
db              session bound to a fresh in-memory schema
client          TestClient with ``get_db`` overridden
make_user       factory for users (``admin=True`` for admins)
make_school     factory for schools, optionally with a head teacher
make_requirements  factory for evidence requirements per stage
auth            returns bearer headers for a user
"""

from __future__ import annotations

import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="pcs-uploads-"))
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from plastic_clever.db import Base, get_db
from plastic_clever.main import app
from plastic_clever.models import EvidenceRequirement, School, SchoolUser, User
from plastic_clever.routers.auth import hash_password, issue_token
from plastic_clever.settings import settings

PASSWORD = "correct-horse"


@pytest.fixture
def engine():
	engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
	Base.metadata.create_all(bind=engine)
	yield engine
	Base.metadata.drop_all(bind=engine)
	engine.dispose()


@pytest.fixture
def session_factory(engine):
	return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
	session = session_factory()
	yield session
	session.close()


@pytest.fixture
def client(session_factory):
	def override_get_db():
		session = session_factory()
		try:
			yield session
		finally:
			session.close()

	app.dependency_overrides[get_db] = override_get_db
	yield TestClient(app)
	app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
	target = tmp_path / "uploads"
	monkeypatch.setattr(settings, "upload_dir", str(target))
	return target


@pytest.fixture
def make_user(db):
	counter = {"n": 0}

	def _make(email: str | None = None, *, admin: bool = False, role: str | None = None) -> User:
		counter["n"] += 1
		user = User(
			email=email or f"user{counter['n']}@example.org",
			password_hash=hash_password(PASSWORD),
			first_name=f"User{counter['n']}",
			role=role or ("admin" if admin else "teacher"),
			is_admin=admin,
		)
		db.add(user)
		db.commit()
		return user

	return _make


@pytest.fixture
def make_school(db):
	def _make(head_teacher: User | None = None, **fields) -> School:
		fields.setdefault("name", "Green Valley Primary")
		fields.setdefault("country", "United Kingdom")
		school = School(**fields)
		db.add(school)
		db.flush()
		if head_teacher is not None:
			db.add(SchoolUser(school_id=school.id, user_id=head_teacher.id, role="head_teacher", is_verified=True))
		db.commit()
		return school

	return _make


@pytest.fixture
def make_requirements(db):
	def _make(stage: str, count: int = 3) -> list[EvidenceRequirement]:
		rows = [
			EvidenceRequirement(stage=stage, title=f"{stage} task {i + 1}", description=f"Do {stage} task {i + 1}", order_index=i)
			for i in range(count)
		]
		db.add_all(rows)
		db.commit()
		return rows

	return _make


@pytest.fixture
def auth(db):
	def _headers(user: User) -> dict[str, str]:
		token = issue_token(db, user)
		return {"Authorization": f"Bearer {token.access_token}"}

	return _headers
