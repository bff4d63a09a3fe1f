"""
API tests for evidence submission, visibility and requirements.
"""

from __future__ import annotations

import pytest

from plastic_clever.models import AdminEvidenceOverride, Evidence, School
from plastic_clever.routers import evidence as evidence_router
from plastic_clever.translation import LANGUAGES, TranslationError


@pytest.fixture
def head(make_user):
	return make_user()


@pytest.fixture
def school(make_school, head):
	return make_school(head)


def _submit(client, headers, school, stage="inspire", **extra):
	payload = {"school_id": school.id, "title": "Beach clean", "stage": stage, **extra}
	return client.post("/api/evidence", headers=headers, json=payload)


class TestSubmit:
	def test_member_submission_is_pending(self, client, head, school, auth) -> None:
		resp = _submit(
			client,
			auth(head),
			school,
			files=[{"name": "a.jpg", "url": "/objects/a.jpg", "type": "image/jpeg", "size": 10}, {"name": "b.pdf", "url": "/objects/b.pdf", "type": "application/pdf"}],
		)

		assert resp.status_code == 201
		body = resp.json()
		assert body["status"] == "pending"
		assert body["round_number"] == 1
		assert body["file_urls"] == ["/objects/a.jpg"]

	def test_non_member_forbidden(self, client, make_user, school, auth) -> None:
		assert _submit(client, auth(make_user()), school).status_code == 403

	def test_unknown_school(self, client, head, auth) -> None:
		resp = client.post("/api/evidence", headers=auth(head), json={"school_id": "nope", "title": "x", "stage": "inspire"})

		assert resp.status_code == 404

	def test_locked_stage_forbidden(self, client, head, school, auth) -> None:
		assert _submit(client, auth(head), school, stage="act").status_code == 403

	def test_requirement_stage_must_match(self, client, head, school, auth, make_requirements) -> None:
		act_req = make_requirements("act", 1)[0]

		resp = _submit(client, auth(head), school, evidence_requirement_id=act_req.id)

		assert resp.status_code == 400

	def test_unknown_requirement(self, client, head, school, auth) -> None:
		assert _submit(client, auth(head), school, evidence_requirement_id="missing").status_code == 400

	def test_admin_submission_is_approved_and_counted(self, client, db, make_user, school, auth, make_requirements) -> None:
		admin = make_user(admin=True)
		reqs = make_requirements("inspire", 3)
		headers = auth(admin)

		for req in reqs:
			resp = _submit(client, headers, school, evidence_requirement_id=req.id)
			assert resp.json()["status"] == "approved"

		db.expire_all()
		refreshed = db.get(School, school.id)
		assert refreshed.inspire_completed is True
		assert refreshed.current_stage == "investigate"

	def test_admin_may_submit_to_locked_stage(self, client, make_user, school, auth) -> None:
		assert _submit(client, auth(make_user(admin=True)), school, stage="act").status_code == 201


class TestVisibility:
	def test_pending_evidence_hidden_from_public(self, client, db, head, school) -> None:
		row = Evidence(school_id=school.id, submitted_by=head.id, title="x", stage="inspire", status="pending")
		db.add(row)
		db.commit()

		assert client.get(f"/api/evidence/{row.id}").status_code == 404

	def test_approved_evidence_is_public(self, client, db, head, school) -> None:
		row = Evidence(school_id=school.id, submitted_by=head.id, title="x", stage="inspire", status="approved")
		db.add(row)
		db.commit()

		resp = client.get(f"/api/evidence/{row.id}")

		assert resp.status_code == 200
		assert resp.json()["school"]["id"] == school.id

	def test_member_sees_own_pending(self, client, db, head, school, auth) -> None:
		row = Evidence(school_id=school.id, submitted_by=head.id, title="x", stage="inspire", status="pending")
		db.add(row)
		db.commit()

		assert client.get(f"/api/evidence/{row.id}", headers=auth(head)).status_code == 200

	def test_list_defaults_to_first_school(self, client, head, school, auth, make_user) -> None:
		headers = auth(head)
		_submit(client, headers, school)

		listed = client.get("/api/evidence", headers=headers).json()
		assert len(listed) == 1
		assert listed[0]["photo_consent_status"] is None

		assert client.get("/api/evidence", headers=auth(make_user())).json() == []
		assert client.get("/api/evidence", headers=headers, params={"require_photo_consent": True}).json() == []


class TestDelete:
	def test_only_pending_can_be_deleted(self, client, db, head, school, auth) -> None:
		pending = Evidence(school_id=school.id, submitted_by=head.id, title="p", stage="inspire", status="pending")
		approved = Evidence(school_id=school.id, submitted_by=head.id, title="a", stage="inspire", status="approved")
		db.add_all([pending, approved])
		db.commit()
		headers = auth(head)

		assert client.delete(f"/api/evidence/{approved.id}", headers=headers).status_code == 403
		assert client.delete(f"/api/evidence/{pending.id}", headers=headers).status_code == 200


class FakeTranslator:
	def __init__(self) -> None:
		self.closed = False

	async def generate(self, prompt: str) -> str:
		if "Welsh" in prompt:
			raise TranslationError("quota exceeded")
		language = next(name for name in LANGUAGES.values() if f"into {name}." in prompt)
		return f'```json\n{{"title": "{language} title", "description": "{language} description"}}\n```'

	async def aclose(self) -> None:
		self.closed = True


class TestRequirements:
	def test_admin_crud(self, client, make_user, auth) -> None:
		headers = auth(make_user(admin=True))

		created = client.post(
			"/api/evidence-requirements",
			headers=headers,
			json={"stage": "inspire", "title": "Assembly", "description": "Hold an assembly"},
		).json()
		assert created["order_index"] == 0

		updated = client.patch(f"/api/evidence-requirements/{created['id']}", headers=headers, json={"title": "Whole-school assembly"})
		assert updated.json()["title"] == "Whole-school assembly"

		listed = client.get("/api/evidence-requirements", params={"stage": "inspire"}).json()
		assert [r["id"] for r in listed] == [created["id"]]

		assert client.delete(f"/api/evidence-requirements/{created['id']}", headers=headers).status_code == 200

	def test_teacher_cannot_create(self, client, head, auth) -> None:
		resp = client.post(
			"/api/evidence-requirements",
			headers=auth(head),
			json={"stage": "inspire", "title": "x", "description": "y"},
		)

		assert resp.status_code == 403

	def test_delete_with_linked_evidence_conflicts(self, client, db, make_user, head, school, auth, make_requirements) -> None:
		req = make_requirements("inspire", 1)[0]
		db.add(Evidence(school_id=school.id, submitted_by=head.id, evidence_requirement_id=req.id, title="x", stage="inspire"))
		db.commit()

		resp = client.delete(f"/api/evidence-requirements/{req.id}", headers=auth(make_user(admin=True)))

		assert resp.status_code == 409

	def test_translate_fills_every_language(self, client, make_user, auth, make_requirements, monkeypatch) -> None:
		req = make_requirements("inspire", 1)[0]
		fake = FakeTranslator()
		monkeypatch.setattr(evidence_router, "GeminiClient", lambda: fake)

		resp = client.post(f"/api/evidence-requirements/{req.id}/translate", headers=auth(make_user(admin=True)))

		assert resp.status_code == 200
		translations = resp.json()["translations"]
		assert set(translations) == set(LANGUAGES)
		assert translations["fr"] == {"title": "French title", "description": "French description"}
		# Failed language keeps the English text
		assert translations["cy"] == {"title": req.title, "description": req.description}
		assert fake.closed is True

		localized = client.get(f"/api/evidence-requirements/{req.id}", params={"language": "fr"}).json()
		assert localized["title"] == "French title"

	def test_translate_without_key_is_bad_gateway(self, client, make_user, auth, make_requirements, monkeypatch) -> None:
		from plastic_clever.settings import settings

		monkeypatch.setattr(settings, "gemini_api_key", None)
		req = make_requirements("inspire", 1)[0]

		resp = client.post(f"/api/evidence-requirements/{req.id}/translate", headers=auth(make_user(admin=True)))

		assert resp.status_code == 502

	def test_translate_unknown_requirement_closes_client(self, client, make_user, auth, monkeypatch) -> None:
		fake = FakeTranslator()
		monkeypatch.setattr(evidence_router, "GeminiClient", lambda: fake)

		resp = client.post("/api/evidence-requirements/missing/translate", headers=auth(make_user(admin=True)))

		assert resp.status_code == 404
		assert fake.closed is True

	def test_delete_clears_overrides_and_recomputes(self, client, db, make_user, school, auth, make_requirements) -> None:
		admin_headers = auth(make_user(admin=True))
		req = make_requirements("inspire", 2)[0]
		client.post(
			f"/api/admin/schools/{school.id}/evidence-overrides/toggle",
			headers=admin_headers,
			json={"evidence_requirement_id": req.id, "stage": "inspire"},
		)
		assert client.get(f"/api/schools/{school.id}/progress", headers=admin_headers).json()["evidence_counts"]["inspire"]["approved"] == 1

		assert client.delete(f"/api/evidence-requirements/{req.id}", headers=admin_headers).status_code == 200

		assert db.query(AdminEvidenceOverride).count() == 0
		progress = client.get(f"/api/schools/{school.id}/progress", headers=admin_headers).json()
		assert progress["evidence_counts"]["inspire"]["approved"] == 0
		assert progress["progress_percentage"] == 0


class TestEvidenceFiles:
	def test_deleting_evidence_removes_uploaded_files(self, client, head, school, auth, upload_dir) -> None:
		headers = auth(head)
		uploaded = client.post(
			"/api/objects/upload",
			headers=headers,
			files={"file": ("litter.jpg", b"\xff\xd8jpeg", "image/jpeg")},
		).json()
		evidence = _submit(
			client,
			headers,
			school,
			files=[{"name": "litter.jpg", "url": uploaded["url"], "type": "image/jpeg"}],
		).json()

		assert client.delete(f"/api/evidence/{evidence['id']}", headers=headers).status_code == 200

		assert list(upload_dir.iterdir()) == []

	def test_unknown_status_filter_rejected(self, client, head, school, auth) -> None:
		resp = client.get("/api/evidence", headers=auth(head), params={"school_id": school.id, "status": "archived"})

		assert resp.status_code == 400
