"""
API tests for school registration, membership and photo consent.
"""

from __future__ import annotations

from plastic_clever.models import School, SchoolUser


class TestRegistration:
	def test_register_makes_caller_head_teacher(self, client, db, make_user, auth) -> None:
		user = make_user()

		resp = client.post(
			"/api/schools/register",
			headers=auth(user),
			json={
				"name": "Seaside Secondary",
				"type": "secondary",
				"country": "Ireland",
				"admin_email": "office@seaside.ie",
				"age_ranges": ["11-14", "15-18"],
				"student_count": 640,
			},
		)

		assert resp.status_code == 201
		body = resp.json()
		assert body["current_round"] == 1
		assert body["current_stage"] == "inspire"
		member = db.query(SchoolUser).filter(SchoolUser.school_id == body["id"]).one()
		assert member.user_id == user.id
		assert member.role == "head_teacher"

	def test_duplicate_domain_conflicts(self, client, make_user, make_school, auth) -> None:
		make_school(admin_email="head@seaside.ie")

		resp = client.post(
			"/api/schools/register",
			headers=auth(make_user()),
			json={"name": "Another", "country": "Ireland", "admin_email": "someone@Seaside.ie"},
		)

		assert resp.status_code == 409

	def test_unknown_type_rejected(self, client, make_user, auth) -> None:
		resp = client.post(
			"/api/schools/register",
			headers=auth(make_user()),
			json={"name": "X", "country": "Spain", "type": "university"},
		)

		assert resp.status_code == 400

	def test_check_domain(self, client, make_school) -> None:
		school = make_school(admin_email="head@seaside.ie")

		found = client.get("/api/schools/check-domain", params={"email": "teacher@seaside.ie"}).json()
		missing = client.get("/api/schools/check-domain", params={"email": "teacher@elsewhere.ie"}).json()

		assert found == {"exists": True, "school": {"id": school.id, "name": school.name}}
		assert missing == {"exists": False, "school": None}
		assert client.get("/api/schools/check-domain", params={"email": "no-at-sign"}).status_code == 400

	def test_domain_match_is_exact(self, client, make_school) -> None:
		make_school(admin_email="head@green_school.org")

		def exists(email: str) -> bool:
			return client.get("/api/schools/check-domain", params={"email": email}).json()["exists"]

		assert exists("teacher@green_school.org") is True
		assert exists("teacher@greenxschool.org") is False
		assert exists("teacher@%") is False
		assert exists("teacher@school.org") is False


class TestAccess:
	def test_public_list_filters_by_search(self, client, make_school) -> None:
		make_school(name="Green Valley Primary")
		make_school(name="Hilltop Academy")

		resp = client.get("/api/schools", params={"search": "VALLEY"})

		assert [s["name"] for s in resp.json()] == ["Green Valley Primary"]

	def test_non_member_cannot_read_school(self, client, make_user, make_school, auth) -> None:
		school = make_school(make_user())

		resp = client.get(f"/api/schools/{school.id}", headers=auth(make_user()))

		assert resp.status_code == 403

	def test_unknown_school_is_404(self, client, make_user, auth) -> None:
		assert client.get("/api/schools/nope", headers=auth(make_user())).status_code == 404

	def test_progress_breakdown(self, client, make_user, make_school, auth) -> None:
		head = make_user()
		school = make_school(head)

		body = client.get(f"/api/schools/{school.id}/progress", headers=auth(head)).json()

		assert body["current_round"] == 1
		assert body["progress_percentage"] == 0
		assert set(body["stages"]) == {"inspire", "investigate", "act"}
		assert body["stages"]["inspire"]["status"] == "current"
		assert body["stages"]["act"]["status"] == "locked"

	def test_dashboard_without_school(self, client, make_user, auth) -> None:
		assert client.get("/api/dashboard", headers=auth(make_user())).status_code == 404

	def test_dashboard_with_school(self, client, make_user, make_school, auth) -> None:
		head = make_user()
		school = make_school(head)

		body = client.get("/api/dashboard", headers=auth(head)).json()

		assert body["school"]["id"] == school.id
		assert body["membership"]["role"] == "head_teacher"
		assert body["recent_evidence"] == []

	def test_start_round_requires_award(self, client, make_user, make_school, auth) -> None:
		head = make_user()
		school = make_school(head)

		assert client.post(f"/api/schools/{school.id}/start-round", headers=auth(head)).status_code == 400


class TestTeam:
	def test_head_teacher_manages_team(self, client, db, make_user, make_school, auth) -> None:
		head = make_user()
		teacher = make_user()
		school = make_school(head)
		db.add(SchoolUser(school_id=school.id, user_id=teacher.id, role="teacher", is_verified=True))
		db.commit()
		headers = auth(head)

		team = client.get(f"/api/schools/{school.id}/team", headers=headers).json()
		assert {m["user_id"] for m in team} == {head.id, teacher.id}

		promoted = client.put(f"/api/schools/{school.id}/teachers/{teacher.id}/role", headers=headers, json={"role": "head_teacher"})
		assert promoted.json()["role"] == "head_teacher"

		assert client.delete(f"/api/schools/{school.id}/teachers/{head.id}", headers=headers).status_code == 400
		assert client.delete(f"/api/schools/{school.id}/teachers/{teacher.id}", headers=headers).status_code == 200

	def test_head_teacher_cannot_change_own_role(self, client, db, make_user, make_school, auth) -> None:
		head = make_user()
		school = make_school(head)

		resp = client.put(f"/api/schools/{school.id}/teachers/{head.id}/role", headers=auth(head), json={"role": "teacher"})

		assert resp.status_code == 400
		db.expire_all()
		assert db.query(SchoolUser).filter(SchoolUser.user_id == head.id).one().role == "head_teacher"

	def test_pending_role_cannot_be_assigned(self, client, db, make_user, make_school, auth) -> None:
		head = make_user()
		teacher = make_user()
		school = make_school(head)
		db.add(SchoolUser(school_id=school.id, user_id=teacher.id, role="teacher", is_verified=True))
		db.commit()

		resp = client.put(f"/api/schools/{school.id}/teachers/{teacher.id}/role", headers=auth(head), json={"role": "pending_teacher"})

		assert resp.status_code == 400

	def test_plain_teacher_cannot_remove(self, client, db, make_user, make_school, auth) -> None:
		head = make_user()
		teacher = make_user()
		school = make_school(head)
		db.add(SchoolUser(school_id=school.id, user_id=teacher.id, role="teacher", is_verified=True))
		db.commit()

		resp = client.delete(f"/api/schools/{school.id}/teachers/{head.id}", headers=auth(teacher))

		assert resp.status_code == 403


class TestPhotoConsent:
	def test_teacher_upload_is_pending_then_admin_approves(self, client, db, make_user, make_school, auth) -> None:
		head = make_user()
		admin = make_user(admin=True)
		school = make_school(head)

		resp = client.post(
			f"/api/schools/{school.id}/photo-consent/upload",
			headers=auth(head),
			files={"file": ("consent.pdf", b"%PDF-1.4 consent", "application/pdf")},
		)
		assert resp.status_code == 200
		assert resp.json()["status"] == "pending"

		pending = client.get("/api/admin/photo-consent/pending", headers=auth(admin)).json()
		assert [p["school_id"] for p in pending] == [school.id]

		approved = client.patch(f"/api/schools/{school.id}/photo-consent/approve", headers=auth(admin), json={})
		assert approved.json()["status"] == "approved"
		db.expire_all()
		assert db.get(School, school.id).photo_consent_approved_by == admin.id

	def test_reject_requires_notes(self, client, make_user, make_school, auth) -> None:
		admin = make_user(admin=True)
		school = make_school(photo_consent_document_url="/objects/x.pdf", photo_consent_status="pending")

		assert client.patch(f"/api/schools/{school.id}/photo-consent/reject", headers=auth(admin), json={}).status_code == 400
		rejected = client.patch(
			f"/api/schools/{school.id}/photo-consent/reject",
			headers=auth(admin),
			json={"notes": "Unsigned form"},
		)
		assert rejected.json()["status"] == "rejected"

	def test_replacing_document_removes_previous_file(self, client, make_user, make_school, auth, upload_dir) -> None:
		head = make_user()
		school = make_school(head)
		url = f"/api/schools/{school.id}/photo-consent/upload"

		first = client.post(url, headers=auth(head), files={"file": ("v1.pdf", b"%PDF v1", "application/pdf")}).json()
		second = client.post(url, headers=auth(head), files={"file": ("v2.pdf", b"%PDF v2", "application/pdf")}).json()

		assert first["document_url"] != second["document_url"]
		stored = sorted(p.name for p in upload_dir.glob("*.pdf"))
		assert stored == [second["document_url"].rsplit("/", 1)[1]]

	def test_unsupported_type_rejected(self, client, make_user, make_school, auth) -> None:
		head = make_user()
		school = make_school(head)

		resp = client.post(
			f"/api/schools/{school.id}/photo-consent/upload",
			headers=auth(head),
			files={"file": ("consent.exe", b"MZ", "application/x-msdownload")},
		)

		assert resp.status_code == 415


class TestPublicStats:
	def test_stats_include_legacy_evidence(self, client, make_school) -> None:
		make_school(country="Ireland", student_count=100, legacy_evidence_count=4)
		make_school(country="Spain", student_count=50)

		body = client.get("/api/stats").json()

		assert body == {"total_schools": 2, "countries": 2, "students_impacted": 150, "completed_actions": 4}
		assert client.get("/api/countries").json() == ["Ireland", "Spain"]
