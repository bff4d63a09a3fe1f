"""
Unit tests for stage and round progression.
"""

from __future__ import annotations

import pytest

from plastic_clever.certificates import issue_round_certificate
from plastic_clever.models import AuditResponse, Certificate, Evidence, Notification, ReductionPromise
from plastic_clever.progression import (
	EvidenceCounts,
	ProgressionError,
	StageCount,
	audit_rounds,
	check_and_update_school_progression,
	evidence_counts,
	fix_rounds,
	manual_update,
	migrate_stuck_schools,
	round_progress,
	stage_progress,
	start_new_round,
	toggle_override,
)


def _approve(db, school, user, stage, requirement=None, *, status="approved", round_number=None):
	row = Evidence(
		school_id=school.id,
		submitted_by=user.id,
		evidence_requirement_id=requirement.id if requirement is not None else None,
		title=f"{stage} evidence",
		stage=stage,
		status=status,
		round_number=round_number or school.current_round,
	)
	db.add(row)
	db.commit()
	return row


def _complete_investigate(db, school, user):
	db.add(AuditResponse(school_id=school.id, submitted_by=user.id, status="approved", round_number=school.current_round))
	db.add(
		ReductionPromise(
			school_id=school.id,
			plastic_item_type="plastic_bottles",
			plastic_item_label="Plastic bottles",
			baseline_quantity=100,
			target_quantity=40,
			reduction_amount=60,
			timeframe_unit="month",
			created_by=user.id,
			round_number=school.current_round,
		)
	)
	db.commit()


@pytest.fixture
def teacher(make_user):
	return make_user("head@greenvalley.sch.uk")


@pytest.fixture
def school(make_school, teacher):
	return make_school(teacher)


@pytest.fixture
def requirements(make_requirements):
	return {stage: make_requirements(stage, 3) for stage in ("inspire", "investigate", "act")}


class TestEvidenceCounts:
	def test_duplicate_approvals_for_one_requirement_count_once(self, db, school, teacher, requirements) -> None:
		first = requirements["inspire"][0]
		_approve(db, school, teacher, "inspire", first)
		_approve(db, school, teacher, "inspire", first)
		_approve(db, school, teacher, "inspire", requirements["inspire"][1])

		counts = evidence_counts(db, school)

		assert counts.inspire.total == 3
		assert counts.inspire.approved == 2

	def test_evidence_without_requirement_counts_individually(self, db, school, teacher) -> None:
		_approve(db, school, teacher, "inspire")
		_approve(db, school, teacher, "inspire")

		assert evidence_counts(db, school).inspire.approved == 2

	def test_pending_and_other_round_evidence_is_ignored(self, db, school, teacher, requirements) -> None:
		_approve(db, school, teacher, "inspire", requirements["inspire"][0], status="pending")
		_approve(db, school, teacher, "inspire", requirements["inspire"][1], round_number=2)

		counts = evidence_counts(db, school)

		assert counts.inspire.total == 1
		assert counts.inspire.approved == 0

	def test_override_merges_with_approved_requirements(self, db, school, teacher, make_user, requirements) -> None:
		admin = make_user(admin=True)
		req = requirements["inspire"][0]
		_approve(db, school, teacher, "inspire", req)
		toggle_override(db, school, req, "inspire", admin.id)
		toggle_override(db, school, requirements["inspire"][1], "inspire", admin.id)

		assert evidence_counts(db, school).inspire.approved == 2

	def test_action_plan_ignores_cancelled_promises(self, db, school, teacher) -> None:
		_complete_investigate(db, school, teacher)
		promise = db.query(ReductionPromise).one()
		promise.status = "cancelled"
		db.commit()

		counts = evidence_counts(db, school)

		assert counts.has_quiz is True
		assert counts.has_action_plan is False


class TestRoundProgress:
	def _counts(self, inspire=0, investigate=0, act=0, quiz=False, plan=False) -> EvidenceCounts:
		return EvidenceCounts(
			inspire=StageCount(approved=inspire),
			investigate=StageCount(approved=investigate),
			act=StageCount(approved=act),
			has_quiz=quiz,
			has_action_plan=plan,
		)

	def test_ratio_of_approved_to_required(self) -> None:
		totals = {"inspire": 3, "investigate": 3, "act": 3}
		progress = round_progress(
			self._counts(inspire=3, quiz=True),
			totals,
			inspire_completed=True,
			investigate_completed=False,
			act_completed=False,
		)
		# 4 of 11
		assert progress == 36

	def test_rounds_half_up(self) -> None:
		totals = {"inspire": 2, "investigate": 0, "act": 0}
		# 1 of 8
		progress = round_progress(
			self._counts(inspire=1),
			{"inspire": 6, "investigate": 0, "act": 0},
			inspire_completed=False,
			investigate_completed=False,
			act_completed=False,
		)
		assert progress == 13
		assert round_progress(self._counts(), totals, inspire_completed=False, investigate_completed=False, act_completed=False) == 0

	def test_falls_back_to_flags_without_requirements(self) -> None:
		empty = {"inspire": 0, "investigate": 0, "act": 0}
		kwargs = dict(investigate_completed=False, act_completed=False)
		assert round_progress(self._counts(), empty, inspire_completed=False, **kwargs) == 0
		assert round_progress(self._counts(), empty, inspire_completed=True, **kwargs) == 33
		assert round_progress(self._counts(), empty, inspire_completed=True, investigate_completed=True, act_completed=False) == 67

	def test_migrated_schools_get_a_floor_in_round_one(self) -> None:
		totals = {"inspire": 3, "investigate": 3, "act": 3}
		args = dict(inspire_completed=True, investigate_completed=True, act_completed=False)
		assert round_progress(self._counts(), totals, is_migrated=True, current_round=1, **args) == 67
		assert round_progress(self._counts(), totals, is_migrated=True, current_round=2, **args) == 0

	def test_clamped_to_one_hundred(self) -> None:
		totals = {"inspire": 1, "investigate": 0, "act": 0}
		progress = round_progress(
			self._counts(inspire=5, act=5, quiz=True, plan=True),
			totals,
			inspire_completed=True,
			investigate_completed=True,
			act_completed=True,
		)
		assert progress == 100


class TestCheckAndUpdate:
	def test_missing_school_returns_none(self, db) -> None:
		assert check_and_update_school_progression(db, "does-not-exist") is None

	def test_three_approved_inspire_completes_stage(self, db, school, teacher, requirements) -> None:
		for req in requirements["inspire"]:
			_approve(db, school, teacher, "inspire", req)

		updated = check_and_update_school_progression(db, school.id)

		assert updated.inspire_completed is True
		assert updated.current_stage == "investigate"
		# 3 of 11
		assert updated.progress_percentage == 27

	def test_two_approved_inspire_is_not_enough(self, db, school, teacher, requirements) -> None:
		for req in requirements["inspire"][:2]:
			_approve(db, school, teacher, "inspire", req)

		updated = check_and_update_school_progression(db, school.id)

		assert updated.inspire_completed is False
		assert updated.current_stage == "inspire"

	def test_investigate_needs_audit_and_action_plan(self, db, school, teacher, requirements) -> None:
		school.inspire_completed = True
		db.commit()
		db.add(AuditResponse(school_id=school.id, submitted_by=teacher.id, status="approved", round_number=1))
		db.commit()

		assert check_and_update_school_progression(db, school.id).investigate_completed is False

		_complete_investigate(db, school, teacher)
		updated = check_and_update_school_progression(db, school.id)

		assert updated.investigate_completed is True
		assert updated.audit_quiz_completed is True
		assert updated.current_stage == "act"

	def test_act_completion_closes_the_round(self, db, school, teacher, requirements) -> None:
		school.inspire_completed = True
		school.investigate_completed = True
		school.current_stage = "act"
		db.commit()
		for req in requirements["act"]:
			_approve(db, school, teacher, "act", req)

		updated = check_and_update_school_progression(db, school.id)

		assert updated.rounds_completed == 1
		assert updated.current_round == 2
		assert updated.current_stage == "inspire"
		assert updated.progress_percentage == 0
		assert not (updated.inspire_completed or updated.investigate_completed or updated.act_completed)

		cert = db.query(Certificate).filter(Certificate.school_id == school.id).one()
		assert cert.round_number == 1
		assert cert.certificate_number.startswith("PCSR1-")
		assert cert.certificate_number.endswith(school.id[:8])
		assert cert.title == "Round 1 Completion Certificate"
		assert cert.extra["achievements"]["act"] == 3

		notes = db.query(Notification).filter(Notification.user_id == teacher.id).all()
		assert [n.type for n in notes] == ["stage_completed"]

	def test_round_completion_is_not_repeated(self, db, school, teacher, requirements) -> None:
		school.inspire_completed = True
		school.investigate_completed = True
		db.commit()
		for req in requirements["act"]:
			_approve(db, school, teacher, "act", req)

		check_and_update_school_progression(db, school.id)
		again = check_and_update_school_progression(db, school.id)

		assert again.current_round == 2
		assert again.rounds_completed == 1
		assert db.query(Certificate).count() == 1

	def test_flags_set_by_hand_complete_the_round(self, db, school) -> None:
		school.inspire_completed = True
		school.investigate_completed = True
		school.act_completed = True
		db.commit()

		updated = check_and_update_school_progression(db, school.id)

		assert updated.current_round == 2
		assert updated.rounds_completed == 1


class TestCertificates:
	def test_issue_is_idempotent_per_round(self, db, school) -> None:
		first = issue_round_certificate(db, school, 1, {"inspire": 3})
		db.commit()
		second = issue_round_certificate(db, school, 1, {"inspire": 5})

		assert first.id == second.id
		assert db.query(Certificate).count() == 1


class TestStageProgress:
	def test_statuses_follow_current_stage(self, db, school, teacher, requirements) -> None:
		_approve(db, school, teacher, "inspire", requirements["inspire"][0])

		stages = stage_progress(db, school)

		assert stages["inspire"]["status"] == "current"
		assert stages["inspire"]["percentage"] == 33
		assert stages["investigate"]["status"] == "locked"
		assert stages["act"]["status"] == "locked"

	def test_completed_stage_reports_full(self, db, school) -> None:
		school.inspire_completed = True
		school.current_stage = "investigate"
		db.commit()

		stages = stage_progress(db, school)

		assert stages["inspire"]["status"] == "completed"
		assert stages["inspire"]["percentage"] == 100
		assert stages["investigate"]["status"] == "current"


class TestManualChanges:
	def test_start_new_round_requires_award(self, db, school) -> None:
		with pytest.raises(ProgressionError):
			start_new_round(db, school)

	def test_start_new_round_after_award(self, db, school) -> None:
		school.award_completed = True
		school.act_completed = True
		db.commit()

		updated = start_new_round(db, school)

		assert updated.current_round == 2
		assert updated.award_completed is False
		assert updated.act_completed is False

	def test_rolling_back_round_resets_rounds_completed(self, db, school) -> None:
		school.current_round = 3
		school.rounds_completed = 2
		db.commit()

		updated = manual_update(db, school, current_round=1)

		assert updated.current_round == 1
		assert updated.rounds_completed == 0

	def test_round_out_of_range_is_rejected(self, db, school) -> None:
		with pytest.raises(ProgressionError):
			manual_update(db, school, current_round=11)

	def test_override_stage_must_match(self, db, school, make_user, requirements) -> None:
		admin = make_user(admin=True)
		with pytest.raises(ProgressionError):
			toggle_override(db, school, requirements["act"][0], "inspire", admin.id)

	def test_override_toggles_and_recomputes(self, db, school, make_user, requirements) -> None:
		admin = make_user(admin=True)
		for req in requirements["inspire"][:2]:
			assert toggle_override(db, school, req, "inspire", admin.id)["action"] == "added"
		result = toggle_override(db, school, requirements["inspire"][2], "inspire", admin.id)
		db.refresh(school)

		assert result["action"] == "added"
		assert school.inspire_completed is True

		removed = toggle_override(db, school, requirements["inspire"][2], "inspire", admin.id)
		assert removed["action"] == "removed"


class TestRoundConsistency:
	def test_audit_flags_round_mismatch_and_fix_repairs_it(self, db, make_school) -> None:
		good = make_school(name="Good School")
		bad = make_school(name="Bad School", current_round=3, rounds_completed=1, progress_percentage=40)

		report = audit_rounds(db)
		by_id = {s["id"]: s for s in report["schools"]}

		assert by_id[good.id]["status"] == "logical"
		assert by_id[bad.id]["status"] == "illogical_round_mismatch"
		assert report["summary"]["illogical_schools"] == 1
		assert report["summary"]["by_issue_type"]["round_mismatch"] == 1

		result = fix_rounds(db, [bad.id, good.id, "missing"])
		db.refresh(bad)

		assert result["fixed"] == 1
		assert result["errors"] == [{"school_id": "missing", "error": "School not found"}]
		assert bad.current_round == 2
		assert bad.progress_percentage == 0

	def test_excessive_progress_is_flagged(self, db, make_school) -> None:
		school = make_school(progress_percentage=150)

		report = audit_rounds(db)

		assert report["schools"][0]["id"] == school.id
		assert report["schools"][0]["status"] == "illogical_excessive_progress"

	def test_migrate_stuck_schools(self, db, make_school) -> None:
		stuck = make_school(current_round=1, rounds_completed=1, inspire_completed=True)
		fine = make_school(name="Fine", current_round=2, rounds_completed=1)

		result = migrate_stuck_schools(db)
		db.refresh(stuck)
		db.refresh(fine)

		assert result["fixed"] == 1
		assert stuck.current_round == 2
		assert stuck.inspire_completed is False
		assert fine.current_round == 2
