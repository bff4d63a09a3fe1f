"""School progression through the Inspire / Investigate / Act program.

Every progress figure the API reports is computed here. A school works
through three stages per round:

- Inspire completes with ``INSPIRE_REQUIRED`` approved requirements.
- Investigate completes once the round has an approved plastic audit and at
  least one reduction promise (the action plan).
- Act completes with ``ACT_REQUIRED`` approved requirements, which also
  completes the round.

Completing a round bumps ``rounds_completed`` and ``current_round``, resets
the stage flags, issues the round certificate and notifies the school.
``progress_percentage`` is the progress inside the current round (0..100).
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .certificates import issue_round_certificate
from .models import (
	STAGES,
	AdminEvidenceOverride,
	AuditResponse,
	Evidence,
	EvidenceRequirement,
	ReductionPromise,
	School,
)
from .notifications import notify_school

logger = logging.getLogger(__name__)

INSPIRE_REQUIRED = 3
ACT_REQUIRED = 3
# Audit + action plan
INVESTIGATE_EXTRA_REQUIREMENTS = 2
MAX_MANUAL_ROUND = 10

STAGE_FLOOR = {"inspire": 33, "investigate": 67, "act": 100}


class ProgressionError(ValueError):
	pass


@dataclass
class StageCount:
	total: int = 0
	approved: int = 0


@dataclass
class EvidenceCounts:
	inspire: StageCount = field(default_factory=StageCount)
	investigate: StageCount = field(default_factory=StageCount)
	act: StageCount = field(default_factory=StageCount)
	has_quiz: bool = False
	has_action_plan: bool = False

	def stage(self, name: str) -> StageCount:
		return getattr(self, name)

	def approved_total(self) -> int:
		return (
			self.inspire.approved
			+ self.investigate.approved
			+ (1 if self.has_quiz else 0)
			+ (1 if self.has_action_plan else 0)
			+ self.act.approved
		)

	def achievements(self) -> Dict[str, int]:
		return {s: self.stage(s).approved for s in STAGES}

	def as_dict(self) -> Dict[str, Any]:
		return {
			"inspire": {"total": self.inspire.total, "approved": self.inspire.approved},
			"investigate": {
				"total": self.investigate.total,
				"approved": self.investigate.approved,
				"has_quiz": self.has_quiz,
				"has_action_plan": self.has_action_plan,
			},
			"act": {"total": self.act.total, "approved": self.act.approved},
		}


def _round_half_up(value: float) -> int:
	return int(value + 0.5)


def _clamp(value: int, low: int = 0, high: int = 100) -> int:
	return max(low, min(high, value))


def evidence_counts(db: Session, school: School) -> EvidenceCounts:
	"""Count submitted and satisfied requirements per stage for the current round.

	Approved evidence tied to the same requirement counts once. Approved
	evidence without a requirement counts individually. Admin overrides join
	the set of satisfied requirements.
	"""
	current_round = school.current_round or 1
	rows: List[Evidence] = (
		db.query(Evidence)
		.filter(Evidence.school_id == school.id, Evidence.round_number == current_round)
		.all()
	)
	overrides: List[AdminEvidenceOverride] = (
		db.query(AdminEvidenceOverride)
		.filter(AdminEvidenceOverride.school_id == school.id, AdminEvidenceOverride.round_number == current_round)
		.all()
	)

	counts = EvidenceCounts()
	for stage in STAGES:
		stage_rows = [e for e in rows if e.stage == stage]
		approved = [e for e in stage_rows if e.status == "approved"]
		requirement_ids = {e.evidence_requirement_id for e in approved if e.evidence_requirement_id is not None}
		without_requirement = sum(1 for e in approved if e.evidence_requirement_id is None)
		requirement_ids.update(o.evidence_requirement_id for o in overrides if o.stage == stage)
		bucket = counts.stage(stage)
		bucket.total = len(stage_rows)
		bucket.approved = len(requirement_ids) + without_requirement

	counts.has_quiz = (
		db.query(AuditResponse.id)
		.filter(
			AuditResponse.school_id == school.id,
			AuditResponse.status == "approved",
			AuditResponse.round_number == current_round,
		)
		.first()
		is not None
	)
	counts.has_action_plan = (
		db.query(ReductionPromise.id)
		.filter(
			ReductionPromise.school_id == school.id,
			ReductionPromise.round_number == current_round,
			ReductionPromise.status != "cancelled",
		)
		.first()
		is not None
	)
	return counts


def requirement_totals(db: Session) -> Dict[str, int]:
	totals = {stage: 0 for stage in STAGES}
	for stage, n in db.query(EvidenceRequirement.stage, func.count(EvidenceRequirement.id)).group_by(EvidenceRequirement.stage).all():
		if stage in totals:
			totals[stage] = int(n)
	return totals


def _flag_floor(inspire: bool, investigate: bool, act: bool) -> int:
	if act:
		return STAGE_FLOOR["act"]
	if investigate:
		return STAGE_FLOOR["investigate"]
	if inspire:
		return STAGE_FLOOR["inspire"]
	return 0


def round_progress(
	counts: EvidenceCounts,
	totals: Dict[str, int],
	*,
	inspire_completed: bool,
	investigate_completed: bool,
	act_completed: bool,
	is_migrated: bool = False,
	current_round: int = 1,
) -> int:
	"""Progress inside the current round, 0..100."""
	requirement_count = sum(totals.get(s, 0) for s in STAGES)
	if requirement_count == 0:
		return _flag_floor(inspire_completed, investigate_completed, act_completed)
	required = requirement_count + INVESTIGATE_EXTRA_REQUIREMENTS
	progress = _round_half_up(counts.approved_total() * 100 / required)
	if is_migrated and current_round == 1:
		progress = max(progress, _flag_floor(inspire_completed, investigate_completed, act_completed))
	return _clamp(progress)


def first_incomplete_stage(inspire_completed: bool, investigate_completed: bool) -> str:
	if not inspire_completed:
		return "inspire"
	if not investigate_completed:
		return "investigate"
	return "act"


def stage_is_unlocked(school: School, stage: str) -> bool:
	current = school.current_stage or "inspire"
	return STAGES.index(stage) <= STAGES.index(current)


def stage_progress(db: Session, school: School, counts: Optional[EvidenceCounts] = None) -> Dict[str, Dict[str, Any]]:
	"""Per-stage completion measured against the rule that completes each stage."""
	if counts is None:
		counts = evidence_counts(db, school)
	flags = {
		"inspire": bool(school.inspire_completed),
		"investigate": bool(school.investigate_completed),
		"act": bool(school.act_completed),
	}
	satisfied = {
		"inspire": (counts.inspire.approved, INSPIRE_REQUIRED),
		"investigate": ((1 if counts.has_quiz else 0) + (1 if counts.has_action_plan else 0), INVESTIGATE_EXTRA_REQUIREMENTS),
		"act": (counts.act.approved, ACT_REQUIRED),
	}
	out: Dict[str, Dict[str, Any]] = {}
	for stage in STAGES:
		approved, required = satisfied[stage]
		if flags[stage]:
			percentage = 100
			status = "completed"
		else:
			percentage = _clamp(_round_half_up(approved * 100 / required))
			status = "current" if stage_is_unlocked(school, stage) else "locked"
		out[stage] = {
			"approved": approved,
			"required": required,
			"submitted": counts.stage(stage).total,
			"percentage": percentage,
			"completed": flags[stage],
			"status": status,
		}
	return out


def progress_summary(db: Session, school: School) -> Dict[str, Any]:
	counts = evidence_counts(db, school)
	return {
		"school_id": school.id,
		"current_round": school.current_round,
		"rounds_completed": school.rounds_completed,
		"current_stage": school.current_stage,
		"progress_percentage": school.progress_percentage,
		"total_progress": (school.rounds_completed or 0) * 100 + (school.progress_percentage or 0),
		"award_completed": school.award_completed,
		"stages": stage_progress(db, school, counts),
		"evidence_counts": counts.as_dict(),
	}


def _reset_for_next_round(school: School, next_round: int) -> None:
	school.current_round = next_round
	school.current_stage = "inspire"
	school.inspire_completed = False
	school.investigate_completed = False
	school.act_completed = False
	school.award_completed = False
	school.audit_quiz_completed = False
	school.progress_percentage = 0


def check_and_update_school_progression(db: Session, school_id: str, *, reason: Optional[str] = None) -> Optional[School]:
	"""Re-derive stage flags, round and progress for a school and persist any change."""
	school = db.get(School, school_id)
	if school is None:
		return None

	counts = evidence_counts(db, school)
	completed_round = school.current_round or 1
	inspire = bool(school.inspire_completed)
	investigate = bool(school.investigate_completed)
	act = bool(school.act_completed)
	just_completed_round = False

	if counts.inspire.approved >= INSPIRE_REQUIRED and not inspire:
		inspire = True
	if counts.has_quiz and counts.has_action_plan and not investigate:
		investigate = True
		school.audit_quiz_completed = True
	if counts.act.approved >= ACT_REQUIRED and not act:
		act = True
		just_completed_round = True
	elif inspire and investigate and act and not school.award_completed:
		# Flags set by hand; close the round the same way
		just_completed_round = True

	if just_completed_round:
		school.rounds_completed = (school.rounds_completed or 0) + 1
		_reset_for_next_round(school, completed_round + 1)
		issue_round_certificate(db, school, completed_round, counts.achievements())
		notify_school(
			db,
			school.id,
			"stage_completed",
			f"Round {completed_round} complete",
			f"{school.name} completed Inspire, Investigate and Act in round {completed_round}. Your certificate is ready.",
			action_url=f"/api/schools/{school.id}/certificates",
		)
		logger.info("school %s completed round %d, advancing to round %d", school.id, completed_round, completed_round + 1)
	else:
		school.inspire_completed = inspire
		school.investigate_completed = investigate
		school.act_completed = act
		school.current_stage = first_incomplete_stage(inspire, investigate)
		school.progress_percentage = round_progress(
			counts,
			requirement_totals(db),
			inspire_completed=inspire,
			investigate_completed=investigate,
			act_completed=act,
			is_migrated=bool(school.is_migrated),
			current_round=completed_round,
		)

	changed = bool(db.dirty) or bool(db.new)
	db.commit()
	db.refresh(school)
	if changed:
		logger.info(
			"progression for school %s (%s): round=%d stage=%s progress=%d%%",
			school.id,
			reason or "recalculate",
			school.current_round,
			school.current_stage,
			school.progress_percentage,
		)
	return school


def start_new_round(db: Session, school: School) -> School:
	if not school.award_completed:
		raise ProgressionError("Current round must be completed before starting a new round")
	_reset_for_next_round(school, (school.current_round or 1) + 1)
	db.commit()
	db.refresh(school)
	return school


def manual_update(
	db: Session,
	school: School,
	*,
	current_round: Optional[int] = None,
	current_stage: Optional[str] = None,
	inspire_completed: Optional[bool] = None,
	investigate_completed: Optional[bool] = None,
	act_completed: Optional[bool] = None,
	progress_percentage: Optional[int] = None,
) -> School:
	"""Admin correction of a school's progression, followed by a recompute."""
	if current_round is not None:
		if current_round < 1 or current_round > MAX_MANUAL_ROUND:
			raise ProgressionError(f"current_round must be between 1 and {MAX_MANUAL_ROUND}")
		if current_round != school.current_round:
			logger.info("moving school %s from round %d to round %d", school.id, school.current_round, current_round)
		school.current_round = current_round
		school.rounds_completed = current_round - 1
	if current_stage is not None:
		if current_stage not in STAGES:
			raise ProgressionError(f"current_stage must be one of {list(STAGES)}")
		school.current_stage = current_stage
	if inspire_completed is not None:
		school.inspire_completed = inspire_completed
	if investigate_completed is not None:
		school.investigate_completed = investigate_completed
	if act_completed is not None:
		school.act_completed = act_completed
	if progress_percentage is not None:
		school.progress_percentage = _clamp(progress_percentage)
	db.commit()
	return check_and_update_school_progression(db, school.id, reason="manual_admin") or school


def override_to_dict(row: AdminEvidenceOverride) -> Dict[str, Any]:
	return {
		"id": row.id,
		"school_id": row.school_id,
		"evidence_requirement_id": row.evidence_requirement_id,
		"stage": row.stage,
		"round_number": row.round_number,
		"marked_by": row.marked_by,
		"created_at": row.created_at,
	}


def list_overrides(db: Session, school_id: str, round_number: Optional[int] = None) -> List[AdminEvidenceOverride]:
	q = db.query(AdminEvidenceOverride).filter(AdminEvidenceOverride.school_id == school_id)
	if round_number is not None:
		q = q.filter(AdminEvidenceOverride.round_number == round_number)
	return q.order_by(AdminEvidenceOverride.created_at).all()


def toggle_override(db: Session, school: School, requirement: EvidenceRequirement, stage: str, marked_by: str) -> Dict[str, Any]:
	"""Mark a requirement satisfied for the current round, or clear an existing mark."""
	if requirement.stage != stage:
		raise ProgressionError("Evidence requirement stage does not match provided stage")
	round_number = school.current_round or 1
	existing = (
		db.query(AdminEvidenceOverride)
		.filter(
			AdminEvidenceOverride.school_id == school.id,
			AdminEvidenceOverride.evidence_requirement_id == requirement.id,
			AdminEvidenceOverride.round_number == round_number,
		)
		.first()
	)
	if existing is not None:
		payload = override_to_dict(existing)
		db.delete(existing)
		db.commit()
		action = "removed"
	else:
		row = AdminEvidenceOverride(
			school_id=school.id,
			evidence_requirement_id=requirement.id,
			stage=stage,
			round_number=round_number,
			marked_by=marked_by,
		)
		db.add(row)
		db.commit()
		db.refresh(row)
		payload = override_to_dict(row)
		action = "added"
	logger.info("admin override %s for school %s requirement %s (round %d)", action, school.id, requirement.id, round_number)
	check_and_update_school_progression(db, school.id, reason="manual_admin")
	return {"action": action, "override": payload}


# ---- Round consistency checks ----

def _recommended_fix(school: School) -> Dict[str, Any]:
	rounds_completed = school.rounds_completed or 0
	return {
		"current_round": rounds_completed + 1,
		"rounds_completed": rounds_completed,
		"inspire_completed": False,
		"investigate_completed": False,
		"act_completed": False,
		"award_completed": False,
		"current_stage": "inspire",
		"progress_percentage": 0,
	}


def audit_school_round(school: School) -> Dict[str, Any]:
	current_round = school.current_round or 1
	rounds_completed = school.rounds_completed or 0
	progress = school.progress_percentage or 0
	result: Dict[str, Any] = {
		"id": school.id,
		"name": school.name,
		"country": school.country,
		"current_round": current_round,
		"rounds_completed": rounds_completed,
		"current_stage": school.current_stage,
		"progress_percentage": progress,
		"status": "logical",
		"issue": None,
		"recommended_fix": None,
	}
	expected_round = rounds_completed + 1
	if current_round != expected_round:
		result["status"] = "illogical_round_mismatch"
		result["issue"] = (
			f"Round mismatch: current_round={current_round} but rounds_completed={rounds_completed} "
			f"(expected current_round={expected_round})"
		)
	elif progress > 100:
		result["status"] = "illogical_excessive_progress"
		result["issue"] = f"Excessive progress: round {current_round} school has {progress}% progress (should be 0-100%)"
	elif progress < 0:
		result["status"] = "illogical_excessive_progress"
		result["issue"] = f"Negative progress: {progress}% (should be 0-100%)"
	if result["status"] != "logical":
		result["recommended_fix"] = _recommended_fix(school)
	return result


def audit_rounds(db: Session) -> Dict[str, Any]:
	schools: List[School] = db.query(School).all()
	results = []
	summary: Dict[str, Any] = {
		"total_schools": len(schools),
		"logical_schools": 0,
		"illogical_schools": 0,
		"by_issue_type": {"excessive_progress": 0, "round_mismatch": 0},
		"by_round": {},
	}
	for school in schools:
		audit = audit_school_round(school)
		results.append(audit)
		bucket = summary["by_round"].setdefault(
			audit["current_round"], {"total": 0, "logical": 0, "illogical": 0, "avg_progress": 0.0}
		)
		bucket["total"] += 1
		bucket["avg_progress"] += audit["progress_percentage"]
		if audit["status"] == "logical":
			summary["logical_schools"] += 1
			bucket["logical"] += 1
		else:
			summary["illogical_schools"] += 1
			bucket["illogical"] += 1
			if audit["status"] == "illogical_round_mismatch":
				summary["by_issue_type"]["round_mismatch"] += 1
			else:
				summary["by_issue_type"]["excessive_progress"] += 1
	for bucket in summary["by_round"].values():
		bucket["avg_progress"] = bucket["avg_progress"] / bucket["total"] if bucket["total"] else 0.0
	return {"schools": results, "summary": summary}


def fix_rounds(db: Session, school_ids: Iterable[str]) -> Dict[str, Any]:
	result: Dict[str, Any] = {"fixed": 0, "errors": [], "details": []}
	for school_id in school_ids:
		school = db.get(School, school_id)
		if school is None:
			result["errors"].append({"school_id": school_id, "error": "School not found"})
			continue
		audit = audit_school_round(school)
		if audit["status"] == "logical":
			continue
		before = {k: audit[k] for k in ("current_round", "rounds_completed", "current_stage", "progress_percentage")}
		after = audit["recommended_fix"]
		for key, value in after.items():
			setattr(school, key, value)
		db.commit()
		result["fixed"] += 1
		result["details"].append({"school_id": school.id, "name": school.name, "before": before, "after": after})
		logger.info(
			"fixed rounds for school %s: round %s -> %s, progress %s -> 0",
			school.id,
			before["current_round"],
			after["current_round"],
			before["progress_percentage"],
		)
	return result


def migrate_stuck_schools(db: Session) -> Dict[str, Any]:
	"""Move schools whose current round lags their completed rounds onto the next round."""
	stuck: List[School] = (
		db.query(School)
		.filter(School.rounds_completed > 0, School.current_round <= School.rounds_completed)
		.all()
	)
	fixed: List[str] = []
	for school in stuck:
		correct_round = (school.rounds_completed or 0) + 1
		logger.info(
			"moving stuck school %s (%s) from round %d to round %d",
			school.id,
			school.name,
			school.current_round,
			correct_round,
		)
		_reset_for_next_round(school, correct_round)
		fixed.append(f"{school.name} ({school.id})")
	if fixed:
		db.commit()
	return {"fixed": len(fixed), "schools": fixed}
