from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import (
	EVIDENCE_STATUSES,
	PHOTO_CONSENT_STATUSES,
	SCHOOL_TYPES,
	USER_ROLES,
	AdminEvidenceOverride,
	AuditResponse,
	Certificate,
	Evidence,
	EvidenceRequirement,
	Notification,
	ReductionPromise,
	School,
	SchoolUser,
	TeacherInvitation,
	User,
)
from ..notifications import notify_user
from ..permissions import get_school_or_404, membership
from ..progression import (
	ProgressionError,
	audit_rounds,
	check_and_update_school_progression,
	fix_rounds,
	list_overrides,
	manual_update,
	override_to_dict,
	progress_summary,
	toggle_override,
)
from ..serializers import evidence_to_dict, member_to_dict, school_to_dict, user_to_dict
from ..storage import delete_by_url, delete_file_list
from .auth import require_admin, require_admin_or_partner
from .schools import MEMBER_ROLES, email_domain, photo_consent_to_dict
from .team import decide_access_request, get_pending_request, pending_requests

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["admin"])


# ---- Evidence review ----

def _check_choice(name: str, value: Optional[str], choices: tuple) -> None:
	if value is not None and value not in choices:
		raise HTTPException(status_code=400, detail=f"{name} must be one of {list(choices)}")


def _evidence_with_school(db: Session, rows: List[Evidence]) -> list:
	schools = {s.id: s for s in db.query(School).filter(School.id.in_({e.school_id for e in rows})).all()} if rows else {}
	return [evidence_to_dict(e, school=schools.get(e.school_id)) for e in rows]


@router.get("/admin/evidence")
def admin_list_evidence(
	status: Optional[str] = None,
	stage: Optional[str] = None,
	school_id: Optional[str] = None,
	assigned_to: Optional[str] = None,
	limit: int = Query(100, ge=1, le=500),
	offset: int = Query(0, ge=0),
	admin: User = Depends(require_admin_or_partner),
	db: Session = Depends(get_db),
):
	_check_choice("status", status, EVIDENCE_STATUSES)
	q = db.query(Evidence)
	if status:
		q = q.filter(Evidence.status == status)
	if stage:
		q = q.filter(Evidence.stage == stage)
	if school_id:
		q = q.filter(Evidence.school_id == school_id)
	if assigned_to:
		q = q.filter(Evidence.assigned_to == assigned_to)
	rows = q.order_by(Evidence.submitted_at.desc()).offset(offset).limit(limit).all()
	return _evidence_with_school(db, rows)


@router.get("/admin/evidence/pending")
def admin_pending_evidence(admin: User = Depends(require_admin_or_partner), db: Session = Depends(get_db)):
	rows = db.query(Evidence).filter(Evidence.status == "pending").order_by(Evidence.submitted_at).all()
	return _evidence_with_school(db, rows)


class EvidenceReview(BaseModel):
	status: str
	review_notes: Optional[str] = None


def _apply_review(db: Session, evidence: Evidence, status: str, notes: Optional[str], reviewer: User) -> None:
	evidence.status = status
	evidence.review_notes = notes
	evidence.reviewed_by = reviewer.id
	evidence.reviewed_at = datetime.utcnow()
	notify_user(
		db,
		evidence.submitted_by,
		"evidence_reviewed",
		f"Evidence {status}: {evidence.title}",
		notes or f"Your evidence \"{evidence.title}\" has been {status}.",
		school_id=evidence.school_id,
		action_url=f"/api/evidence/{evidence.id}",
	)


def _check_review_status(status: str) -> None:
	if status not in ("approved", "rejected"):
		raise HTTPException(status_code=400, detail="status must be approved or rejected")


@router.put("/admin/evidence/{evidence_id}/review")
def review_evidence(evidence_id: str, req: EvidenceReview, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	_check_review_status(req.status)
	evidence = db.get(Evidence, evidence_id)
	if evidence is None:
		raise HTTPException(status_code=404, detail="Evidence not found")
	_apply_review(db, evidence, req.status, req.review_notes, admin)
	db.commit()
	logger.info("evidence %s %s by %s", evidence.id, req.status, admin.id)
	check_and_update_school_progression(db, evidence.school_id, reason="evidence_review")
	db.refresh(evidence)
	return evidence_to_dict(evidence)


class BulkReview(BaseModel):
	evidence_ids: List[str] = Field(min_length=1)
	status: str
	review_notes: Optional[str] = None


@router.post("/admin/evidence/bulk-review")
def bulk_review(req: BulkReview, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	_check_review_status(req.status)
	results = {"success": [], "failed": []}
	schools: set[str] = set()
	for evidence_id in req.evidence_ids:
		evidence = db.get(Evidence, evidence_id)
		if evidence is None:
			results["failed"].append({"id": evidence_id, "error": "Evidence not found"})
			continue
		_apply_review(db, evidence, req.status, req.review_notes, admin)
		results["success"].append(evidence_id)
		schools.add(evidence.school_id)
	db.commit()
	for school_id in schools:
		check_and_update_school_progression(db, school_id, reason="bulk_review")
	logger.info("bulk review: %d %s, %d failed", len(results["success"]), req.status, len(results["failed"]))
	return results


class BulkDelete(BaseModel):
	evidence_ids: List[str] = Field(min_length=1)


@router.delete("/admin/evidence/bulk-delete")
def bulk_delete(req: BulkDelete, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	results = {"success": [], "failed": []}
	schools: set[str] = set()
	files: list = []
	for evidence_id in req.evidence_ids:
		evidence = db.get(Evidence, evidence_id)
		if evidence is None:
			results["failed"].append({"id": evidence_id, "error": "Evidence not found"})
			continue
		schools.add(evidence.school_id)
		files.extend((evidence.files or []) + (evidence.parental_consent_files or []))
		db.delete(evidence)
		results["success"].append(evidence_id)
	db.commit()
	delete_file_list(files)
	for school_id in schools:
		check_and_update_school_progression(db, school_id, reason="bulk_delete")
	return results


class EvidenceAssign(BaseModel):
	assigned_to: Optional[str] = None


@router.patch("/admin/evidence/{evidence_id}/assign")
def assign_evidence(evidence_id: str, req: EvidenceAssign, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	evidence = db.get(Evidence, evidence_id)
	if evidence is None:
		raise HTTPException(status_code=404, detail="Evidence not found")
	if req.assigned_to is not None:
		assignee = db.get(User, req.assigned_to)
		if assignee is None or not (assignee.is_admin or assignee.role in ("admin", "partner")):
			raise HTTPException(status_code=400, detail="Evidence can only be assigned to an admin or partner")
	evidence.assigned_to = req.assigned_to
	db.commit()
	db.refresh(evidence)
	return evidence_to_dict(evidence)


# ---- Schools ----

SORT_COLUMNS = {
	"name": School.name,
	"country": School.country,
	"created_at": School.created_at,
	"progress": School.progress_percentage,
	"round": School.current_round,
}


@router.get("/admin/schools")
def admin_list_schools(
	country: Optional[str] = None,
	stage: Optional[str] = None,
	type: Optional[str] = None,
	round: Optional[int] = None,
	search: Optional[str] = None,
	photo_consent_status: Optional[str] = None,
	sort_by: str = "created_at",
	sort_order: str = "desc",
	limit: int = Query(50, ge=1, le=500),
	offset: int = Query(0, ge=0),
	admin: User = Depends(require_admin_or_partner),
	db: Session = Depends(get_db),
):
	if sort_by not in SORT_COLUMNS:
		raise HTTPException(status_code=400, detail=f"sort_by must be one of {list(SORT_COLUMNS)}")
	_check_choice("photo_consent_status", photo_consent_status, PHOTO_CONSENT_STATUSES)
	q = db.query(School)
	if country:
		q = q.filter(School.country == country)
	if stage:
		q = q.filter(School.current_stage == stage)
	if type:
		q = q.filter(School.type == type)
	if round is not None:
		q = q.filter(School.current_round == round)
	if photo_consent_status:
		q = q.filter(School.photo_consent_status == photo_consent_status)
	if search:
		term = f"%{search.strip().lower()}%"
		q = q.filter(func.lower(School.name).like(term) | func.lower(School.admin_email).like(term))
	total = q.count()
	column = SORT_COLUMNS[sort_by]
	q = q.order_by(column.asc() if sort_order == "asc" else column.desc())
	rows = q.offset(offset).limit(limit).all()
	return {"schools": [school_to_dict(s) for s in rows], "total": total, "limit": limit, "offset": offset}


@router.get("/admin/schools/round-audit")
def round_audit(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	return audit_rounds(db)


class RoundFix(BaseModel):
	school_ids: List[str] = Field(min_length=1)


@router.post("/admin/schools/round-fix")
def round_fix(req: RoundFix, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	result = fix_rounds(db, req.school_ids)
	logger.info("round fix by %s: %d fixed, %d errors", admin.id, result["fixed"], len(result["errors"]))
	return result


class SchoolUpdate(BaseModel):
	name: Optional[str] = Field(default=None, min_length=1, max_length=256)
	type: Optional[str] = None
	country: Optional[str] = None
	address: Optional[str] = None
	website: Optional[str] = None
	admin_email: Optional[str] = None
	postcode: Optional[str] = None
	primary_language: Optional[str] = None
	student_count: Optional[int] = Field(default=None, ge=0)
	featured_school: Optional[bool] = None
	show_on_map: Optional[bool] = None
	is_migrated: Optional[bool] = None
	legacy_evidence_count: Optional[int] = Field(default=None, ge=0)


@router.get("/admin/schools/{school_id}")
def admin_get_school(school_id: str, admin: User = Depends(require_admin_or_partner), db: Session = Depends(get_db)):
	school = get_school_or_404(db, school_id)
	return {**school_to_dict(school), "progress": progress_summary(db, school)}


@router.put("/admin/schools/{school_id}")
def admin_update_school(school_id: str, req: SchoolUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	school = get_school_or_404(db, school_id)
	updates = req.model_dump(exclude_unset=True)
	if updates.get("type") is not None and updates["type"] not in SCHOOL_TYPES:
		raise HTTPException(status_code=400, detail=f"type must be one of {list(SCHOOL_TYPES)}")
	for key, value in updates.items():
		setattr(school, key, value)
	db.commit()
	db.refresh(school)
	return school_to_dict(school)


@router.delete("/admin/schools/{school_id}")
def admin_delete_school(school_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	school = get_school_or_404(db, school_id)
	files: list = []
	for evidence in db.query(Evidence).filter(Evidence.school_id == school.id):
		files.extend((evidence.files or []) + (evidence.parental_consent_files or []))
	consent_url = school.photo_consent_document_url
	for model in (ReductionPromise, AdminEvidenceOverride, Evidence, AuditResponse, Certificate, Notification, TeacherInvitation, SchoolUser):
		db.query(model).filter(model.school_id == school.id).delete(synchronize_session=False).filter(model.school_id == school.id).delete(synchronize_session=False)
	db.delete(school)
	db.commit()
	delete_file_list(files)
	delete_by_url(consent_url)
	logger.info("school %s deleted by %s", school_id, admin.id)
	return {"ok": True}


@router.get("/admin/schools/{school_id}/evidence-overrides")
def admin_get_overrides(
	school_id: str,
	round_number: Optional[int] = None,
	admin: User = Depends(require_admin),
	db: Session = Depends(get_db),
):
	school = get_school_or_404(db, school_id)
	rows = list_overrides(db, school.id, round_number if round_number is not None else school.current_round)
	return [override_to_dict(r) for r in rows]


class OverrideToggle(BaseModel):
	evidence_requirement_id: str
	stage: str


@router.post("/admin/schools/{school_id}/evidence-overrides/toggle")
def admin_toggle_override(
	school_id: str,
	req: OverrideToggle,
	admin: User = Depends(require_admin),
	db: Session = Depends(get_db),
):
	school = get_school_or_404(db, school_id)
	requirement = db.get(EvidenceRequirement, req.evidence_requirement_id)
	if requirement is None:
		raise HTTPException(status_code=404, detail="Evidence requirement not found")
	try:
		result = toggle_override(db, school, requirement, req.stage, admin.id)
	except ProgressionError as e:
		raise HTTPException(status_code=400, detail=str(e))
	db.refresh(school)
	result["school"] = school_to_dict(school)
	return result


class ProgressionUpdate(BaseModel):
	current_round: Optional[int] = None
	current_stage: Optional[str] = None
	inspire_completed: Optional[bool] = None
	investigate_completed: Optional[bool] = None
	act_completed: Optional[bool] = None
	progress_percentage: Optional[int] = None


@router.patch("/admin/schools/{school_id}/progression")
def admin_update_progression(
	school_id: str,
	req: ProgressionUpdate,
	admin: User = Depends(require_admin),
	db: Session = Depends(get_db),
):
	school = get_school_or_404(db, school_id)
	if req.progress_percentage is not None and not 0 <= req.progress_percentage <= 100:
		raise HTTPException(status_code=400, detail="progress_percentage must be between 0 and 100")
	try:
		school = manual_update(db, school, **req.model_dump(exclude_unset=True))
	except ProgressionError as e:
		raise HTTPException(status_code=400, detail=str(e))
	logger.info("progression of school %s updated by %s", school.id, admin.id)
	return school_to_dict(school)


@router.post("/admin/schools/{school_id}/recalculate")
def admin_recalculate(school_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	get_school_or_404(db, school_id)
	school = check_and_update_school_progression(db, school_id, reason="admin_recalculate")
	return {"school": school_to_dict(school), "progress": progress_summary(db, school)}


# ---- Team membership ----

class AssignTeacher(BaseModel):
	email: str = Field(min_length=3, max_length=256)
	role: str = "teacher"


@router.post("/admin/schools/{school_id}/assign-teacher", status_code=201)
def assign_teacher(school_id: str, req: AssignTeacher, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	school = get_school_or_404(db, school_id)
	_check_choice("role", req.role, MEMBER_ROLES)
	email = req.email.strip().lower()
	if email_domain(email) is None:
		raise HTTPException(status_code=400, detail="Valid email is required")
	user = db.query(User).filter(User.email == email).first()
	if user is None:
		# Account without a password until the teacher registers or resets it
		user = User(email=email, first_name=email.split("@", 1)[0], role="teacher")
		db.add(user)
		db.flush()
		logger.info("created user %s for %s while assigning to school %s", user.id, email, school.id)
	member = membership(db, user.id, school.id)
	if member is not None and member.role != "pending_teacher":
		raise HTTPException(status_code=409, detail=f"User is already assigned to this school as {member.role}")
	if member is None:
		member = SchoolUser(school_id=school.id, user_id=user.id)
		db.add(member)
	member.role = req.role
	member.is_verified = True
	member.verification_method = "admin_assigned"
	member.invited_by = admin.id
	notify_user(
		db,
		user.id,
		"team_update",
		f"You've been added to {school.name}",
		f"A platform administrator added you to {school.name} as {'head teacher' if req.role == 'head_teacher' else 'teacher'}.",
		school_id=school.id,
		action_url="/api/dashboard",
	)
	db.commit()
	db.refresh(member)
	logger.info("user %s assigned to school %s as %s by %s", user.id, school.id, req.role, admin.id)
	return member_to_dict(member, user)


@router.get("/admin/verification-requests")
def admin_verification_requests(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	return pending_requests(db)


class VerificationDecision(BaseModel):
	notes: Optional[str] = None


@router.put("/admin/verification-requests/{request_id}/{action}")
def admin_decide_verification(
	request_id: str,
	action: str,
	req: VerificationDecision | None = None,
	admin: User = Depends(require_admin),
	db: Session = Depends(get_db),
):
	if action not in ("approve", "reject"):
		raise HTTPException(status_code=400, detail="action must be approve or reject")
	row = get_pending_request(db, request_id)
	return decide_access_request(db, row, action == "approve", req.notes if req else None, admin)


# ---- Photo consent ----

@router.get("/admin/photo-consent/pending")
def pending_photo_consent(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	rows = (
		db.query(School)
		.filter(School.photo_consent_status == "pending")
		.order_by(School.photo_consent_uploaded_at)
		.all()
	)
	return [{**photo_consent_to_dict(s), "school_name": s.name, "country": s.country} for s in rows]


class ConsentDecision(BaseModel):
	notes: Optional[str] = None


def _decide_consent(db: Session, school: School, approved: bool, notes: Optional[str], admin: User) -> dict:
	if not school.photo_consent_document_url:
		raise HTTPException(status_code=400, detail="No photo consent document uploaded")
	school.photo_consent_status = "approved" if approved else "rejected"
	school.photo_consent_review_notes = notes
	school.photo_consent_approved_at = datetime.utcnow() if approved else None
	school.photo_consent_approved_by = admin.id if approved else None
	db.commit()
	logger.info("photo consent for school %s %s by %s", school.id, school.photo_consent_status, admin.id)
	return photo_consent_to_dict(school)


@router.patch("/schools/{school_id}/photo-consent/approve")
def approve_photo_consent(school_id: str, req: ConsentDecision | None = None, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	return _decide_consent(db, get_school_or_404(db, school_id), True, req.notes if req else None, admin)


@router.patch("/schools/{school_id}/photo-consent/reject")
def reject_photo_consent(school_id: str, req: ConsentDecision, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	if not req.notes:
		raise HTTPException(status_code=400, detail="Review notes are required when rejecting")
	return _decide_consent(db, get_school_or_404(db, school_id), False, req.notes, admin)


# ---- Stats and users ----

@router.get("/admin/stats")
def admin_stats(admin: User = Depends(require_admin_or_partner), db: Session = Depends(get_db)):
	by_status = dict(db.query(Evidence.status, func.count(Evidence.id)).group_by(Evidence.status).all())
	by_stage = dict(db.query(School.current_stage, func.count(School.id)).group_by(School.current_stage).all())
	return {
		"total_schools": db.query(func.count(School.id)).scalar() or 0,
		"total_users": db.query(func.count(User.id)).scalar() or 0,
		"countries": db.query(func.count(func.distinct(School.country))).scalar() or 0,
		"evidence": {s: int(by_status.get(s, 0)) for s in ("pending", "approved", "rejected")},
		"schools_by_stage": {k: int(v) for k, v in by_stage.items()},
		"pending_audits": db.query(func.count(AuditResponse.id)).filter(AuditResponse.status == "submitted").scalar() or 0,
		"pending_photo_consents": db.query(func.count(School.id)).filter(School.photo_consent_status == "pending").scalar() or 0,
		"certificates_issued": db.query(func.count(Certificate.id)).scalar() or 0,
	}


@router.get("/admin/users")
def admin_users(
	search: Optional[str] = None,
	role: Optional[str] = None,
	limit: int = Query(100, ge=1, le=500),
	offset: int = Query(0, ge=0),
	admin: User = Depends(require_admin),
	db: Session = Depends(get_db),
):
	_check_choice("role", role, USER_ROLES)
	q = db.query(User)
	if role:
		q = q.filter(User.role == role)
	if search:
		term = f"%{search.strip().lower()}%"
		q = q.filter(
			func.lower(User.email).like(term)
			| func.lower(User.first_name).like(term)
			| func.lower(User.last_name).like(term)
		)
	rows = q.order_by(User.created_at.desc()).offset(offset).limit(limit).all()
	return [user_to_dict(u) for u in rows]
