from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import SCHOOL_ROLES, SCHOOL_TYPES, AdminEvidenceOverride, Evidence, School, SchoolUser, User
from ..permissions import membership, require_head_teacher, require_school_access, user_schools
from ..progression import ProgressionError, progress_summary, start_new_round
from ..serializers import evidence_to_dict, member_to_dict, public_school_to_dict, school_to_dict
from ..storage import CONSENT_TYPES, StorageError, delete_by_url, save_upload
from .auth import get_current_user, is_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["schools"])

MAX_PAGE = 200
MEMBER_ROLES = tuple(r for r in SCHOOL_ROLES if r != "pending_teacher")


def email_domain(email: Optional[str]) -> Optional[str]:
	if not email or "@" not in email:
		return None
	domain = email.rsplit("@", 1)[1].strip().lower()
	return domain or None


def school_by_domain(db: Session, domain: str) -> Optional[School]:
	"""School whose admin email is at exactly this domain."""
	suffix = "@" + domain.strip().lower()
	return db.query(School).filter(func.lower(School.admin_email).endswith(suffix, autoescape=True)).first()


@router.get("/schools")
def list_schools(
	country: Optional[str] = None,
	stage: Optional[str] = None,
	type: Optional[str] = None,
	search: Optional[str] = None,
	limit: int = Query(50, ge=1, le=MAX_PAGE),
	offset: int = Query(0, ge=0),
	db: Session = Depends(get_db),
):
	q = db.query(School)
	if country:
		q = q.filter(School.country == country)
	if stage:
		q = q.filter(School.current_stage == stage)
	if type:
		q = q.filter(School.type == type)
	if search:
		q = q.filter(func.lower(School.name).contains(search.strip().lower()))
	rows = q.order_by(School.name).offset(offset).limit(limit).all()
	return [public_school_to_dict(s) for s in rows]


@router.get("/schools/check-domain")
def check_domain(email: Optional[str] = None, db: Session = Depends(get_db)):
	if not email:
		raise HTTPException(status_code=400, detail="Email is required")
	domain = email_domain(email)
	if domain is None:
		raise HTTPException(status_code=400, detail="Invalid email format")
	school = school_by_domain(db, domain)
	return {"exists": school is not None, "school": {"id": school.id, "name": school.name} if school else None}


class SchoolRegistration(BaseModel):
	name: str = Field(min_length=1, max_length=256)
	type: Optional[str] = None
	country: str = Field(min_length=1)
	address: Optional[str] = None
	website: Optional[str] = None
	admin_email: Optional[str] = None
	postcode: Optional[str] = None
	primary_language: Optional[str] = None
	age_ranges: List[str] = []
	student_count: Optional[int] = Field(default=None, ge=0)
	teacher_role: Optional[str] = None


@router.post("/schools/register", status_code=201)
def register_school(req: SchoolRegistration, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if req.type is not None and req.type not in SCHOOL_TYPES:
		raise HTTPException(status_code=400, detail=f"type must be one of {list(SCHOOL_TYPES)}")
	domain = email_domain(req.admin_email)
	if req.admin_email and domain is None:
		raise HTTPException(status_code=400, detail="Invalid admin email")
	if domain:
		existing = school_by_domain(db, domain)
		if existing is not None:
			raise HTTPException(status_code=409, detail="A school with this email domain is already registered")
	school = School(
		name=req.name.strip(),
		type=req.type,
		country=req.country.strip(),
		address=req.address,
		website=req.website,
		admin_email=(req.admin_email or "").strip().lower() or None,
		postcode=req.postcode,
		primary_language=req.primary_language,
		age_ranges=list(req.age_ranges),
		student_count=req.student_count,
		registration_completed=True,
		primary_contact_id=user.id,
	)
	db.add(school)
	db.flush()
	db.add(SchoolUser(school_id=school.id, user_id=user.id, role="head_teacher", teacher_role=req.teacher_role, is_verified=True))
	db.commit()
	db.refresh(school)
	logger.info("school %s registered by %s", school.id, user.id)
	return school_to_dict(school)


@router.get("/schools/me/evidence-overrides")
def my_evidence_overrides(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	out = []
	for school, _ in user_schools(db, user):
		rows = (
			db.query(AdminEvidenceOverride)
			.filter(
				AdminEvidenceOverride.school_id == school.id,
				AdminEvidenceOverride.round_number == school.current_round,
			)
			.all()
		)
		out.extend(
			{
				"id": r.id,
				"school_id": r.school_id,
				"evidence_requirement_id": r.evidence_requirement_id,
				"stage": r.stage,
				"round_number": r.round_number,
			}
			for r in rows
		)
	return out


@router.get("/schools/{school_id}")
def get_school(school_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	school = require_school_access(db, user, school_id)
	return school_to_dict(school)


@router.get("/schools/{school_id}/progress")
def get_progress(school_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	school = require_school_access(db, user, school_id)
	return progress_summary(db, school)


@router.get("/dashboard")
def dashboard(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	schools = user_schools(db, user)
	if not schools:
		raise HTTPException(status_code=404, detail="No school found for user")
	school, member = schools[0]
	recent = (
		db.query(Evidence)
		.filter(Evidence.school_id == school.id)
		.order_by(Evidence.submitted_at.desc())
		.limit(5)
		.all()
	)
	return {
		"school": school_to_dict(school),
		"membership": member_to_dict(member),
		"progress": progress_summary(db, school),
		"recent_evidence": [evidence_to_dict(e) for e in recent],
	}


@router.get("/schools/{school_id}/team")
def get_team(school_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	require_school_access(db, user, school_id)
	rows = (
		db.query(SchoolUser, User)
		.join(User, User.id == SchoolUser.user_id)
		.filter(SchoolUser.school_id == school_id)
		.order_by(SchoolUser.created_at)
		.all()
	)
	return [member_to_dict(m, u) for m, u in rows]


@router.delete("/schools/{school_id}/teachers/{user_id}")
def remove_teacher(school_id: str, user_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	require_head_teacher(db, user, school_id)
	if user_id == user.id:
		raise HTTPException(status_code=400, detail="You cannot remove yourself from the school")
	row = membership(db, user_id, school_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Teacher not found in this school")
	db.delete(row)
	db.commit()
	logger.info("user %s removed from school %s by %s", user_id, school_id, user.id)
	return {"ok": True}


class RoleUpdate(BaseModel):
	role: str


@router.put("/schools/{school_id}/teachers/{user_id}/role")
def update_teacher_role(
	school_id: str,
	user_id: str,
	req: RoleUpdate,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	require_head_teacher(db, user, school_id)
	if user_id == user.id:
		raise HTTPException(status_code=400, detail="You cannot change your own role")
	if req.role not in MEMBER_ROLES:
		raise HTTPException(status_code=400, detail=f"role must be one of {list(MEMBER_ROLES)}")
	row = membership(db, user_id, school_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Teacher not found in this school")
	row.role = req.role
	row.is_verified = True
	db.commit()
	db.refresh(row)
	return member_to_dict(row)


@router.post("/schools/{school_id}/start-round")
def start_round(school_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	school = require_school_access(db, user, school_id)
	try:
		school = start_new_round(db, school)
	except ProgressionError as e:
		raise HTTPException(status_code=400, detail=str(e))
	logger.info("school %s started round %d", school.id, school.current_round)
	return school_to_dict(school)


@router.post("/schools/{school_id}/photo-consent/upload")
async def upload_photo_consent(
	school_id: str,
	file: UploadFile = File(...),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	school = require_school_access(db, user, school_id)
	try:
		ref = await save_upload(file, user.id, "private", CONSENT_TYPES)
	except StorageError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))
	now = datetime.utcnow()
	previous = school.photo_consent_document_url
	school.photo_consent_document_url = ref.url
	school.photo_consent_uploaded_at = now
	school.photo_consent_review_notes = None
	if is_admin(user):
		school.photo_consent_status = "approved"
		school.photo_consent_approved_at = now
		school.photo_consent_approved_by = user.id
	else:
		school.photo_consent_status = "pending"
		school.photo_consent_approved_at = None
		school.photo_consent_approved_by = None
	db.commit()
	if previous and previous != ref.url:
		delete_by_url(previous)
	logger.info("photo consent uploaded for school %s (%s)", school.id, school.photo_consent_status)
	return photo_consent_to_dict(school)


def photo_consent_to_dict(school: School) -> dict:
	return {
		"school_id": school.id,
		"document_url": school.photo_consent_document_url,
		"status": school.photo_consent_status,
		"uploaded_at": school.photo_consent_uploaded_at,
		"approved_at": school.photo_consent_approved_at,
		"approved_by": school.photo_consent_approved_by,
		"review_notes": school.photo_consent_review_notes,
	}


@router.get("/schools/{school_id}/photo-consent")
def get_photo_consent(school_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	school = require_school_access(db, user, school_id)
	return photo_consent_to_dict(school)


@router.get("/stats")
def public_stats(db: Session = Depends(get_db)):
	total_schools = db.query(func.count(School.id)).scalar() or 0
	countries = db.query(func.count(func.distinct(School.country))).scalar() or 0
	students = db.query(func.coalesce(func.sum(School.student_count), 0)).scalar() or 0
	approved = db.query(func.count(Evidence.id)).filter(Evidence.status == "approved").scalar() or 0
	legacy = db.query(func.coalesce(func.sum(School.legacy_evidence_count), 0)).scalar() or 0
	return {
		"total_schools": int(total_schools),
		"countries": int(countries),
		"students_impacted": int(students),
		"completed_actions": int(approved) + int(legacy),
	}


@router.get("/countries")
def list_countries(db: Session = Depends(get_db)):
	rows = db.query(School.country).filter(School.country.isnot(None)).distinct().order_by(School.country).all()
	return [r[0] for r in rows]
