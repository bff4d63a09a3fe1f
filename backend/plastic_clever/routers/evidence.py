from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import EVIDENCE_STATUSES, STAGES, VISIBILITIES, AdminEvidenceOverride, Evidence, EvidenceRequirement, School, User
from ..permissions import get_school_or_404, is_member, require_school_access, user_schools
from ..progression import check_and_update_school_progression, stage_is_unlocked
from ..serializers import evidence_to_dict, requirement_to_dict
from ..storage import delete_file_list
from ..translation import GeminiClient, TranslationError, translate_all
from .auth import get_current_user, get_optional_user, is_admin, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["evidence"])


class EvidenceFile(BaseModel):
	name: str
	url: str
	type: Optional[str] = None
	size: Optional[int] = None


class EvidenceCreate(BaseModel):
	school_id: str
	title: str = Field(min_length=1, max_length=256)
	description: Optional[str] = None
	stage: str
	evidence_requirement_id: Optional[str] = None
	visibility: str = "registered"
	files: List[EvidenceFile] = []
	video_links: Optional[str] = None
	has_children: bool = False
	parental_consent_files: List[EvidenceFile] = []
	is_audit_quiz: bool = False


@router.post("/evidence", status_code=201)
def submit_evidence(req: EvidenceCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if req.stage not in STAGES:
		raise HTTPException(status_code=400, detail=f"stage must be one of {list(STAGES)}")
	if req.visibility not in VISIBILITIES:
		raise HTTPException(status_code=400, detail=f"visibility must be one of {list(VISIBILITIES)}")
	school = get_school_or_404(db, req.school_id)
	privileged = is_admin(user) or user.role == "partner"
	if not privileged:
		if not is_member(db, user, school.id):
			raise HTTPException(status_code=403, detail="Not a member of this school")
		if not stage_is_unlocked(school, req.stage):
			raise HTTPException(status_code=403, detail=f"The {req.stage} stage is locked for this school")
	if req.evidence_requirement_id:
		requirement = db.get(EvidenceRequirement, req.evidence_requirement_id)
		if requirement is None:
			raise HTTPException(status_code=400, detail="Evidence requirement not found")
		if requirement.stage != req.stage:
			raise HTTPException(status_code=400, detail="Evidence requirement does not belong to this stage")

	row = Evidence(
		school_id=school.id,
		submitted_by=user.id,
		evidence_requirement_id=req.evidence_requirement_id or None,
		title=req.title.strip(),
		description=req.description,
		stage=req.stage,
		visibility=req.visibility,
		files=[f.model_dump() for f in req.files],
		video_links=req.video_links,
		has_children=req.has_children,
		parental_consent_files=[f.model_dump() for f in req.parental_consent_files],
		is_audit_quiz=req.is_audit_quiz,
		round_number=school.current_round or 1,
	)
	auto_approved = is_admin(user)
	if auto_approved:
		row.status = "approved"
		row.reviewed_by = user.id
		row.reviewed_at = datetime.utcnow()
		row.review_notes = "Submitted by admin"
	db.add(row)
	school.last_active_at = datetime.utcnow()
	db.commit()
	db.refresh(row)
	logger.info("evidence %s submitted for school %s (%s)", row.id, school.id, row.status)
	if auto_approved:
		check_and_update_school_progression(db, school.id, reason="admin_submission")
		db.refresh(row)
	return evidence_to_dict(row, school=school)


@router.get("/evidence")
def list_evidence(
	school_id: Optional[str] = None,
	status: Optional[str] = None,
	visibility: Optional[str] = None,
	require_photo_consent: bool = False,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	if school_id:
		school = require_school_access(db, user, school_id)
	else:
		schools = user_schools(db, user)
		if not schools:
			return []
		school = schools[0][0]
	if status is not None and status not in EVIDENCE_STATUSES:
		raise HTTPException(status_code=400, detail=f"status must be one of {list(EVIDENCE_STATUSES)}")
	if require_photo_consent and school.photo_consent_status != "approved":
		return []
	q = db.query(Evidence).filter(Evidence.school_id == school.id)
	if status:
		q = q.filter(Evidence.status == status)
	if visibility:
		q = q.filter(Evidence.visibility == visibility)
	rows = q.order_by(Evidence.submitted_at.desc()).all()
	return [evidence_to_dict(e, school=school) for e in rows]


@router.get("/evidence/{evidence_id}")
def get_evidence(evidence_id: str, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
	row = db.get(Evidence, evidence_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Evidence not found")
	visible = row.status == "approved" or is_admin(user) or is_member(db, user, row.school_id)
	if not visible:
		raise HTTPException(status_code=404, detail="Evidence not found")
	return evidence_to_dict(row, school=db.get(School, row.school_id))


@router.delete("/evidence/{evidence_id}")
def delete_evidence(evidence_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = db.get(Evidence, evidence_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Evidence not found")
	if not is_member(db, user, row.school_id):
		raise HTTPException(status_code=403, detail="Not a member of this school")
	if row.status != "pending":
		raise HTTPException(status_code=403, detail="Only pending evidence can be deleted")
	files = (row.files or []) + (row.parental_consent_files or [])
	db.delete(row)
	db.commit()
	delete_file_list(files)
	logger.info("evidence %s deleted by %s", evidence_id, user.id)
	return {"ok": True}


# ---- Evidence requirements ----

@router.get("/evidence-requirements")
def list_requirements(stage: Optional[str] = None, language: Optional[str] = None, db: Session = Depends(get_db)):
	q = db.query(EvidenceRequirement)
	if stage:
		q = q.filter(EvidenceRequirement.stage == stage)
	rows = q.order_by(EvidenceRequirement.stage, EvidenceRequirement.order_index).all()
	return [requirement_to_dict(r, language) for r in rows]


def _get_requirement(db: Session, requirement_id: str) -> EvidenceRequirement:
	row = db.get(EvidenceRequirement, requirement_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Evidence requirement not found")
	return row


@router.get("/evidence-requirements/{requirement_id}")
def get_requirement(requirement_id: str, language: Optional[str] = None, db: Session = Depends(get_db)):
	return requirement_to_dict(_get_requirement(db, requirement_id), language)


class RequirementCreate(BaseModel):
	stage: str
	title: str = Field(min_length=1, max_length=256)
	description: str = Field(min_length=1)
	order_index: Optional[int] = None
	resource_ids: List[str] = []
	custom_links: List[Dict[str, Any]] = []


class RequirementUpdate(BaseModel):
	stage: Optional[str] = None
	title: Optional[str] = Field(default=None, min_length=1, max_length=256)
	description: Optional[str] = None
	order_index: Optional[int] = None
	resource_ids: Optional[List[str]] = None
	custom_links: Optional[List[Dict[str, Any]]] = None


@router.post("/evidence-requirements", status_code=201)
def create_requirement(req: RequirementCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	if req.stage not in STAGES:
		raise HTTPException(status_code=400, detail=f"stage must be one of {list(STAGES)}")
	order_index = req.order_index
	if order_index is None:
		current_max = (
			db.query(func.max(EvidenceRequirement.order_index))
			.filter(EvidenceRequirement.stage == req.stage)
			.scalar()
		)
		order_index = (current_max if current_max is not None else -1) + 1
	row = EvidenceRequirement(
		stage=req.stage,
		title=req.title.strip(),
		description=req.description,
		order_index=order_index,
		resource_ids=list(req.resource_ids),
		custom_links=list(req.custom_links),
		translations={},
	)
	db.add(row)
	db.commit()
	db.refresh(row)
	logger.info("evidence requirement %s created by %s", row.id, admin.id)
	return requirement_to_dict(row)


@router.patch("/evidence-requirements/{requirement_id}")
def update_requirement(
	requirement_id: str,
	req: RequirementUpdate,
	admin: User = Depends(require_admin),
	db: Session = Depends(get_db),
):
	row = _get_requirement(db, requirement_id)
	updates = req.model_dump(exclude_unset=True)
	if "stage" in updates and updates["stage"] not in STAGES:
		raise HTTPException(status_code=400, detail=f"stage must be one of {list(STAGES)}")
	text_changed = any(k in updates and updates[k] != getattr(row, k) for k in ("title", "description"))
	for key, value in updates.items():
		if value is not None:
			setattr(row, key, value)
	if text_changed:
		# Existing translations describe the old text
		row.translations = {}
	db.commit()
	db.refresh(row)
	return requirement_to_dict(row)


@router.delete("/evidence-requirements/{requirement_id}")
def delete_requirement(requirement_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	row = _get_requirement(db, requirement_id)
	linked = db.query(func.count(Evidence.id)).filter(Evidence.evidence_requirement_id == row.id).scalar() or 0
	if linked:
		raise HTTPException(status_code=409, detail=f"Requirement has {linked} linked evidence submissions")
	overrides = db.query(AdminEvidenceOverride).filter(AdminEvidenceOverride.evidence_requirement_id == row.id)
	school_ids = {o.school_id for o in overrides}
	overrides.delete(synchronize_session=False)
	db.delete(row)
	db.commit()
	logger.info("evidence requirement %s deleted by %s (%d schools had overrides)", requirement_id, admin.id, len(school_ids))
	for school_id in school_ids:
		check_and_update_school_progression(db, school_id, reason="requirement_deleted")
	return {"ok": True}


async def get_translation_client():
	try:
		client = GeminiClient()
	except TranslationError as e:
		raise HTTPException(status_code=502, detail=str(e))
	try:
		yield client
	finally:
		await client.aclose()


@router.post("/evidence-requirements/{requirement_id}/translate")
async def translate_requirement(
	requirement_id: str,
	admin: User = Depends(require_admin),
	db: Session = Depends(get_db),
	client: GeminiClient = Depends(get_translation_client),
):
	row = _get_requirement(db, requirement_id)
	translations = await translate_all(client, row.title, row.description)
	row.translations = translations
	db.commit()
	db.refresh(row)
	logger.info("translated requirement %s into %d languages", row.id, len(translations))
	return requirement_to_dict(row)
