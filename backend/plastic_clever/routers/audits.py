from __future__ import annotations
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import AUDIT_STATUSES, AuditResponse, School, User
from ..notifications import notify_user
from ..permissions import require_school_access
from ..progression import check_and_update_school_progression
from ..serializers import audit_to_dict
from .auth import get_current_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["audits"])

# Daily counts are annualised over a school year
SCHOOL_DAYS_PER_YEAR = 190
TOP_ITEMS = 5
OTHER_LABEL = "Other plastic items"

# Field suffix -> reported item, e.g. "lunchroomPlasticBottles"
ITEM_LABELS = {
	"PlasticBottles": "Plastic bottles",
	"PlasticCups": "Plastic cups",
	"PlasticCutlery": "Plastic cutlery",
	"PlasticStraws": "Plastic straws",
	"SnackWrappers": "Snack wrappers",
	"YoghurtPots": "Yoghurt pots",
	"TakeawayContainers": "Takeaway containers",
	"ClingFilm": "Cling film",
	"PensPencils": "Pens & pencils",
	"Stationery": "Stationery items",
	"DisplayMaterials": "Display materials",
	"SoapBottles": "Soap bottles",
	"BinLiners": "Bin liners",
	"CupsPaper": "Toilet cups/dispensers",
	"PeriodProducts": "Period products",
	"SportEquipment": "Sport equipment",
	"ToysEquipment": "Toys/equipment",
	"LabEquipment": "Lab equipment",
	"ArtSupplies": "Art supplies",
}


def _count(value: Any) -> Optional[int]:
	if isinstance(value, bool):
		return None
	if isinstance(value, (int, float)):
		return max(0, int(value))
	if isinstance(value, str):
		m = re.match(r"\s*(\d+)", value)
		return int(m.group(1)) if m else None
	return None


def _label_for(key: str) -> str:
	if key.endswith("Other"):
		return OTHER_LABEL
	for suffix, label in ITEM_LABELS.items():
		if key.endswith(suffix):
			return label
	words = re.sub(r"(?<!^)(?=[A-Z])", " ", key).lower()
	return words[:1].upper() + words[1:]


def compute_audit_results(part2: Dict[str, Any], part3: Dict[str, Any]) -> Dict[str, Any]:
	"""Annual plastic counts by item, total and the top problem items."""
	daily: Dict[str, int] = {}
	for part in (part2 or {}, part3 or {}):
		for key, value in part.items():
			if key.endswith("Description"):
				continue
			n = _count(value)
			if n is None:
				continue
			label = _label_for(key)
			daily[label] = daily.get(label, 0) + n
	if daily.get(OTHER_LABEL) == 0:
		del daily[OTHER_LABEL]
	annual = {label: n * SCHOOL_DAYS_PER_YEAR for label, n in daily.items()}
	total = sum(annual.values())
	top = sorted(annual.items(), key=lambda kv: kv[1], reverse=True)[:TOP_ITEMS]
	return {
		"total_plastic_items": total,
		"top_problem_plastics": [{"name": name, "count": count} for name, count in top if count > 0],
		"plastic_counts": annual,
	}


def _current_audit(db: Session, school: School) -> Optional[AuditResponse]:
	return (
		db.query(AuditResponse)
		.filter(AuditResponse.school_id == school.id, AuditResponse.round_number == (school.current_round or 1))
		.order_by(AuditResponse.created_at.desc())
		.first()
	)


class AuditSave(BaseModel):
	school_id: str
	part1_data: Optional[Dict[str, Any]] = None
	part2_data: Optional[Dict[str, Any]] = None
	part3_data: Optional[Dict[str, Any]] = None
	part4_data: Optional[Dict[str, Any]] = None
	current_part: int = Field(default=1, ge=1, le=6)


@router.post("/audits")
def save_audit(req: AuditSave, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	school = require_school_access(db, user, req.school_id)
	audit = _current_audit(db, school)
	if audit is not None and audit.status in ("submitted", "approved"):
		raise HTTPException(status_code=400, detail="The audit for this round has already been submitted")
	if audit is None:
		audit = AuditResponse(school_id=school.id, submitted_by=user.id, round_number=school.current_round or 1)
		db.add(audit)
	for part in ("part1_data", "part2_data", "part3_data", "part4_data"):
		value = getattr(req, part)
		if value is not None:
			setattr(audit, part, value)
	audit.status = "draft"
	audit.current_part = req.current_part
	results = compute_audit_results(audit.part2_data or {}, audit.part3_data or {})
	audit.results_data = results
	audit.total_plastic_items = results["total_plastic_items"]
	audit.top_problem_plastics = results["top_problem_plastics"]
	db.commit()
	db.refresh(audit)
	return audit_to_dict(audit)


@router.get("/audits/school/{school_id}")
def get_school_audit(school_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	school = require_school_access(db, user, school_id)
	audit = _current_audit(db, school)
	if audit is None:
		raise HTTPException(status_code=404, detail="No audit found for this school")
	return audit_to_dict(audit)


def _get_audit(db: Session, user: User, audit_id: str) -> AuditResponse:
	audit = db.get(AuditResponse, audit_id)
	if audit is None:
		raise HTTPException(status_code=404, detail="Audit not found")
	require_school_access(db, user, audit.school_id)
	return audit


@router.get("/audits/{audit_id}")
def get_audit(audit_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return audit_to_dict(_get_audit(db, user, audit_id))


@router.post("/audits/{audit_id}/submit")
def submit_audit(audit_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	audit = _get_audit(db, user, audit_id)
	if audit.status not in ("draft", "rejected"):
		raise HTTPException(status_code=400, detail=f"Audit cannot be submitted from status {audit.status}")
	now = datetime.utcnow()
	audit.status = "submitted"
	audit.submitted_at = now
	audit.completed_at = now
	audit.submitted_by = user.id
	db.commit()
	db.refresh(audit)
	logger.info("audit %s submitted for school %s", audit.id, audit.school_id)
	return audit_to_dict(audit)


# ---- Admin review ----

def _with_school(db: Session, audits: List[AuditResponse]) -> List[Dict[str, Any]]:
	out = []
	for audit in audits:
		data = audit_to_dict(audit)
		school = db.get(School, audit.school_id)
		data["school"] = {"id": school.id, "name": school.name, "country": school.country} if school else None
		out.append(data)
	return out


@router.get("/admin/audits/pending")
def pending_audits(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	rows = (
		db.query(AuditResponse)
		.filter(AuditResponse.status == "submitted")
		.order_by(AuditResponse.submitted_at)
		.all()
	)
	return _with_school(db, rows)


@router.get("/admin/audits")
def list_audits(
	status: Optional[str] = None,
	limit: int = Query(50, ge=1, le=200),
	offset: int = Query(0, ge=0),
	admin: User = Depends(require_admin),
	db: Session = Depends(get_db),
):
	if status and status not in AUDIT_STATUSES:
		raise HTTPException(status_code=400, detail=f"status must be one of: {', '.join(AUDIT_STATUSES)}")
	q = db.query(AuditResponse)
	if status:
		q = q.filter(AuditResponse.status == status)
	rows = q.order_by(AuditResponse.created_at.desc()).offset(offset).limit(limit).all()
	return _with_school(db, rows)


class AuditReview(BaseModel):
	approved: bool
	review_notes: Optional[str] = None


@router.put("/admin/audits/{audit_id}/review")
def review_audit(audit_id: str, req: AuditReview, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	audit = db.get(AuditResponse, audit_id)
	if audit is None:
		raise HTTPException(status_code=404, detail="Audit not found")
	audit.status = "approved" if req.approved else "rejected"
	audit.reviewed_by = admin.id
	audit.reviewed_at = datetime.utcnow()
	audit.review_notes = req.review_notes
	notify_user(
		db,
		audit.submitted_by,
		"audit_reviewed",
		f"Plastic audit {audit.status}",
		req.review_notes or f"Your plastic waste audit has been {audit.status}.",
		school_id=audit.school_id,
		action_url=f"/api/audits/{audit.id}",
	)
	db.commit()
	logger.info("audit %s %s by %s", audit.id, audit.status, admin.id)
	check_and_update_school_progression(db, audit.school_id, reason=f"audit_{audit.status}")
	db.refresh(audit)
	return audit_to_dict(audit)
