from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import PROMISE_STATUSES, AuditResponse, ReductionPromise, User
from ..permissions import require_school_access
from ..progression import check_and_update_school_progression
from ..serializers import promise_to_dict
from .auth import get_current_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["reduction-promises"])

TIMEFRAME_UNITS = ("week", "month", "year")


@router.get("/reduction-promises/school/{school_id}")
def school_promises(school_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	require_school_access(db, user, school_id)
	rows = (
		db.query(ReductionPromise)
		.filter(ReductionPromise.school_id == school_id)
		.order_by(ReductionPromise.created_at.desc())
		.all()
	)
	return [promise_to_dict(p) for p in rows]


@router.get("/reduction-promises/audit/{audit_id}")
def audit_promises(audit_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	audit = db.get(AuditResponse, audit_id)
	if audit is None:
		raise HTTPException(status_code=404, detail="Audit not found")
	require_school_access(db, user, audit.school_id)
	rows = (
		db.query(ReductionPromise)
		.filter(ReductionPromise.audit_id == audit_id)
		.order_by(ReductionPromise.created_at)
		.all()
	)
	return [promise_to_dict(p) for p in rows]


class PromiseCreate(BaseModel):
	school_id: str
	audit_id: Optional[str] = None
	plastic_item_type: str = Field(min_length=1)
	plastic_item_label: str = Field(min_length=1)
	baseline_quantity: int = Field(ge=0)
	target_quantity: int = Field(ge=0)
	timeframe_unit: str = "year"
	notes: Optional[str] = None


class PromiseUpdate(BaseModel):
	plastic_item_type: Optional[str] = None
	plastic_item_label: Optional[str] = None
	baseline_quantity: Optional[int] = Field(default=None, ge=0)
	target_quantity: Optional[int] = Field(default=None, ge=0)
	timeframe_unit: Optional[str] = None
	status: Optional[str] = None
	notes: Optional[str] = None


def _check_quantities(baseline: int, target: int) -> None:
	if target > baseline:
		raise HTTPException(status_code=400, detail="Target quantity cannot exceed baseline quantity")


@router.post("/reduction-promises", status_code=201)
def create_promise(req: PromiseCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	school = require_school_access(db, user, req.school_id)
	if req.timeframe_unit not in TIMEFRAME_UNITS:
		raise HTTPException(status_code=400, detail=f"timeframe_unit must be one of {list(TIMEFRAME_UNITS)}")
	_check_quantities(req.baseline_quantity, req.target_quantity)
	if req.audit_id:
		audit = db.get(AuditResponse, req.audit_id)
		if audit is None or audit.school_id != school.id:
			raise HTTPException(status_code=400, detail="Audit does not belong to this school")
	row = ReductionPromise(
		school_id=school.id,
		audit_id=req.audit_id,
		plastic_item_type=req.plastic_item_type,
		plastic_item_label=req.plastic_item_label,
		baseline_quantity=req.baseline_quantity,
		target_quantity=req.target_quantity,
		reduction_amount=req.baseline_quantity - req.target_quantity,
		timeframe_unit=req.timeframe_unit,
		status="active",
		notes=req.notes,
		created_by=user.id,
		round_number=school.current_round or 1,
	)
	db.add(row)
	db.commit()
	db.refresh(row)
	logger.info("reduction promise %s created for school %s", row.id, school.id)
	check_and_update_school_progression(db, school.id, reason="action_plan")
	db.refresh(row)
	return promise_to_dict(row)


def _get_promise(db: Session, user: User, promise_id: str) -> ReductionPromise:
	row = db.get(ReductionPromise, promise_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Reduction promise not found")
	require_school_access(db, user, row.school_id)
	return row


@router.patch("/reduction-promises/{promise_id}")
def update_promise(promise_id: str, req: PromiseUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = _get_promise(db, user, promise_id)
	updates = {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None}
	if "timeframe_unit" in updates and updates["timeframe_unit"] not in TIMEFRAME_UNITS:
		raise HTTPException(status_code=400, detail=f"timeframe_unit must be one of {list(TIMEFRAME_UNITS)}")
	if "status" in updates and updates["status"] not in PROMISE_STATUSES:
		raise HTTPException(status_code=400, detail=f"status must be one of {list(PROMISE_STATUSES)}")
	baseline = updates.get("baseline_quantity", row.baseline_quantity)
	target = updates.get("target_quantity", row.target_quantity)
	_check_quantities(baseline, target)
	for key, value in updates.items():
		setattr(row, key, value)
	row.reduction_amount = baseline - target
	db.commit()
	check_and_update_school_progression(db, row.school_id, reason="action_plan")
	db.refresh(row)
	return promise_to_dict(row)


@router.delete("/reduction-promises/{promise_id}")
def delete_promise(promise_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = _get_promise(db, user, promise_id)
	school_id = row.school_id
	db.delete(row)
	db.commit()
	logger.info("reduction promise %s deleted by %s", promise_id, user.id)
	check_and_update_school_progression(db, school_id, reason="action_plan")
	return {"ok": True}


@router.get("/admin/reduction-promises/metrics")
def promise_metrics(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	rows = db.query(ReductionPromise).filter(ReductionPromise.status == "active").all()
	by_type: dict[str, dict] = {}
	for p in rows:
		bucket = by_type.setdefault(
			p.plastic_item_type,
			{"plastic_item_type": p.plastic_item_type, "label": p.plastic_item_label, "count": 0, "total_reduction": 0},
		)
		bucket["count"] += 1
		bucket["total_reduction"] += p.reduction_amount
	return {
		"total_promises": len(rows),
		"total_schools": len({p.school_id for p in rows}),
		"total_reduction": sum(p.reduction_amount for p in rows),
		"by_item_type": sorted(by_type.values(), key=lambda b: b["total_reduction"], reverse=True),
	}
