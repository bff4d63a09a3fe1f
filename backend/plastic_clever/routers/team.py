from __future__ import annotations
import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import School, SchoolUser, TeacherInvitation, User
from ..notifications import notify_user
from ..permissions import get_school_or_404, membership, require_head_teacher
from ..serializers import member_to_dict, school_to_dict
from ..settings import settings
from .auth import get_current_user
from .schools import email_domain

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["team"])


def _display_name(user: User) -> str:
	return " ".join(p for p in (user.first_name, user.last_name) if p) or user.email


def head_teacher_ids(db: Session, school_id: str) -> List[str]:
	rows = (
		db.query(SchoolUser.user_id)
		.filter(SchoolUser.school_id == school_id, SchoolUser.role == "head_teacher")
		.all()
	)
	return [r[0] for r in rows]


# ---- Access requests ----

class AccessRequest(BaseModel):
	evidence: str = Field(min_length=1, max_length=2000)


@router.post("/schools/{school_id}/request-access", status_code=201)
def request_access(school_id: str, req: AccessRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	school = get_school_or_404(db, school_id)
	existing = membership(db, user.id, school.id)
	if existing is not None:
		detail = "An access request is already pending" if existing.role == "pending_teacher" else "Already a member of this school"
		raise HTTPException(status_code=409, detail=detail)
	row = SchoolUser(
		school_id=school.id,
		user_id=user.id,
		role="pending_teacher",
		is_verified=False,
		verification_evidence=req.evidence.strip(),
	)
	db.add(row)
	db.flush()
	for head_id in head_teacher_ids(db, school.id):
		notify_user(
			db,
			head_id,
			"access_request",
			f"New access request for {school.name}",
			f"{_display_name(user)} ({user.email}) asked to join {school.name}: {row.verification_evidence}",
			school_id=school.id,
			action_url=f"/api/schools/{school.id}/verification-requests",
		)
	db.commit()
	db.refresh(row)
	logger.info("user %s requested access to school %s", user.id, school.id)
	return member_to_dict(row)


def pending_requests(db: Session, school_id: Optional[str] = None) -> list:
	q = (
		db.query(SchoolUser, User, School)
		.join(User, User.id == SchoolUser.user_id)
		.join(School, School.id == SchoolUser.school_id)
		.filter(SchoolUser.role == "pending_teacher")
	)
	if school_id is not None:
		q = q.filter(SchoolUser.school_id == school_id)
	return [{**member_to_dict(m, u), "school_name": s.name} for m, u, s in q.order_by(SchoolUser.created_at).all()]


@router.get("/schools/{school_id}/verification-requests")
def school_verification_requests(school_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	require_head_teacher(db, user, school_id)
	return pending_requests(db, school_id)


def get_pending_request(db: Session, request_id: str) -> SchoolUser:
	row = db.get(SchoolUser, request_id)
	if row is None or row.role != "pending_teacher":
		raise HTTPException(status_code=404, detail="Verification request not found")
	return row


def decide_access_request(db: Session, row: SchoolUser, approved: bool, notes: Optional[str], reviewer: User) -> dict:
	"""Approve a pending member as a verified teacher, or drop the request."""
	school = db.get(School, row.school_id)
	requester_id = row.user_id
	if approved:
		row.role = "teacher"
		row.is_verified = True
		row.verification_method = "manual_approval"
		title = f"Access approved for {school.name}"
		message = notes or f"Your request to join {school.name} has been approved."
	else:
		db.delete(row)
		title = f"Access request update for {school.name}"
		message = notes or f"Your request to join {school.name} was not approved."
	notify_user(db, requester_id, "team_update", title, message, school_id=school.id, action_url="/api/dashboard")
	db.commit()
	logger.info(
		"access request of %s for school %s %s by %s",
		requester_id,
		school.id,
		"approved" if approved else "rejected",
		reviewer.id,
	)
	if approved:
		db.refresh(row)
		return member_to_dict(row)
	return {"ok": True, "user_id": requester_id, "school_id": school.id, "status": "rejected"}


class RequestDecision(BaseModel):
	review_notes: Optional[str] = None


@router.put("/verification-requests/{request_id}/approve")
def approve_request(
	request_id: str,
	req: RequestDecision | None = None,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	row = get_pending_request(db, request_id)
	require_head_teacher(db, user, row.school_id)
	return decide_access_request(db, row, True, req.review_notes if req else None, user)


@router.put("/verification-requests/{request_id}/reject")
def reject_request(
	request_id: str,
	req: RequestDecision | None = None,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	row = get_pending_request(db, request_id)
	require_head_teacher(db, user, row.school_id)
	return decide_access_request(db, row, False, req.review_notes if req else None, user)


# ---- Invitations ----

class Invite(BaseModel):
	email: str = Field(min_length=3, max_length=256)


def invitation_to_dict(row: TeacherInvitation) -> dict:
	return {
		"id": row.id,
		"school_id": row.school_id,
		"email": row.email,
		"invited_by": row.invited_by,
		"status": row.status,
		"expires_at": row.expires_at,
		"accepted_at": row.accepted_at,
		"created_at": row.created_at,
	}


@router.post("/schools/{school_id}/invite-teacher", status_code=201)
def invite_teacher(school_id: str, req: Invite, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	school = require_head_teacher(db, user, school_id)
	email = req.email.strip().lower()
	if email_domain(email) is None:
		raise HTTPException(status_code=400, detail="Valid email is required")
	invitee = db.query(User).filter(User.email == email).first()
	if invitee is not None:
		existing = membership(db, invitee.id, school.id)
		if existing is not None and existing.role != "pending_teacher":
			raise HTTPException(status_code=409, detail="Already a member of this school")
	row = TeacherInvitation(
		school_id=school.id,
		invited_by=user.id,
		email=email,
		token=secrets.token_hex(32),
		status="pending",
		expires_at=datetime.utcnow() + timedelta(days=settings.invitation_ttl_days),
	)
	db.add(row)
	if invitee is not None:
		notify_user(
			db,
			invitee.id,
			"team_update",
			f"You're invited to join {school.name}",
			f"{_display_name(user)} invited you to join {school.name} on Plastic Clever Schools.",
			school_id=school.id,
			action_url=f"/api/invitations/{row.token}",
		)
	db.commit()
	db.refresh(row)
	logger.info("invitation %s for %s to school %s created by %s", row.id, email, school.id, user.id)
	return {
		**invitation_to_dict(row),
		"invite_url": f"{settings.public_base_url.rstrip('/')}/api/invitations/{row.token}",
	}


@router.get("/schools/{school_id}/invitations")
def school_invitations(school_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	require_head_teacher(db, user, school_id)
	rows = (
		db.query(TeacherInvitation)
		.filter(TeacherInvitation.school_id == school_id)
		.order_by(TeacherInvitation.created_at.desc())
		.all()
	)
	return [invitation_to_dict(r) for r in rows]


def _open_invitation(db: Session, token: str) -> TeacherInvitation:
	row = db.query(TeacherInvitation).filter(TeacherInvitation.token == token).first()
	if row is None:
		raise HTTPException(status_code=404, detail="Invitation not found")
	if row.status == "accepted":
		raise HTTPException(status_code=410, detail="This invitation has already been accepted")
	if row.expires_at < datetime.utcnow():
		raise HTTPException(status_code=410, detail="This invitation has expired")
	return row


@router.get("/invitations/{token}")
def get_invitation(token: str, db: Session = Depends(get_db)):
	row = _open_invitation(db, token)
	school = db.get(School, row.school_id)
	inviter = db.get(User, row.invited_by) if row.invited_by else None
	return {
		"email": row.email,
		"school_name": school.name if school else None,
		"school_country": school.country if school else None,
		"inviter_name": _display_name(inviter) if inviter else "A colleague",
		"expires_at": row.expires_at,
		"status": row.status,
	}


@router.post("/invitations/{token}/accept")
def accept_invitation(token: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = _open_invitation(db, token)
	if (user.email or "").strip().lower() != row.email:
		raise HTTPException(status_code=403, detail="This invitation is for a different email address")
	school = get_school_or_404(db, row.school_id)
	member = membership(db, user.id, school.id)
	if member is not None and member.role != "pending_teacher":
		raise HTTPException(status_code=409, detail="Already a member of this school")
	if member is None:
		member = SchoolUser(school_id=school.id, user_id=user.id)
		db.add(member)
	member.role = "teacher"
	member.is_verified = True
	member.verification_method = "invitation"
	member.invited_by = row.invited_by
	row.status = "accepted"
	row.accepted_at = datetime.utcnow()
	db.commit()
	db.refresh(member)
	logger.info("user %s joined school %s through invitation %s", user.id, school.id, row.id)
	return {"school": school_to_dict(school), "membership": member_to_dict(member)}
