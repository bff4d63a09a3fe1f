from __future__ import annotations
from typing import List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy.orm import Session

from .models import School, SchoolUser, User
from .routers.auth import is_admin


def get_school_or_404(db: Session, school_id: str) -> School:
	school = db.get(School, school_id)
	if school is None:
		raise HTTPException(status_code=404, detail="School not found")
	return school


def membership(db: Session, user_id: str, school_id: str) -> Optional[SchoolUser]:
	return (
		db.query(SchoolUser)
		.filter(SchoolUser.school_id == school_id, SchoolUser.user_id == user_id)
		.first()
	)


def is_member(db: Session, user: Optional[User], school_id: str) -> bool:
	if user is None:
		return False
	row = membership(db, user.id, school_id)
	return row is not None and row.role != "pending_teacher"


def require_school_access(db: Session, user: User, school_id: str) -> School:
	"""404 for unknown schools, 403 unless the user is an admin or a verified member."""
	school = get_school_or_404(db, school_id)
	if is_admin(user) or is_member(db, user, school_id):
		return school
	raise HTTPException(status_code=403, detail="Not a member of this school")


def require_head_teacher(db: Session, user: User, school_id: str) -> School:
	school = get_school_or_404(db, school_id)
	if is_admin(user):
		return school
	row = membership(db, user.id, school_id)
	if row is None or row.role != "head_teacher":
		raise HTTPException(status_code=403, detail="Head teacher access required")
	return school


def user_schools(db: Session, user: User) -> List[Tuple[School, SchoolUser]]:
	rows = (
		db.query(School, SchoolUser)
		.join(SchoolUser, SchoolUser.school_id == School.id)
		.filter(SchoolUser.user_id == user.id, SchoolUser.role != "pending_teacher")
		.order_by(SchoolUser.created_at)
		.all()
	)
	return [(school, member) for school, member in rows]
