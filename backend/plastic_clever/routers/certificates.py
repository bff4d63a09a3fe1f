from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..certificates import certificate_to_dict
from ..db import get_db
from ..models import Certificate, School, User
from ..permissions import require_school_access
from .auth import get_current_user

router = APIRouter(prefix="/api", tags=["certificates"])


@router.get("/schools/{school_id}/certificates")
def school_certificates(school_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	school = require_school_access(db, user, school_id)
	rows = (
		db.query(Certificate)
		.filter(Certificate.school_id == school_id)
		.order_by(Certificate.issued_date.desc(), Certificate.round_number.desc())
		.all()
	)
	return [certificate_to_dict(c, school=school) for c in rows]


def _accessible(db: Session, user: User, cert: Certificate | None) -> dict:
	if cert is None:
		raise HTTPException(status_code=404, detail="Certificate not found")
	school = require_school_access(db, user, cert.school_id)
	return certificate_to_dict(cert, school=school)


@router.get("/certificates/verify/{number}")
def verify_certificate(number: str, db: Session = Depends(get_db)):
	cert = db.query(Certificate).filter(Certificate.certificate_number == number).first()
	if cert is None or not cert.is_active:
		raise HTTPException(status_code=404, detail="Certificate not found")
	school = db.get(School, cert.school_id)
	return {
		"valid": True,
		"certificate_number": cert.certificate_number,
		"school_name": school.name if school else None,
		"round_number": cert.round_number,
		"issued_date": cert.issued_date,
	}


@router.get("/certificates/number/{number}")
def certificate_by_number(number: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	cert = db.query(Certificate).filter(Certificate.certificate_number == number).first()
	return _accessible(db, user, cert)


@router.get("/certificates/{certificate_id}")
def get_certificate(certificate_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return _accessible(db, user, db.get(Certificate, certificate_id))
