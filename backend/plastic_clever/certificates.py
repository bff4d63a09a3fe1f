from __future__ import annotations
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from .models import Certificate, School

logger = logging.getLogger(__name__)


def certificate_number(round_number: int, school_id: str, *, now_ms: Optional[int] = None) -> str:
	if now_ms is None:
		now_ms = int(time.time() * 1000)
	return f"PCSR{round_number}-{now_ms}-{school_id[:8]}"


def get_round_certificate(db: Session, school_id: str, round_number: int) -> Optional[Certificate]:
	return (
		db.query(Certificate)
		.filter(Certificate.school_id == school_id, Certificate.round_number == round_number)
		.first()
	)


def issue_round_certificate(
	db: Session,
	school: School,
	round_number: int,
	achievements: Dict[str, int],
	*,
	issued_by: Optional[str] = None,
) -> Certificate:
	"""Create the completion certificate for a round, or return the existing one.

	The row is added to the session; the caller commits.
	"""
	existing = get_round_certificate(db, school.id, round_number)
	if existing is not None:
		return existing
	cert = Certificate(
		school_id=school.id,
		stage="act",
		round_number=round_number,
		issued_by=issued_by,
		certificate_number=certificate_number(round_number, school.id),
		completed_date=datetime.utcnow(),
		title=f"Round {round_number} Completion Certificate",
		description=f"Successfully completed all three stages (Inspire, Investigate, Act) in Round {round_number}",
		extra={"round": round_number, "achievements": dict(achievements)},
	)
	db.add(cert)
	db.flush()
	logger.info("issued certificate %s for school %s round %d", cert.certificate_number, school.id, round_number)
	return cert


def certificate_to_dict(cert: Certificate, *, school: Optional[School] = None) -> Dict[str, Any]:
	data: Dict[str, Any] = {
		"id": cert.id,
		"school_id": cert.school_id,
		"stage": cert.stage,
		"round_number": cert.round_number,
		"certificate_number": cert.certificate_number,
		"title": cert.title,
		"description": cert.description,
		"completed_date": cert.completed_date,
		"issued_date": cert.issued_date,
		"issued_by": cert.issued_by,
		"metadata": cert.extra or {},
		"is_active": cert.is_active,
	}
	if school is not None:
		data["school"] = {"id": school.id, "name": school.name, "country": school.country}
	return data
