from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text, Boolean, JSON, ForeignKey, UniqueConstraint, Index
from .db import Base


STAGES = ("inspire", "investigate", "act")
SCHOOL_TYPES = ("primary", "secondary", "high_school", "international", "other")
EVIDENCE_STATUSES = ("pending", "approved", "rejected")
VISIBILITIES = ("public", "private", "registered")
SCHOOL_ROLES = ("head_teacher", "teacher", "pending_teacher")
USER_ROLES = ("teacher", "admin", "partner", "school")
AUDIT_STATUSES = ("draft", "submitted", "approved", "rejected")
PROMISE_STATUSES = ("active", "achieved", "cancelled")
PHOTO_CONSENT_STATUSES = ("pending", "approved", "rejected")
NOTIFICATION_TYPES = ("evidence_reviewed", "stage_completed", "audit_reviewed", "access_request", "team_update", "general")


def _uuid() -> str:
	return str(uuid.uuid4())


class User(Base):
	__tablename__ = "users"
	id = Column(String(36), primary_key=True, default=_uuid)
	email = Column(String(256), unique=True, index=True, nullable=False)
	password_hash = Column(String(256), nullable=True)
	first_name = Column(String(128), nullable=True)
	last_name = Column(String(128), nullable=True)
	role = Column(String(32), default="teacher", nullable=False)
	is_admin = Column(Boolean, default=False, nullable=False)
	preferred_language = Column(String(8), default="en", nullable=False)
	last_active_at = Column(DateTime, nullable=True)
	welcome_email_sent_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# JWT jti
	session_id = Column(String(64), primary_key=True)
	user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class School(Base):
	__tablename__ = "schools"
	id = Column(String(36), primary_key=True, default=_uuid)
	name = Column(String(256), nullable=False)
	type = Column(String(32), nullable=True)
	country = Column(String(128), nullable=False)
	address = Column(Text, nullable=True)
	website = Column(String(512), nullable=True)
	admin_email = Column(String(256), nullable=True)
	postcode = Column(String(32), nullable=True)
	primary_language = Column(String(64), nullable=True)
	age_ranges = Column(JSON, default=list, nullable=False)
	student_count = Column(Integer, nullable=True)
	registration_completed = Column(Boolean, default=False, nullable=False)

	current_stage = Column(String(16), default="inspire", nullable=False)
	progress_percentage = Column(Integer, default=0, nullable=False)
	inspire_completed = Column(Boolean, default=False, nullable=False)
	investigate_completed = Column(Boolean, default=False, nullable=False)
	act_completed = Column(Boolean, default=False, nullable=False)
	award_completed = Column(Boolean, default=False, nullable=False)
	current_round = Column(Integer, default=1, nullable=False)
	rounds_completed = Column(Integer, default=0, nullable=False)
	audit_quiz_completed = Column(Boolean, default=False, nullable=False)

	featured_school = Column(Boolean, default=False, nullable=False)
	show_on_map = Column(Boolean, default=False, nullable=False)
	primary_contact_id = Column(String(36), ForeignKey("users.id"), nullable=True)

	photo_consent_document_url = Column(String(512), nullable=True)
	photo_consent_status = Column(String(16), nullable=True)
	photo_consent_uploaded_at = Column(DateTime, nullable=True)
	photo_consent_approved_at = Column(DateTime, nullable=True)
	photo_consent_approved_by = Column(String(36), nullable=True)
	photo_consent_review_notes = Column(Text, nullable=True)

	is_migrated = Column(Boolean, default=False, nullable=False)
	legacy_evidence_count = Column(Integer, default=0, nullable=False)
	last_active_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SchoolUser(Base):
	__tablename__ = "school_users"
	__table_args__ = (UniqueConstraint("school_id", "user_id", name="uq_school_users_school_user"),)
	id = Column(String(36), primary_key=True, default=_uuid)
	school_id = Column(String(36), ForeignKey("schools.id", ondelete="CASCADE"), index=True, nullable=False)
	user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	role = Column(String(32), default="teacher", nullable=False)
	teacher_role = Column(String(128), nullable=True)
	is_verified = Column(Boolean, default=False, nullable=False)
	verification_method = Column(String(32), nullable=True)
	verification_evidence = Column(Text, nullable=True)
	invited_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
	legacy_evidence_count = Column(Integer, default=0, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class TeacherInvitation(Base):
	__tablename__ = "teacher_invitations"
	id = Column(String(36), primary_key=True, default=_uuid)
	school_id = Column(String(36), ForeignKey("schools.id", ondelete="CASCADE"), index=True, nullable=False)
	invited_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
	email = Column(String(256), index=True, nullable=False)
	token = Column(String(64), unique=True, index=True, nullable=False)
	status = Column(String(16), default="pending", nullable=False)
	expires_at = Column(DateTime, nullable=False)
	accepted_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class EvidenceRequirement(Base):
	__tablename__ = "evidence_requirements"
	id = Column(String(36), primary_key=True, default=_uuid)
	stage = Column(String(16), index=True, nullable=False)
	title = Column(String(256), nullable=False)
	description = Column(Text, nullable=False)
	order_index = Column(Integer, nullable=False)
	resource_ids = Column(JSON, default=list, nullable=False)
	custom_links = Column(JSON, default=list, nullable=False)
	# language code -> {"title": ..., "description": ...}
	translations = Column(JSON, default=dict, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Evidence(Base):
	__tablename__ = "evidence"
	id = Column(String(36), primary_key=True, default=_uuid)
	school_id = Column(String(36), ForeignKey("schools.id", ondelete="CASCADE"), index=True, nullable=False)
	submitted_by = Column(String(36), ForeignKey("users.id"), nullable=False)
	evidence_requirement_id = Column(String(36), ForeignKey("evidence_requirements.id"), index=True, nullable=True)
	title = Column(String(256), nullable=False)
	description = Column(Text, nullable=True)
	stage = Column(String(16), nullable=False)
	status = Column(String(16), default="pending", index=True, nullable=False)
	visibility = Column(String(16), default="registered", nullable=False)
	# [{"name", "url", "type", "size"}]
	files = Column(JSON, default=list, nullable=False)
	video_links = Column(Text, nullable=True)
	reviewed_by = Column(String(36), ForeignKey("users.id"), nullable=True)
	reviewed_at = Column(DateTime, nullable=True)
	review_notes = Column(Text, nullable=True)
	assigned_to = Column(String(36), ForeignKey("users.id"), nullable=True)
	is_featured = Column(Boolean, default=False, nullable=False)
	is_audit_quiz = Column(Boolean, default=False, nullable=False)
	round_number = Column(Integer, default=1, nullable=False)
	has_children = Column(Boolean, default=False, nullable=False)
	parental_consent_files = Column(JSON, default=list, nullable=False)
	submitted_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AdminEvidenceOverride(Base):
	__tablename__ = "admin_evidence_overrides"
	__table_args__ = (
		UniqueConstraint("school_id", "evidence_requirement_id", "round_number", name="uq_admin_override_school_req_round"),
	)
	id = Column(String(36), primary_key=True, default=_uuid)
	school_id = Column(String(36), ForeignKey("schools.id", ondelete="CASCADE"), index=True, nullable=False)
	evidence_requirement_id = Column(String(36), ForeignKey("evidence_requirements.id", ondelete="CASCADE"), index=True, nullable=False)
	stage = Column(String(16), nullable=False)
	round_number = Column(Integer, default=1, nullable=False)
	marked_by = Column(String(36), ForeignKey("users.id"), nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuditResponse(Base):
	__tablename__ = "audit_responses"
	id = Column(String(36), primary_key=True, default=_uuid)
	school_id = Column(String(36), ForeignKey("schools.id", ondelete="CASCADE"), index=True, nullable=False)
	submitted_by = Column(String(36), ForeignKey("users.id"), nullable=False)
	status = Column(String(16), default="draft", nullable=False)
	part1_data = Column(JSON, default=dict, nullable=False)
	part2_data = Column(JSON, default=dict, nullable=False)
	part3_data = Column(JSON, default=dict, nullable=False)
	part4_data = Column(JSON, default=dict, nullable=False)
	results_data = Column(JSON, default=dict, nullable=False)
	total_plastic_items = Column(Integer, default=0, nullable=False)
	top_problem_plastics = Column(JSON, default=list, nullable=False)
	current_part = Column(Integer, default=1, nullable=False)
	round_number = Column(Integer, default=1, nullable=False)
	reviewed_by = Column(String(36), ForeignKey("users.id"), nullable=True)
	reviewed_at = Column(DateTime, nullable=True)
	review_notes = Column(Text, nullable=True)
	completed_at = Column(DateTime, nullable=True)
	submitted_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ReductionPromise(Base):
	__tablename__ = "reduction_promises"
	id = Column(String(36), primary_key=True, default=_uuid)
	school_id = Column(String(36), ForeignKey("schools.id", ondelete="CASCADE"), index=True, nullable=False)
	audit_id = Column(String(36), ForeignKey("audit_responses.id", ondelete="SET NULL"), nullable=True)
	plastic_item_type = Column(String(128), nullable=False)
	plastic_item_label = Column(String(256), nullable=False)
	baseline_quantity = Column(Integer, nullable=False)
	target_quantity = Column(Integer, nullable=False)
	reduction_amount = Column(Integer, nullable=False)
	timeframe_unit = Column(String(16), nullable=False)
	status = Column(String(16), default="active", nullable=False)
	notes = Column(Text, nullable=True)
	created_by = Column(String(36), ForeignKey("users.id"), nullable=False)
	round_number = Column(Integer, default=1, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Certificate(Base):
	__tablename__ = "certificates"
	__table_args__ = (UniqueConstraint("school_id", "round_number", name="uq_certificates_school_round"),)
	id = Column(String(36), primary_key=True, default=_uuid)
	school_id = Column(String(36), ForeignKey("schools.id", ondelete="CASCADE"), index=True, nullable=False)
	stage = Column(String(16), default="act", nullable=False)
	round_number = Column(Integer, nullable=False)
	issued_by = Column(String(36), ForeignKey("users.id"), nullable=True)
	certificate_number = Column(String(128), unique=True, nullable=False)
	completed_date = Column(DateTime, nullable=False)
	issued_date = Column(DateTime, default=datetime.utcnow, nullable=False)
	title = Column(String(256), nullable=False)
	description = Column(Text, nullable=True)
	# "metadata" is reserved on declarative classes
	extra = Column("metadata", JSON, default=dict, nullable=False)
	is_active = Column(Boolean, default=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Resource(Base):
	__tablename__ = "resources"
	id = Column(String(36), primary_key=True, default=_uuid)
	title = Column(String(256), nullable=False)
	description = Column(Text, nullable=True)
	stage = Column(String(16), nullable=False)
	age_range = Column(String(64), nullable=True)
	language = Column(String(64), default="English", nullable=False)
	country = Column(String(128), nullable=True)
	resource_type = Column(String(64), nullable=True)
	file_url = Column(String(512), nullable=True)
	file_type = Column(String(128), nullable=True)
	file_size = Column(Integer, nullable=True)
	download_count = Column(Integer, default=0, nullable=False)
	visibility = Column(String(16), default="public", nullable=False)
	is_active = Column(Boolean, default=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Notification(Base):
	__tablename__ = "notifications"
	__table_args__ = (Index("ix_notifications_user_read", "user_id", "is_read"),)
	id = Column(String(36), primary_key=True, default=_uuid)
	user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
	school_id = Column(String(36), ForeignKey("schools.id", ondelete="CASCADE"), nullable=True)
	type = Column(String(32), nullable=False)
	title = Column(String(256), nullable=False)
	message = Column(Text, nullable=False)
	action_url = Column(String(512), nullable=True)
	is_read = Column(Boolean, default=False, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
