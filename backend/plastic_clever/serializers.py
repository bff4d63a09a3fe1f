from __future__ import annotations
from typing import Any, Dict, Optional

from .models import (
	AuditResponse,
	Evidence,
	EvidenceRequirement,
	Notification,
	ReductionPromise,
	Resource,
	School,
	SchoolUser,
	User,
)


def user_to_dict(user: User) -> Dict[str, Any]:
	return {
		"id": user.id,
		"email": user.email,
		"first_name": user.first_name,
		"last_name": user.last_name,
		"role": user.role,
		"is_admin": user.is_admin,
		"preferred_language": user.preferred_language,
		"last_active_at": user.last_active_at,
		"created_at": user.created_at,
	}


def school_to_dict(school: School) -> Dict[str, Any]:
	return {
		"id": school.id,
		"name": school.name,
		"type": school.type,
		"country": school.country,
		"address": school.address,
		"website": school.website,
		"admin_email": school.admin_email,
		"postcode": school.postcode,
		"primary_language": school.primary_language,
		"age_ranges": school.age_ranges or [],
		"student_count": school.student_count,
		"registration_completed": school.registration_completed,
		"current_stage": school.current_stage,
		"progress_percentage": school.progress_percentage,
		"inspire_completed": school.inspire_completed,
		"investigate_completed": school.investigate_completed,
		"act_completed": school.act_completed,
		"award_completed": school.award_completed,
		"current_round": school.current_round,
		"rounds_completed": school.rounds_completed,
		"audit_quiz_completed": school.audit_quiz_completed,
		"featured_school": school.featured_school,
		"show_on_map": school.show_on_map,
		"primary_contact_id": school.primary_contact_id,
		"photo_consent_status": school.photo_consent_status,
		"photo_consent_document_url": school.photo_consent_document_url,
		"is_migrated": school.is_migrated,
		"created_at": school.created_at,
	}


def public_school_to_dict(school: School) -> Dict[str, Any]:
	return {
		"id": school.id,
		"name": school.name,
		"type": school.type,
		"country": school.country,
		"current_stage": school.current_stage,
		"current_round": school.current_round,
		"rounds_completed": school.rounds_completed,
		"progress_percentage": school.progress_percentage,
		"student_count": school.student_count,
		"featured_school": school.featured_school,
	}


def member_to_dict(member: SchoolUser, user: Optional[User] = None) -> Dict[str, Any]:
	data: Dict[str, Any] = {
		"id": member.id,
		"school_id": member.school_id,
		"user_id": member.user_id,
		"role": member.role,
		"teacher_role": member.teacher_role,
		"is_verified": member.is_verified,
		"verification_method": member.verification_method,
		"verification_evidence": member.verification_evidence,
		"invited_by": member.invited_by,
		"created_at": member.created_at,
	}
	if user is not None:
		data["user"] = {"id": user.id, "email": user.email, "first_name": user.first_name, "last_name": user.last_name}
	return data


def _is_image(f: Dict[str, Any]) -> bool:
	return str(f.get("type") or "").startswith("image/")


def evidence_to_dict(evidence: Evidence, *, school: Optional[School] = None) -> Dict[str, Any]:
	files = evidence.files or []
	data: Dict[str, Any] = {
		"id": evidence.id,
		"school_id": evidence.school_id,
		"submitted_by": evidence.submitted_by,
		"evidence_requirement_id": evidence.evidence_requirement_id,
		"title": evidence.title,
		"description": evidence.description,
		"stage": evidence.stage,
		"status": evidence.status,
		"visibility": evidence.visibility,
		"files": files,
		"file_urls": [f.get("url") for f in files if _is_image(f)],
		"video_links": evidence.video_links,
		"reviewed_by": evidence.reviewed_by,
		"reviewed_at": evidence.reviewed_at,
		"review_notes": evidence.review_notes,
		"assigned_to": evidence.assigned_to,
		"is_featured": evidence.is_featured,
		"is_audit_quiz": evidence.is_audit_quiz,
		"round_number": evidence.round_number,
		"has_children": evidence.has_children,
		"parental_consent_files": evidence.parental_consent_files or [],
		"submitted_at": evidence.submitted_at,
	}
	if school is not None:
		data["school"] = {"id": school.id, "name": school.name, "country": school.country}
		data["photo_consent_status"] = school.photo_consent_status
	return data


def requirement_to_dict(req: EvidenceRequirement, language: Optional[str] = None) -> Dict[str, Any]:
	data: Dict[str, Any] = {
		"id": req.id,
		"stage": req.stage,
		"title": req.title,
		"description": req.description,
		"order_index": req.order_index,
		"resource_ids": req.resource_ids or [],
		"custom_links": req.custom_links or [],
		"translations": req.translations or {},
	}
	if language and language != "en":
		translated = (req.translations or {}).get(language)
		if translated:
			data["title"] = translated.get("title") or req.title
			data["description"] = translated.get("description") or req.description
	return data


def audit_to_dict(audit: AuditResponse) -> Dict[str, Any]:
	return {
		"id": audit.id,
		"school_id": audit.school_id,
		"submitted_by": audit.submitted_by,
		"status": audit.status,
		"part1_data": audit.part1_data or {},
		"part2_data": audit.part2_data or {},
		"part3_data": audit.part3_data or {},
		"part4_data": audit.part4_data or {},
		"results_data": audit.results_data or {},
		"total_plastic_items": audit.total_plastic_items,
		"top_problem_plastics": audit.top_problem_plastics or [],
		"current_part": audit.current_part,
		"round_number": audit.round_number,
		"reviewed_by": audit.reviewed_by,
		"reviewed_at": audit.reviewed_at,
		"review_notes": audit.review_notes,
		"submitted_at": audit.submitted_at,
		"completed_at": audit.completed_at,
		"created_at": audit.created_at,
	}


def promise_to_dict(promise: ReductionPromise) -> Dict[str, Any]:
	return {
		"id": promise.id,
		"school_id": promise.school_id,
		"audit_id": promise.audit_id,
		"plastic_item_type": promise.plastic_item_type,
		"plastic_item_label": promise.plastic_item_label,
		"baseline_quantity": promise.baseline_quantity,
		"target_quantity": promise.target_quantity,
		"reduction_amount": promise.reduction_amount,
		"timeframe_unit": promise.timeframe_unit,
		"status": promise.status,
		"notes": promise.notes,
		"created_by": promise.created_by,
		"round_number": promise.round_number,
		"created_at": promise.created_at,
	}


def resource_to_dict(resource: Resource) -> Dict[str, Any]:
	return {
		"id": resource.id,
		"title": resource.title,
		"description": resource.description,
		"stage": resource.stage,
		"age_range": resource.age_range,
		"language": resource.language,
		"country": resource.country,
		"resource_type": resource.resource_type,
		"file_url": resource.file_url,
		"file_type": resource.file_type,
		"file_size": resource.file_size,
		"download_count": resource.download_count,
		"visibility": resource.visibility,
		"is_active": resource.is_active,
		"created_at": resource.created_at,
	}


def notification_to_dict(n: Notification) -> Dict[str, Any]:
	return {
		"id": n.id,
		"school_id": n.school_id,
		"type": n.type,
		"title": n.title,
		"message": n.message,
		"action_url": n.action_url,
		"is_read": n.is_read,
		"created_at": n.created_at,
	}
