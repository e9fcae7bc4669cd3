"""Relational models for citizens, ideas, policies, concerns, notifications and budget plans."""
import uuid
from datetime import datetime

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db
from utils.crypto import decrypt_value, encrypt_value


def generate_uuid() -> str:
	return str(uuid.uuid4())


def _iso(value):
	return value.isoformat() + "Z" if value else None


def _in_constraint(column: str, values: tuple[str, ...], name: str):
	quoted = ",".join("'" + v.replace("'", "''") + "'" for v in values)
	return db.CheckConstraint(f"{column} IN ({quoted})", name=name)


USER_ROLES: tuple[str, ...] = (
	"citizen",
	"admin",
)

IDEA_CATEGORIES: tuple[str, ...] = (
	"Revenue Generation",
	"Infrastructure Development",
	"Technology & Innovation",
	"Agriculture & Farming",
	"Education",
	"Healthcare",
	"Environment & Sustainability",
	"Transportation",
	"Tourism",
	"Public Safety",
	"Urban Planning",
	"Rural Development",
	"Employment & Skills",
	"Other",
)

IDEA_IMPACT_SCOPES: tuple[str, ...] = (
	"Local",
	"District",
	"State",
	"National",
)

IDEA_STATUSES: tuple[str, ...] = (
	"Submitted",
	"Under Review",
	"Shortlisted",
	"In Discussion",
	"Approved",
	"Funded",
	"Implemented",
	"Rejected",
	"On Hold",
)

IDEA_PRIORITIES: tuple[str, ...] = (
	"Low",
	"Medium",
	"High",
	"Critical",
)

VISIBILITY_LEVELS: tuple[str, ...] = (
	"Public",
	"Private",
)

VOTE_DIRECTIONS: tuple[str, ...] = (
	"up",
	"down",
)

POLICY_CATEGORIES: tuple[str, ...] = (
	"Health",
	"Education",
	"Infrastructure",
	"Environment",
	"Economy",
	"Transportation",
	"Public Safety",
	"Housing",
	"Technology",
	"Other",
)

POLICY_STATUSES: tuple[str, ...] = (
	"Draft",
	"Under Review",
	"Published",
	"Archived",
)

CONCERN_CATEGORIES: tuple[str, ...] = (
	"Infrastructure",
	"Sanitation",
	"Public Safety",
	"Health",
	"Environment",
	"Transportation",
	"Utilities",
	"Other",
)

CONCERN_STATUSES: tuple[str, ...] = (
	"Pending",
	"In Progress",
	"Resolved",
	"Rejected",
)

NOTIFICATION_TYPES: tuple[str, ...] = (
	"StatusUpdate",
	"NewComment",
	"AdminAlert",
	"System",
	"IdeaResponse",
	"IdeaUpdate",
	"IdeaSubmitted",
	"PolicyUpdate",
	"ConcernUpdate",
	"Achievement",
)

ALLOCATION_STATUSES: tuple[str, ...] = (
	"Draft",
	"Approved",
	"Rejected",
)

ALLOCATION_LEVELS: tuple[str, ...] = (
	"High",
	"Medium",
	"Low",
)


class User(UserMixin, db.Model):
	__tablename__ = "users"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	name = db.Column(db.String(50), nullable=False)
	email = db.Column(db.String(255), unique=True, nullable=False, index=True)
	password_hash = db.Column(db.String(255), nullable=False)
	role = db.Column(db.String(20), nullable=False, default="citizen", index=True)
	avatar = db.Column(db.String(500), nullable=True)
	is_active = db.Column(db.Boolean, default=True, nullable=False)
	aadhar_number_encrypted = db.Column(db.Text, nullable=True)
	pan_number_encrypted = db.Column(db.Text, nullable=True)
	phone_number = db.Column(db.String(10), nullable=True)
	address = db.Column(db.String(200), nullable=True)
	refresh_token_hash = db.Column(db.String(64), nullable=True)
	last_login_at = db.Column(db.DateTime, nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__table_args__ = (
		_in_constraint("role", USER_ROLES, "ck_user_role"),
	)

	ideas = db.relationship("Idea", back_populates="submitter", foreign_keys="Idea.submitted_by", lazy="dynamic")
	concerns = db.relationship("Concern", back_populates="creator", lazy="dynamic")

	def set_password(self, password: str) -> None:
		self.password_hash = generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)

	def check_password(self, password: str) -> bool:
		return check_password_hash(self.password_hash, password)

	@property
	def is_admin(self) -> bool:
		return self.role == "admin"

	@property
	def aadhar_number(self) -> str | None:
		return decrypt_value(self.aadhar_number_encrypted)

	@aadhar_number.setter
	def aadhar_number(self, value: str | None) -> None:
		self.aadhar_number_encrypted = encrypt_value(value)

	@property
	def pan_number(self) -> str | None:
		return decrypt_value(self.pan_number_encrypted)

	@pan_number.setter
	def pan_number(self, value: str | None) -> None:
		self.pan_number_encrypted = encrypt_value(value)

	def ensure_avatar(self) -> None:
		if self.avatar:
			return
		initials = "".join(part[0] for part in (self.name or "").split()[:2]).upper() or "U"
		self.avatar = f"https://ui-avatars.com/api/?name={initials}&background=random"

	def summary(self) -> dict:
		return {"id": self.id, "name": self.name, "email": self.email, "avatar": self.avatar}

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"name": self.name,
			"email": self.email,
			"role": self.role,
			"avatar": self.avatar,
			"isActive": self.is_active,
			"aadharNumber": self.aadhar_number,
			"panNumber": self.pan_number,
			"phoneNumber": self.phone_number,
			"address": self.address,
			"lastLogin": _iso(self.last_login_at),
			"createdAt": _iso(self.created_at),
		}


class Idea(db.Model):
	__tablename__ = "ideas"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	title = db.Column(db.String(200), nullable=False)
	description = db.Column(db.Text, nullable=False)
	category = db.Column(db.String(60), nullable=False, index=True)
	sub_category = db.Column(db.String(120), nullable=True)
	target_area = db.Column(db.String(255), nullable=False)
	expected_impact = db.Column(db.String(20), nullable=False)
	estimated_budget_amount = db.Column(db.Float, nullable=True)
	estimated_budget_currency = db.Column(db.String(8), nullable=False, default="INR")
	estimated_budget_description = db.Column(db.String(500), nullable=True)
	timeline_proposed = db.Column(db.String(120), nullable=True)
	timeline_description = db.Column(db.String(500), nullable=True)
	benefits = db.Column(db.JSON, nullable=False, default=list)
	challenges = db.Column(db.JSON, nullable=False, default=list)
	resources = db.Column(db.JSON, nullable=False, default=list)
	tags = db.Column(db.JSON, nullable=False, default=list)
	submitted_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	status = db.Column(db.String(20), nullable=False, default="Submitted", index=True)
	priority = db.Column(db.String(10), nullable=False, default="Medium")
	visibility = db.Column(db.String(10), nullable=False, default="Public", index=True)
	upvote_count = db.Column(db.Integer, nullable=False, default=0)
	downvote_count = db.Column(db.Integer, nullable=False, default=0)
	view_count = db.Column(db.Integer, nullable=False, default=0)
	share_count = db.Column(db.Integer, nullable=False, default=0)

	response_message = db.Column(db.Text, nullable=True)
	response_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	response_at = db.Column(db.DateTime, nullable=True)
	response_action_items = db.Column(db.JSON, nullable=True)
	response_next_steps = db.Column(db.Text, nullable=True)

	allocated_amount = db.Column(db.BigInteger, nullable=True)
	allocation_plan_id = db.Column(db.String(36), db.ForeignKey("budget_allocations.id"), nullable=True, index=True)
	allocated_at = db.Column(db.DateTime, nullable=True)
	allocated_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	allocation_priority_score = db.Column(db.Integer, nullable=True)
	allocation_justification = db.Column(db.Text, nullable=True)

	implementation_start_date = db.Column(db.DateTime, nullable=True)
	implementation_completion_date = db.Column(db.DateTime, nullable=True)
	implementation_progress = db.Column(db.Integer, nullable=False, default=0)

	is_featured = db.Column(db.Boolean, nullable=False, default=False)
	is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__table_args__ = (
		_in_constraint("category", IDEA_CATEGORIES, "ck_idea_category"),
		_in_constraint("expected_impact", IDEA_IMPACT_SCOPES, "ck_idea_impact"),
		_in_constraint("status", IDEA_STATUSES, "ck_idea_status"),
		_in_constraint("priority", IDEA_PRIORITIES, "ck_idea_priority"),
		_in_constraint("visibility", VISIBILITY_LEVELS, "ck_idea_visibility"),
		db.CheckConstraint("upvote_count >= 0 AND downvote_count >= 0", name="ck_idea_vote_counts"),
		db.CheckConstraint("implementation_progress BETWEEN 0 AND 100", name="ck_idea_progress"),
	)

	submitter = db.relationship("User", back_populates="ideas", foreign_keys=[submitted_by])
	responder = db.relationship("User", foreign_keys=[response_by])
	votes = db.relationship("IdeaVote", back_populates="idea", cascade="all, delete-orphan", lazy="dynamic")
	implementation_updates = db.relationship(
		"IdeaImplementationUpdate",
		back_populates="idea",
		order_by="IdeaImplementationUpdate.created_at",
		cascade="all, delete-orphan",
	)

	def vote_of(self, user_id: str | None) -> str | None:
		if not user_id:
			return None
		vote = self.votes.filter_by(user_id=user_id).first()
		return vote.direction if vote else None

	def to_summary(self) -> dict:
		return {
			"id": self.id,
			"title": self.title,
			"category": self.category,
			"status": self.status,
			"submittedBy": self.submitted_by,
		}

	def to_dict(self, viewer_id: str | None = None) -> dict:
		payload = {
			"id": self.id,
			"title": self.title,
			"description": self.description,
			"category": self.category,
			"subCategory": self.sub_category,
			"targetArea": self.target_area,
			"expectedImpact": self.expected_impact,
			"estimatedBudget": {
				"amount": self.estimated_budget_amount,
				"currency": self.estimated_budget_currency,
				"description": self.estimated_budget_description,
			},
			"timeline": {
				"proposed": self.timeline_proposed,
				"description": self.timeline_description,
			},
			"benefits": list(self.benefits or []),
			"challenges": list(self.challenges or []),
			"resources": list(self.resources or []),
			"tags": list(self.tags or []),
			"submittedBy": self.submitter.summary() if self.submitter else self.submitted_by,
			"status": self.status,
			"priority": self.priority,
			"visibility": self.visibility,
			"upvoteCount": self.upvote_count,
			"downvoteCount": self.downvote_count,
			"viewCount": self.view_count,
			"shareCount": self.share_count,
			"governmentResponse": None,
			"budgetAllocation": None,
			"implementation": {
				"startDate": _iso(self.implementation_start_date),
				"completionDate": _iso(self.implementation_completion_date),
				"progress": self.implementation_progress,
				"updates": [u.to_dict() for u in self.implementation_updates],
			},
			"isFeatured": self.is_featured,
			"createdAt": _iso(self.created_at),
			"updatedAt": _iso(self.updated_at),
		}
		if self.response_message:
			payload["governmentResponse"] = {
				"message": self.response_message,
				"respondedBy": self.responder.summary() if self.responder else self.response_by,
				"respondedAt": _iso(self.response_at),
				"actionItems": list(self.response_action_items or []),
				"nextSteps": self.response_next_steps,
			}
		if self.allocation_plan_id:
			payload["budgetAllocation"] = {
				"allocatedAmount": self.allocated_amount,
				"allocationId": self.allocation_plan_id,
				"allocatedAt": _iso(self.allocated_at),
				"allocatedBy": self.allocated_by,
				"priorityScore": self.allocation_priority_score,
				"aiJustification": self.allocation_justification,
			}
		if viewer_id is not None:
			direction = self.vote_of(viewer_id)
			payload["hasUpvoted"] = direction == "up"
			payload["hasDownvoted"] = direction == "down"
		return payload


class IdeaVote(db.Model):
	__tablename__ = "idea_votes"

	id = db.Column(db.Integer, primary_key=True)
	idea_id = db.Column(db.String(36), db.ForeignKey("ideas.id"), nullable=False, index=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	direction = db.Column(db.String(4), nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.UniqueConstraint("idea_id", "user_id", name="uq_idea_vote_user"),
		_in_constraint("direction", VOTE_DIRECTIONS, "ck_idea_vote_direction"),
	)

	idea = db.relationship("Idea", back_populates="votes")


class IdeaImplementationUpdate(db.Model):
	__tablename__ = "idea_implementation_updates"

	id = db.Column(db.Integer, primary_key=True)
	idea_id = db.Column(db.String(36), db.ForeignKey("ideas.id"), nullable=False, index=True)
	message = db.Column(db.Text, nullable=False)
	progress = db.Column(db.Integer, nullable=True)
	updated_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	idea = db.relationship("Idea", back_populates="implementation_updates")

	def to_dict(self) -> dict:
		return {
			"message": self.message,
			"progress": self.progress,
			"updatedBy": self.updated_by,
			"date": _iso(self.created_at),
		}


class Policy(db.Model):
	__tablename__ = "policies"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	title = db.Column(db.String(200), nullable=False)
	description = db.Column(db.Text, nullable=False)
	category = db.Column(db.String(40), nullable=False, index=True)
	status = db.Column(db.String(20), nullable=False, default="Draft", index=True)
	document_url = db.Column(db.String(500), nullable=True)
	pdf_file_path = db.Column(db.String(500), nullable=True)
	pdf_content = db.Column(db.Text, nullable=True)
	summary = db.Column(db.Text, nullable=True)
	effective_date = db.Column(db.DateTime, nullable=True)
	tags = db.Column(db.JSON, nullable=False, default=list)
	created_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
	view_count = db.Column(db.Integer, nullable=False, default=0)
	comments_count = db.Column(db.Integer, nullable=False, default=0)
	support_count = db.Column(db.Integer, nullable=False, default=0)
	is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__table_args__ = (
		_in_constraint("category", POLICY_CATEGORIES, "ck_policy_category"),
		_in_constraint("status", POLICY_STATUSES, "ck_policy_status"),
	)

	creator = db.relationship("User")
	supports = db.relationship("PolicySupport", back_populates="policy", cascade="all, delete-orphan", lazy="dynamic")

	def is_supported_by(self, user_id: str | None) -> bool:
		if not user_id:
			return False
		return self.supports.filter_by(user_id=user_id).first() is not None

	def to_dict(self, viewer_id: str | None = None, include_content: bool = False) -> dict:
		payload = {
			"id": self.id,
			"title": self.title,
			"description": self.description,
			"category": self.category,
			"status": self.status,
			"documentUrl": self.document_url,
			"pdfFile": self.pdf_file_path,
			"summary": self.summary,
			"effectiveDate": _iso(self.effective_date),
			"tags": list(self.tags or []),
			"createdBy": self.creator.summary() if self.creator else self.created_by,
			"views": self.view_count,
			"commentsCount": self.comments_count,
			"supportCount": self.support_count,
			"createdAt": _iso(self.created_at),
			"updatedAt": _iso(self.updated_at),
		}
		if include_content:
			payload["pdfContent"] = self.pdf_content
		if viewer_id is not None:
			payload["hasSupported"] = self.is_supported_by(viewer_id)
		return payload


class PolicySupport(db.Model):
	__tablename__ = "policy_supports"

	id = db.Column(db.Integer, primary_key=True)
	policy_id = db.Column(db.String(36), db.ForeignKey("policies.id"), nullable=False, index=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.UniqueConstraint("policy_id", "user_id", name="uq_policy_support_user"),
	)

	policy = db.relationship("Policy", back_populates="supports")


class Concern(db.Model):
	__tablename__ = "concerns"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	title = db.Column(db.String(100), nullable=False)
	description = db.Column(db.String(1000), nullable=False)
	category = db.Column(db.String(30), nullable=False, index=True)
	location = db.Column(db.String(255), nullable=False)
	latitude = db.Column(db.Float, nullable=True)
	longitude = db.Column(db.Float, nullable=True)
	status = db.Column(db.String(20), nullable=False, default="Pending", index=True)
	image_url = db.Column(db.String(500), nullable=True)
	created_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__table_args__ = (
		_in_constraint("category", CONCERN_CATEGORIES, "ck_concern_category"),
		_in_constraint("status", CONCERN_STATUSES, "ck_concern_status"),
	)

	creator = db.relationship("User", back_populates="concerns")
	upvotes = db.relationship("ConcernUpvote", back_populates="concern", cascade="all, delete-orphan", lazy="dynamic")
	comments = db.relationship(
		"ConcernComment",
		back_populates="concern",
		order_by="ConcernComment.created_at",
		cascade="all, delete-orphan",
	)

	def to_dict(self, viewer_id: str | None = None) -> dict:
		upvoter_ids = [u.user_id for u in self.upvotes]
		payload = {
			"id": self.id,
			"title": self.title,
			"description": self.description,
			"category": self.category,
			"location": self.location,
			"coordinates": {"lat": self.latitude, "lng": self.longitude},
			"status": self.status,
			"imageUrl": self.image_url,
			"createdBy": self.creator.summary() if self.creator else self.created_by,
			"upvotes": upvoter_ids,
			"upvoteCount": len(upvoter_ids),
			"comments": [c.to_dict() for c in self.comments],
			"createdAt": _iso(self.created_at),
			"updatedAt": _iso(self.updated_at),
		}
		if viewer_id is not None:
			payload["hasUpvoted"] = viewer_id in upvoter_ids
		return payload


class ConcernUpvote(db.Model):
	__tablename__ = "concern_upvotes"

	id = db.Column(db.Integer, primary_key=True)
	concern_id = db.Column(db.String(36), db.ForeignKey("concerns.id"), nullable=False, index=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.UniqueConstraint("concern_id", "user_id", name="uq_concern_upvote_user"),
	)

	concern = db.relationship("Concern", back_populates="upvotes")


class ConcernComment(db.Model):
	__tablename__ = "concern_comments"

	id = db.Column(db.Integer, primary_key=True)
	concern_id = db.Column(db.String(36), db.ForeignKey("concerns.id"), nullable=False, index=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
	text = db.Column(db.String(500), nullable=False)
	is_official = db.Column(db.Boolean, nullable=False, default=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	concern = db.relationship("Concern", back_populates="comments")
	author = db.relationship("User")

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"user": self.author.summary() if self.author else self.user_id,
			"text": self.text,
			"isOfficial": self.is_official,
			"createdAt": _iso(self.created_at),
		}


class Comment(db.Model):
	__tablename__ = "comments"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	text = db.Column(db.String(500), nullable=False)
	concern_id = db.Column(db.String(36), db.ForeignKey("concerns.id"), nullable=False, index=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	author = db.relationship("User")

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"text": self.text,
			"concern": self.concern_id,
			"user": self.author.summary() if self.author else self.user_id,
			"createdAt": _iso(self.created_at),
		}


class Notification(db.Model):
	__tablename__ = "notifications"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	recipient_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	sender_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
	type = db.Column(db.String(20), nullable=False)
	concern_id = db.Column(db.String(36), db.ForeignKey("concerns.id"), nullable=True)
	policy_id = db.Column(db.String(36), db.ForeignKey("policies.id"), nullable=True)
	idea_id = db.Column(db.String(36), db.ForeignKey("ideas.id"), nullable=True)
	message = db.Column(db.String(500), nullable=False)
	is_read = db.Column(db.Boolean, nullable=False, default=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		_in_constraint("type", NOTIFICATION_TYPES, "ck_notification_type"),
	)

	sender = db.relationship("User", foreign_keys=[sender_id])

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"recipient": self.recipient_id,
			"sender": self.sender.summary() if self.sender else self.sender_id,
			"type": self.type,
			"concern": self.concern_id,
			"policy": self.policy_id,
			"idea": self.idea_id,
			"message": self.message,
			"isRead": self.is_read,
			"createdAt": _iso(self.created_at),
		}


class BudgetAllocation(db.Model):
	__tablename__ = "budget_allocations"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	total_budget = db.Column(db.BigInteger, nullable=False)
	allocated_budget = db.Column(db.BigInteger, nullable=False)
	contingency_reserve = db.Column(db.BigInteger, nullable=False)
	summary = db.Column(db.Text, nullable=True)
	recommendations = db.Column(db.JSON, nullable=False, default=list)
	status = db.Column(db.String(10), nullable=False, default="Draft", index=True)
	fiscal_year = db.Column(db.String(20), nullable=False)
	analyzed_count = db.Column(db.Integer, nullable=False, default=0)
	created_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
	approved_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	approved_at = db.Column(db.DateTime, nullable=True)
	rejected_at = db.Column(db.DateTime, nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__table_args__ = (
		_in_constraint("status", ALLOCATION_STATUSES, "ck_budget_allocation_status"),
		db.CheckConstraint("total_budget > 0", name="ck_budget_allocation_total"),
		db.CheckConstraint("allocated_budget + contingency_reserve = total_budget", name="ck_budget_allocation_balance"),
	)

	creator = db.relationship("User", foreign_keys=[created_by])
	approver = db.relationship("User", foreign_keys=[approved_by])
	lines = db.relationship(
		"BudgetAllocationLine",
		back_populates="allocation",
		order_by="BudgetAllocationLine.position",
		cascade="all, delete-orphan",
	)

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"totalBudget": self.total_budget,
			"allocatedBudget": self.allocated_budget,
			"contingencyReserve": self.contingency_reserve,
			"allocations": [line.to_dict() for line in self.lines],
			"summary": self.summary,
			"recommendations": list(self.recommendations or []),
			"status": self.status,
			"fiscalYear": self.fiscal_year,
			"analyzedCount": self.analyzed_count,
			"createdBy": self.creator.summary() if self.creator else self.created_by,
			"approvedBy": self.approver.summary() if self.approver else self.approved_by,
			"approvedAt": _iso(self.approved_at),
			"rejectedAt": _iso(self.rejected_at),
			"createdAt": _iso(self.created_at),
			"updatedAt": _iso(self.updated_at),
		}


class BudgetAllocationLine(db.Model):
	__tablename__ = "budget_allocation_lines"

	id = db.Column(db.Integer, primary_key=True)
	allocation_id = db.Column(db.String(36), db.ForeignKey("budget_allocations.id"), nullable=False, index=True)
	position = db.Column(db.Integer, nullable=False)
	idea_id = db.Column(db.String(36), db.ForeignKey("ideas.id"), nullable=False)
	allocated_budget = db.Column(db.BigInteger, nullable=False)
	priority_score = db.Column(db.Integer, nullable=False)
	priority = db.Column(db.String(10), nullable=False)
	justification = db.Column(db.Text, nullable=False, default="")
	estimated_timeline = db.Column(db.String(120), nullable=True)
	expected_roi = db.Column(db.String(10), nullable=True)

	__table_args__ = (
		db.CheckConstraint("priority_score BETWEEN 0 AND 100", name="ck_allocation_line_score"),
		db.CheckConstraint("allocated_budget >= 0", name="ck_allocation_line_amount"),
		_in_constraint("priority", ALLOCATION_LEVELS, "ck_allocation_line_priority"),
	)

	allocation = db.relationship("BudgetAllocation", back_populates="lines")
	idea = db.relationship("Idea")

	def to_dict(self) -> dict:
		return {
			"idea": self.idea.to_summary() if self.idea else self.idea_id,
			"allocatedBudget": self.allocated_budget,
			"priorityScore": self.priority_score,
			"priority": self.priority,
			"justification": self.justification,
			"estimatedTimeline": self.estimated_timeline,
			"expectedROI": self.expected_roi,
		}
