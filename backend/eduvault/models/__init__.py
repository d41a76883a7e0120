from eduvault.models.user import User, UserRole
from eduvault.models.course import Course
from eduvault.models.unit import Unit
from eduvault.models.content_asset import ContentAsset, ContentAssetType, ContentStatus, OwnerType
from eduvault.models.topic import ExternalResource, Topic
from eduvault.models.assessment import Assessment, AssessmentStatus, AssessmentType
from eduvault.models.subscription import Subscription, SubscriptionStatus
from eduvault.models.audit import AuditEvent

__all__ = [
    "User",
    "UserRole",
    "Course",
    "Unit",
    "Topic",
    "ExternalResource",
    "ContentAsset",
    "ContentAssetType",
    "ContentStatus",
    "OwnerType",
    "Assessment",
    "AssessmentStatus",
    "AssessmentType",
    "Subscription",
    "SubscriptionStatus",
    "AuditEvent",
]
