from allowance.models.base import Base
from allowance.models.user import User
from allowance.models.badge import Badge, BadgeBonusGrant, BadgeCategory, UserBadge
from allowance.models.activity import Goal, Task, TaskRecurrence, TaskStatus, Transaction, TransactionType

__all__ = [
    "Base",
    "User",
    "Badge",
    "BadgeBonusGrant",
    "BadgeCategory",
    "UserBadge",
    "Goal",
    "Task",
    "TaskRecurrence",
    "TaskStatus",
    "Transaction",
    "TransactionType",
]
