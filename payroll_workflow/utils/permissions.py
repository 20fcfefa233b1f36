"""
Payroll Workflow - Approval Capabilities

Each approval level requires one capability. A user holds the union of:
- capabilities assigned to them as data (``User.capabilities``)
- capabilities mapped from their job title through the finite
  ``position_capabilities`` table in settings (exact match after
  normalization; no substring matching)
- SUPER_ADMIN when their role is super_admin

Capability Matrix:
==================

| Level            | Required capability | Extra condition                        |
|------------------|---------------------|----------------------------------------|
| DEPARTMENT_HEAD  | DEPARTMENT_HEAD     | same department as the payroll record  |
| HR_MANAGER       | HR_MANAGER          |                                        |
| FINANCE_DIRECTOR | FINANCE_DIRECTOR    |                                        |
| SUPER_ADMIN      | SUPER_ADMIN         |                                        |
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Set, TYPE_CHECKING

from payroll_workflow.config import settings
from payroll_workflow.models.payroll import ApprovalLevel
from payroll_workflow.models.user import UserRole

if TYPE_CHECKING:
    from payroll_workflow.models.department import Department
    from payroll_workflow.models.user import User

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    """Approval rights."""
    DEPARTMENT_HEAD = "DEPARTMENT_HEAD"
    HR_MANAGER = "HR_MANAGER"
    FINANCE_DIRECTOR = "FINANCE_DIRECTOR"
    SUPER_ADMIN = "SUPER_ADMIN"


LEVEL_CAPABILITIES: Dict[ApprovalLevel, Capability] = {
    ApprovalLevel.DEPARTMENT_HEAD: Capability.DEPARTMENT_HEAD,
    ApprovalLevel.HR_MANAGER: Capability.HR_MANAGER,
    ApprovalLevel.FINANCE_DIRECTOR: Capability.FINANCE_DIRECTOR,
    ApprovalLevel.SUPER_ADMIN: Capability.SUPER_ADMIN,
}

# Who may create, submit or cancel payrolls for a department
PAYROLL_ADMIN_CAPABILITIES: FrozenSet[Capability] = frozenset({
    Capability.DEPARTMENT_HEAD,
    Capability.HR_MANAGER,
    Capability.SUPER_ADMIN,
})

# Who may mark an approved payroll as paid
PAYMENT_CAPABILITIES: FrozenSet[Capability] = frozenset({
    Capability.FINANCE_DIRECTOR,
    Capability.SUPER_ADMIN,
})


def required_capability(level: ApprovalLevel) -> Optional[Capability]:
    """Capability needed to act at ``level``; None for DRAFT and COMPLETED."""
    return LEVEL_CAPABILITIES.get(ApprovalLevel(level))


def normalize_title(title: Optional[str]) -> str:
    """Lower-case and collapse whitespace."""
    if not title:
        return ""
    return " ".join(title.lower().split())


def _parse_capabilities(names: Iterable[str], source: str) -> Set[Capability]:
    parsed = set()
    for name in names or ():
        try:
            parsed.add(Capability(str(name).upper()))
        except ValueError:
            logger.warning(f"Ignoring unknown capability '{name}' from {source}")
    return parsed


def capabilities_for_title(title: Optional[str]) -> Set[Capability]:
    """Capabilities granted by a job title."""
    names = settings.position_capabilities.get(normalize_title(title), [])
    return _parse_capabilities(names, f"title '{title}'")


def resolve_capabilities(user: "User") -> FrozenSet[Capability]:
    """All capabilities held by ``user``."""
    held = _parse_capabilities(user.capabilities or [], f"user {user.id}")
    held |= capabilities_for_title(user.position)
    if user.role == UserRole.SUPER_ADMIN:
        held.add(Capability.SUPER_ADMIN)
    return frozenset(held)


def is_hr_department(name: Optional[str]) -> bool:
    return normalize_title(name) in {normalize_title(n) for n in settings.hr_department_names}


def is_finance_department(name: Optional[str]) -> bool:
    return normalize_title(name) in {normalize_title(n) for n in settings.finance_department_names}


@dataclass(frozen=True)
class ActorContext:
    """
    The acting user as seen by the approval workflow.

    Built once per request from the user row and their department so that
    workflow checks stay pure.
    """
    id: uuid.UUID
    department_id: Optional[uuid.UUID] = None
    department_name: Optional[str] = None
    capabilities: FrozenSet[Capability] = field(default_factory=frozenset)
    name: str = ""

    @classmethod
    def from_user(cls, user: "User", department: Optional["Department"] = None) -> "ActorContext":
        return cls(
            id=user.id,
            department_id=user.department_id,
            department_name=department.name if department is not None else None,
            capabilities=resolve_capabilities(user),
            name=user.full_name,
        )

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def has_any(self, capabilities: Iterable[Capability]) -> bool:
        return any(c in self.capabilities for c in capabilities)

    @property
    def in_hr_department(self) -> bool:
        return is_hr_department(self.department_name)

    @property
    def is_hr_head(self) -> bool:
        """HR-department member holding the HR manager capability."""
        return self.in_hr_department and self.has(Capability.HR_MANAGER)
