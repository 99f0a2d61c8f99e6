"""
Caller identity passed explicitly into every attempt operation

Authentication happens upstream; the engine trusts the identity it is given
and only checks ownership and role.
"""
from dataclasses import dataclass

from assessment_engine.errors import NotAuthorized

STUDENT = "student"
INSTRUCTOR = "instructor"
ADMIN = "admin"

STAFF_ROLES = (INSTRUCTOR, ADMIN)


@dataclass(frozen=True)
class AuthContext:
    """Verified caller identity"""

    user_id: str
    role: str = STUDENT

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def require_staff(self) -> None:
        if not self.is_staff:
            raise NotAuthorized("Instructor or admin role required")

    def require_owner(self, student_id: str) -> None:
        """Only the student who owns an attempt may act on it"""
        if self.role != STUDENT or self.user_id != student_id:
            raise NotAuthorized("Attempt belongs to another user")
