# mentra/app/security/access.py
"""
Privacy level derivation and entry access policy.

``determine_privacy_level`` is the only place a privacy level is computed;
the repository calls it every time a sharing flag changes.
"""
from typing import Optional

from mentra.app.models.journal_entry import JournalEntry, PrivacyLevel


def determine_privacy_level(
    is_private: bool,
    is_shareable_with_teacher: bool,
    is_shareable_with_parent: bool,
) -> PrivacyLevel:
    """
    Priority order:
    1. private flag wins over any sharing flag
    2. teacher + parent      → public
    3. teacher only          → teacher_shareable
    4. parent only           → parent_shareable
    5. nothing set           → private (fail safe)
    """
    if is_private:
        return PrivacyLevel.PRIVATE
    if is_shareable_with_teacher and is_shareable_with_parent:
        return PrivacyLevel.PUBLIC
    if is_shareable_with_teacher:
        return PrivacyLevel.TEACHER_SHAREABLE
    if is_shareable_with_parent:
        return PrivacyLevel.PARENT_SHAREABLE
    return PrivacyLevel.PRIVATE


class AccessPolicy:
    """
    Decides who may read or modify an entry.

    Subclass to add teacher-of-student / parent-of-student relationship
    checks; the repository only calls these two methods.
    """

    def can_read(self, entry: JournalEntry, user_id: str, role: Optional[str] = None) -> bool:
        raise NotImplementedError

    def can_modify(self, entry: JournalEntry, user_id: str, role: Optional[str] = None) -> bool:
        return is_owner(entry, user_id)


class OwnerOrNonPrivatePolicy(AccessPolicy):
    """Owner always; any other authenticated user only when the entry is not private."""

    def can_read(self, entry: JournalEntry, user_id: str, role: Optional[str] = None) -> bool:
        if is_owner(entry, user_id):
            return True
        return not entry.is_private


def is_owner(entry: JournalEntry, user_id: str) -> bool:
    return str(entry.student_id) == str(user_id)
