from typing import Optional, Protocol, Tuple

from ...domain.feature import Assignment


class AssignmentRepository(Protocol):
    """Protocol for sticky per-user flag assignments."""

    async def get(self, user_id: str, feature_flag_id: int) -> Optional[Assignment]: ...

    async def create_if_absent(
        self, user_id: str, feature_flag_id: int, assigned: bool, reason: str
    ) -> Tuple[Assignment, bool]:
        """Insert the assignment unless one exists.

        Returns the stored row and whether this call inserted it.
        """
        ...
