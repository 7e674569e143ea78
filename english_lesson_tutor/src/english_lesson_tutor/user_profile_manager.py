"""
User Proficiency Source

Read-only access to the student's historical performance data, owned by the
analytics side of the app:

- ``performance_analytics`` rows (one per finished lesson) with the four skill scores
- ``user_profiles.proficiency_level`` as stated by the student

Lookups never fail a turn: errors are logged and reported as "no data" so the
tutor falls back to its defaults.
"""

import logging
from typing import Dict, List, Optional

from english_lesson_tutor.session_state import ProficiencySnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_COLUMNS = "vocabulary_accuracy, grammar_accuracy, pronunciation_score, fluency_score"


class SupabaseProficiencySource:
    """Reads proficiency data through the Supabase client."""

    def __init__(self, supabase_client):
        self.supabase = supabase_client

    async def recent_snapshots(self, user_id: str, limit: int = 5) -> List[ProficiencySnapshot]:
        """
        Get the user's most recent performance snapshots, newest first.

        Args:
            user_id: User UUID
            limit: Maximum number of rows

        Returns:
            Up to ``limit`` snapshots (possibly empty)
        """
        try:
            result = self.supabase.table('performance_analytics') \
                .select(SNAPSHOT_COLUMNS) \
                .eq('user_id', user_id) \
                .order('created_at', desc=True) \
                .limit(limit) \
                .execute()
        except Exception as e:
            logger.warning(f"⚠️ [ProficiencySource] Error loading performance analytics: {e}")
            return []

        return [ProficiencySnapshot.from_row(row) for row in result.data or []]

    async def profile_level(self, user_id: str) -> Optional[str]:
        """Get the proficiency level stored on the user's profile, if any."""
        try:
            result = self.supabase.table('user_profiles') \
                .select('proficiency_level') \
                .eq('id', user_id) \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.warning(f"⚠️ [ProficiencySource] Error loading user profile: {e}")
            return None

        if not result.data:
            return None
        return result.data[0].get('proficiency_level') or None


class InMemoryProficiencySource:
    """Dictionary-backed source for tests and local development."""

    def __init__(
        self,
        snapshots: Optional[Dict[str, List[ProficiencySnapshot]]] = None,
        levels: Optional[Dict[str, str]] = None,
    ):
        # Snapshots per user, oldest first (append order)
        self.snapshots: Dict[str, List[ProficiencySnapshot]] = snapshots or {}
        self.levels: Dict[str, str] = levels or {}

    def record(self, user_id: str, snapshot: ProficiencySnapshot):
        self.snapshots.setdefault(user_id, []).append(snapshot)

    async def recent_snapshots(self, user_id: str, limit: int = 5) -> List[ProficiencySnapshot]:
        history = self.snapshots.get(user_id, [])
        return list(reversed(history))[:limit]

    async def profile_level(self, user_id: str) -> Optional[str]:
        return self.levels.get(user_id)
