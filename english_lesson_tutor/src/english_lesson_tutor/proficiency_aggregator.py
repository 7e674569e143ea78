"""
Proficiency Aggregation

Reduces a student's recent performance snapshots into the single profile the
prompt composer adapts to.
"""

import logging
from typing import List, Optional

from english_lesson_tutor.session_state import ProficiencyProfile, ProficiencySnapshot

logger = logging.getLogger(__name__)


class ProficiencyAggregator:
    """
    Averages recent skill scores into a ProficiencyProfile.

    Algorithm:
    - Fetch the last WINDOW_SIZE snapshots (newest first)
    - No snapshots -> every score defaults to DEFAULT_SCORE
    - Otherwise plain mean per score over however many rows exist (no padding)
    - Level: stored profile level, else the lesson's own level
    """

    WINDOW_SIZE = 5
    DEFAULT_SCORE = 0.7

    def __init__(self, source, window_size: Optional[int] = None):
        """
        Args:
            source: Proficiency source exposing ``recent_snapshots`` and ``profile_level``
            window_size: Number of recent snapshots to average
        """
        self.source = source
        self.window_size = window_size or self.WINDOW_SIZE

    async def aggregate(self, user_id: str, session_level: str) -> ProficiencyProfile:
        """
        Build the proficiency profile for a user.

        Args:
            user_id: Owner of the lesson
            session_level: The lesson's level, used when the profile has none

        Returns:
            ProficiencyProfile with every score in [0, 1]
        """
        snapshots = await self.source.recent_snapshots(user_id, limit=self.window_size)
        snapshots = snapshots[:self.window_size]
        stored_level = await self.source.profile_level(user_id)
        level = stored_level or session_level

        if not snapshots:
            logger.info(f"📊 [ProficiencyAggregator] No analytics for user, using defaults (level={level})")
            return self.default_profile(level)

        profile = ProficiencyProfile(
            proficiency_level=level,
            vocabulary_accuracy=self._mean([s.vocabulary_accuracy for s in snapshots]),
            grammar_accuracy=self._mean([s.grammar_accuracy for s in snapshots]),
            pronunciation_score=self._mean([s.pronunciation_score for s in snapshots]),
            fluency_score=self._mean([s.fluency_score for s in snapshots]),
        )
        logger.info(
            f"📊 [ProficiencyAggregator] Averaged {len(snapshots)} snapshots "
            f"(level={level}, overall={profile.overall_score:.2f})"
        )
        return profile

    def default_profile(self, level: str) -> ProficiencyProfile:
        return ProficiencyProfile(
            proficiency_level=level,
            vocabulary_accuracy=self.DEFAULT_SCORE,
            grammar_accuracy=self.DEFAULT_SCORE,
            pronunciation_score=self.DEFAULT_SCORE,
            fluency_score=self.DEFAULT_SCORE,
        )

    @staticmethod
    def _mean(scores: List[float]) -> float:
        avg = sum(scores) / len(scores)
        # Profile scores stay within [0, 1]
        return min(1.0, max(0.0, avg))
