"""
Prompt Composer

Turns {topic, level, proficiency profile} into the tutor's system instruction.
Output is fully determined by the inputs.
"""

import math
from typing import List

from english_lesson_tutor.completion_detector import COMPLETION_MARKER
from english_lesson_tutor.session_state import ProficiencyProfile

# A score below this unlocks the skill's remediation clause
WEAK_SKILL_THRESHOLD = 0.6

# Overall-score bands, in percent
LOW_BAND_UPPER = 60
HIGH_BAND_LOWER = 80

FOLLOW_UP_RULE = "End your response with a relevant follow-up question to continue the conversation."
MAX_RESPONSE_WORDS = 150


def as_percent(score: float) -> int:
    """Fraction -> whole percent, rounding halves up."""
    return int(math.floor(score * 100 + 0.5))


class PromptComposer:
    """Builds the adaptive system instruction for one lesson turn."""

    def compose(self, topic: str, level: str, profile: ProficiencyProfile) -> str:
        overall = as_percent(profile.overall_score)

        lines = [
            f"You are an AI English language tutor helping a student with level {level} English.",
            f"The current topic is: {topic}.",
            "",
            "Student proficiency information:",
            f"- Overall proficiency level: {profile.proficiency_level}",
            f"- Vocabulary accuracy: {as_percent(profile.vocabulary_accuracy)}%",
            f"- Grammar accuracy: {as_percent(profile.grammar_accuracy)}%",
            f"- Pronunciation score: {as_percent(profile.pronunciation_score)}%",
            f"- Fluency score: {as_percent(profile.fluency_score)}%",
            f"- Overall accuracy from past lessons: {overall}%",
            "",
            "Adapt your teaching approach based on this information:",
        ]
        lines.extend(self.guidance_clauses(profile))
        lines.append("")
        lines.extend(self.behavior_rules(level))
        return "\n".join(lines)

    def guidance_clauses(self, profile: ProficiencyProfile) -> List[str]:
        """Threshold-gated remediation clauses plus one difficulty band clause."""
        clauses = []
        if profile.grammar_accuracy < WEAK_SKILL_THRESHOLD:
            clauses.append("- The student struggles with grammar. Provide gentle corrections for grammar mistakes.")
        if profile.vocabulary_accuracy < WEAK_SKILL_THRESHOLD:
            clauses.append("- The student has a limited vocabulary. Use simpler words and explain new terms.")
        if profile.pronunciation_score < WEAK_SKILL_THRESHOLD:
            clauses.append("- The student needs help with pronunciation. Occasionally provide pronunciation guidance.")
        if profile.fluency_score < WEAK_SKILL_THRESHOLD:
            clauses.append("- The student is working on fluency. Encourage longer responses.")

        overall = as_percent(profile.overall_score)
        if overall < LOW_BAND_UPPER:
            clauses.append("- The student is struggling. Simplify your language and provide more support.")
        elif overall < HIGH_BAND_LOWER:
            clauses.append("- The student has moderate understanding. Balance corrections with encouragement.")
        else:
            clauses.append(
                "- The student is doing well. You can use more challenging vocabulary and complex sentence structures."
            )
        return clauses

    def behavior_rules(self, level: str) -> List[str]:
        return [
            "Your role is to:",
            "1. Respond to the student in clear, natural English.",
            "2. Provide corrections for any language mistakes in a friendly, encouraging way.",
            f"3. Use vocabulary and grammar appropriate for their level ({level}).",
            f"4. {FOLLOW_UP_RULE}",
            f"5. Keep your responses concise (under {MAX_RESPONSE_WORDS} words).",
            "6. Track progress: If the student has had a meaningful exchange (typically 10-20 messages) "
            "or has demonstrated sufficient mastery of the topic, include a status flag: "
            f"{COMPLETION_MARKER} in JSON format at the very end of your message.",
            "",
            "Avoid:",
            "- Lengthy explanations of grammar rules",
            "- Overwhelming the student with vocabulary beyond their level",
            "- Using idioms or cultural references that might be confusing",
            "",
            "Format your response in a conversational style. "
            "Do not label your corrections or follow-up questions explicitly.",
        ]
