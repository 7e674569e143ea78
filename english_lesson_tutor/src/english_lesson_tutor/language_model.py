"""
Language model call used by the turn orchestrator.

Accepts a system instruction plus the ordered role-tagged transcript and
returns the raw completion text.
"""

import logging
from typing import Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from english_lesson_tutor.config import TutorConfig
from english_lesson_tutor.errors import GenerationFailed

logger = logging.getLogger(__name__)


class LanguageModel:
    """Thin wrapper over the OpenAI chat completions API."""

    def __init__(self, config: Optional[TutorConfig] = None, client: Optional[AsyncOpenAI] = None):
        self.config = config or TutorConfig.from_env()
        if client is None:
            if not self.config.openai_api_key:
                raise ValueError("OPENAI_API_KEY not found in environment variables")
            client = AsyncOpenAI(api_key=self.config.openai_api_key)
        self.llm_client = client
        self.model = self.config.openai_model

    async def generate(self, instruction: str, messages: List[Dict[str, str]]) -> str:
        """
        Generate the tutor's next reply.

        Args:
            instruction: System prompt
            messages: Transcript as [{"role": "user"|"assistant", "content": ...}], oldest first

        Returns:
            Completion text

        Raises:
            GenerationFailed: on transport/API errors or an unusable response
        """
        payload = [{"role": "system", "content": instruction}, *messages]
        try:
            response = await self.llm_client.chat.completions.create(
                model=self.model,
                messages=payload,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except OpenAIError as e:
            logger.error(f"❌ [LanguageModel] Completion request failed: {e}")
            raise GenerationFailed() from e

        if not response.choices:
            logger.error("❌ [LanguageModel] Completion returned no choices")
            raise GenerationFailed("Language model returned no choices")

        content = response.choices[0].message.content
        if not content or not content.strip():
            logger.error("❌ [LanguageModel] Completion returned empty content")
            raise GenerationFailed("Language model returned an empty reply")
        return content
