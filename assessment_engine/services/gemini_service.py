"""
Gemini AI adapter for question generation

The adapter only turns a prompt into raw text. Parsing, validation and the
placeholder fallback live in the question generation pipeline, which treats
every failure raised here as non-fatal.
"""
import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from abc import ABC, abstractmethod
import logging

from assessment_engine.config import settings
from assessment_engine.errors import GenerationTimeout, GenerationUnavailable, MalformedOutput

logger = logging.getLogger(__name__)


class GenerationAdapter(ABC):
    """External content generation service"""

    @abstractmethod
    def generate(self, prompt: str) -> str:
        """
        Generate raw text for a prompt

        Raises:
            GenerationUnavailable, GenerationTimeout, MalformedOutput
        """
        pass


class GeminiService(GenerationAdapter):
    """Generation adapter backed by the Gemini API"""

    def __init__(self, api_key: str = None, model_name: str = None, timeout: float = None):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model_name = model_name or settings.GEMINI_MODEL
        self.timeout = timeout or settings.GENERATION_TIMEOUT_SECONDS
        self.model = None

        if self.api_key:
            genai.configure(api_key=self.api_key)
            self.model = genai.GenerativeModel(self.model_name)
        else:
            logger.warning("GEMINI_API_KEY not set; question generation will use placeholders")

    def generate(self, prompt: str) -> str:
        """
        Send the prompt to Gemini and return the response text

        Args:
            prompt: Full generation prompt

        Returns:
            Raw response text
        """
        if self.model is None:
            raise GenerationUnavailable("Gemini client is not configured")

        try:
            response = self.model.generate_content(
                prompt,
                generation_config={"temperature": 0.7, "max_output_tokens": 8192},
                request_options={"timeout": self.timeout}
            )
        except google_exceptions.DeadlineExceeded as e:
            raise GenerationTimeout(f"Gemini request timed out: {str(e)}") from e
        except google_exceptions.GoogleAPIError as e:
            raise GenerationUnavailable(f"Gemini request failed: {str(e)}") from e

        try:
            text = response.text
        except ValueError as e:
            # Raised when the candidate was blocked or carries no text part
            raise MalformedOutput(f"Gemini returned no text: {str(e)}") from e

        if not text or not text.strip():
            raise MalformedOutput("Gemini returned an empty response")

        logger.info(f"Gemini generated {len(text)} characters with {self.model_name}")
        return text
