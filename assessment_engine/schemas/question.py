"""
Pydantic schemas for question specs and generated questions
"""
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field, model_validator


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    SHORT_ANSWER = "short_answer"
    TRUE_FALSE = "true_false"


OBJECTIVE_TYPES = (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE)

# Supported prompt languages; request validation derives its pattern from these codes
LANGUAGE_NAMES = {
    "en": "English",
    "ur": "Urdu",
    "ar": "Arabic",
    "fa": "Persian",
}
LANGUAGE_PATTERN = "^(" + "|".join(LANGUAGE_NAMES) + ")$"


class QuestionSpec(BaseModel):
    """Instructor-declared block: how many questions of a type, and their marks/timing"""
    type: QuestionType
    count: int = Field(..., gt=0, description="Number of questions to generate")
    options_per_question: Optional[int] = Field(None, ge=2, le=10, description="Options for multiple choice")
    positive_marks: Decimal = Field(Decimal("1"), ge=0)
    negative_marks: Decimal = Field(Decimal("0"), ge=0)
    duration_per_question_seconds: int = Field(120, gt=0)

    @model_validator(mode="after")
    def _options_only_for_multiple_choice(self):
        if self.type != QuestionType.MULTIPLE_CHOICE:
            self.options_per_question = None
        return self

    def option_count(self, default: int) -> Optional[int]:
        """Resolved option count; None for non multiple-choice specs"""
        if self.type != QuestionType.MULTIPLE_CHOICE:
            return None
        return self.options_per_question or default

    @property
    def total_duration_seconds(self) -> int:
        return self.count * self.duration_per_question_seconds


class AssessmentContext(BaseModel):
    """Prompt material describing the assessment"""
    title: str = "Untitled assessment"
    description: str = ""
    reference_links: List[str] = []
    language: str = Field("en", pattern=LANGUAGE_PATTERN)
    max_attempts: Optional[int] = Field(None, ge=1)


class GeneratedQuestion(BaseModel):
    """One concrete question frozen to an attempt"""
    order: int = Field(..., ge=1)
    type: QuestionType
    text: str
    options: Optional[List[str]] = None
    correct_answer: Union[bool, str]
    positive_marks: Decimal
    negative_marks: Decimal
    duration_per_question_seconds: int

    def public_view(self) -> dict:
        """Question as shown to a student, without the answer key"""
        return self.model_dump(mode="json", exclude={"correct_answer"})


class QuestionSpecsPayload(BaseModel):
    """Instructor request declaring an assessment's question blocks"""
    specs: List[QuestionSpec] = Field(..., min_length=1)
    context: AssessmentContext = AssessmentContext()


class PreviewResponse(BaseModel):
    assessment_id: str
    questions: List[GeneratedQuestion]
    total_questions: int
    total_marks: float
    total_duration_seconds: int
