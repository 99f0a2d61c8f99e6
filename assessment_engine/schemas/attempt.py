"""
Pydantic schemas for attempts, answers and scoring results
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from assessment_engine.schemas.question import LANGUAGE_PATTERN, QuestionType


class AttemptStatus(str, Enum):
    ACTIVE = "active"
    SUBMITTED = "submitted"
    EXPIRED = "expired"


TERMINAL_STATUSES = (AttemptStatus.SUBMITTED, AttemptStatus.EXPIRED)


class QuestionResult(BaseModel):
    """Scoring details for a single question"""
    order: int
    type: QuestionType
    answer_text: Optional[str] = None
    correct_answer: Union[bool, str, None] = None
    score_awarded: Decimal
    max_score: Decimal
    is_correct: bool
    needs_manual_grading: bool = False


class ScoreResult(BaseModel):
    """Terminal submission record persisted on the attempt"""
    score: Decimal
    total_marks: Decimal
    percentage: float
    answered_questions: int
    unanswered_questions: int
    needs_manual_grading: bool
    breakdown: List[QuestionResult]


class Answer(BaseModel):
    attempt_id: str
    question_order: int
    answer_text: str = ""
    score_awarded: Decimal = Decimal("0")
    manual_score: Optional[Decimal] = None
    updated_at: datetime

    @property
    def is_blank(self) -> bool:
        return not self.answer_text.strip()


class Attempt(BaseModel):
    id: str
    student_id: str
    assessment_id: str
    attempt_number: int
    status: AttemptStatus = AttemptStatus.ACTIVE
    started_at: datetime
    end_at: datetime
    last_activity: datetime
    completed_at: Optional[datetime] = None
    score: Optional[Decimal] = None
    result: Optional[ScoreResult] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def remaining_seconds(self, now: datetime) -> int:
        """Time left, derived from the stored deadline"""
        if self.is_terminal:
            return 0
        return max(0, int((self.end_at - now).total_seconds()))


# Request/response bodies

class StartRequest(BaseModel):
    language: Optional[str] = Field(None, pattern=LANGUAGE_PATTERN)


class QuestionView(BaseModel):
    """Question as delivered to a student"""
    order: int
    type: QuestionType
    text: str
    options: Optional[List[str]] = None
    positive_marks: float
    negative_marks: float
    duration_per_question_seconds: int


class StartResponse(BaseModel):
    attempt_id: str
    attempt_number: int
    questions: List[QuestionView]
    remaining_seconds: int
    resumed: bool
    answers: Dict[int, str] = {}


class AnswerRequest(BaseModel):
    question_order: int = Field(..., ge=1)
    answer_text: str = Field("", max_length=10000)


class AnswerResponse(BaseModel):
    accepted: bool
    remaining_seconds: int


class StatusResponse(BaseModel):
    attempt_id: str
    status: AttemptStatus
    remaining_seconds: int


class QuestionGrading(BaseModel):
    order: int
    type: QuestionType
    answer_text: Optional[str] = None
    correct_answer: Any = None
    score_awarded: float
    max_score: float
    is_correct: bool
    needs_manual_grading: bool


class SubmissionResponse(BaseModel):
    """Response after an attempt reaches a terminal state"""
    attempt_id: str
    status: AttemptStatus
    score: float
    total_marks: float
    score_display: str  # "8.5/10" format
    percentage: float
    needs_manual_grading: bool
    per_question_breakdown: List[QuestionGrading]


class AttemptSummary(BaseModel):
    attempt_id: str
    student_id: str
    attempt_number: int
    status: AttemptStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    score: Optional[float] = None
    needs_manual_grading: bool = False


class ManualGradeRequest(BaseModel):
    marks: Decimal = Field(..., ge=0)
