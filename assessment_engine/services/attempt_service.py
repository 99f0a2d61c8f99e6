"""
Attempt lifecycle: start, autosave, lazy expiry, submit

States are active -> submitted | expired. Every mutation of an attempt runs
under that attempt's store lock, so a lazy expiry triggered by a read and a
concurrent submit cannot both finalize it; whichever runs second sees a
terminal attempt and returns the stored result.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, List, Optional

from assessment_engine.auth import STUDENT, AuthContext
from assessment_engine.config import settings
from assessment_engine.errors import (
    AttemptLimitReached,
    AttemptNotActive,
    AttemptNotFound,
    InvalidGrade,
    InvalidQuestionOrder,
    NotAuthorized,
    ResultNotReady,
)
from assessment_engine.schemas.attempt import (
    Answer,
    AnswerResponse,
    Attempt,
    AttemptStatus,
    AttemptSummary,
    QuestionGrading,
    StartResponse,
    StatusResponse,
    SubmissionResponse,
)
from assessment_engine.schemas.question import GeneratedQuestion, QuestionType
from assessment_engine.services.attempt_store import AttemptRepository, active_key, attempt_key, start_lock_key
from assessment_engine.services.grading_service import GradingService
from assessment_engine.services.question_generation import QuestionGenerationPipeline
from assessment_engine.services.spec_source import QuestionSpecSource
from assessment_engine.storage.base import KeyValueStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttemptService:
    """
    Timed attempt state machine

    Remaining time is never stored; it is always end_at - now. Expiry needs
    no scheduler: every read or write first finalizes an attempt whose
    deadline has passed.
    """

    def __init__(
        self,
        store: KeyValueStore,
        spec_source: QuestionSpecSource,
        pipeline: QuestionGenerationPipeline,
        grader: GradingService = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = None
    ):
        self.store = store
        self.repository = AttemptRepository(store)
        self.spec_source = spec_source
        self.pipeline = pipeline
        self.grader = grader or GradingService()
        self.clock = clock
        self.max_attempts = max_attempts or settings.MAX_ATTEMPTS_PER_ASSESSMENT

    # Start / resume

    def start(
        self,
        auth: AuthContext,
        assessment_id: str,
        language: Optional[str] = None
    ) -> StartResponse:
        """
        Start an attempt, or resume the student's active one

        Raises:
            NotConfigured: no question specs for the assessment
            AttemptLimitReached: the student has used every permitted attempt
        """
        if auth.role != STUDENT:
            raise NotAuthorized("Only students can start attempts")
        student_id = auth.user_id

        with self.store.lock(start_lock_key(assessment_id, student_id)):
            resumed = self._resume_active(assessment_id, student_id)
            if resumed is not None:
                return resumed
            return self._create_attempt(assessment_id, student_id, language)

    def _resume_active(self, assessment_id: str, student_id: str) -> Optional[StartResponse]:
        attempt_id = self.repository.get_active_attempt_id(assessment_id, student_id)
        pointer_missing = attempt_id is None
        if pointer_missing:
            attempt_id = self.repository.find_active_in_history(assessment_id, student_id)
            if attempt_id is None:
                return None
            logger.warning(f"Active pointer missing for attempt {attempt_id}; recovered from history")

        with self.store.lock(attempt_key(attempt_id)):
            attempt = self.repository.get_attempt(attempt_id)
            if attempt is None:
                logger.warning(f"Active pointer references missing attempt {attempt_id}")
                self.store.delete(active_key(assessment_id, student_id))
                return None

            now = self.clock()
            attempt = self._expire_if_due(attempt, now)
            if attempt.is_terminal:
                return None
            if pointer_missing:
                self.repository.set_active(attempt)

            questions = self.repository.get_questions(attempt_id)
            answers = self.repository.get_answers(attempt_id)

        logger.info(f"Resuming attempt {attempt_id} for student {student_id}")
        return StartResponse(
            attempt_id=attempt.id,
            attempt_number=attempt.attempt_number,
            questions=[q.public_view() for q in questions],
            remaining_seconds=attempt.remaining_seconds(now),
            resumed=True,
            answers={order: a.answer_text for order, a in answers.items()}
        )

    def _create_attempt(
        self,
        assessment_id: str,
        student_id: str,
        language: Optional[str]
    ) -> StartResponse:
        specs = self.spec_source.get_specs(assessment_id)
        context = self.spec_source.get_context(assessment_id)
        if language:
            context = context.model_copy(update={"language": language})

        previous = self.repository.count_attempts(assessment_id, student_id)
        limit = context.max_attempts or self.max_attempts
        if previous >= limit:
            raise AttemptLimitReached(
                f"Student {student_id} has used {previous} of {limit} attempts"
            )

        attempt_id = uuid.uuid4().hex
        questions = self.pipeline.materialize(attempt_id, specs, context, self.repository)

        # The clock starts after generation so its latency is not charged to the student
        now = self.clock()
        total_duration = sum(q.duration_per_question_seconds for q in questions)
        attempt = Attempt(
            id=attempt_id,
            student_id=student_id,
            assessment_id=assessment_id,
            attempt_number=previous + 1,
            status=AttemptStatus.ACTIVE,
            started_at=now,
            end_at=now + timedelta(seconds=total_duration),
            last_activity=now
        )

        # Pointer first, then history: every counted attempt is resumable
        self.repository.save_attempt(attempt)
        self.repository.set_active(attempt)
        self.repository.add_history(attempt)

        logger.info(
            f"Started attempt {attempt_id} (#{attempt.attempt_number}) for student "
            f"{student_id} on assessment {assessment_id}: {len(questions)} questions, "
            f"{total_duration}s"
        )

        return StartResponse(
            attempt_id=attempt.id,
            attempt_number=attempt.attempt_number,
            questions=[q.public_view() for q in questions],
            remaining_seconds=attempt.remaining_seconds(now),
            resumed=False,
            answers={}
        )

    # Active phase

    def record_answer(
        self,
        auth: AuthContext,
        attempt_id: str,
        question_order: int,
        answer_text: str
    ) -> AnswerResponse:
        """
        Upsert the answer for one question; last write wins

        Raises:
            AttemptNotFound, AttemptNotActive, InvalidQuestionOrder
        """
        with self.store.lock(attempt_key(attempt_id)):
            attempt = self._load(attempt_id)
            auth.require_owner(attempt.student_id)

            now = self.clock()
            attempt = self._expire_if_due(attempt, now)
            if attempt.is_terminal:
                raise AttemptNotActive(f"Attempt {attempt_id} is {attempt.status.value}")

            questions = self.repository.get_questions(attempt_id)
            if not 1 <= question_order <= len(questions):
                raise InvalidQuestionOrder(
                    f"Question {question_order} does not exist (1-{len(questions)})"
                )

            self.repository.save_answer(Answer(
                attempt_id=attempt_id,
                question_order=question_order,
                answer_text=answer_text,
                updated_at=now
            ))
            attempt.last_activity = now
            self.repository.save_attempt(attempt)

        logger.debug(f"Answer saved for question {question_order} in attempt {attempt_id}")
        return AnswerResponse(accepted=True, remaining_seconds=attempt.remaining_seconds(now))

    def check_expiry(self, attempt_id: str) -> Attempt:
        """Finalize the attempt as expired if its deadline has passed"""
        with self.store.lock(attempt_key(attempt_id)):
            attempt = self._load(attempt_id)
            return self._expire_if_due(attempt, self.clock())

    def status(self, auth: AuthContext, attempt_id: str) -> StatusResponse:
        with self.store.lock(attempt_key(attempt_id)):
            attempt = self._load(attempt_id)
            self._authorize_read(auth, attempt)
            now = self.clock()
            attempt = self._expire_if_due(attempt, now)

        return StatusResponse(
            attempt_id=attempt.id,
            status=attempt.status,
            remaining_seconds=attempt.remaining_seconds(now)
        )

    # Terminal transitions

    def submit(self, auth: AuthContext, attempt_id: str) -> SubmissionResponse:
        """
        Submit and score the attempt

        Idempotent: an attempt that is already submitted or expired returns
        its stored result without any further mutation.
        """
        with self.store.lock(attempt_key(attempt_id)):
            attempt = self._load(attempt_id)
            auth.require_owner(attempt.student_id)

            now = self.clock()
            attempt = self._expire_if_due(attempt, now)
            if attempt.is_terminal:
                logger.info(f"Submit on {attempt.status.value} attempt {attempt_id}; returning stored result")
            else:
                attempt = self._finalize(attempt, AttemptStatus.SUBMITTED, now)

        return self._submission_response(attempt)

    def result(self, auth: AuthContext, attempt_id: str) -> SubmissionResponse:
        with self.store.lock(attempt_key(attempt_id)):
            attempt = self._load(attempt_id)
            self._authorize_read(auth, attempt)
            attempt = self._expire_if_due(attempt, self.clock())

        if not attempt.is_terminal:
            raise ResultNotReady(f"Attempt {attempt_id} is still in progress")
        return self._submission_response(attempt)

    def _expire_if_due(self, attempt: Attempt, now: datetime) -> Attempt:
        """Lazy expiry; caller must hold the attempt lock"""
        if attempt.status == AttemptStatus.ACTIVE and now >= attempt.end_at:
            logger.info(f"Attempt {attempt.id} passed its deadline; expiring")
            return self._finalize(attempt, AttemptStatus.EXPIRED, attempt.end_at)
        return attempt

    def _finalize(self, attempt: Attempt, status: AttemptStatus, completed_at: datetime) -> Attempt:
        """Score and persist a terminal transition; caller must hold the attempt lock"""
        self._rescore(attempt)
        attempt.status = status
        attempt.completed_at = completed_at
        self.repository.save_attempt(attempt)
        self.repository.clear_active(attempt)

        logger.info(
            f"Attempt {attempt.id} {status.value}: score {attempt.score}/"
            f"{attempt.result.total_marks}"
        )
        return attempt

    def _rescore(self, attempt: Attempt) -> None:
        """Recompute the full result and write per-answer scores back"""
        questions = self.repository.get_questions(attempt.id)
        answers = self.repository.get_answers(attempt.id)
        result = self.grader.score_attempt(questions, answers)

        for item in result.breakdown:
            answer = answers.get(item.order)
            if answer is not None and answer.score_awarded != item.score_awarded:
                answer.score_awarded = item.score_awarded
                self.repository.save_answer(answer)

        attempt.score = result.score
        attempt.result = result

    # Instructor operations

    def list_attempts(self, auth: AuthContext, assessment_id: str) -> List[AttemptSummary]:
        """All attempts for an assessment, newest first; due attempts are expired on the way"""
        auth.require_staff()

        summaries = []
        for attempt_id in self.repository.list_attempt_ids(assessment_id):
            try:
                attempt = self.check_expiry(attempt_id)
            except AttemptNotFound:
                logger.warning(f"History references missing attempt {attempt_id}")
                continue
            summaries.append(AttemptSummary(
                attempt_id=attempt.id,
                student_id=attempt.student_id,
                attempt_number=attempt.attempt_number,
                status=attempt.status,
                started_at=attempt.started_at,
                completed_at=attempt.completed_at,
                score=float(attempt.score) if attempt.score is not None else None,
                needs_manual_grading=bool(attempt.result and attempt.result.needs_manual_grading)
            ))

        summaries.sort(key=lambda s: s.started_at, reverse=True)
        return summaries

    def apply_manual_grade(
        self,
        auth: AuthContext,
        attempt_id: str,
        question_order: int,
        marks: Decimal
    ) -> SubmissionResponse:
        """
        Record a grader's marks for a short answer and rescore the attempt

        Raises:
            ResultNotReady: the attempt is still active
            InvalidQuestionOrder, InvalidGrade
        """
        auth.require_staff()

        with self.store.lock(attempt_key(attempt_id)):
            attempt = self._load(attempt_id)
            now = self.clock()
            attempt = self._expire_if_due(attempt, now)
            if not attempt.is_terminal:
                raise ResultNotReady(f"Attempt {attempt_id} is still in progress")

            question = self._find_question(attempt_id, question_order)
            if question.type != QuestionType.SHORT_ANSWER:
                raise InvalidGrade(f"Question {question_order} is graded automatically")
            if marks < 0 or marks > question.positive_marks:
                raise InvalidGrade(
                    f"Marks must be between 0 and {question.positive_marks}"
                )

            answer = self.repository.get_answer(attempt_id, question_order) or Answer(
                attempt_id=attempt_id,
                question_order=question_order,
                updated_at=now
            )
            answer.manual_score = marks
            self.repository.save_answer(answer)

            self._rescore(attempt)
            self.repository.save_attempt(attempt)

        logger.info(
            f"Manual grade {marks} applied to question {question_order} of attempt "
            f"{attempt_id} by {auth.user_id}; new score {attempt.score}"
        )
        return self._submission_response(attempt)

    # Helpers

    def _load(self, attempt_id: str) -> Attempt:
        attempt = self.repository.get_attempt(attempt_id)
        if attempt is None:
            raise AttemptNotFound(f"Attempt {attempt_id} not found")
        return attempt

    def _find_question(self, attempt_id: str, question_order: int) -> GeneratedQuestion:
        for question in self.repository.get_questions(attempt_id):
            if question.order == question_order:
                return question
        raise InvalidQuestionOrder(f"Question {question_order} does not exist")

    def _authorize_read(self, auth: AuthContext, attempt: Attempt) -> None:
        if not auth.is_staff:
            auth.require_owner(attempt.student_id)

    def _submission_response(self, attempt: Attempt) -> SubmissionResponse:
        result = attempt.result
        return SubmissionResponse(
            attempt_id=attempt.id,
            status=attempt.status,
            score=float(result.score),
            total_marks=float(result.total_marks),
            score_display=f"{result.score:.1f}/{result.total_marks:.1f}",
            percentage=result.percentage,
            needs_manual_grading=result.needs_manual_grading,
            per_question_breakdown=[
                QuestionGrading(
                    order=item.order,
                    type=item.type,
                    answer_text=item.answer_text,
                    correct_answer=item.correct_answer,
                    score_awarded=float(item.score_awarded),
                    max_score=float(item.max_score),
                    is_correct=item.is_correct,
                    needs_manual_grading=item.needs_manual_grading
                )
                for item in result.breakdown
            ]
        )
