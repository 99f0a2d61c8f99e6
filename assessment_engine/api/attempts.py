"""
Attempt API endpoints: autosave, status, submit, results, manual grading
"""

from fastapi import APIRouter, Depends
import logging

from assessment_engine.api.deps import get_attempt_service, get_auth_context
from assessment_engine.auth import AuthContext
from assessment_engine.schemas.attempt import (
    AnswerRequest,
    AnswerResponse,
    ManualGradeRequest,
    StatusResponse,
    SubmissionResponse,
)
from assessment_engine.services.attempt_service import AttemptService


router = APIRouter(prefix="/api/attempts", tags=["attempts"])
logger = logging.getLogger(__name__)


@router.post("/{attempt_id}/answers", response_model=AnswerResponse)
def record_answer(
    attempt_id: str,
    request: AnswerRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: AttemptService = Depends(get_attempt_service),
):
    """
    Autosave one answer

    - Last write for a question wins
    - Rejected with 409 once the attempt is submitted or expired
    - An attempt past its deadline is expired (and scored) by this call
    """
    return service.record_answer(
        auth, attempt_id, request.question_order, request.answer_text
    )


@router.get("/{attempt_id}/status", response_model=StatusResponse)
def attempt_status(
    attempt_id: str,
    auth: AuthContext = Depends(get_auth_context),
    service: AttemptService = Depends(get_attempt_service),
):
    """Current status and remaining time; expires the attempt if its deadline passed"""
    return service.status(auth, attempt_id)


@router.post("/{attempt_id}/submit", response_model=SubmissionResponse)
def submit_attempt(
    attempt_id: str,
    auth: AuthContext = Depends(get_auth_context),
    service: AttemptService = Depends(get_attempt_service),
):
    """
    Submit and score an attempt

    Scoring:
    - Multiple choice / True-False: exact match, negative marks floored
    - Short answer: flagged for manual grading

    Safe to retry: a terminal attempt returns its stored result.
    """
    logger.info(f"Submitting attempt {attempt_id} for user {auth.user_id}")
    return service.submit(auth, attempt_id)


@router.get("/{attempt_id}/result", response_model=SubmissionResponse)
def attempt_result(
    attempt_id: str,
    auth: AuthContext = Depends(get_auth_context),
    service: AttemptService = Depends(get_attempt_service),
):
    """Terminal submission record for a submitted or expired attempt"""
    return service.result(auth, attempt_id)


@router.put("/{attempt_id}/answers/{question_order}/grade", response_model=SubmissionResponse)
def grade_answer(
    attempt_id: str,
    question_order: int,
    request: ManualGradeRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: AttemptService = Depends(get_attempt_service),
):
    """Apply an instructor's marks to a short answer and rescore the attempt"""
    return service.apply_manual_grade(auth, attempt_id, question_order, request.marks)
