"""
Assessment API endpoints: question specs, preview, starting attempts
"""

from fastapi import APIRouter, Depends
from typing import List, Optional
import logging

from assessment_engine.api.deps import get_attempt_service, get_auth_context, get_spec_source
from assessment_engine.auth import AuthContext
from assessment_engine.schemas.attempt import AttemptSummary, StartRequest, StartResponse
from assessment_engine.schemas.question import PreviewResponse, QuestionSpecsPayload
from assessment_engine.services.attempt_service import AttemptService
from assessment_engine.services.spec_source import StoreSpecSource


router = APIRouter(prefix="/api/assessments", tags=["assessments"])
logger = logging.getLogger(__name__)


@router.put("/{assessment_id}/question-specs", response_model=QuestionSpecsPayload)
def declare_question_specs(
    assessment_id: str,
    payload: QuestionSpecsPayload,
    auth: AuthContext = Depends(get_auth_context),
    spec_source: StoreSpecSource = Depends(get_spec_source),
):
    """
    Declare the question blocks for an assessment

    - Each block: type, count, options, marks, per-question duration
    - Context (title, description, links, language) feeds the generation prompt
    - Frozen once any student has started an attempt
    """
    auth.require_staff()
    spec_source.save_specs(assessment_id, payload.specs, payload.context)
    return payload


@router.get("/{assessment_id}/question-specs", response_model=QuestionSpecsPayload)
def get_question_specs(
    assessment_id: str,
    auth: AuthContext = Depends(get_auth_context),
    spec_source: StoreSpecSource = Depends(get_spec_source),
):
    auth.require_staff()
    specs, context = spec_source.get_config(assessment_id)
    return QuestionSpecsPayload(specs=specs, context=context)


@router.post("/{assessment_id}/preview", response_model=PreviewResponse)
def preview_questions(
    assessment_id: str,
    auth: AuthContext = Depends(get_auth_context),
    service: AttemptService = Depends(get_attempt_service),
):
    """
    Generate a question set with answers for instructor review

    Nothing is persisted and no attempt is created.
    """
    auth.require_staff()
    specs = service.spec_source.get_specs(assessment_id)
    context = service.spec_source.get_context(assessment_id)

    questions, used_fallback = service.pipeline.generate(f"preview-{assessment_id}", specs, context)
    if used_fallback:
        logger.info(f"Preview for assessment {assessment_id} used placeholder questions")

    return PreviewResponse(
        assessment_id=assessment_id,
        questions=questions,
        total_questions=len(questions),
        total_marks=float(sum(q.positive_marks for q in questions)),
        total_duration_seconds=sum(q.duration_per_question_seconds for q in questions),
    )


@router.post("/{assessment_id}/start", response_model=StartResponse)
def start_attempt(
    assessment_id: str,
    request: Optional[StartRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    service: AttemptService = Depends(get_attempt_service),
):
    """
    Start a timed attempt, or resume the active one

    - Generates a fresh question set for the attempt (placeholders if generation fails)
    - Questions are returned without answers
    - Repeated calls return the same attempt with its saved answers
    """
    language = request.language if request else None
    return service.start(auth, assessment_id, language=language)


@router.get("/{assessment_id}/attempts", response_model=List[AttemptSummary])
def list_attempts(
    assessment_id: str,
    auth: AuthContext = Depends(get_auth_context),
    service: AttemptService = Depends(get_attempt_service),
):
    """All attempts for an assessment, newest first"""
    return service.list_attempts(auth, assessment_id)
