"""
Shared FastAPI dependencies: caller identity and service wiring
"""
from functools import lru_cache
from typing import Optional

from fastapi import Header, HTTPException

from assessment_engine.auth import AuthContext, STUDENT
from assessment_engine.services.attempt_service import AttemptService
from assessment_engine.services.gemini_service import GeminiService
from assessment_engine.services.grading_service import grading_service
from assessment_engine.services.question_generation import QuestionGenerationPipeline
from assessment_engine.services.spec_source import StoreSpecSource
from assessment_engine.storage import KeyValueStore, build_store


def get_auth_context(
    x_user_id: Optional[str] = Header(None),
    x_user_role: str = Header(STUDENT)
) -> AuthContext:
    """
    Identity forwarded by the authenticating gateway

    The gateway has already verified the caller; these headers are trusted.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing caller identity")
    return AuthContext(user_id=x_user_id, role=x_user_role.lower())


@lru_cache()
def get_store() -> KeyValueStore:
    return build_store()


@lru_cache()
def get_spec_source() -> StoreSpecSource:
    return StoreSpecSource(get_store())


@lru_cache()
def get_attempt_service() -> AttemptService:
    return AttemptService(
        store=get_store(),
        spec_source=get_spec_source(),
        pipeline=QuestionGenerationPipeline(GeminiService()),
        grader=grading_service
    )
