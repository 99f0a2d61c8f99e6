import json
from datetime import datetime, timedelta, timezone

import pytest

from assessment_engine.auth import INSTRUCTOR, AuthContext
from assessment_engine.errors import GenerationUnavailable
from assessment_engine.schemas.question import AssessmentContext, QuestionSpec
from assessment_engine.services.attempt_service import AttemptService
from assessment_engine.services.gemini_service import GenerationAdapter
from assessment_engine.services.grading_service import GradingService
from assessment_engine.services.question_generation import QuestionGenerationPipeline
from assessment_engine.services.spec_source import StoreSpecSource
from assessment_engine.storage.memory import MemoryStore


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class ScriptedAdapter(GenerationAdapter):
    """Returns queued responses in order; the last one repeats"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class FailingAdapter(GenerationAdapter):
    def __init__(self):
        self.calls = 0

    def generate(self, prompt):
        self.calls += 1
        raise GenerationUnavailable("service down")


def mcq(text, options=None, correct="B"):
    return {
        "type": "multiple_choice",
        "question": text,
        "options": options or ["A", "B", "C", "D"],
        "correct_answer": correct,
    }


def true_false(text, correct=True):
    return {"type": "true_false", "question": text, "options": None, "correct_answer": correct}


def short(text, correct="Model answer"):
    return {"type": "short_answer", "question": text, "options": None, "correct_answer": correct}


def as_response(items, preamble="Here are your questions:\n```json\n", suffix="\n```"):
    return f"{preamble}{json.dumps(items)}{suffix}"


def mc_spec(count=2, options=4, positive=1, negative=0, duration=60):
    return QuestionSpec(
        type="multiple_choice",
        count=count,
        options_per_question=options,
        positive_marks=positive,
        negative_marks=negative,
        duration_per_question_seconds=duration,
    )


def tf_spec(count=1, positive=1, negative=0, duration=30):
    return QuestionSpec(
        type="true_false",
        count=count,
        positive_marks=positive,
        negative_marks=negative,
        duration_per_question_seconds=duration,
    )


def sa_spec(count=1, positive=2, duration=120):
    return QuestionSpec(
        type="short_answer",
        count=count,
        positive_marks=positive,
        duration_per_question_seconds=duration,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore(lock_timeout=5)


@pytest.fixture
def adapter():
    return FailingAdapter()


@pytest.fixture
def pipeline(adapter):
    return QuestionGenerationPipeline(adapter, timeout_seconds=2, default_options=4)


@pytest.fixture
def spec_source(store):
    return StoreSpecSource(store)


@pytest.fixture
def grader():
    return GradingService(question_floor=0, total_floor=0)


@pytest.fixture
def service(store, spec_source, pipeline, grader, clock):
    return AttemptService(
        store=store,
        spec_source=spec_source,
        pipeline=pipeline,
        grader=grader,
        clock=clock,
        max_attempts=1,
    )


@pytest.fixture
def student():
    return AuthContext(user_id="student-1")


@pytest.fixture
def other_student():
    return AuthContext(user_id="student-2")


@pytest.fixture
def instructor():
    return AuthContext(user_id="instructor-1", role=INSTRUCTOR)


@pytest.fixture
def configure(spec_source):
    """Declare specs for an assessment"""

    def _configure(assessment_id, *specs, **context):
        spec_source.save_specs(assessment_id, list(specs), AssessmentContext(**context))

    return _configure
