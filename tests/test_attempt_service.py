import threading
from decimal import Decimal

import pytest

from assessment_engine.auth import AuthContext
from assessment_engine.errors import (
    AttemptLimitReached,
    AttemptNotActive,
    AttemptNotFound,
    InvalidGrade,
    InvalidQuestionOrder,
    NotAuthorized,
    NotConfigured,
    ResultNotReady,
    SpecsLocked,
)
from assessment_engine.schemas.attempt import AttemptStatus
from assessment_engine.schemas.question import AssessmentContext
from assessment_engine.services.attempt_service import AttemptService
from assessment_engine.services.attempt_store import active_key, history_prefix
from assessment_engine.services.grading_service import GradingService
from assessment_engine.services.question_generation import PLACEHOLDER_ANSWER, QuestionGenerationPipeline
from assessment_engine.services.spec_source import StoreSpecSource
from assessment_engine.storage.memory import MemoryStore

from conftest import ScriptedAdapter, as_response, mc_spec, mcq, sa_spec, tf_spec, true_false


QUIZ = "quiz-1"


@pytest.fixture
def quiz(configure):
    """Two multiple choice (60s each) and one true/false (30s): 150s, 3 marks"""
    configure(QUIZ, mc_spec(count=2, duration=60), tf_spec(count=1, duration=30))
    return QUIZ


class CountingGrader(GradingService):
    def __init__(self):
        super().__init__(question_floor=0, total_floor=0)
        self.calls = 0
        self._calls_lock = threading.Lock()

    def score_attempt(self, questions, answers):
        with self._calls_lock:
            self.calls += 1
        return super().score_attempt(questions, answers)


def snapshot(store):
    return store.list_by_prefix("")


# Start / resume

def test_start_creates_timed_attempt(service, student, quiz, clock):
    started = service.start(student, quiz)

    assert started.resumed is False
    assert started.attempt_number == 1
    assert started.remaining_seconds == 150
    assert [q.order for q in started.questions] == [1, 2, 3]
    assert all("correct_answer" not in q.model_dump() for q in started.questions)

    attempt = service.repository.get_attempt(started.attempt_id)
    assert attempt.status == AttemptStatus.ACTIVE
    assert attempt.started_at == clock.now
    assert (attempt.end_at - attempt.started_at).total_seconds() == 150


def test_failed_generation_still_starts_with_placeholders(service, student, quiz, adapter):
    started = service.start(student, quiz)

    assert adapter.calls == 1
    assert [q.text for q in started.questions] == [
        f"{started.attempt_id}-multiple_choice-1",
        f"{started.attempt_id}-multiple_choice-2",
        f"{started.attempt_id}-true_false-1",
    ]


def test_start_resumes_active_attempt(service, student, quiz, clock, adapter):
    first = service.start(student, quiz)
    clock.advance(30)
    service.record_answer(student, first.attempt_id, 2, "draft")

    second = service.start(student, quiz)

    assert second.attempt_id == first.attempt_id
    assert second.resumed is True
    assert second.remaining_seconds == 120
    assert second.answers == {2: "draft"}
    assert [q.text for q in second.questions] == [q.text for q in first.questions]
    assert adapter.calls == 1


def test_concurrent_starts_create_one_attempt(service, student, quiz):
    results = []

    def worker():
        results.append(service.start(student, quiz).attempt_id)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 6
    assert len(set(results)) == 1
    assert service.repository.count_attempts(quiz, student.user_id) == 1


def test_start_without_specs_is_rejected(service, student):
    with pytest.raises(NotConfigured):
        service.start(student, "unconfigured")

    assert service.repository.count_attempts("unconfigured", student.user_id) == 0


def test_only_students_start_attempts(service, instructor, quiz):
    with pytest.raises(NotAuthorized):
        service.start(instructor, quiz)


def test_dangling_active_pointer_is_discarded(service, student, quiz, store):
    store.put(active_key(quiz, student.user_id), {"attempt_id": "ghost"})

    started = service.start(student, quiz)

    assert started.attempt_id != "ghost"
    assert started.resumed is False


def test_language_override_reaches_prompt(store, spec_source, clock, student, quiz):
    adapter = ScriptedAdapter(as_response([mcq("Q1"), mcq("Q2"), true_false("Q3")]))
    service = AttemptService(
        store=store,
        spec_source=spec_source,
        pipeline=QuestionGenerationPipeline(adapter, timeout_seconds=2, default_options=4),
        clock=clock,
        max_attempts=1,
    )

    started = service.start(student, quiz, language="ur")

    assert "Write all questions in Urdu." in adapter.prompts[0]
    assert [q.text for q in started.questions] == ["Q1", "Q2", "Q3"]


# Active phase

def test_last_write_wins(service, student, quiz):
    attempt_id = service.start(student, quiz).attempt_id

    service.record_answer(student, attempt_id, 1, "first")
    response = service.record_answer(student, attempt_id, 1, "second")

    assert response.accepted is True
    assert service.repository.get_answer(attempt_id, 1).answer_text == "second"
    assert len(service.repository.get_answers(attempt_id)) == 1


@pytest.mark.parametrize("order", [0, 4, 99])
def test_answer_for_missing_question_is_rejected(service, student, quiz, order):
    attempt_id = service.start(student, quiz).attempt_id

    with pytest.raises(InvalidQuestionOrder):
        service.record_answer(student, attempt_id, order, "x")


def test_only_owner_records_answers(service, student, other_student, instructor, quiz):
    attempt_id = service.start(student, quiz).attempt_id

    with pytest.raises(NotAuthorized):
        service.record_answer(other_student, attempt_id, 1, "x")
    with pytest.raises(NotAuthorized):
        service.record_answer(instructor, attempt_id, 1, "x")


def test_unknown_attempt(service, student):
    with pytest.raises(AttemptNotFound):
        service.record_answer(student, "missing", 1, "x")
    with pytest.raises(AttemptNotFound):
        service.submit(student, "missing")


def test_answer_just_before_deadline_is_accepted(service, student, quiz, clock):
    attempt_id = service.start(student, quiz).attempt_id
    clock.advance(149)

    response = service.record_answer(student, attempt_id, 1, "x")

    assert response.remaining_seconds == 1


# Submit

def test_submit_scores_attempt(service, student, quiz, clock):
    attempt_id = service.start(student, quiz).attempt_id
    service.record_answer(student, attempt_id, 1, PLACEHOLDER_ANSWER)
    service.record_answer(student, attempt_id, 2, "wrong")
    service.record_answer(student, attempt_id, 3, "true")
    clock.advance(40)

    result = service.submit(student, attempt_id)

    assert result.status == AttemptStatus.SUBMITTED
    assert result.score == 2.0
    assert result.total_marks == 3.0
    assert result.score_display == "2.0/3.0"
    attempt = service.repository.get_attempt(attempt_id)
    assert attempt.completed_at == clock.now
    assert service.repository.get_answer(attempt_id, 1).score_awarded == Decimal("1")


def test_submit_is_idempotent(service, student, quiz, clock, store):
    attempt_id = service.start(student, quiz).attempt_id
    service.record_answer(student, attempt_id, 3, "true")
    first = service.submit(student, attempt_id)
    before = snapshot(store)
    clock.advance(10)

    second = service.submit(student, attempt_id)

    assert second == first
    assert snapshot(store) == before


def test_answers_rejected_after_submit(service, student, quiz):
    attempt_id = service.start(student, quiz).attempt_id
    service.submit(student, attempt_id)

    with pytest.raises(AttemptNotActive):
        service.record_answer(student, attempt_id, 1, "late")


def test_concurrent_submits_finalize_once(store, spec_source, pipeline, clock, student, quiz):
    grader = CountingGrader()
    service = AttemptService(store, spec_source, pipeline, grader=grader, clock=clock, max_attempts=1)
    attempt_id = service.start(student, quiz).attempt_id
    service.record_answer(student, attempt_id, 3, "true")
    scores = []

    def submitter():
        scores.append(service.submit(student, attempt_id).score)

    def poller():
        service.status(student, attempt_id)

    threads = [threading.Thread(target=submitter) for _ in range(4)]
    threads += [threading.Thread(target=poller) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert grader.calls == 1
    assert scores == [1.0] * 4


def test_submit_does_not_start_next_attempt_automatically(service, student, quiz):
    attempt_id = service.start(student, quiz).attempt_id
    service.submit(student, attempt_id)

    with pytest.raises(AttemptLimitReached):
        service.start(student, quiz)


# Lazy expiry

def test_status_expires_attempt_past_deadline(service, student, quiz, clock, grader):
    attempt_id = service.start(student, quiz).attempt_id
    service.record_answer(student, attempt_id, 1, PLACEHOLDER_ANSWER)
    service.record_answer(student, attempt_id, 3, "no")
    clock.advance(151)

    status = service.status(student, attempt_id)

    assert status.status == AttemptStatus.EXPIRED
    assert status.remaining_seconds == 0
    attempt = service.repository.get_attempt(attempt_id)
    assert attempt.completed_at == attempt.end_at
    expected = grader.score_attempt(
        service.repository.get_questions(attempt_id),
        service.repository.get_answers(attempt_id),
    )
    assert attempt.score == expected.score == Decimal("1")


def test_answer_at_deadline_expires_attempt(service, student, quiz, clock):
    attempt_id = service.start(student, quiz).attempt_id
    service.record_answer(student, attempt_id, 1, PLACEHOLDER_ANSWER)
    clock.advance(150)

    with pytest.raises(AttemptNotActive):
        service.record_answer(student, attempt_id, 2, "too late")

    attempt = service.repository.get_attempt(attempt_id)
    assert attempt.status == AttemptStatus.EXPIRED
    assert attempt.score == Decimal("1")
    assert service.repository.get_answer(attempt_id, 2) is None


def test_submit_after_deadline_returns_expired_result(service, student, quiz, clock):
    attempt_id = service.start(student, quiz).attempt_id
    service.record_answer(student, attempt_id, 3, "true")
    clock.advance(600)

    result = service.submit(student, attempt_id)

    assert result.status == AttemptStatus.EXPIRED
    assert result.score == 1.0


def test_start_after_expiry_respects_limit(service, student, quiz, clock):
    service.start(student, quiz)
    clock.advance(200)

    with pytest.raises(AttemptLimitReached):
        service.start(student, quiz)


def test_start_after_expiry_opens_next_attempt_when_allowed(service, student, configure, clock):
    configure("quiz-2", tf_spec(count=1, duration=30), max_attempts=2)
    first = service.start(student, "quiz-2")
    clock.advance(31)

    second = service.start(student, "quiz-2")

    assert second.attempt_id != first.attempt_id
    assert second.attempt_number == 2
    assert second.resumed is False
    assert service.repository.get_attempt(first.attempt_id).status == AttemptStatus.EXPIRED


# Results

def test_result_requires_terminal_attempt(service, student, quiz):
    attempt_id = service.start(student, quiz).attempt_id

    with pytest.raises(ResultNotReady):
        service.result(student, attempt_id)


def test_result_readable_by_owner_and_staff(service, student, other_student, instructor, quiz):
    attempt_id = service.start(student, quiz).attempt_id
    submitted = service.submit(student, attempt_id)

    assert service.result(student, attempt_id) == submitted
    assert service.result(instructor, attempt_id) == submitted
    with pytest.raises(NotAuthorized):
        service.result(other_student, attempt_id)


# Instructor operations

@pytest.fixture
def essay(configure):
    configure("essay-1", sa_spec(count=1, positive=2), mc_spec(count=1))
    return "essay-1"


def test_manual_grade_rescores_attempt(service, student, instructor, essay):
    attempt_id = service.start(student, essay).attempt_id
    service.record_answer(student, attempt_id, 1, "A thoughtful answer")
    service.record_answer(student, attempt_id, 2, PLACEHOLDER_ANSWER)
    submitted = service.submit(student, attempt_id)
    assert submitted.needs_manual_grading is True
    assert submitted.score == 1.0

    graded = service.apply_manual_grade(instructor, attempt_id, 1, Decimal("1.5"))

    assert graded.score == 2.5
    assert graded.needs_manual_grading is False
    assert graded.status == AttemptStatus.SUBMITTED
    assert service.result(student, attempt_id) == graded
    assert service.repository.get_answer(attempt_id, 1).score_awarded == Decimal("1.5")


def test_manual_grade_of_unanswered_question(service, student, instructor, essay):
    attempt_id = service.start(student, essay).attempt_id
    service.submit(student, attempt_id)

    graded = service.apply_manual_grade(instructor, attempt_id, 1, Decimal("1"))

    assert graded.score == 1.0


def test_manual_grade_validation(service, student, instructor, essay):
    attempt_id = service.start(student, essay).attempt_id

    with pytest.raises(ResultNotReady):
        service.apply_manual_grade(instructor, attempt_id, 1, Decimal("1"))

    service.submit(student, attempt_id)
    with pytest.raises(InvalidGrade):
        service.apply_manual_grade(instructor, attempt_id, 1, Decimal("3"))
    with pytest.raises(InvalidGrade):
        service.apply_manual_grade(instructor, attempt_id, 2, Decimal("1"))
    with pytest.raises(InvalidQuestionOrder):
        service.apply_manual_grade(instructor, attempt_id, 7, Decimal("1"))
    with pytest.raises(NotAuthorized):
        service.apply_manual_grade(student, attempt_id, 1, Decimal("1"))


def test_list_attempts_newest_first_and_expires_due(service, student, other_student, instructor, quiz, clock):
    first = service.start(student, quiz).attempt_id
    clock.advance(5)
    second = service.start(other_student, quiz).attempt_id
    service.submit(other_student, second)
    clock.advance(300)

    summaries = service.list_attempts(instructor, quiz)

    assert [s.attempt_id for s in summaries] == [second, first]
    assert summaries[0].status == AttemptStatus.SUBMITTED
    assert summaries[1].status == AttemptStatus.EXPIRED
    assert summaries[1].score == 0.0


def test_list_attempts_requires_staff(service, student, quiz):
    with pytest.raises(NotAuthorized):
        service.list_attempts(student, quiz)


def test_specs_frozen_after_first_attempt(service, student, configure, quiz):
    configure(quiz, tf_spec(count=2))
    service.start(student, quiz)

    with pytest.raises(SpecsLocked):
        configure(quiz, tf_spec(count=3))


# Key isolation and recovery

def test_colon_in_ids_does_not_leak_across_assessments(service, configure, instructor):
    configure("a", tf_spec())
    configure("a:s1", tf_spec())
    service.start(AuthContext(user_id="x"), "a:s1")

    assert service.list_attempts(instructor, "a") == []
    configure("a", tf_spec(count=2))
    started = service.start(AuthContext(user_id="s1"), "a")

    assert started.attempt_number == 1
    assert len(started.questions) == 2
    assert not history_prefix("a:s1").startswith(history_prefix("a", "s1"))


def test_start_recovers_attempt_without_active_pointer(service, student, quiz, store):
    first = service.start(student, quiz)
    service.record_answer(student, first.attempt_id, 1, "kept")
    store.delete(active_key(quiz, student.user_id))

    second = service.start(student, quiz)

    assert second.attempt_id == first.attempt_id
    assert second.resumed is True
    assert second.answers == {1: "kept"}
    assert service.repository.get_active_attempt_id(quiz, student.user_id) == first.attempt_id


def test_orphaned_attempt_past_deadline_expires_on_start(service, student, quiz, store, clock):
    first = service.start(student, quiz)
    store.delete(active_key(quiz, student.user_id))
    clock.advance(200)

    with pytest.raises(AttemptLimitReached):
        service.start(student, quiz)

    attempt = service.repository.get_attempt(first.attempt_id)
    assert attempt.status == AttemptStatus.EXPIRED
    assert attempt.completed_at == attempt.end_at


class RecordingStore(MemoryStore):
    def __init__(self):
        super().__init__(lock_timeout=5)
        self.writes = []

    def put(self, key, value):
        self.writes.append(key)
        super().put(key, value)


def test_active_pointer_written_before_history(pipeline, clock, student):
    store = RecordingStore()
    spec_source = StoreSpecSource(store)
    spec_source.save_specs(QUIZ, [tf_spec()], AssessmentContext())
    service = AttemptService(store, spec_source, pipeline, clock=clock, max_attempts=1)

    service.start(student, QUIZ)

    active = store.writes.index(active_key(QUIZ, student.user_id))
    history = next(i for i, key in enumerate(store.writes) if key.startswith(history_prefix(QUIZ)))
    assert active < history
