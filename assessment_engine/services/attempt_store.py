"""
Attempt repository: typed access to attempt state in the keyed store

Key layout:
    attempt:{attempt_id}                                    Attempt
    questions:{attempt_id}                                  {"questions": [GeneratedQuestion]}
    answer:{attempt_id}:{order:05d}                         Answer
    history:{assessment_id}:{student_id}:{number:05d}       {"attempt_id"}
    active:{assessment_id}:{student_id}                     {"attempt_id"}

Id segments pass through key_segment, so an id containing `:` cannot reach
into another assessment's or student's keys.
"""
import logging
from typing import Dict, List, Optional

from assessment_engine.schemas.attempt import Answer, Attempt
from assessment_engine.schemas.question import GeneratedQuestion
from assessment_engine.storage.base import KeyValueStore

logger = logging.getLogger(__name__)


def key_segment(value: str) -> str:
    """Escape an id for use between `:` separators; `%` first so escapes stay unambiguous"""
    return value.replace("%", "%25").replace(":", "%3A")


def attempt_key(attempt_id: str) -> str:
    return f"attempt:{key_segment(attempt_id)}"


def questions_key(attempt_id: str) -> str:
    return f"questions:{key_segment(attempt_id)}"


def answer_prefix(attempt_id: str) -> str:
    return f"answer:{key_segment(attempt_id)}:"


def answer_key(attempt_id: str, order: int) -> str:
    return f"{answer_prefix(attempt_id)}{order:05d}"


def history_prefix(assessment_id: str, student_id: Optional[str] = None) -> str:
    if student_id is None:
        return f"history:{key_segment(assessment_id)}:"
    return f"history:{key_segment(assessment_id)}:{key_segment(student_id)}:"


def active_key(assessment_id: str, student_id: str) -> str:
    return f"active:{key_segment(assessment_id)}:{key_segment(student_id)}"


def start_lock_key(assessment_id: str, student_id: str) -> str:
    return f"start:{key_segment(assessment_id)}:{key_segment(student_id)}"


class AttemptRepository:
    """Reads and writes attempts, their question sets and answers"""

    def __init__(self, store: KeyValueStore):
        self.store = store

    # Attempts

    def get_attempt(self, attempt_id: str) -> Optional[Attempt]:
        data = self.store.get(attempt_key(attempt_id))
        return Attempt.model_validate(data) if data else None

    def save_attempt(self, attempt: Attempt) -> None:
        self.store.put(attempt_key(attempt.id), attempt.model_dump(mode="json"))

    def get_active_attempt_id(self, assessment_id: str, student_id: str) -> Optional[str]:
        data = self.store.get(active_key(assessment_id, student_id))
        return data["attempt_id"] if data else None

    def set_active(self, attempt: Attempt) -> None:
        self.store.put(
            active_key(attempt.assessment_id, attempt.student_id),
            {"attempt_id": attempt.id}
        )

    def clear_active(self, attempt: Attempt) -> None:
        """Drop the active pointer if it still refers to this attempt"""
        key = active_key(attempt.assessment_id, attempt.student_id)
        data = self.store.get(key)
        if data and data.get("attempt_id") == attempt.id:
            self.store.delete(key)

    def add_history(self, attempt: Attempt) -> None:
        key = f"{history_prefix(attempt.assessment_id, attempt.student_id)}{attempt.attempt_number:05d}"
        self.store.put(key, {"attempt_id": attempt.id})

    def count_attempts(self, assessment_id: str, student_id: str) -> int:
        return len(self.store.list_by_prefix(history_prefix(assessment_id, student_id)))

    def has_any_attempt(self, assessment_id: str) -> bool:
        return bool(self.store.list_by_prefix(history_prefix(assessment_id)))

    def list_attempt_ids(self, assessment_id: str) -> List[str]:
        return [data["attempt_id"] for _, data in self.store.list_by_prefix(history_prefix(assessment_id))]

    def find_active_in_history(self, assessment_id: str, student_id: str) -> Optional[str]:
        """Newest non-terminal attempt in the student's history, for when the active pointer is missing"""
        entries = self.store.list_by_prefix(history_prefix(assessment_id, student_id))
        for _, data in reversed(entries):
            attempt = self.get_attempt(data["attempt_id"])
            if attempt is not None and not attempt.is_terminal:
                return attempt.id
        return None

    # Question sets

    def save_questions(self, attempt_id: str, questions: List[GeneratedQuestion]) -> None:
        """Persist the question set, replacing any previous set for the attempt"""
        self.store.put(
            questions_key(attempt_id),
            {"questions": [q.model_dump(mode="json") for q in questions]}
        )
        logger.info(f"Stored {len(questions)} questions for attempt {attempt_id}")

    def get_questions(self, attempt_id: str) -> List[GeneratedQuestion]:
        data = self.store.get(questions_key(attempt_id))
        if not data:
            return []
        return [GeneratedQuestion.model_validate(q) for q in data["questions"]]

    # Answers

    def get_answer(self, attempt_id: str, order: int) -> Optional[Answer]:
        data = self.store.get(answer_key(attempt_id, order))
        return Answer.model_validate(data) if data else None

    def save_answer(self, answer: Answer) -> None:
        self.store.put(
            answer_key(answer.attempt_id, answer.question_order),
            answer.model_dump(mode="json")
        )

    def get_answers(self, attempt_id: str) -> Dict[int, Answer]:
        """Answers keyed by question order"""
        answers = {}
        for _, data in self.store.list_by_prefix(answer_prefix(attempt_id)):
            answer = Answer.model_validate(data)
            answers[answer.question_order] = answer
        return answers
