"""
Attempt scoring
MCQ / True-False: exact match with positive and negative marks
Short answer: flagged for manual grading
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from assessment_engine.config import settings
from assessment_engine.schemas.attempt import Answer, QuestionResult, ScoreResult
from assessment_engine.schemas.question import GeneratedQuestion, QuestionType
from assessment_engine.services.question_generation import normalize_bool

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class GradingService:
    """
    Service for scoring attempts

    Strategy:
    - Multiple choice: case-sensitive exact match on option text
    - True/False: boolean-normalized match
    - Short answer: needs manual grading; scores zero until overridden

    Scoring is a pure recomputation over the full answer set, so it can be
    rerun at any time (for example after a manual grade) with no drift.
    """

    def __init__(self, question_floor: float = None, total_floor: float = None):
        self.question_floor = Decimal(str(
            settings.SCORE_FLOOR_PER_QUESTION if question_floor is None else question_floor
        ))
        self.total_floor = Decimal(str(
            settings.SCORE_FLOOR_TOTAL if total_floor is None else total_floor
        ))

    def score_attempt(
        self,
        questions: List[GeneratedQuestion],
        answers: Dict[int, Answer]
    ) -> ScoreResult:
        """
        Score a complete attempt

        Args:
            questions: Frozen question set of the attempt
            answers: Stored answers keyed by question order

        Returns:
            ScoreResult with per-question breakdown
        """
        breakdown = []
        total_score = ZERO
        total_marks = ZERO
        answered = 0

        for question in questions:
            answer = answers.get(question.order)
            answer_text = answer.answer_text if answer else None
            if answer is not None and not answer.is_blank:
                answered += 1

            score, is_correct, needs_manual = self._grade_question(question, answer)

            total_score += score
            total_marks += question.positive_marks

            breakdown.append(QuestionResult(
                order=question.order,
                type=question.type,
                answer_text=answer_text,
                correct_answer=question.correct_answer,
                score_awarded=score,
                max_score=question.positive_marks,
                is_correct=is_correct,
                needs_manual_grading=needs_manual
            ))

        total_score = max(total_score, self.total_floor)
        percentage = float(total_score / total_marks * 100) if total_marks > 0 else 0.0

        result = ScoreResult(
            score=total_score,
            total_marks=total_marks,
            percentage=round(percentage, 2),
            answered_questions=answered,
            unanswered_questions=len(questions) - answered,
            needs_manual_grading=any(item.needs_manual_grading for item in breakdown),
            breakdown=breakdown
        )

        logger.info(
            f"Attempt scored: {total_score}/{total_marks}, "
            f"answered {answered}/{len(questions)}, manual={result.needs_manual_grading}"
        )

        return result

    def _grade_question(
        self,
        question: GeneratedQuestion,
        answer: Optional[Answer]
    ) -> Tuple[Decimal, bool, bool]:
        """
        Grade one question

        Returns:
            Tuple of (score_awarded, is_correct, needs_manual_grading)
        """
        if question.type == QuestionType.SHORT_ANSWER:
            return self._grade_short_answer(question, answer)

        if answer is None or answer.is_blank:
            return ZERO, False, False

        if question.type == QuestionType.MULTIPLE_CHOICE:
            is_correct = self._match_multiple_choice(question, answer.answer_text)
        elif question.type == QuestionType.TRUE_FALSE:
            is_correct = self._match_true_false(question, answer.answer_text)
        else:
            is_correct = None

        if is_correct is None:
            # Unscorable item: leave it to a human grader
            return ZERO, False, True

        if is_correct:
            return question.positive_marks, True, False

        penalty = max(-question.negative_marks, self.question_floor)
        return min(penalty, ZERO), False, False

    def _match_multiple_choice(self, question: GeneratedQuestion, answer_text: str) -> Optional[bool]:
        if not isinstance(question.correct_answer, str):
            return None
        return answer_text == question.correct_answer

    def _match_true_false(self, question: GeneratedQuestion, answer_text: str) -> Optional[bool]:
        correct = normalize_bool(question.correct_answer)
        if correct is None:
            return None
        return normalize_bool(answer_text) == correct

    def _grade_short_answer(
        self,
        question: GeneratedQuestion,
        answer: Optional[Answer]
    ) -> Tuple[Decimal, bool, bool]:
        """Manual score if a grader supplied one; otherwise zero and flagged"""
        if answer is not None and answer.manual_score is not None:
            score = min(answer.manual_score, question.positive_marks)
            return score, score >= question.positive_marks, False

        if answer is None or answer.is_blank:
            return ZERO, False, False

        return ZERO, False, True


# Global instance
grading_service = GradingService()
