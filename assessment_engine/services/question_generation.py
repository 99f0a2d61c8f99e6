"""
Question generation pipeline: prompt, extract, validate, or fall back

Generated output is accepted only when it matches the requested specs
exactly. Any external failure, timeout, or validation failure is absorbed by
synthesizing a deterministic placeholder set, so an attempt can always start.
"""
import json
import logging
from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict, List, Optional, Tuple

from assessment_engine.config import settings
from assessment_engine.errors import GenerationDegraded, GenerationTimeout, GenerationUnavailable, ValidationMismatch
from assessment_engine.schemas.question import LANGUAGE_NAMES, AssessmentContext, GeneratedQuestion, QuestionSpec, QuestionType
from assessment_engine.services.attempt_store import AttemptRepository
from assessment_engine.services.gemini_service import GenerationAdapter

logger = logging.getLogger(__name__)

PLACEHOLDER_OPTION = "Option placeholder"
PLACEHOLDER_ANSWER = "Placeholder answer"

_TRUE_STRINGS = ("true", "t", "yes", "y", "1")
_FALSE_STRINGS = ("false", "f", "no", "n", "0")


def normalize_bool(value: Any) -> Optional[bool]:
    """Interpret a true/false value; None when it cannot be interpreted"""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _expand_slots(specs: List[QuestionSpec]) -> Dict[QuestionType, List[QuestionSpec]]:
    """Per type, one spec entry per requested question, in declaration order"""
    slots: Dict[QuestionType, List[QuestionSpec]] = defaultdict(list)
    for spec in specs:
        slots[spec.type].extend([spec] * spec.count)
    return slots


def build_generation_prompt(
    specs: List[QuestionSpec],
    context: AssessmentContext,
    default_options: int
) -> str:
    """Create the single structured prompt describing every requested question"""

    totals = Counter()
    for spec in specs:
        totals[spec.type.value] += spec.count
    total = sum(totals.values())

    block_lines = []
    for spec in specs:
        line = f"- {spec.count} {spec.type.value} question(s)"
        if spec.type == QuestionType.MULTIPLE_CHOICE:
            line += f" with EXACTLY {spec.option_count(default_options)} options each"
        line += (
            f", worth {spec.positive_marks} marks each"
            f" ({spec.negative_marks} deducted for a wrong answer),"
            f" {spec.duration_per_question_seconds} seconds per question"
        )
        block_lines.append(line)

    links = "\n".join(f"- {link}" for link in context.reference_links) or "- none"
    language = LANGUAGE_NAMES.get(context.language, "English")
    totals_str = ", ".join(f"{count} {qtype}" for qtype, count in totals.items())

    return f"""
You are an expert educator writing questions for the assessment "{context.title}".

Description: {context.description or "No description provided."}

Reference material:
{links}

Write all questions in {language}.

Generate EXACTLY {total} questions in total ({totals_str}):
{chr(10).join(block_lines)}

Rules:
- "type" must be one of: {", ".join(sorted(totals))}
- multiple_choice: "options" is an array of option strings and "correct_answer" is the exact text of the correct option
- true_false: "correct_answer" is a JSON boolean (true or false) and "options" is null
- short_answer: "correct_answer" is a concise model answer and "options" is null
- Every question text must be unique

Return ONLY a valid JSON array in this exact format (no markdown, no preamble, no commentary):

[
  {{
    "type": "multiple_choice",
    "question": "Question text here?",
    "options": ["Option A", "Option B", "Option C", "Option D"],
    "correct_answer": "Option B"
  }},
  {{
    "type": "true_false",
    "question": "Statement to judge.",
    "options": null,
    "correct_answer": true
  }}
]
"""


def extract_json_array(raw_text: str) -> str:
    """
    Return the first top-level JSON array in raw_text

    Brackets inside string literals are ignored, so surrounding prose and
    markdown fences do not matter.

    Raises:
        ValidationMismatch: no complete array found
    """
    start = raw_text.find("[")
    if start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(raw_text)):
            ch = raw_text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "[":
                depth += 1
            elif ch == "]":
                depth -= 1
                if depth == 0:
                    return raw_text[start:index + 1]
    raise ValidationMismatch("No JSON array found in generated output")


def _question_text(item: Dict[str, Any]) -> Optional[str]:
    text = item.get("question", item.get("text"))
    if isinstance(text, str) and text.strip():
        return text.strip()
    return None


def _build_question(
    order: int,
    item: Dict[str, Any],
    spec: QuestionSpec,
    default_options: int
) -> GeneratedQuestion:
    """Check one item's required fields and bind it to its spec's marks and timing"""
    text = _question_text(item)
    if text is None:
        raise ValidationMismatch(f"Question {order} has no text")

    options = None
    correct = item.get("correct_answer")

    if spec.type == QuestionType.MULTIPLE_CHOICE:
        options = item.get("options")
        expected = spec.option_count(default_options)
        if not isinstance(options, list) or len(options) != expected:
            raise ValidationMismatch(f"Question {order} must have exactly {expected} options")
        if not all(isinstance(o, str) and o.strip() for o in options):
            raise ValidationMismatch(f"Question {order} has an empty or non-text option")
        if not isinstance(correct, str) or not correct.strip():
            raise ValidationMismatch(f"Question {order} has no correct option text")
    elif spec.type == QuestionType.TRUE_FALSE:
        correct = normalize_bool(correct)
        if correct is None:
            raise ValidationMismatch(f"Question {order} needs a boolean correct answer")
    else:
        if not isinstance(correct, str) or not correct.strip():
            raise ValidationMismatch(f"Question {order} has no model answer")

    return GeneratedQuestion(
        order=order,
        type=spec.type,
        text=text,
        options=options,
        correct_answer=correct,
        positive_marks=spec.positive_marks,
        negative_marks=spec.negative_marks,
        duration_per_question_seconds=spec.duration_per_question_seconds,
    )


def validate_generated(
    extracted: str,
    specs: List[QuestionSpec],
    default_options: int
) -> List[GeneratedQuestion]:
    """
    Validate extracted output against the specs

    Checks run in order and stop at the first failure: parseability, types,
    truncation of surplus items, required fields, unique text, exact counts.

    Raises:
        ValidationMismatch: output does not satisfy the specs
    """
    # (a) parseability
    try:
        items = json.loads(extracted)
    except json.JSONDecodeError as e:
        raise ValidationMismatch(f"Generated output is not valid JSON: {str(e)}") from e
    if not isinstance(items, list):
        raise ValidationMismatch("Generated output is not a list of questions")

    # (b) every type drawn from the requested set
    requested = Counter()
    for spec in specs:
        requested[spec.type] += spec.count
    requested_values = {qtype.value for qtype in requested}
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict) or item.get("type") not in requested_values:
            raise ValidationMismatch(f"Question {index} has an unrequested or missing type")

    # (c) truncate surplus instead of failing
    total = sum(requested.values())
    if len(items) > total:
        logger.info(f"Truncating generated questions from {len(items)} to {total}")
        items = items[:total]

    # (d) required fields per type
    slots = _expand_slots(specs)
    seen_per_type = Counter()
    questions = []
    for order, item in enumerate(items, start=1):
        qtype = QuestionType(item["type"])
        type_slots = slots[qtype]
        spec = type_slots[min(seen_per_type[qtype], len(type_slots) - 1)]
        seen_per_type[qtype] += 1
        questions.append(_build_question(order, item, spec, default_options))

    # (e) unique question text
    seen_text = set()
    for question in questions:
        normalized = question.text.casefold()
        if normalized in seen_text:
            raise ValidationMismatch(f"Duplicate question text: {question.text[:80]}")
        seen_text.add(normalized)

    # (f) exact per-type counts
    produced = Counter(q.type for q in questions)
    if produced != requested:
        raise ValidationMismatch(
            f"Per-type counts {dict(produced)} do not match requested {dict(requested)}"
        )

    return questions


def build_fallback_questions(
    seed_id: str,
    specs: List[QuestionSpec],
    default_options: int
) -> List[GeneratedQuestion]:
    """Deterministic placeholder set satisfying the specs exactly"""
    questions = []
    index_per_type = Counter()

    for spec in specs:
        for _ in range(spec.count):
            index_per_type[spec.type] += 1
            options = None
            if spec.type == QuestionType.MULTIPLE_CHOICE:
                options = [PLACEHOLDER_OPTION] * spec.option_count(default_options)
            correct = True if spec.type == QuestionType.TRUE_FALSE else PLACEHOLDER_ANSWER

            questions.append(GeneratedQuestion(
                order=len(questions) + 1,
                type=spec.type,
                text=f"{seed_id}-{spec.type.value}-{index_per_type[spec.type]}",
                options=options,
                correct_answer=correct,
                positive_marks=spec.positive_marks,
                negative_marks=spec.negative_marks,
                duration_per_question_seconds=spec.duration_per_question_seconds,
            ))

    return questions


class QuestionGenerationPipeline:
    """
    Turns question specs into a validated question set

    Strategy:
    - One prompt to the generation adapter, bounded by a timeout
    - Strict validation of the first JSON array in the response
    - Deterministic placeholders whenever generation or validation fails
    """

    def __init__(
        self,
        adapter: GenerationAdapter,
        timeout_seconds: float = None,
        default_options: int = None,
        executor: ThreadPoolExecutor = None
    ):
        self.adapter = adapter
        self.timeout_seconds = timeout_seconds or settings.GENERATION_TIMEOUT_SECONDS
        self.default_options = default_options or settings.DEFAULT_OPTIONS_PER_QUESTION
        self.executor = executor or ThreadPoolExecutor(
            max_workers=settings.GENERATION_MAX_WORKERS,
            thread_name_prefix="question-generation"
        )

    def _call_adapter(self, prompt: str) -> str:
        future = self.executor.submit(self.adapter.generate, prompt)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeout as e:
            future.cancel()
            raise GenerationTimeout(
                f"Generation exceeded {self.timeout_seconds}s"
            ) from e
        except GenerationDegraded:
            raise
        except Exception as e:
            logger.error(f"Generation adapter raised unexpectedly: {str(e)}", exc_info=True)
            raise GenerationUnavailable(str(e)) from e

    def generate(
        self,
        seed_id: str,
        specs: List[QuestionSpec],
        context: AssessmentContext
    ) -> Tuple[List[GeneratedQuestion], bool]:
        """
        Produce a question set for the specs

        Args:
            seed_id: Attempt id (or preview id) encoded into placeholder text
            specs: Instructor-declared question blocks
            context: Title, description, links and language for the prompt

        Returns:
            Tuple of (questions, used_fallback)
        """
        prompt = build_generation_prompt(specs, context, self.default_options)

        try:
            raw_text = self._call_adapter(prompt)
            extracted = extract_json_array(raw_text)
            questions = validate_generated(extracted, specs, self.default_options)
            logger.info(f"Generated {len(questions)} validated questions for {seed_id}")
            return questions, False
        except (GenerationDegraded, ValidationMismatch) as e:
            logger.warning(
                f"Generation degraded for {seed_id} ({type(e).__name__}: {str(e)}); "
                f"using placeholder questions"
            )

        return build_fallback_questions(seed_id, specs, self.default_options), True

    def materialize(
        self,
        attempt_id: str,
        specs: List[QuestionSpec],
        context: AssessmentContext,
        repository: AttemptRepository
    ) -> List[GeneratedQuestion]:
        """Generate and persist the question set for an attempt, replacing any prior set"""
        questions, _ = self.generate(attempt_id, specs, context)
        repository.save_questions(attempt_id, questions)
        return questions
