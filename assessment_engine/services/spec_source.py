"""
Question spec source

The engine reads an assessment's question blocks and prompt context through
QuestionSpecSource. StoreSpecSource keeps them in the keyed store and freezes
them once any attempt has consumed them.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Tuple

from assessment_engine.errors import NotConfigured, SpecsLocked
from assessment_engine.schemas.question import AssessmentContext, QuestionSpec
from assessment_engine.services.attempt_store import AttemptRepository, key_segment
from assessment_engine.storage.base import KeyValueStore

logger = logging.getLogger(__name__)


def specs_key(assessment_id: str) -> str:
    return f"specs:{key_segment(assessment_id)}"


class QuestionSpecSource(ABC):

    @abstractmethod
    def get_specs(self, assessment_id: str) -> List[QuestionSpec]:
        """
        Raises:
            NotConfigured: the assessment has no question specs
        """
        pass

    @abstractmethod
    def get_context(self, assessment_id: str) -> AssessmentContext:
        pass


class StoreSpecSource(QuestionSpecSource):
    """Question specs persisted beside attempt state"""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.repository = AttemptRepository(store)

    def _load(self, assessment_id: str) -> dict:
        return self.store.get(specs_key(assessment_id)) or {}

    def get_specs(self, assessment_id: str) -> List[QuestionSpec]:
        specs = [QuestionSpec.model_validate(s) for s in self._load(assessment_id).get("specs", [])]
        if not specs:
            raise NotConfigured(f"No question specs configured for assessment {assessment_id}")
        return specs

    def get_context(self, assessment_id: str) -> AssessmentContext:
        context = self._load(assessment_id).get("context")
        return AssessmentContext.model_validate(context) if context else AssessmentContext()

    def get_config(self, assessment_id: str) -> Tuple[List[QuestionSpec], AssessmentContext]:
        return self.get_specs(assessment_id), self.get_context(assessment_id)

    def save_specs(
        self,
        assessment_id: str,
        specs: List[QuestionSpec],
        context: AssessmentContext
    ) -> None:
        """
        Declare the question blocks for an assessment

        Raises:
            SpecsLocked: an attempt has already consumed the current specs
        """
        with self.store.lock(specs_key(assessment_id)):
            if self.repository.has_any_attempt(assessment_id):
                raise SpecsLocked(
                    f"Assessment {assessment_id} has attempts; its question specs are frozen"
                )
            self.store.put(specs_key(assessment_id), {
                "specs": [s.model_dump(mode="json") for s in specs],
                "context": context.model_dump(mode="json"),
            })

        logger.info(
            f"Stored {len(specs)} question blocks for assessment {assessment_id} "
            f"({sum(s.count for s in specs)} questions)"
        )
