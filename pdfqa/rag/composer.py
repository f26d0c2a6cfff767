"""Prompt assembly and answer generation.

Context blocks are added most-similar first. When the prompt would exceed
the size budget, blocks are dropped from the least-similar end; the
question itself is never shortened.
"""
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
import structlog

from pdfqa import config
from pdfqa.errors import GenerationFailed, InvalidArgument, InvalidConfiguration
from pdfqa.llm_client import Generator
from pdfqa.rag.retriever import RetrievalResult

logger = structlog.get_logger()

PROMPT_HEADER = "Use the following context to answer the question."
NO_CONTEXT_HEADER = (
    "No relevant context was found in the indexed documents. "
    "Say so if you cannot answer the question."
)
PROMPT_FOOTER = "Answer concisely using the context above."


@dataclass
class PromptPlan:
    """A built prompt and the retrieval results that made it in."""

    prompt: str
    included: List[RetrievalResult]
    dropped: int


@dataclass
class Answer:
    """Generated answer with the context it was grounded on."""

    question: str
    text: str
    contexts: List[RetrievalResult] = field(default_factory=list)
    dropped: int = 0

    @property
    def sources(self) -> List[str]:
        """Unique source ids, in the order they were used."""
        return list(dict.fromkeys(r.source_id for r in self.contexts))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "answer": self.text,
            "sources": self.sources,
            "num_contexts": len(self.contexts),
            "dropped_contexts": self.dropped,
            "contexts": [r.to_dict() for r in self.contexts],
        }


def _format_block(position: int, result: RetrievalResult) -> str:
    return f"[Source {position}: {result.source}]\n{result.content.strip()}"


class AnswerComposer:
    """Builds bounded prompts and delegates generation."""

    def __init__(self, generator: Generator, max_prompt_chars: Optional[int] = None):
        """Initialize the composer.

        Args:
            generator: Generation capability
            max_prompt_chars: Prompt size budget in characters (default from config)
        """
        self.generator = generator
        self.max_prompt_chars = (
            config.MAX_PROMPT_CHARS if max_prompt_chars is None else max_prompt_chars
        )

        if self.max_prompt_chars <= 0:
            raise InvalidConfiguration(
                f"max_prompt_chars must be positive, got {self.max_prompt_chars}"
            )

    def _render(self, question: str, blocks: List[str]) -> str:
        if not blocks:
            return f"{NO_CONTEXT_HEADER}\n\nQuestion: {question}\n"
        context = "\n\n".join(blocks)
        return (
            f"{PROMPT_HEADER}\n\n"
            f"Context:\n{context}\n\n"
            f"Question: {question}\n"
            f"{PROMPT_FOOTER}"
        )

    def build_prompt(self, question: str, results: List[RetrievalResult]) -> PromptPlan:
        """Build a prompt that fits the size budget.

        Args:
            question: User question (never truncated)
            results: Retrieved chunks, most similar first

        Returns:
            PromptPlan with the prompt and the results it includes

        Raises:
            InvalidArgument: If the question alone does not fit the budget
        """
        blocks = [_format_block(i, r) for i, r in enumerate(results, 1)]
        keep = len(blocks)

        prompt = self._render(question, blocks)
        while len(prompt) > self.max_prompt_chars and keep > 0:
            keep -= 1
            prompt = self._render(question, blocks[:keep])

        if len(prompt) > self.max_prompt_chars:
            raise InvalidArgument(
                f"Question is too long for the prompt budget "
                f"({len(prompt)} > {self.max_prompt_chars} characters)"
            )

        dropped = len(results) - keep
        if dropped:
            logger.info(
                "context_trimmed",
                kept=keep,
                dropped=dropped,
                prompt_length=len(prompt),
            )

        return PromptPlan(prompt=prompt, included=list(results[:keep]), dropped=dropped)

    async def compose(self, question: str, results: List[RetrievalResult]) -> Answer:
        """Build the prompt and generate an answer.

        Raises:
            InvalidArgument: If the question alone does not fit the budget
            GenerationFailed: If the generator errors or times out
        """
        plan = self.build_prompt(question, results)

        logger.info(
            "generation_started",
            num_contexts=len(plan.included),
            prompt_length=len(plan.prompt),
        )

        try:
            text = await self.generator.generate(plan.prompt)
        except GenerationFailed as e:
            logger.error("generation_failed", error=str(e))
            raise
        except Exception as e:
            logger.error(
                "generation_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GenerationFailed(f"Generation failed: {e}") from e

        return Answer(
            question=question,
            text=text,
            contexts=plan.included,
            dropped=plan.dropped,
        )
