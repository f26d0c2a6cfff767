"""Question answering over the indexed documents."""
from typing import Optional
import structlog

from pdfqa.errors import InvalidArgument
from pdfqa.rag.composer import Answer, AnswerComposer
from pdfqa.rag.retriever import Retriever

logger = structlog.get_logger()


class QAService:
    """Retrieve, compose and generate for one question at a time.

    Holds no state of its own; the retriever's vector store is the only
    shared mutable object, so independent questions may run concurrently.
    """

    def __init__(self, retriever: Retriever, composer: AnswerComposer):
        self.retriever = retriever
        self.composer = composer

    async def ask(
        self,
        question: str,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> Answer:
        """Answer a question using the most similar indexed chunks.

        Raises:
            InvalidArgument: If top_k <= 0 or the question is blank or too long
            EmbeddingFailed: If the question cannot be embedded
            GenerationFailed: If the answer cannot be generated
        """
        question = (question or "").strip()
        if not question:
            raise InvalidArgument("Question cannot be empty")

        results = await self.retriever.retrieve(question, top_k=top_k, min_score=min_score)

        if not results:
            logger.info("no_relevant_context_found")

        answer = await self.composer.compose(question, results)

        logger.info(
            "question_answered",
            num_contexts=len(answer.contexts),
            dropped_contexts=answer.dropped,
            answer_length=len(answer.text),
        )
        return answer
