"""Tests for prompt assembly and answer generation."""
import pytest

from conftest import FakeGenerator
from pdfqa.errors import GenerationFailed, InvalidArgument, InvalidConfiguration
from pdfqa.rag.composer import AnswerComposer
from pdfqa.rag.retriever import RetrievalResult


def result(n: int, source_id: str = "doc.pdf", score: float = None) -> RetrievalResult:
    return RetrievalResult(
        chunk_id=f"{source_id}:{n}",
        score=1.0 - n / 10 if score is None else score,
        content=f"context number {n} " + "x" * 80,
        source_id=source_id,
    )


@pytest.fixture
def results():
    return [result(0), result(1, source_id="other.pdf"), result(2)]


def test_prompt_keeps_retrieval_order(generator, results):
    plan = AnswerComposer(generator, max_prompt_chars=10_000).build_prompt("What is it?", results)

    positions = [plan.prompt.index(f"context number {n}") for n in range(3)]
    assert positions == sorted(positions)
    assert "[Source 1: doc.pdf]" in plan.prompt
    assert "[Source 2: other.pdf]" in plan.prompt
    assert plan.prompt.index("Question: What is it?") > positions[-1]
    assert plan.included == results
    assert plan.dropped == 0


def test_drops_least_similar_chunks_to_fit(generator, results):
    roomy = AnswerComposer(generator, max_prompt_chars=10_000)
    budget = len(roomy.build_prompt("Why?", results[:2]).prompt)

    plan = AnswerComposer(generator, max_prompt_chars=budget).build_prompt("Why?", results)

    assert plan.included == results[:2]
    assert plan.dropped == 1
    assert len(plan.prompt) <= budget
    assert "context number 2" not in plan.prompt


def test_question_is_never_truncated(generator, results):
    question = "Explain " + "very " * 40 + "carefully?"
    composer = AnswerComposer(generator, max_prompt_chars=len(question) + 200)

    plan = composer.build_prompt(question, results)

    assert plan.included == []
    assert plan.dropped == 3
    assert question in plan.prompt


def test_question_larger_than_budget_is_rejected(generator, results):
    composer = AnswerComposer(generator, max_prompt_chars=50)

    with pytest.raises(InvalidArgument):
        composer.build_prompt("q" * 100, results)


def test_prompt_without_context(generator):
    plan = AnswerComposer(generator).build_prompt("Anything?", [])

    assert "No relevant context" in plan.prompt
    assert "Question: Anything?" in plan.prompt


def test_invalid_budget(generator):
    with pytest.raises(InvalidConfiguration):
        AnswerComposer(generator, max_prompt_chars=0)


async def test_compose_returns_answer(generator, results):
    answer = await AnswerComposer(generator, max_prompt_chars=10_000).compose("What?", results)

    assert answer.text == "canned answer"
    assert answer.contexts == results
    assert answer.sources == ["doc.pdf", "other.pdf"]
    assert generator.prompts and "Question: What?" in generator.prompts[0]

    payload = answer.to_dict()
    assert payload["answer"] == "canned answer"
    assert payload["num_contexts"] == 3
    assert [c["chunk_id"] for c in payload["contexts"]] == ["doc.pdf:0", "other.pdf:1", "doc.pdf:2"]


async def test_generation_failure_surfaces(failing_generator, results):
    with pytest.raises(GenerationFailed, match="model offline"):
        await AnswerComposer(failing_generator).compose("What?", results)


async def test_unexpected_generator_error_becomes_generation_failed(results):
    composer = AnswerComposer(FakeGenerator(error=TimeoutError("slow")))

    with pytest.raises(GenerationFailed):
        await composer.compose("What?", results)
