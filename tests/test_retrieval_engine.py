"""Unit tests for RetrievalEngine and the passage selection policy."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import numpy as np
import pytest
from errors import IngestFailed, InvalidInput, ProviderUnavailable
from models.passage import Fingerprint, Passage, ScoredPassage
from services.chunking_engine import ChunkingEngine
from services.embedding_model import Fingerprinter
from services.retrieval_engine import RetrievalEngine, SelectionPolicy, select_passages
from services.vector_store import SimilarityIndex

from fakes import FailingEmbeddingProvider, KeywordEmbeddingProvider


def scored(*scores):
    fingerprint = Fingerprint(vector=np.array([1.0]), magnitude=1.0)
    return [
        ScoredPassage(
            passage=Passage(
                text=f"p{i}",
                fingerprint=fingerprint,
                document_id="d",
                document_name="doc.pdf",
                index=i
            ),
            score=score
        )
        for i, score in enumerate(scores)
    ]


class TestSelectPassages:
    """Both branches of the selection policy."""

    def test_fallback_with_positive_scores(self):
        result = select_passages(scored(0.9, 0.5, 0.1), k=2)

        assert [p.passage.text for p in result.passages] == ["p0", "p1"]
        assert result.weak is False
        assert result.top_score == 0.9

    def test_fallback_keeps_best_available_when_nothing_matches(self):
        result = select_passages(scored(0.0, -0.2, -0.5), k=2, policy=SelectionPolicy.FALLBACK)

        assert [p.passage.text for p in result.passages] == ["p0", "p1"]
        assert result.weak is True

    def test_threshold_drops_low_scores(self):
        result = select_passages(scored(0.8, 0.3, 0.1), k=3, policy=SelectionPolicy.THRESHOLD, threshold=0.2)

        assert [p.passage.text for p in result.passages] == ["p0", "p1"]
        assert result.weak is False

    def test_threshold_can_return_nothing(self):
        result = select_passages(scored(0.0, -0.1), k=2, policy=SelectionPolicy.THRESHOLD, threshold=0.0)

        assert result.passages == []
        assert result.top_score == 0.0

    @pytest.mark.parametrize("policy", list(SelectionPolicy))
    def test_empty_ranking(self, policy):
        result = select_passages([], k=5, policy=policy)
        assert result.passages == []
        assert result.weak is False


class TestRetrievalEngine:
    """Test suite for RetrievalEngine class."""

    @pytest.fixture
    def provider(self):
        return KeywordEmbeddingProvider()

    @pytest.fixture
    def engine(self, provider):
        return RetrievalEngine(
            ChunkingEngine(chunk_size=40, chunk_overlap=10),
            Fingerprinter(provider),
            top_k=3
        )

    def test_invalid_top_k(self, provider):
        with pytest.raises(InvalidInput):
            RetrievalEngine(ChunkingEngine(), Fingerprinter(provider), top_k=0)

    @pytest.mark.asyncio
    async def test_build_document(self, engine):
        text = "Apples and bananas grow on trees. " * 4

        document = await engine.build_document("fruit.txt", text)

        assert document.name == "fruit.txt"
        assert document.passage_count == len(engine.chunking_engine.chunk(text))
        assert [p.index for p in document.passages] == list(range(document.passage_count))
        assert all(p.document_id == document.document_id for p in document.passages)
        assert all(p.document_name == "fruit.txt" for p in document.passages)

    @pytest.mark.asyncio
    async def test_build_document_without_text_fails(self, engine, provider):
        with pytest.raises(IngestFailed):
            await engine.build_document("blank.txt", "   \n  ")
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_build_document_propagates_provider_failure(self):
        engine = RetrievalEngine(ChunkingEngine(40, 10), Fingerprinter(FailingEmbeddingProvider()))

        with pytest.raises(ProviderUnavailable):
            await engine.build_document("doc.txt", "python rocket engine " * 5)

    @pytest.mark.asyncio
    async def test_retrieve_ranks_across_documents(self, engine):
        index = SimilarityIndex()
        fruit = await engine.build_document("fruit.txt", "apple banana cherry apple banana")
        space = await engine.build_document("space.txt", "rocket engine rocket engine ocean")
        index.add_document(fruit)
        index.add_document(space)

        result = await engine.retrieve("How does a rocket engine work?", index)

        assert result.passages[0].document_name == "space.txt"
        assert result.passages[0].score > 0
        assert {p.document_name for p in result.passages} == {"fruit.txt", "space.txt"}
        assert result.weak is False

    @pytest.mark.asyncio
    async def test_retrieve_with_no_overlap_falls_back(self, engine):
        index = SimilarityIndex()
        index.add_document(await engine.build_document("fruit.txt", "apple banana cherry"))

        result = await engine.retrieve("Tell me about paris", index)

        assert len(result.passages) == 1
        assert result.weak is True

    @pytest.mark.asyncio
    async def test_retrieve_empty_index_skips_fingerprinting(self, engine, provider):
        result = await engine.retrieve("anything", SimilarityIndex())

        assert result.passages == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_retrieve_empty_query(self, engine):
        result = await engine.retrieve("   ", SimilarityIndex())
        assert result.passages == []

    @pytest.mark.asyncio
    async def test_retrieve_respects_top_k(self, engine):
        index = SimilarityIndex()
        index.add_document(await engine.build_document("long.txt", "python apple " * 60))

        result = await engine.retrieve("python", index, top_k=2)

        assert len(result.passages) == 2
