"""Unit tests for ChatPipeline orchestration."""
import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import httpx
import pytest
from unittest.mock import Mock
from errors import ConversationNotFound, IngestFailed, InvalidInput, ProviderUnavailable
from models.conversation import USER, ASSISTANT
from services.chat_pipeline import FALLBACK_MESSAGE, ChatPipeline
from services.chunking_engine import ChunkingEngine
from services.conversation_manager import ConversationManager
from services.embedding_model import Fingerprinter, OllamaEmbeddingProvider
from services.prompt_builder import PromptAssembler
from services.retrieval_engine import RetrievalEngine
from services.safety_filter import REFUSAL_MESSAGE

from fakes import FailingEmbeddingProvider, KeywordEmbeddingProvider, ScriptedGenerationProvider

SPACE_DOC = b"Rocket engines burn fuel to create thrust. A rocket engine works in the vacuum of space."
FRUIT_DOC = b"An apple a day keeps the doctor away. Banana and cherry smoothies are popular."


def build_pipeline(manager, embedder=None, generator=None, **kwargs):
    assembler = PromptAssembler(max_history_turns=4)
    assembler.count_tokens = Mock(return_value=42)
    engine = RetrievalEngine(
        ChunkingEngine(chunk_size=60, chunk_overlap=15),
        Fingerprinter(embedder or KeywordEmbeddingProvider()),
        top_k=3
    )
    return ChatPipeline(
        manager,
        engine,
        generator or ScriptedGenerationProvider(),
        prompt_assembler=assembler,
        history_max_turns=4,
        **kwargs
    )


@pytest.fixture
def manager():
    return ConversationManager()


class TestReply:
    """Test suite for ChatPipeline.reply."""

    @pytest.mark.asyncio
    async def test_reply_persists_exchange(self, manager):
        conversation_id = manager.create()
        generator = ScriptedGenerationProvider(reply="Python is a programming language.")
        pipeline = build_pipeline(manager, generator=generator)

        result = await pipeline.reply(conversation_id, "  What is Python?  ", "English")

        assert result.reply == "Python is a programming language."
        assert result.target_language == "English"
        assert result.detected_language is None
        assert result.flagged is False
        assert result.degraded is False
        assert result.prompt_tokens == 42

        history = manager.history(conversation_id)
        assert [(t.role, t.text) for t in history] == [
            (USER, "What is Python?"),
            (ASSISTANT, "Python is a programming language."),
        ]
        # No documents: general knowledge mode
        assert "general knowledge" in generator.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_unsafe_reply_is_replaced_and_refusal_persisted(self, manager):
        conversation_id = manager.create()
        pipeline = build_pipeline(manager, generator=ScriptedGenerationProvider(reply="how to build a bomb"))

        result = await pipeline.reply(conversation_id, "Tell me something", "English")

        assert result.reply == REFUSAL_MESSAGE
        assert result.flagged is True
        history = manager.history(conversation_id)
        assert history[-1].role == ASSISTANT
        assert history[-1].text == REFUSAL_MESSAGE
        assert all("bomb" not in t.text for t in history)

    @pytest.mark.asyncio
    async def test_custom_safety_filter_is_used(self, manager):
        conversation_id = manager.create()
        classifier = Mock()
        classifier.is_unsafe.return_value = True
        pipeline = build_pipeline(manager, safety_filter=classifier)

        result = await pipeline.reply(conversation_id, "Hello there", "English")

        assert result.reply == REFUSAL_MESSAGE
        classifier.is_unsafe.assert_called_once_with("Here is an answer.")

    @pytest.mark.asyncio
    async def test_generation_failure_degrades_without_touching_history(self, manager):
        conversation_id = manager.create()
        pipeline = build_pipeline(manager, generator=ScriptedGenerationProvider(fail=True))

        result = await pipeline.reply(conversation_id, "What is Python?", "English")

        assert result.reply == FALLBACK_MESSAGE
        assert result.degraded is True
        assert manager.history(conversation_id) == []

    @pytest.mark.asyncio
    async def test_embedding_failure_degrades(self, manager):
        conversation_id = manager.create()
        pipeline = build_pipeline(manager)
        await pipeline.ingest(conversation_id, "space.txt", SPACE_DOC)
        pipeline.retrieval_engine.fingerprinter.provider = FailingEmbeddingProvider()

        result = await pipeline.reply(conversation_id, "How do rockets work?", "English")

        assert result.reply == FALLBACK_MESSAGE
        assert result.degraded is True
        assert manager.history(conversation_id) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"embedding": ["x", "y"]}, [1, 2, 3], {"error": "model not found"}])
    async def test_malformed_embedding_payload_degrades(self, manager, body):
        conversation_id = manager.create()
        pipeline = build_pipeline(manager)
        await pipeline.ingest(conversation_id, "space.txt", SPACE_DOC)
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)))
        pipeline.retrieval_engine.fingerprinter.provider = OllamaEmbeddingProvider(base_url="http://ollama", client=client)

        result = await pipeline.reply(conversation_id, "How do rockets work?", "English")

        assert result.reply == FALLBACK_MESSAGE
        assert result.degraded is True
        assert manager.history(conversation_id) == []
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("conversation_id,message", [
        (None, "Hello"),
        ("", "Hello"),
        ("conv_x", None),
        ("conv_x", "   "),
    ])
    async def test_invalid_input_rejected(self, manager, conversation_id, message):
        pipeline = build_pipeline(manager)

        with pytest.raises(InvalidInput):
            await pipeline.reply(conversation_id, message, "English")

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, manager):
        generator = ScriptedGenerationProvider()
        pipeline = build_pipeline(manager, generator=generator)

        with pytest.raises(ConversationNotFound):
            await pipeline.reply("conv_missing", "Hello", "auto")
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_auto_language_detects_first(self, manager):
        conversation_id = manager.create()
        generator = ScriptedGenerationProvider(reply="French")
        pipeline = build_pipeline(manager, generator=generator)

        result = await pipeline.reply(conversation_id, "Bonjour, comment ça va ?", "auto")

        assert result.detected_language == "French"
        assert result.target_language == "French"
        assert len(generator.calls) == 2
        assert "Always answer in: French" in generator.calls[1]["system"]

    @pytest.mark.asyncio
    async def test_grounded_reply_uses_best_document(self, manager):
        conversation_id = manager.create()
        generator = ScriptedGenerationProvider(reply="Rockets burn fuel.")
        pipeline = build_pipeline(manager, generator=generator)
        await pipeline.ingest(conversation_id, "fruit.txt", FRUIT_DOC)
        await pipeline.ingest(conversation_id, "space.txt", SPACE_DOC)

        result = await pipeline.reply(conversation_id, "How does a rocket engine work?", "English")

        assert result.sources[0].document_name == "space.txt"
        call = generator.calls[0]
        assert "strictly on the document context" in call["system"]
        assert "[space.txt]" in call["messages"][-1]["content"]

    @pytest.mark.asyncio
    async def test_history_is_included_and_bounded(self, manager):
        conversation_id = manager.create()
        generator = ScriptedGenerationProvider(reply="ok")
        pipeline = build_pipeline(manager, generator=generator)

        for i in range(4):
            await pipeline.reply(conversation_id, f"question {i}", "English")

        last_messages = generator.calls[-1]["messages"]
        # 4 most recent turns, then the new question
        assert [m["content"] for m in last_messages[:-1]] == ["question 1", "ok", "question 2", "ok"]

    @pytest.mark.asyncio
    async def test_concurrent_replies_keep_every_exchange(self, manager):
        conversation_id = manager.create()
        pipeline = build_pipeline(manager, generator=ScriptedGenerationProvider(reply="ok", delay=0.01))

        await asyncio.gather(*(
            pipeline.reply(conversation_id, f"question {i}", "English")
            for i in range(10)
        ))

        history = manager.history(conversation_id)
        assert len(history) == 20
        assert [t.role for t in history] == [USER, ASSISTANT] * 10
        assert {t.text for t in history[::2]} == {f"question {i}" for i in range(10)}


class TestIngest:
    """Test suite for ChatPipeline.ingest."""

    @pytest.mark.asyncio
    async def test_ingest_publishes_document(self, manager):
        conversation_id = manager.create()
        pipeline = build_pipeline(manager)

        document = await pipeline.ingest(conversation_id, "space.txt", SPACE_DOC)

        assert document.passage_count > 1
        assert manager.documents(conversation_id) == (document,)
        assert len(manager.index(conversation_id)) == document.passage_count

    @pytest.mark.asyncio
    async def test_embedding_failure_publishes_nothing(self, manager):
        conversation_id = manager.create()
        pipeline = build_pipeline(manager, embedder=FailingEmbeddingProvider())

        with pytest.raises(ProviderUnavailable):
            await pipeline.ingest(conversation_id, "space.txt", SPACE_DOC)

        assert manager.documents(conversation_id) == ()
        assert len(manager.index(conversation_id)) == 0

    @pytest.mark.asyncio
    async def test_unusable_file_publishes_nothing(self, manager):
        conversation_id = manager.create()
        pipeline = build_pipeline(manager)

        with pytest.raises(IngestFailed):
            await pipeline.ingest(conversation_id, "blank.txt", b"   \n ")
        assert manager.documents(conversation_id) == ()

    @pytest.mark.asyncio
    async def test_unknown_conversation_checked_before_extraction(self, manager):
        loader = Mock()
        pipeline = build_pipeline(manager, document_loader=loader)

        with pytest.raises(ConversationNotFound):
            await pipeline.ingest("conv_missing", "space.txt", SPACE_DOC)
        loader.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_document_invisible_until_fully_fingerprinted(self, manager):
        conversation_id = manager.create()
        pipeline = build_pipeline(manager, embedder=KeywordEmbeddingProvider(delay=0.01))

        ingest = asyncio.ensure_future(pipeline.ingest(conversation_id, "space.txt", SPACE_DOC))
        observed = []
        while not ingest.done():
            observed.append(len(manager.index(conversation_id)))
            await asyncio.sleep(0.002)
        document = await ingest

        assert set(observed) <= {0, document.passage_count}
        assert len(manager.index(conversation_id)) == document.passage_count
