"""Retrieval engine for ingest-time chunking and query-time passage selection."""
import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import List

from config import TOP_K, RETRIEVAL_POLICY, RELEVANCE_THRESHOLD
from errors import IngestFailed, InvalidInput
from models.document import Document
from models.passage import Passage, ScoredPassage
from services.chunking_engine import ChunkingEngine
from services.embedding_model import Fingerprinter
from services.vector_store import SimilarityIndex

logger = logging.getLogger(__name__)


class SelectionPolicy(str, enum.Enum):
    """What to do when no passage is actually similar to the query."""
    FALLBACK = "fallback"  # keep the best available passages, mark them weak
    THRESHOLD = "threshold"  # drop passages at or below the relevance threshold


@dataclass
class RetrievalResult:
    """Passages selected for a prompt."""
    passages: List[ScoredPassage] = field(default_factory=list)
    weak: bool = False  # best score was non-positive

    @property
    def top_score(self) -> float:
        return self.passages[0].score if self.passages else 0.0


def select_passages(
    ranked: List[ScoredPassage],
    k: int,
    policy: SelectionPolicy = SelectionPolicy.FALLBACK,
    threshold: float = RELEVANCE_THRESHOLD
) -> RetrievalResult:
    """
    Apply the selection policy to an already ranked list.

    With FALLBACK, the top k passages are always returned; if even the best
    of them scores <= 0 the result is flagged weak so the prompt can say the
    context may not be relevant. Returning something is intentional: grounding
    degrades instead of disappearing.

    With THRESHOLD, only passages scoring above the threshold survive and the
    result may be empty.
    """
    top = ranked[:k]
    if not top:
        return RetrievalResult()

    if policy == SelectionPolicy.THRESHOLD:
        kept = [p for p in top if p.score > threshold]
        if len(kept) < len(top):
            logger.info(
                f"Dropped {len(top) - len(kept)} passages at or below threshold {threshold}"
            )
        return RetrievalResult(passages=kept, weak=False)

    weak = top[0].score <= 0
    if weak:
        logger.info(
            f"Top score {top[0].score:.3f} is non-positive, using best available passages"
        )
    return RetrievalResult(passages=top, weak=weak)


class RetrievalEngine:
    """Orchestrate chunking + fingerprinting at ingest and ranking + selection at query time."""

    def __init__(
        self,
        chunking_engine: ChunkingEngine,
        fingerprinter: Fingerprinter,
        top_k: int = TOP_K,
        policy: SelectionPolicy = SelectionPolicy(RETRIEVAL_POLICY),
        threshold: float = RELEVANCE_THRESHOLD
    ):
        """
        Initialize the retrieval engine.

        Args:
            chunking_engine: Splits document text into passages
            fingerprinter: Embeds passages and queries
            top_k: Default number of passages per query
            policy: Selection policy applied after ranking
            threshold: Score cut-off used by the THRESHOLD policy
        """
        if top_k <= 0:
            raise InvalidInput("top_k must be positive", {"top_k": top_k})

        self.chunking_engine = chunking_engine
        self.fingerprinter = fingerprinter
        self.top_k = top_k
        self.policy = policy
        self.threshold = threshold
        logger.info(f"Initialized RetrievalEngine (top_k={top_k}, policy={policy.value})")

    async def build_document(self, name: str, text: str) -> Document:
        """
        Chunk and fingerprint text into a complete, unpublished Document.

        Nothing is stored here; the caller publishes the returned document in
        one step, so a partially fingerprinted document is never visible.

        Raises:
            IngestFailed: If the text yields no passages
            ProviderUnavailable: If any passage cannot be fingerprinted
        """
        texts = self.chunking_engine.chunk(text)
        if not texts:
            raise IngestFailed(
                f"No usable text found in {name}",
                {"document": name}
            )

        fingerprints = await self.fingerprinter.fingerprint_many(texts)

        document_id = uuid.uuid4().hex
        passages = tuple(
            Passage(
                text=passage_text,
                fingerprint=fingerprint,
                document_id=document_id,
                document_name=name,
                index=idx
            )
            for idx, (passage_text, fingerprint) in enumerate(zip(texts, fingerprints))
        )

        logger.info(f"Built document {name} with {len(passages)} passages")
        return Document(document_id=document_id, name=name, passages=passages)

    async def retrieve(self, query: str, index: SimilarityIndex, top_k: int = None) -> RetrievalResult:
        """
        Retrieve passages for a query from a conversation's index.

        All documents of the conversation share the index, so the ranking is
        global across documents.

        Raises:
            ProviderUnavailable: If the query cannot be fingerprinted
        """
        k = top_k or self.top_k

        if not query or not query.strip():
            logger.warning("Empty query string provided, returning empty results")
            return RetrievalResult()

        if len(index) == 0:
            logger.debug("Index is empty, skipping query fingerprint")
            return RetrievalResult()

        query_fingerprint = await self.fingerprinter.fingerprint(query)
        ranked = index.rank(query_fingerprint, k)
        result = select_passages(ranked, k, self.policy, self.threshold)

        logger.info(
            f"Retrieved {len(result.passages)} passages "
            f"(top score: {result.top_score:.3f}, weak: {result.weak})"
        )
        return result
