"""
KAG Searcher
============

Entity-level search over the knowledge graph.

Pipeline:
1. Lexical entity search (always available): tokenized LIKE over name and
   description, re-ranked by match quality and confidence
2. Semantic entity search (when vectors + embeddings are configured)
3. Weighted RRF of the two lists, x1.2 for entities both found
4. Relations touching the entities, optionally widened by graph traversal
5. Markdown context for LLM consumption

Also exposes ``search_chunks`` so the hybrid retrieval engine can use
entities as an extra strategy (entities mapped back to their source chunks).
"""

import re
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from hybridkb.errors import InvalidMaxHopsError, KAGDisabledError
from hybridkb.kag.config import ExtractionConfig
from hybridkb.kag.models import MAX_HOPS, KAGSearchRequest, KAGSearchResult
from hybridkb.models import Entity, Relation
from hybridkb.retrieval.models import StrategyHit
from hybridkb.retrieval.postprocess import create_snippet
from hybridkb.storage.graph.base import GraphStore
from hybridkb.storage.metadata.store import MetadataStore
from hybridkb.storage.vectors.store import VectorIndex

log = structlog.get_logger()

ENTITY_RRF_K = 60
LEXICAL_WEIGHT = 0.5
SEMANTIC_WEIGHT = 0.5
AGREEMENT_BOOST = 1.2
MIN_CANDIDATES = 50
RELATION_LIMIT = 50
CONTEXT_MAX_ENTITIES = 10
CONTEXT_MAX_RELATIONS = 15
CONTEXT_DESCRIPTION_LEN = 100
RELATED_LIMIT = 20

STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "has", "he",
    "in", "is", "it", "its", "of", "on", "or", "that", "the", "to", "was", "were",
    "will", "with", "this", "these", "those", "what", "which", "who", "whom", "how",
    "about", "into", "through", "during", "before", "after", "above", "below",
    "between", "under",
    "summary", "details", "information", "explain", "describe", "list", "show",
    "find", "get",
})

_NON_TOKEN = re.compile(r"[^a-z0-9\-\s]")


def tokenize_query(query: str) -> List[str]:
    """
    Meaningful search terms: lowercase, ``[a-z0-9-]`` only, no stopwords,
    no 1-2 char words unless they look like acronyms, deduplicated.

    >>> tokenize_query("Threat model summary")
    ['threat', 'model']
    """
    words = _NON_TOKEN.sub(" ", (query or "").lower()).split()
    tokens: List[str] = []
    seen = set()
    for word in words:
        if word in STOPWORDS or word in seen:
            continue
        if len(word) <= 2 and not (len(word) == 2 and word.isalpha()):
            continue
        seen.add(word)
        tokens.append(word)
    return tokens


def match_score(entity: Entity, tokens: Sequence[str]) -> float:
    """
    Match quality of an entity against query tokens.

    Per token: exact name 1.0, name prefix 0.8, name substring 0.6,
    description 0.3. Scaled by ``0.5 + 0.5 * coverage`` and combined with
    entity confidence as ``0.7 * match + 0.3 * confidence``.
    """
    if not tokens:
        return entity.confidence

    name = entity.name.lower()
    description = entity.description.lower()
    score = 0.0
    matched = 0
    for token in tokens:
        if name == token:
            token_score = 1.0
        elif name.startswith(token):
            token_score = 0.8
        elif token in name:
            token_score = 0.6
        elif token in description:
            token_score = 0.3
        else:
            continue
        matched += 1
        score += token_score

    if matched:
        score *= 0.5 + 0.5 * (matched / len(tokens))
    return 0.7 * score + 0.3 * entity.confidence


def fuse_entities(
    lexical: Sequence[Entity],
    semantic: Sequence[Entity],
    k: int = ENTITY_RRF_K,
) -> List[Tuple[Entity, float]]:
    """Weighted RRF over two ranked entity lists."""
    lexical_ranks = {e.id: i + 1 for i, e in enumerate(lexical)}
    semantic_ranks = {e.id: i + 1 for i, e in enumerate(semantic)}

    by_id: Dict[str, Entity] = {}
    for entity in list(lexical) + list(semantic):
        by_id.setdefault(entity.id, entity)

    scored = []
    for entity_id, entity in by_id.items():
        score = 0.0
        if entity_id in lexical_ranks:
            score += LEXICAL_WEIGHT / (k + lexical_ranks[entity_id])
        if entity_id in semantic_ranks:
            score += SEMANTIC_WEIGHT / (k + semantic_ranks[entity_id])
        if entity_id in lexical_ranks and entity_id in semantic_ranks:
            score *= AGREEMENT_BOOST
        scored.append((entity, score))

    scored.sort(key=lambda item: (-item[1], item[0].id))
    return scored


def format_context(query: str, entities: Sequence[Entity], relations: Sequence[Relation]) -> str:
    """Render entities and relations as LLM-friendly markdown."""
    if not entities:
        return f"No entities found matching query: {query}"

    lines = [f"Knowledge Graph Results for: {query}", "", "## Entities"]
    for i, entity in enumerate(entities):
        if i >= CONTEXT_MAX_ENTITIES:
            lines.append(f"... and {len(entities) - CONTEXT_MAX_ENTITIES} more entities")
            break
        line = f"- **{entity.name}** ({entity.entity_type.value})"
        if entity.description:
            description = entity.description
            if len(description) > CONTEXT_DESCRIPTION_LEN:
                description = description[:CONTEXT_DESCRIPTION_LEN] + "..."
            line += f": {description}"
        lines.append(line)

    if relations:
        lines.append("")
        lines.append("## Relationships")
        for i, relation in enumerate(relations):
            if i >= CONTEXT_MAX_RELATIONS:
                lines.append(f"... and {len(relations) - CONTEXT_MAX_RELATIONS} more relationships")
                break
            lines.append(f"- {relation.subject_name} → {relation.predicate.value} → {relation.object_name}")

    return "\n".join(lines) + "\n"


class KAGSearcher:
    """
    Graph-aware entity search.

    Semantic entity search and graph traversal are optional; without them
    the searcher runs lexical-only over the metadata store.

    Example:
        searcher = KAGSearcher(store, vector_index, embedder, graph)
        result = await searcher.search(KAGSearchRequest(query="threat model summary"))
        print(result.context)
    """

    def __init__(
        self,
        store: MetadataStore,
        vector_index: Optional[VectorIndex] = None,
        embedder=None,
        graph: Optional[GraphStore] = None,
        config: Optional[ExtractionConfig] = None,
    ):
        self.store = store
        self.vector_index = vector_index
        self.embedder = embedder
        self.graph = graph
        self.config = config or ExtractionConfig()

    @property
    def semantic_available(self) -> bool:
        return self.vector_index is not None and self.embedder is not None

    @property
    def graph_available(self) -> bool:
        return self.graph is not None and self.graph.is_connected

    # ------------------------------------------------------------------
    # Entity search
    # ------------------------------------------------------------------

    async def _lexical_entities(
        self,
        query: str,
        entity_hints: Sequence[str],
        limit: int,
        source_ids: Optional[Sequence[str]] = None,
    ) -> List[Entity]:
        tokens = tokenize_query(query)
        params: Dict[str, Any] = {}
        conditions = []

        if entity_hints:
            for i, hint in enumerate(entity_hints):
                conditions.append(f"LOWER(e.name) LIKE :hint{i}")
                params[f"hint{i}"] = f"%{hint.lower()}%"
        elif tokens:
            for i, token in enumerate(tokens):
                conditions.append(f"LOWER(e.name) LIKE :tok{i}")
                conditions.append(f"LOWER(e.description) LIKE :tok{i}")
                params[f"tok{i}"] = f"%{token}%"
        else:
            conditions.append("LOWER(e.name) LIKE :raw OR LOWER(e.description) LIKE :raw")
            params["raw"] = f"%{query.lower()}%"

        sql = (
            "SELECT e.* FROM kb_entities e "
            "LEFT JOIN kb_documents d ON e.source_document_id = d.document_id "
            f"WHERE ({' OR '.join(conditions)})"
        )
        if source_ids:
            sql += " AND d.source_id IN :source_ids"
            params["source_ids"] = list(source_ids)
        sql += " ORDER BY e.confidence DESC LIMIT :limit"
        params["limit"] = limit

        candidates = [self.store.row_to_entity(row) for row in await self.store.fetch_all(sql, params)]
        if tokens and candidates:
            candidates.sort(key=lambda e: (-match_score(e, tokens), e.id))
        return candidates

    async def _semantic_entities(
        self,
        query: str,
        limit: int,
        source_ids: Optional[Sequence[str]] = None,
    ) -> List[Entity]:
        vector = await self.embedder.embed_async(query)
        hits = await self.vector_index.query(
            vector,
            limit=limit,
            source_ids=source_ids,
            collection=self.vector_index.config.entity_collection,
        )
        if not hits:
            return []

        # Vector payloads carry no chunk linkage; load the authoritative rows
        rows = await self.store.fetch_all(
            "SELECT * FROM kb_entities WHERE entity_id IN :ids",
            {"ids": [hit.id for hit in hits]},
        )
        by_id = {row["entity_id"]: self.store.row_to_entity(row) for row in rows}
        return [by_id[hit.id] for hit in hits if hit.id in by_id]

    async def search_entities(
        self,
        query: str,
        entity_hints: Sequence[str] = (),
        limit: int = 20,
        source_ids: Optional[Sequence[str]] = None,
    ) -> Tuple[List[Tuple[Entity, float]], bool]:
        """
        Ranked entities for a query.

        Returns:
            ([(entity, score)], semantic_used)
        """
        candidate_limit = max(limit * 3, MIN_CANDIDATES)

        try:
            lexical = await self._lexical_entities(query, entity_hints, candidate_limit, source_ids)
        except Exception as e:
            log.warning("Lexical entity search failed", error=str(e))
            lexical = []

        semantic: List[Entity] = []
        if self.semantic_available:
            try:
                semantic = await self._semantic_entities(query, candidate_limit, source_ids)
            except Exception as e:
                log.warning("Semantic entity search failed, using lexical only", error=str(e))

        if not semantic:
            tokens = tokenize_query(query)
            ranked = [(e, match_score(e, tokens)) for e in lexical]
        elif not lexical:
            ranked = [(e, e.confidence) for e in semantic]
        else:
            ranked = fuse_entities(lexical, semantic)

        return ranked[:limit], bool(semantic)

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    async def get_relations(self, entity_ids: Sequence[str], limit: int = RELATION_LIMIT) -> List[Relation]:
        """Relations whose subject or object is one of ``entity_ids``, names resolved."""
        if not entity_ids:
            return []
        rows = await self.store.fetch_all(
            "SELECT DISTINCT r.relation_id, r.subject_id, r.predicate, r.object_id, r.confidence, "
            "r.source_chunk_id, r.source_document_id, "
            "COALESCE(se.name, r.subject_id) AS subject_name, "
            "COALESCE(oe.name, r.object_id) AS object_name "
            "FROM kb_relations r "
            "LEFT JOIN kb_entities se ON r.subject_id = se.entity_id "
            "LEFT JOIN kb_entities oe ON r.object_id = oe.entity_id "
            "WHERE r.subject_id IN :ids OR r.object_id IN :ids "
            "ORDER BY r.confidence DESC, r.relation_id LIMIT :limit",
            {"ids": list(entity_ids), "limit": limit},
        )
        return [
            Relation(
                id=row["relation_id"],
                subject_id=row["subject_id"],
                predicate=row["predicate"],
                object_id=row["object_id"],
                confidence=row["confidence"],
                source_chunk_id=row["source_chunk_id"] or "",
                source_document_id=row["source_document_id"] or "",
                subject_name=row["subject_name"],
                object_name=row["object_name"],
            )
            for row in rows
        ]

    async def _expand(self, entity_ids: Sequence[str], max_hops: int) -> Dict[str, int]:
        if not self.graph_available or not entity_ids:
            return {}
        try:
            return await self.graph.traverse(entity_ids, max_hops=max_hops, limit=RELATION_LIMIT)
        except Exception as e:
            log.warning("Graph traversal failed, continuing without", error=str(e))
            return {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(self, request: KAGSearchRequest) -> KAGSearchResult:
        """
        Search the knowledge graph.

        Raises:
            KAGDisabledError: KAG is disabled in configuration
        """
        if not self.config.enabled:
            raise KAGDisabledError()

        start = time.perf_counter()
        source_ids = [request.source_id] if request.source_id else None
        ranked, semantic_used = await self.search_entities(
            request.query, request.entity_hints, request.limit, source_ids
        )
        entities = [entity for entity, _ in ranked]

        relations: List[Relation] = []
        graph_used = False
        if request.include_relations and entities:
            ids = [e.id for e in entities]
            reached = await self._expand(ids, request.max_hops)
            graph_used = bool(reached)
            try:
                relations = await self.get_relations(ids + [i for i in reached if i not in ids])
            except Exception as e:
                log.warning("Failed to get relations, continuing without", error=str(e))

        result = KAGSearchResult(
            query=request.query,
            entities=entities,
            relations=relations,
            context=format_context(request.query, entities, relations),
            total_entities=len(entities),
            scores={entity.id: score for entity, score in ranked},
            semantic_used=semantic_used,
            graph_used=graph_used,
            elapsed_ms=(time.perf_counter() - start) * 1000,
        )
        log.debug(
            "KAG search completed",
            query=request.query[:80],
            entities=len(entities),
            relations=len(relations),
            semantic=semantic_used,
            graph=graph_used,
        )
        return result

    async def search_chunks(
        self,
        query: str,
        limit: int = 10,
        source_ids: Optional[Sequence[str]] = None,
    ) -> List[StrategyHit]:
        """
        Chunks that matching entities were extracted from, best entity first.

        Used as the ``entity`` strategy of hybrid retrieval.
        """
        ranked, _ = await self.search_entities(query, limit=limit * 2, source_ids=source_ids)

        chunk_scores: Dict[str, float] = {}
        for entity, score in ranked:
            if entity.source_chunk_id and entity.source_chunk_id not in chunk_scores:
                chunk_scores[entity.source_chunk_id] = score
        if not chunk_scores:
            return []

        chunks = await self.store.get_chunks(list(chunk_scores))
        hits: List[StrategyHit] = []
        for chunk_id, score in chunk_scores.items():
            chunk = chunks.get(chunk_id)
            if chunk is None:
                continue
            if source_ids and chunk.source_id not in source_ids:
                continue
            hits.append(StrategyHit(
                chunk_id=chunk.chunk_id,
                document_id=chunk.document_id,
                path=chunk.path,
                title=chunk.title,
                snippet=create_snippet(chunk.content),
                score=score,
                rank=len(hits) + 1,
                content=chunk.content,
            ))
            if len(hits) >= limit:
                break
        return hits

    async def get_entity_by_name(self, name: str) -> Optional[Entity]:
        """Exact (case-insensitive) name match first, then substring; highest confidence wins."""
        row = await self.store.fetch_one(
            "SELECT * FROM kb_entities "
            "WHERE LOWER(name) = :name OR LOWER(name) LIKE :pattern "
            "ORDER BY CASE WHEN LOWER(name) = :name THEN 0 ELSE 1 END, confidence DESC "
            "LIMIT 1",
            {"name": name.lower(), "pattern": f"%{name.lower()}%"},
        )
        return self.store.row_to_entity(row) if row else None

    async def get_related_entities(self, entity_id: str, max_hops: int = 1) -> List[Entity]:
        """
        Entities within ``max_hops`` of ``entity_id``, nearest first.

        Uses the graph store when connected, else direct neighbours from
        the relations table.

        Raises:
            InvalidMaxHopsError: max_hops outside 1..3
        """
        if max_hops < 1 or max_hops > MAX_HOPS:
            raise InvalidMaxHopsError(max_hops, MAX_HOPS)

        if self.graph_available:
            reached = await self.graph.traverse([entity_id], max_hops=max_hops, limit=RELATED_LIMIT)
        else:
            rows = await self.store.fetch_all(
                "SELECT subject_id, object_id FROM kb_relations "
                "WHERE subject_id = :id OR object_id = :id",
                {"id": entity_id},
            )
            reached = {}
            for row in rows:
                for neighbor in (row["subject_id"], row["object_id"]):
                    if neighbor != entity_id:
                        reached[neighbor] = 1

        if not reached:
            return []
        rows = await self.store.fetch_all(
            "SELECT * FROM kb_entities WHERE entity_id IN :ids",
            {"ids": list(reached)},
        )
        entities = [self.store.row_to_entity(row) for row in rows]
        entities.sort(key=lambda e: (reached.get(e.id, MAX_HOPS + 1), -e.confidence, e.id))
        return entities[:RELATED_LIMIT]

    async def get_stats(self) -> Dict[str, Any]:
        entities = await self.store.fetch_one("SELECT COUNT(*) AS n FROM kb_entities")
        relations = await self.store.fetch_one("SELECT COUNT(*) AS n FROM kb_relations")
        entity_types = await self.store.fetch_all(
            "SELECT entity_type, COUNT(*) AS n FROM kb_entities GROUP BY entity_type"
        )
        relation_types = await self.store.fetch_all(
            "SELECT predicate, COUNT(*) AS n FROM kb_relations GROUP BY predicate"
        )
        return {
            "total_entities": entities["n"],
            "total_relations": relations["n"],
            "entity_types": {row["entity_type"]: row["n"] for row in entity_types},
            "relation_types": {row["predicate"]: row["n"] for row in relation_types},
            "graph_db_connected": self.graph_available,
            "semantic_search_available": self.semantic_available,
        }
