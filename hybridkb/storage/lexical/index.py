"""
Lexical Index
=============

BM25 full-text search over the ``kb_fts`` FTS5 table.

Query modes:
- ``prefix``  : all terms required, prefix match on the last term (default)
- ``phrase``  : quoted phrases (or the whole query) matched verbatim
- ``relaxed`` : any term, each as prefix (``"word"* OR "other"*``)

Every term is passed to FTS5 as a quoted string, so user punctuation
(``C++``, ``foo:bar``, ``-x``) can never break the MATCH syntax.

BM25 in SQLite is negative (lower is better); scores returned here are
negated so that higher means more relevant.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import structlog

from hybridkb.storage.metadata.store import MetadataStore

log = structlog.get_logger()

_TRIM_CHARS = "\"'.,;:!?()[]{}"
# Single quotes only delimit a phrase when not used as an apostrophe
_QUOTED = re.compile(r"\"([^\"]+)\"|(?<![\w])'([^']+)'(?![\w])")

DEFAULT_CONTEXT_LEN = 150


class LexicalMode(str, Enum):
    PREFIX = "prefix"
    PHRASE = "phrase"
    RELAXED = "relaxed"


@dataclass
class LexicalHit:
    """One FTS match."""
    chunk_id: str
    document_id: str
    path: str
    title: str
    snippet: str
    score: float
    content: str = ""


def _quote(term: str) -> str:
    return '"' + term.replace('"', '""') + '"'


def _searchable(term: str) -> bool:
    return any(ch.isalnum() for ch in term)


def build_fts_query(query: str, mode: LexicalMode = LexicalMode.PREFIX) -> str:
    """
    Translate a user query into an FTS5 MATCH expression.

    Returns an empty string when nothing searchable remains.

    Example:
        >>> build_fts_query("threat model", LexicalMode.PREFIX)
        '"threat" "model"*'
        >>> build_fts_query("threat model", LexicalMode.RELAXED)
        '"threat"* OR "model"*'
    """
    mode = LexicalMode(mode)

    if mode == LexicalMode.PHRASE:
        phrases = [a or b for a, b in _QUOTED.findall(query)]
        if not phrases:
            phrases = [query]
        parts = [_quote(" ".join(p.split())) for p in phrases if _searchable(p)]
        return " ".join(parts)

    terms = [t.strip(_TRIM_CHARS) for t in query.split()]
    terms = [t for t in terms if _searchable(t)]

    if mode == LexicalMode.RELAXED:
        terms = [t for t in terms if len(t) >= 2]
        return " OR ".join(f"{_quote(t)}*" for t in terms)

    if not terms:
        return ""
    parts = [_quote(t) for t in terms[:-1]]
    parts.append(f"{_quote(terms[-1])}*")
    return " ".join(parts)


def truncate_with_context(content: str, start: int, max_len: int) -> str:
    if start >= len(content):
        return ""
    end = min(start + max_len, len(content))
    snippet = content[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    return snippet


def highlight_snippet(content: str, query: str, context_len: int = DEFAULT_CONTEXT_LEN) -> str:
    """
    Snippet centred on the earliest occurrence of any query term.

    Falls back to the first ``2 * context_len`` characters.
    """
    terms = [t.strip(_TRIM_CHARS) for t in query.lower().split()]
    terms = [t for t in terms if t]
    if not terms:
        return truncate_with_context(content, 0, context_len * 2)

    lowered = content.lower()
    best_pos, best_term = -1, ""
    for term in terms:
        pos = lowered.find(term)
        if pos >= 0 and (best_pos < 0 or pos < best_pos):
            best_pos, best_term = pos, term

    if best_pos < 0:
        return truncate_with_context(content, 0, context_len * 2)

    start = max(best_pos - context_len, 0)
    end = min(best_pos + len(best_term) + context_len, len(content))
    snippet = content[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    return snippet


class LexicalIndex:
    """
    FTS5 searcher backed by the MetadataStore connection.

    Example:
        index = LexicalIndex(store)
        hits = await index.search("kubernetes ingress", limit=10)
        exact = await index.search('"rate limiting"', mode=LexicalMode.PHRASE)
    """

    BM25_WEIGHTS = "1.0, 0.75, 0.5, 0.0"

    def __init__(self, store: MetadataStore, context_len: int = DEFAULT_CONTEXT_LEN):
        self.store = store
        self.context_len = context_len

    async def search(
        self,
        query: str,
        limit: int = 10,
        mode: LexicalMode = LexicalMode.PREFIX,
        source_ids: Optional[Sequence[str]] = None,
        highlight: bool = True,
    ) -> List[LexicalHit]:
        """
        Run a BM25 search.

        Args:
            query: User query text
            limit: Maximum hits
            mode: prefix, phrase or relaxed matching
            source_ids: Restrict to these sources
            highlight: Build a context snippet around the first matched term

        Returns:
            Hits ordered by descending relevance
        """
        fts_query = build_fts_query(query, mode)
        if not fts_query:
            return []
        return await self.match(fts_query, limit=limit, source_ids=source_ids,
                                highlight_query=query if highlight else None)

    async def match(
        self,
        fts_query: str,
        limit: int = 10,
        source_ids: Optional[Sequence[str]] = None,
        highlight_query: Optional[str] = None,
    ) -> List[LexicalHit]:
        """Run a prepared FTS5 MATCH expression."""
        sql = (
            f"SELECT kb_fts.chunk_id AS chunk_id, c.document_id AS document_id, d.path AS path, "
            f"d.title AS title, c.content AS content, "
            f"bm25(kb_fts, {self.BM25_WEIGHTS}) AS bm25_score "
            f"FROM kb_fts "
            f"JOIN kb_chunks c ON c.chunk_id = kb_fts.chunk_id "
            f"JOIN kb_documents d ON d.document_id = c.document_id "
            f"WHERE kb_fts MATCH :query"
        )
        params: Dict[str, Any] = {"query": fts_query, "limit": limit}
        if source_ids:
            sql += " AND d.source_id IN :source_ids"
            params["source_ids"] = list(source_ids)
        sql += " ORDER BY bm25_score ASC, kb_fts.chunk_id ASC LIMIT :limit"

        rows = await self.store.fetch_all(sql, params)

        hits = []
        for row in rows:
            content = row["content"]
            snippet = (
                highlight_snippet(content, highlight_query, self.context_len)
                if highlight_query
                else truncate_with_context(content, 0, self.context_len * 2)
            )
            hits.append(LexicalHit(
                chunk_id=row["chunk_id"],
                document_id=row["document_id"],
                path=row["path"],
                title=row["title"],
                snippet=snippet,
                score=-float(row["bm25_score"]),
                content=content,
            ))

        log.debug(f"Lexical search: {fts_query[:80]} -> {len(hits)} hits")
        return hits

    async def suggest(self, prefix: str, limit: int = 5) -> List[str]:
        """Document titles whose words start with ``prefix``."""
        prefix = prefix.strip(_TRIM_CHARS + " ")
        if not prefix:
            return []
        rows = await self.store.fetch_all(
            "SELECT DISTINCT title FROM kb_fts WHERE kb_fts MATCH :query LIMIT :limit",
            {"query": f"title : {_quote(prefix)}*", "limit": limit},
        )
        return [row["title"] for row in rows if row["title"]]
