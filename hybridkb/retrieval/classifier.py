"""
Query Classifier
================

Pure, I/O-free intent detection. First match wins:

1. quoted substring             -> exact_quote
2. multi-word proper noun       -> entity
3. interrogative / explanation  -> conceptual
4. year, metric or quantity     -> factual
5. anything else                -> exploratory

Example:
    >>> classify_query('"rate limiting" config').query_type.value
    'exact_quote'
    >>> classify_query("Oak Ridge laboratories").proper_nouns
    ['Oak Ridge']
    >>> classify_query("why does the cache miss").query_type.value
    'conceptual'
"""

import re
from typing import List

from hybridkb.retrieval.models import QueryAnalysis, QueryType

TRIM_CHARS = "\"'.,;:!?()[]{}"

# Function words never treated as part of a proper noun, even capitalized
SKIP_WORDS = frozenset({
    "The", "A", "An", "In", "On", "At", "To", "For", "Of", "And", "Or", "But",
    "Is", "Are", "Was", "Were", "Be", "Been", "Being", "Have", "Has", "Had",
    "Do", "Does", "Did", "Will", "Would", "Could", "Should", "May", "Might",
    "Must", "Can", "What", "Where", "When", "Why", "How", "Who", "Which",
    "That", "This", "These", "Those", "I", "You", "He", "She", "It", "We",
    "They", "My", "Your",
})

_DOUBLE_QUOTED = re.compile(r'"([^"]+)"')
# Single quotes only count when not used as an apostrophe (what's, O'Brien)
_SINGLE_QUOTED = re.compile(r"(?<![\w])'([^']+)'(?![\w])")

CONCEPTUAL_PATTERNS = [
    re.compile(r"^(how|why|what|when|where|who|which)\b", re.IGNORECASE),
    re.compile(r"\b(explain|describe|understand|concept|meaning)\b", re.IGNORECASE),
    re.compile(r"\b(difference|compare|versus|vs\.?)(\s|$)", re.IGNORECASE),
]

FACTUAL_PATTERNS = [
    re.compile(r"\b\d{4}\b"),
    re.compile(r"\b(price|cost|revenue|amount|number)\b", re.IGNORECASE),
    re.compile(r"\b(version|release|date|when was)\b", re.IGNORECASE),
    re.compile(r"\b(how much|how many|percentage|ratio)\b", re.IGNORECASE),
    re.compile(r"\d+(\.\d+)?\s*(%|percent\b|(ms|gb|mb|kb|tb|usd|eur)\b)", re.IGNORECASE),
]


def extract_quoted_phrases(query: str) -> List[str]:
    """Quoted substrings in order of appearance."""
    phrases = [m.group(1).strip() for m in _DOUBLE_QUOTED.finditer(query)]
    phrases += [m.group(1).strip() for m in _SINGLE_QUOTED.finditer(query)]
    return [p for p in phrases if p]


def _is_capitalized(word: str) -> bool:
    return len(word) > 1 and word[0].isupper()


def extract_entities(query: str):
    """
    Proper nouns (>= 2 consecutive capitalized words) and single
    significant capitalized words.

    Returns:
        (proper_nouns, entities); entities include the proper nouns.
    """
    proper_nouns: List[str] = []
    entities: List[str] = []
    current: List[str] = []

    def flush():
        if len(current) >= 2:
            phrase = " ".join(current)
            if phrase not in proper_nouns:
                proper_nouns.append(phrase)
            if phrase not in entities:
                entities.append(phrase)

    for raw in query.split():
        word = raw.strip(TRIM_CHARS)
        if not word:
            continue

        if _is_capitalized(word) and word not in SKIP_WORDS:
            current.append(word)
            if len(word) >= 3 and word not in entities:
                entities.append(word)
        else:
            flush()
            current = []

        # Punctuation after a word ends the sequence ("Paris, Texas")
        if raw and raw[-1] in ",;:.!?)" and current:
            flush()
            current = []

    flush()
    return proper_nouns, entities


def classify_query(query: str) -> QueryAnalysis:
    """Analyze a query and assign its QueryType."""
    quoted = extract_quoted_phrases(query)
    proper_nouns, entities = extract_entities(query)

    analysis = QueryAnalysis(
        query=query,
        query_type=QueryType.EXPLORATORY,
        has_quoted_phrase=bool(quoted),
        quoted_phrases=quoted,
        proper_nouns=proper_nouns,
        entities=entities,
    )

    stripped = query.strip()
    if quoted:
        analysis.query_type = QueryType.EXACT_QUOTE
    elif proper_nouns:
        analysis.query_type = QueryType.ENTITY
    elif any(p.search(stripped) for p in CONCEPTUAL_PATTERNS):
        analysis.query_type = QueryType.CONCEPTUAL
    elif any(p.search(stripped) for p in FACTUAL_PATTERNS):
        analysis.query_type = QueryType.FACTUAL

    return analysis
