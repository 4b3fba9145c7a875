from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

Category = Literal["pricing", "features", "comparison", "facts", "opinions", "news"]
Priority = Literal["high", "medium", "low"]
ConfidenceTier = Literal["high", "medium", "low"]
Importance = Literal["critical", "important", "nice-to-have"]
GapKind = Literal["unanswered", "low-confidence", "single-source", "conflict"]

CATEGORIES: tuple[str, ...] = ("pricing", "features", "comparison", "facts", "opinions", "news")
PRIORITIES: tuple[str, ...] = ("high", "medium", "low")
TIER_RANK: dict[str, int] = {"high": 3, "medium": 2, "low": 1}

FactValue = str | float | int | None


@dataclass(frozen=True, slots=True)
class SubQuestion:
    id: str
    question: str
    category: Category
    priority: Priority
    search_query: str


@dataclass(frozen=True, slots=True)
class SearchOptions:
    max_results: int = 10
    time_range: str | None = None


@dataclass(slots=True)
class SearchResult:
    url: str
    title: str
    snippet: str
    position: int
    query: str
    sub_question_id: str | None = None


@dataclass(slots=True)
class TableData:
    headers: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    context: str = ""


@dataclass(slots=True)
class ExtractedContent:
    url: str
    title: str
    domain: str
    main_content: str
    word_count: int
    fetched_at: datetime
    tables: list[TableData] = field(default_factory=list)
    lists: list[list[str]] = field(default_factory=list)
    headings: list[str] = field(default_factory=list)
    publish_date: datetime | None = None
    last_modified: datetime | None = None
    sub_question_id: str | None = None


@dataclass(slots=True)
class ExtractedFact:
    claim: str
    context: str
    source_url: str
    confidence: float
    category: str
    value: FactValue = None
    sub_question_id: str | None = None


@dataclass(slots=True)
class SourceEvaluation:
    url: str
    domain: str
    authority_score: int
    recency_score: int
    relevance_score: int
    overall_score: int
    content: ExtractedContent
    extracted_facts: list[ExtractedFact] = field(default_factory=list)


@dataclass(slots=True)
class SourceReference:
    url: str
    domain: str
    title: str
    authority_score: int
    exact_quote: str | None = None


@dataclass(slots=True)
class VerifiedFact:
    claim: str
    sources: list[SourceReference]
    agreement_count: int
    confidence: ConfidenceTier
    value: FactValue = None
    conflicting_info: str | None = None
    sub_question_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Gap:
    sub_question_id: str
    description: str
    suggested_query: str
    importance: Importance
    kind: GapKind = "unanswered"


@dataclass(slots=True)
class PhaseStats:
    name: str
    duration_ms: float
    items_processed: int
    skipped: bool = False


@dataclass(slots=True)
class ResearchStats:
    total_searches: int = 0
    pages_analyzed: int = 0
    facts_extracted: int = 0
    facts_verified: int = 0
    total_time_ms: float = 0.0
    phases: list[PhaseStats] = field(default_factory=list)


@dataclass(slots=True)
class ResearchResult:
    response: str
    sources: list[SourceReference]
    verified_facts: list[VerifiedFact]
    gaps: list[Gap]
    confidence: ConfidenceTier
    stats: ResearchStats
    follow_up_questions: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation with camelCase keys."""
        return _camelize(asdict(self))


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


def _camelize(value: Any) -> Any:
    if isinstance(value, dict):
        return {_camel(k): _camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_camelize(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value
