"""Content models for the article pipeline."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Source(BaseModel):
    """Attribution record attached to a topic."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., description="Source headline or publisher")
    url: str = Field(..., description="Source URL")
    date: Optional[str] = Field(None, description="Publication date as reported")
    source_type: Optional[str] = Field(None, description="Kind of source")


class Topic(BaseModel):
    """A candidate subject for an article."""

    title: str = Field(..., description="Topic headline")
    summary: str = Field(..., description="Short summary")
    impact: str = Field(..., description="Why the topic matters")
    category: str = Field(..., description="Editorial category")
    sources: List[Source] = Field(default_factory=list, description="Sources")
    publish_date: Optional[datetime] = Field(
        None, description="Publication time of the underlying news"
    )
    discovered_at: Optional[datetime] = Field(None, description="Validation time")
    source_count: int = Field(0, ge=0, description="Number of sources")

    # Research enrichment
    enrichment: Dict[str, Any] = Field(
        default_factory=dict, description="Research dossier fields"
    )
    enriched: bool = Field(False, description="Research stage succeeded")
    enrichment_error: Optional[str] = Field(None, description="Research failure")
    research_tokens: Optional[int] = Field(None, description="Research usage")


class Score(BaseModel):
    """Score of a topic as a sum of named components."""

    components: Dict[str, float] = Field(..., description="Named subscores")
    total: float = Field(..., description="Sum of components")
    max_possible: float = Field(..., gt=0, description="Highest reachable total")
    passes_threshold: bool = Field(..., description="total >= minimum")
    percentage: int = Field(0, description="total as a share of max_possible")


class ScoredTopic(BaseModel):
    """Topic paired with its score."""

    topic: Topic
    score: Score


class ScoringReport(BaseModel):
    """Summary of one ranking pass."""

    total_topics: int
    passing_topics: int
    failing_topics: int
    threshold: float
    top_topic: Optional[Dict[str, Any]] = None
    average_score: float = 0.0
    score_distribution: Dict[str, int] = Field(default_factory=dict)


class ValidationReport(BaseModel):
    """Outcome of checking a draft against the structure rules."""

    passed: bool = Field(..., description="No rule violated")
    violations: List[str] = Field(default_factory=list)
    codes: List[str] = Field(
        default_factory=list, description="Machine-readable rule identifiers"
    )
    stats: Dict[str, Any] = Field(default_factory=dict)

    @property
    def only_too_short(self) -> bool:
        """True when being under the word minimum is the sole problem."""
        return self.codes == ["too_short"]


class Article(BaseModel):
    """A drafted article ready to be stored and published."""

    title: str
    slug: str
    category: str
    excerpt: str
    body: str = Field(..., description="Markdown body including references")
    word_count: int = 0
    section_count: int = 0
    reading_time: int = Field(1, description="Minutes")
    references: List[Source] = Field(default_factory=list)
    filename: str
    front_matter: Dict[str, Any] = Field(default_factory=dict)
    validation: ValidationReport
    attempts: int = Field(1, description="Drafting calls made")
    thumbnail_path: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)


class SaveResult(BaseModel):
    """Answer of the persistence gateway."""

    id: int
    slug: str
    canonical_asset_url: Optional[str] = None


class PublishResult(BaseModel):
    """Answer of the publish gateway."""

    success: bool
    external_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


class Stage(str, Enum):
    """Named pipeline stages, in execution order."""

    DISCOVER = "discover"
    VALIDATE = "validate"
    SCORE = "score"
    RESEARCH = "research"
    DRAFT = "draft"
    ILLUSTRATE = "illustrate"
    PUBLISH = "publish"


class StageStatus(str, Enum):
    """Outcome of a single stage."""

    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageSummary(BaseModel):
    """What happened in one stage."""

    stage: Stage
    status: StageStatus
    attempts: int = 1
    detail: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        """Pydantic configuration."""

        use_enum_values = True


class PipelineReport(BaseModel):
    """Terminal report of a pipeline run."""

    success: bool
    elapsed_seconds: float = 0.0
    stages: List[StageSummary] = Field(default_factory=list)
    topics: List[Topic] = Field(
        default_factory=list, description="Unique validated topics of the run"
    )
    article: Optional[Article] = None
    published: bool = False
    publish_result: Optional[PublishResult] = None
    saved: Optional[SaveResult] = None
    scoring: Optional[ScoringReport] = None
    failure_reason: Optional[str] = None
    fatal: bool = False
    cancelled: bool = False

    def stage(self, stage: Stage) -> Optional[StageSummary]:
        """Return the last summary recorded for a stage."""
        for summary in reversed(self.stages):
            if summary.stage == stage.value:
                return summary
        return None
