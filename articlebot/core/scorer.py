"""Topic scoring and ranking."""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from articlebot.core.utils import hours_since, utcnow
from articlebot.models.content import Score, ScoredTopic, ScoringReport, Topic

logger = logging.getLogger(__name__)

DISTRIBUTION_BUCKETS = (("excellent", 90), ("good", 70), ("fair", 50), ("poor", 0))


class TopicScorer:
    """Scores topics as a sum of capped, independent components.

    * freshness: discrete tiers on the hours elapsed since publication
    * sources: ``min(source_count * source_weight, source_cap)``

    Scoring reads the clock only through ``clock`` (or an explicit ``now``),
    so identical inputs give identical scores.
    """

    def __init__(
        self,
        min_score: float = 20,
        freshness_tiers: Sequence[Tuple[float, float]] = ((24, 20), (48, 15)),
        stale_points: float = 10,
        source_weight: float = 5,
        source_cap: float = 20,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            min_score: Total needed to pass the gate
            freshness_tiers: (max_hours, points) pairs, checked in ascending order
            stale_points: Freshness points beyond the last tier
            source_weight: Points per source
            source_cap: Upper bound of the source component
            clock: Returns the current time
        """
        self.min_score = min_score
        self.freshness_tiers = sorted(freshness_tiers)
        self.stale_points = stale_points
        self.source_weight = source_weight
        self.source_cap = source_cap
        self.clock = clock
        if self.max_possible <= 0:
            raise ValueError("Scoring scale is empty: every freshness tier and the source cap are 0")

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], datetime] = utcnow) -> "TopicScorer":
        return cls(
            min_score=settings.min_score_threshold,
            freshness_tiers=(
                (24, settings.freshness_points_recent),
                (48, settings.freshness_points_day),
            ),
            stale_points=settings.freshness_points_old,
            source_weight=settings.source_weight,
            source_cap=settings.source_cap,
            clock=clock,
        )

    @property
    def max_possible(self) -> float:
        best_freshness = max([points for _, points in self.freshness_tiers] + [self.stale_points])
        return best_freshness + self.source_cap

    def freshness_points(self, topic: Topic, now: datetime) -> float:
        if topic.publish_date is None:
            hours = 0.0
        else:
            hours = hours_since(topic.publish_date, now)
        for max_hours, points in self.freshness_tiers:
            if hours <= max_hours:
                return points
        return self.stale_points

    def source_points(self, topic: Topic) -> float:
        return min(len(topic.sources) * self.source_weight, self.source_cap)

    def score(self, topic: Topic, now: Optional[datetime] = None) -> ScoredTopic:
        now = now or self.clock()
        components: Dict[str, float] = {
            "freshness": self.freshness_points(topic, now),
            "sources": self.source_points(topic),
        }
        total = sum(components.values())
        return ScoredTopic(
            topic=topic,
            score=Score(
                components=components,
                total=total,
                max_possible=self.max_possible,
                passes_threshold=total >= self.min_score,
                percentage=round(total / self.max_possible * 100),
            ),
        )

    def score_all(self, topics: List[Topic], now: Optional[datetime] = None) -> List[ScoredTopic]:
        now = now or self.clock()
        return [self.score(topic, now) for topic in topics]

    @staticmethod
    def rank(scored: List[ScoredTopic]) -> List[ScoredTopic]:
        """Highest total first; ties keep their discovery order."""
        return sorted(scored, key=lambda item: item.score.total, reverse=True)

    @staticmethod
    def passing(ranked: List[ScoredTopic]) -> List[ScoredTopic]:
        return [item for item in ranked if item.score.passes_threshold]

    def report(self, ranked: List[ScoredTopic]) -> ScoringReport:
        passing = self.passing(ranked)
        distribution = {name: 0 for name, _ in DISTRIBUTION_BUCKETS}
        for item in ranked:
            for name, floor in DISTRIBUTION_BUCKETS:
                if item.score.percentage >= floor:
                    distribution[name] += 1
                    break

        top = None
        if ranked:
            top = {"title": ranked[0].topic.title, "total": ranked[0].score.total}

        average = sum(item.score.total for item in ranked) / len(ranked) if ranked else 0.0
        return ScoringReport(
            total_topics=len(ranked),
            passing_topics=len(passing),
            failing_topics=len(ranked) - len(passing),
            threshold=self.min_score,
            top_topic=top,
            average_score=round(average, 1),
            score_distribution=distribution,
        )
