"""
Storyline Inference Engine for NovelForge

Projects the next chapters of a story from the chapters written so far.
The StorylineAnalyzer summarises the existing chapters; the InferenceEngine
turns that summary into per-chapter plot and character predictions,
foreseeable conflicts and writing suggestions.
"""

import logging
from collections import Counter
from typing import Dict, List, Optional, Sequence, Union

from ..core.errors import InvalidInputError
from ..models import (
    ChapterContext,
    ConflictPrediction,
    InferenceReport,
    InferenceResult,
    PaceLabel,
    Prediction,
    Severity,
    StorylineAnalysis,
)

logger = logging.getLogger("novelforge.inference")

DEFAULT_HORIZON_CHAPTERS = 30
MIN_FORECAST = 1
MAX_FORECAST = 10
MAX_MAIN_CHARACTERS = 3

# Key events per chapter outside [SLOW_BELOW, FAST_ABOVE] mark an uneven pace
FAST_ABOVE = 5.0
SLOW_BELOW = 1.0

UNRESOLVED_LIMIT = 5
CHARACTER_LIMIT = 10

EARLY = "early"
MIDDLE = "middle"
LATE = "late"

PLOT_PREDICTIONS: Dict[str, Prediction] = {
    EARLY: Prediction(
        category="plot",
        bucket=EARLY,
        content="Early-story setup: character backgrounds unfold and the world is established",
        probability=0.8,
        reason="The story is in its opening stretch and still needs groundwork",
    ),
    MIDDLE: Prediction(
        category="plot",
        bucket=MIDDLE,
        content="Mid-story conflict escalation: the main conflict intensifies and a turning point appears",
        probability=0.85,
        reason="The story has reached its middle, where conflict should sharpen",
    ),
    LATE: Prediction(
        category="plot",
        bucket=LATE,
        content="Late-story resolution: conflicts are resolved and the main line closes",
        probability=0.9,
        reason="The story is nearing its end and needs to converge",
    ),
}

BUCKET_SUGGESTIONS: Dict[str, List[str]] = {
    EARLY: [
        "Add more description of the setting and the world",
        "Introduce supporting characters to enrich the story",
    ],
    MIDDLE: [
        "Set up an important turning point",
        "Deepen the central conflict",
    ],
    LATE: [
        "Start closing the open plot lines",
        "Prepare the climax and the ending",
    ],
}

PACE_SUGGESTIONS = {
    PaceLabel.TOO_FAST: "The pace is fast; add more detail and description",
    PaceLabel.TOO_SLOW: "The pace is slow; move the plot forward faster",
}


def progression_bucket(progression: float) -> str:
    if progression < 0.3:
        return EARLY
    if progression < 0.7:
        return MIDDLE
    return LATE


class StorylineAnalyzer:
    """Summarises a chronological list of chapters."""

    def __init__(self, horizon_chapters: int = DEFAULT_HORIZON_CHAPTERS):
        if horizon_chapters < 1:
            raise InvalidInputError("horizon_chapters must be at least 1")
        self.horizon_chapters = horizon_chapters

    def analyze(self, chapters: Sequence[ChapterContext]) -> StorylineAnalysis:
        total = len(chapters)
        appearances = Counter()
        for chapter in chapters:
            appearances.update(dict.fromkeys(chapter.characters, 1))

        return StorylineAnalysis(
            total_chapters=total,
            progression=min(1.0, max(0.0, total / self.horizon_chapters)),
            main_characters=self.main_characters(appearances, total),
            character_count=len(appearances),
            unresolved_plot_points=self.unresolved_plot_points(chapters),
            pace=self.pace(chapters),
            timeline_gaps=self.timeline_gaps(chapters),
        )

    @staticmethod
    def main_characters(appearances: Counter, total_chapters: int) -> List[str]:
        """The most frequent characters; in a multi-chapter story they must recur."""
        # Counter.most_common keeps first-seen order among equal counts
        ranked = appearances.most_common()
        if total_chapters > 1:
            ranked = [(name, count) for name, count in ranked if count > 1]
        return [name for name, _ in ranked[:MAX_MAIN_CHARACTERS]]

    @staticmethod
    def unresolved_plot_points(chapters: Sequence[ChapterContext]) -> List[str]:
        unresolved: List[str] = []
        for index, chapter in enumerate(chapters):
            later_events = [event for later in chapters[index + 1:] for event in later.key_events]
            for point in chapter.plot_points:
                if point in unresolved:
                    continue
                if not any(point in event for event in later_events):
                    unresolved.append(point)
        return unresolved

    @staticmethod
    def pace(chapters: Sequence[ChapterContext]) -> PaceLabel:
        if not chapters:
            return PaceLabel.NORMAL
        events_per_chapter = sum(len(c.key_events) for c in chapters) / len(chapters)
        if events_per_chapter > FAST_ABOVE:
            return PaceLabel.TOO_FAST
        if events_per_chapter < SLOW_BELOW:
            return PaceLabel.TOO_SLOW
        return PaceLabel.NORMAL

    @staticmethod
    def timeline_gaps(chapters: Sequence[ChapterContext]) -> List[int]:
        """Chapter numbers missing between the first and the last chapter."""
        numbers = sorted({c.chapter_number for c in chapters})
        gaps: List[int] = []
        for previous, current in zip(numbers, numbers[1:]):
            gaps.extend(range(previous + 1, current))
        return gaps


class InferenceEngine:
    """Rule-based chapter forecasting."""

    def __init__(self, analyzer: Optional[StorylineAnalyzer] = None):
        self.analyzer = analyzer or StorylineAnalyzer()

    def infer_next_chapters(self, chapters: Sequence[ChapterContext], count: int) -> List[InferenceResult]:
        """
        Forecast `count` chapters after the given ones.

        Raises:
            InvalidInputError: count outside [1, 10]
        """
        if count < MIN_FORECAST or count > MAX_FORECAST:
            raise InvalidInputError(f"count must be between {MIN_FORECAST} and {MAX_FORECAST}, got {count}")

        analysis = self.analyzer.analyze(chapters)
        results = []
        for offset in range(1, count + 1):
            chapter_number = len(chapters) + offset
            predictions = self.predict_plot(analysis)
            developments = self.predict_character_development(analysis)
            conflicts = self.predict_conflicts(analysis, chapter_number, include_history=offset == 1)
            results.append(InferenceResult(
                chapter_number=chapter_number,
                predictions=predictions,
                character_developments=developments,
                conflicts=conflicts,
                suggestions=self.generate_suggestions(analysis),
                confidence=self.confidence(len(predictions) + len(developments), len(conflicts)),
            ))
        logger.info(
            f"[infer_next_chapters] Forecast chapters {len(chapters) + 1}-{len(chapters) + count} "
            f"at progression {analysis.progression:.2f}"
        )
        return results

    @staticmethod
    def predict_plot(analysis: StorylineAnalysis) -> List[Prediction]:
        return [PLOT_PREDICTIONS[progression_bucket(analysis.progression)].model_copy()]

    @staticmethod
    def predict_character_development(analysis: StorylineAnalysis) -> List[Prediction]:
        return [
            Prediction(
                category="character",
                subject=name,
                content=f"{name} faces an important choice or a chance to grow",
                probability=0.75,
                reason="Character arc progression",
            )
            for name in analysis.main_characters
        ]

    @staticmethod
    def predict_conflicts(
        analysis: StorylineAnalysis, chapter_number: int, include_history: bool = True,
    ) -> List[ConflictPrediction]:
        """Conflicts expected around `chapter_number`.

        Timeline gaps belong to the chapters already written, so a forecast
        reports them once, on its first chapter (`include_history`).
        """
        conflicts = []
        if len(analysis.unresolved_plot_points) > UNRESOLVED_LIMIT:
            conflicts.append(ConflictPrediction(
                kind="logic",
                description="Too many unresolved plot points may make the logic hard to follow",
                severity=Severity.MEDIUM,
                affected_chapters=[chapter_number, chapter_number + 1],
                suggestion="Resolve some plot lines in the coming chapters",
            ))
        if analysis.character_count > CHARACTER_LIMIT:
            conflicts.append(ConflictPrediction(
                kind="character",
                description="Too many characters may scatter the reader's attention",
                severity=Severity.LOW,
                affected_chapters=[chapter_number],
                suggestion="Focus on the core cast and let minor characters fade",
            ))
        if include_history and analysis.timeline_gaps:
            missing = ", ".join(str(n) for n in analysis.timeline_gaps)
            conflicts.append(ConflictPrediction(
                kind="timeline",
                description=f"Chapters {missing} are missing from the timeline",
                severity=Severity.HIGH,
                affected_chapters=list(analysis.timeline_gaps),
                suggestion="Fill the missing chapters or renumber the existing ones",
            ))
        return conflicts

    @staticmethod
    def generate_suggestions(analysis: StorylineAnalysis) -> List[str]:
        suggestions = list(BUCKET_SUGGESTIONS[progression_bucket(analysis.progression)])
        if analysis.pace in PACE_SUGGESTIONS:
            suggestions.append(PACE_SUGGESTIONS[analysis.pace])
        return suggestions

    @staticmethod
    def confidence(prediction_count: int, conflict_count: int) -> float:
        confidence = 0.7
        if prediction_count > 3:
            confidence += 0.1
        if conflict_count > 2:
            confidence -= 0.1
        return round(min(1.0, max(0.0, confidence)), 2)

    @staticmethod
    def generate_report(project_id: Union[int, str], results: List[InferenceResult]) -> InferenceReport:
        total_conflicts = sum(len(r.conflicts) for r in results)
        warnings: List[ConflictPrediction] = []
        seen = set()
        for result in results:
            for conflict in result.conflicts:
                key = (conflict.kind, conflict.description, tuple(conflict.affected_chapters))
                if conflict.severity != Severity.HIGH or key in seen:
                    continue
                seen.add(key)
                warnings.append(conflict)
        return InferenceReport(
            project_id=project_id,
            total_chapters=len(results),
            total_conflicts=total_conflicts,
            summary=f"Forecast {len(results)} chapters, found {total_conflicts} potential conflicts",
            warnings=warnings,
            results=results,
        )
