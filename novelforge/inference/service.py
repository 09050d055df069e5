"""Inference service: request validation in front of the inference engine."""

import logging
from typing import List, Optional, Sequence, Union

from ..core.errors import InvalidInputError
from ..models import ChapterContext, ConflictPrediction, InferenceReport, InferenceResult, StorylineAnalysis
from .engine import DEFAULT_HORIZON_CHAPTERS, MAX_FORECAST, MIN_FORECAST, InferenceEngine, StorylineAnalyzer

logger = logging.getLogger("novelforge.inference")


class InferenceService:
    """Validated entry points for chapter forecasting."""

    def __init__(self, engine: Optional[InferenceEngine] = None, horizon_chapters: int = DEFAULT_HORIZON_CHAPTERS):
        self.engine = engine or InferenceEngine(StorylineAnalyzer(horizon_chapters))

    @property
    def analyzer(self) -> StorylineAnalyzer:
        return self.engine.analyzer

    @staticmethod
    def validate(project_id: Optional[Union[int, str]], chapters: Sequence[ChapterContext], count: int) -> None:
        if project_id is None or project_id == "" or (isinstance(project_id, int) and project_id <= 0):
            raise InvalidInputError("invalid project_id")
        if not chapters:
            raise InvalidInputError("no current chapters provided")
        if count < MIN_FORECAST or count > MAX_FORECAST:
            raise InvalidInputError(f"count must be between {MIN_FORECAST} and {MAX_FORECAST}")

    def infer(
        self,
        project_id: Union[int, str],
        chapters: Sequence[ChapterContext],
        count: int,
    ) -> InferenceReport:
        """Forecast `count` chapters and wrap the results in a report."""
        self.validate(project_id, chapters, count)
        results = self.engine.infer_next_chapters(chapters, count)
        report = self.engine.generate_report(project_id, results)
        logger.info(f"[infer] Project {project_id}: {report.summary}")
        return report

    def analyze_chapters(self, chapters: Sequence[ChapterContext]) -> StorylineAnalysis:
        return self.analyzer.analyze(chapters)

    def predict_next_chapter(self, chapters: Sequence[ChapterContext]) -> InferenceResult:
        return self.engine.infer_next_chapters(chapters, 1)[0]

    def detect_conflicts(self, chapters: Sequence[ChapterContext]) -> List[ConflictPrediction]:
        analysis = self.analyzer.analyze(chapters)
        return self.engine.predict_conflicts(analysis, len(chapters) + 1)

    def generate_suggestions(self, chapters: Sequence[ChapterContext]) -> List[str]:
        return self.engine.generate_suggestions(self.analyzer.analyze(chapters))

    def generate_report(self, project_id: Union[int, str], results: List[InferenceResult]) -> InferenceReport:
        return self.engine.generate_report(project_id, results)
