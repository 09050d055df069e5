"""
Intent Analyser for NovelForge

Rule-based classification of a user instruction: trigger substrings per
intent kind (Chinese and English), pattern-matched parameters, keywords and
a complexity estimate.
"""

import re
from typing import Dict, List, Optional, Tuple

from ..agents.roster import CHARACTER, GROUNDLINE, NARRATOR, PLOTLINE, QUALITY, SKYLINE
from ..collaboration.workflows import CONTINUE_WRITE, DIALOGUE, FULL_GENERATION, STORYLINE_PLANNING
from ..models import Complexity, Intent, IntentKind, IntentParameters

# Dict order is the tie-break order: earlier kinds win equal hit counts.
INTENT_TRIGGERS: Dict[IntentKind, Tuple[str, ...]] = {
    IntentKind.CONTINUE: ("续写", "继续", "接着写", "往下写", "continue", "keep writing"),
    IntentKind.DIALOGUE: ("对话", "对白", "聊天", "交谈", "dialogue", "conversation"),
    IntentKind.REVISE: ("修改", "润色", "优化", "改写", "调整", "revise", "polish", "improve"),
    IntentKind.ANALYZE: ("分析", "检查", "审核", "评估", "analyze", "review", "check"),
    IntentKind.PLAN: ("规划", "设计", "安排", "大纲", "plan", "design", "outline"),
    IntentKind.GENERATE: ("生成", "创作", "写", "产生", "generate", "create", "write"),
}

REQUIRED_AGENTS: Dict[IntentKind, List[str]] = {
    IntentKind.CONTINUE: [NARRATOR, QUALITY],
    IntentKind.DIALOGUE: [CHARACTER, QUALITY],
    IntentKind.REVISE: [QUALITY],
    IntentKind.ANALYZE: [QUALITY],
    IntentKind.PLAN: [SKYLINE, GROUNDLINE, PLOTLINE],
    IntentKind.GENERATE: [NARRATOR, QUALITY],
}

STYLES = (
    "古典", "现代", "玄幻", "武侠", "科幻", "言情", "悬疑",
    "classical", "modern", "fantasy", "wuxia", "sci-fi", "romance", "mystery",
)
EMOTIONS = (
    "紧张", "轻松", "愤怒", "喜悦", "悲伤", "恐惧",
    "tense", "relaxed", "angry", "joyful", "sad", "fearful",
)
STOP_WORDS = frozenset({
    "的", "了", "在", "是", "我", "有", "和", "就",
    "the", "a", "an", "and", "of", "to", "in", "is", "it", "please",
})

LENGTH_PATTERN = re.compile(r"(\d+)\s*(?:个)?(?:字|words?\b)", re.IGNORECASE)

MAX_KEYWORDS = 10
SIMPLE_BELOW = 20
COMPLEX_FROM = 100


def _first_match(text: str, vocabulary: Tuple[str, ...]) -> Optional[str]:
    for term in vocabulary:
        if term in text:
            return term
    return None


class IntentAnalyzer:
    """Classifies instructions into intents."""

    def __init__(self, triggers: Optional[Dict[IntentKind, Tuple[str, ...]]] = None):
        self.triggers = triggers or INTENT_TRIGGERS

    def analyse(self, text: str) -> Intent:
        kind, confidence = self.detect_kind(text)
        return Intent(
            kind=kind,
            confidence=confidence,
            parameters=self.extract_parameters(text),
            keywords=self.extract_keywords(text),
            complexity=self.assess_complexity(text, kind),
            raw_text=text,
        )

    def detect_kind(self, text: str) -> Tuple[IntentKind, float]:
        lowered = text.lower()
        best_kind, best_count = IntentKind.GENERATE, 0
        for kind, triggers in self.triggers.items():
            count = sum(1 for trigger in triggers if trigger.lower() in lowered)
            if count > best_count:
                best_kind, best_count = kind, count
        if best_count == 0:
            return IntentKind.GENERATE, 0.5
        return best_kind, min(1.0, best_count / 5)

    @staticmethod
    def extract_parameters(text: str) -> IntentParameters:
        lowered = text.lower()
        length = None
        match = LENGTH_PATTERN.search(text)
        if match and int(match.group(1)) > 0:
            length = int(match.group(1))
        return IntentParameters(
            length=length,
            style=_first_match(lowered, STYLES),
            emotion=_first_match(lowered, EMOTIONS),
        )

    @staticmethod
    def extract_keywords(text: str) -> List[str]:
        keywords = [
            word for word in text.split()
            if len(word) > 1 and word.lower() not in STOP_WORDS
        ]
        return keywords[:MAX_KEYWORDS]

    @staticmethod
    def assess_complexity(text: str, kind: IntentKind) -> Complexity:
        # Length is measured in UTF-8 bytes, so one CJK character counts as three.
        size = len(text.encode("utf-8"))
        if size < SIMPLE_BELOW:
            return Complexity.SIMPLE
        if kind in (IntentKind.PLAN, IntentKind.ANALYZE) or size >= COMPLEX_FROM:
            return Complexity.COMPLEX
        return Complexity.MEDIUM

    @staticmethod
    def required_agents(intent: Intent) -> List[str]:
        return list(REQUIRED_AGENTS.get(intent.kind, REQUIRED_AGENTS[IntentKind.GENERATE]))

    @staticmethod
    def workflow_template(intent: Intent) -> str:
        if intent.kind == IntentKind.CONTINUE:
            return CONTINUE_WRITE
        if intent.kind == IntentKind.DIALOGUE:
            return DIALOGUE
        if intent.kind == IntentKind.PLAN:
            return STORYLINE_PLANNING
        if intent.complexity == Complexity.COMPLEX:
            return FULL_GENERATION
        return CONTINUE_WRITE
