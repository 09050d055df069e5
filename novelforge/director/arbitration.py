"""
Conflict Arbitrator for NovelForge

Detects disagreements between parallel agent outputs and resolves them by
agent priority. Equal priorities resolve to the agent whose output came
first in the outputs mapping.
"""

import logging
import re
from typing import Dict, List, Mapping, Optional

from ..agents.roster import CHARACTER, DIRECTOR, GROUNDLINE, NARRATOR, PLOTLINE, QUALITY, SKYLINE
from ..core.ids import IdGenerator
from ..models import Conflict, ConflictKind, Resolution, ResolutionStrategy, Severity

logger = logging.getLogger("novelforge.arbitration")

DEFAULT_PRIORITY = 50

DEFAULT_PRIORITIES: Dict[str, int] = {
    DIRECTOR: 100,
    QUALITY: 90,
    NARRATOR: 80,
    CHARACTER: 80,
    SKYLINE: 70,
    GROUNDLINE: 70,
    PLOTLINE: 70,
}

MISMATCH_RATIO = 0.5
DIALOGUE_SHARE_GAP = 0.5

QUOTED = re.compile(r"“[^”]*”|「[^」]*」|\"[^\"]*\"")

# Pairs of state markers that cannot both hold for the same story
CONTRADICTIONS = (
    ("alive", "dead"),
    ("活着", "死了"),
    ("活着", "已死"),
    ("存活", "死亡"),
)


def dialogue_share(text: str) -> float:
    """Fraction of characters that sit inside quotation marks."""
    if not text:
        return 0.0
    quoted = sum(len(match) for match in QUOTED.findall(text))
    return quoted / len(text)


class ConflictArbitrator:
    """Priority-based conflict detection and resolution."""

    def __init__(self, ids: Optional[IdGenerator] = None, priorities: Optional[Mapping[str, int]] = None):
        self.ids = ids or IdGenerator()
        self._priorities: Dict[str, int] = dict(DEFAULT_PRIORITIES)
        if priorities:
            self._priorities.update(priorities)

    def set_priority(self, agent_key: str, priority: int) -> None:
        self._priorities[agent_key] = priority

    def priority(self, agent_key: str) -> int:
        return self._priorities.get(agent_key, DEFAULT_PRIORITY)

    # ========================================================================
    # Detection
    # ========================================================================

    def detect(self, outputs: Mapping[str, str]) -> List[Conflict]:
        conflicts = []
        for check in (self._output_mismatch, self._style_difference, self._logic_conflict):
            conflict = check(outputs)
            if conflict is not None:
                conflicts.append(conflict)
        if conflicts:
            logger.info(f"[detect] {len(conflicts)} conflicts between {', '.join(outputs)}")
        return conflicts

    def _output_mismatch(self, outputs: Mapping[str, str]) -> Optional[Conflict]:
        if len(outputs) < 2:
            return None
        lengths = [len(text) for text in outputs.values()]
        shortest, longest = min(lengths), max(lengths)
        if longest == 0 or (longest - shortest) / longest <= MISMATCH_RATIO:
            return None
        return Conflict(
            id=self.ids.next_id("conflict"),
            kind=ConflictKind.OUTPUT_MISMATCH,
            agents=list(outputs),
            descriptions=[f"Output lengths differ widely: {shortest} vs {longest}"],
            severity=Severity.MEDIUM,
        )

    def _style_difference(self, outputs: Mapping[str, str]) -> Optional[Conflict]:
        if len(outputs) < 2:
            return None
        shares = {agent: dialogue_share(text) for agent, text in outputs.items()}
        if max(shares.values()) - min(shares.values()) <= DIALOGUE_SHARE_GAP:
            return None
        return Conflict(
            id=self.ids.next_id("conflict"),
            kind=ConflictKind.STYLE_DIFFERENCE,
            agents=list(outputs),
            descriptions=[f"{agent}: {share:.0%} quoted dialogue" for agent, share in shares.items()],
            severity=Severity.LOW,
        )

    def _logic_conflict(self, outputs: Mapping[str, str]) -> Optional[Conflict]:
        if len(outputs) < 2:
            return None
        lowered = {agent: text.lower() for agent, text in outputs.items()}
        for first, second in CONTRADICTIONS:
            holders = [agent for agent, text in lowered.items() if first in text]
            deniers = [agent for agent, text in lowered.items() if second in text]
            if holders and deniers and set(holders) != set(deniers):
                agents = [agent for agent in outputs if agent in holders or agent in deniers]
                return Conflict(
                    id=self.ids.next_id("conflict"),
                    kind=ConflictKind.LOGIC_CONFLICT,
                    agents=agents,
                    descriptions=[f"'{first}' in {', '.join(holders)} contradicts '{second}' in {', '.join(deniers)}"],
                    severity=Severity.HIGH,
                )
        return None

    # ========================================================================
    # Arbitration
    # ========================================================================

    def arbitrate(self, conflict: Conflict, outputs: Mapping[str, str]) -> Resolution:
        if conflict.kind == ConflictKind.STYLE_DIFFERENCE:
            ordered = self.sort_by_priority(conflict.agents)
            return Resolution(
                conflict_id=conflict.id,
                strategy=ResolutionStrategy.MERGE,
                content="\n\n".join(outputs[agent] for agent in ordered if agent in outputs),
                reason="Merged outputs in priority order",
            )
        if conflict.kind == ConflictKind.LOGIC_CONFLICT:
            return Resolution(
                conflict_id=conflict.id,
                strategy=ResolutionStrategy.ESCALATE,
                reason="Logic conflict escalated to the director",
            )
        chosen = self.highest_priority(conflict.agents)
        return Resolution(
            conflict_id=conflict.id,
            strategy=ResolutionStrategy.CHOOSE,
            chosen_agent=chosen,
            content=outputs.get(chosen, "") if chosen else "",
            reason=f"Chose {chosen} (priority {self.priority(chosen)})" if chosen else "No agents involved",
        )

    def highest_priority(self, agents: List[str]) -> Optional[str]:
        chosen: Optional[str] = None
        for agent in agents:
            if chosen is None or self.priority(agent) > self.priority(chosen):
                chosen = agent
        return chosen

    def sort_by_priority(self, agents: List[str]) -> List[str]:
        # sorted() is stable, so equal priorities keep their input order
        return sorted(agents, key=lambda agent: -self.priority(agent))

    def resolve(self, outputs: Mapping[str, str]) -> List[Resolution]:
        """Detect and arbitrate in one step."""
        return [self.arbitrate(conflict, outputs) for conflict in self.detect(outputs)]
