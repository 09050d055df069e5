"""
Review Loop for NovelForge

Bounded generate -> review -> revise iteration between a generator agent
and a reviewer agent. The reviewer answers with the JSON review format; its
score decides approval. The loop has its own timeout, derived from the
request's cancellation token.
"""

import json
import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from ..config import ReviewSettings
from ..core.context import Request
from ..core.errors import OperationCancelledError
from ..models import (
    IterationRecord,
    MessageKind,
    ReviewFeedback,
    ReviewResult,
    RevisionOutcome,
    utc_now,
)

logger = logging.getLogger("novelforge.review")


def extract_json(text: str) -> Optional[Any]:
    """Extract JSON from an agent response: whole text, fenced block, or first object."""
    if not text or not text.strip():
        return None

    # Method 1: Try direct JSON parse
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Method 2: Markdown code block
    for pattern in ("```json", "```JSON", "```"):
        if pattern in text:
            parts = text.split(pattern)
            if len(parts) >= 2:
                try:
                    return json.loads(parts[1].split("```")[0].strip())
                except json.JSONDecodeError:
                    logger.debug(f"[extract_json] Code block extraction failed for '{pattern}'")

    # Method 3: raw_decode from the first brace
    start = text.find("{")
    if start >= 0:
        try:
            result, _ = json.JSONDecoder().raw_decode(text[start:])
            return result
        except json.JSONDecodeError:
            pass

    logger.warning(f"[extract_json] All extraction methods failed for text (len={len(text)})")
    return None


def _strings(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(v) for v in value if str(v).strip()]
    return []


def parse_feedback(text: str) -> ReviewFeedback:
    """
    Turn a reviewer response into ReviewFeedback.

    Unparseable output counts as a rejection with score 0.
    """
    data = extract_json(text)
    if not isinstance(data, dict):
        return ReviewFeedback(approved=False, score=0.0, comment=text or "")

    try:
        score = float(data.get("overall_score", data.get("score", 0)))
    except (TypeError, ValueError):
        score = 0.0
    score = min(100.0, max(0.0, score))

    issues = _strings(data.get("issues"))
    dimensions = data.get("dimensions")
    if isinstance(dimensions, dict):
        for dimension in dimensions.values():
            if isinstance(dimension, dict):
                issues.extend(_strings(dimension.get("issues")))

    suggestions = _strings(data.get("suggestions"))
    comment = str(data.get("comment", ""))
    feedback = data.get("feedback")
    if isinstance(feedback, dict):
        for key, value in feedback.items():
            if key == "overall":
                comment = str(value)
            else:
                suggestions.extend(_strings(value))
    elif isinstance(feedback, str):
        comment = feedback

    return ReviewFeedback(
        approved=bool(data.get("passed", data.get("approved", False))),
        score=score,
        issues=issues,
        suggestions=suggestions,
        comment=comment,
    )


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items) if items else "- (none)"


class ReviewLoop:
    """Runs the review/revision cycle through the agent executor."""

    def __init__(self, executor: Any, bus: Optional[Any] = None, settings: Optional[ReviewSettings] = None):
        self.executor = executor
        self.bus = bus
        self.settings = settings or ReviewSettings()

    async def run(
        self,
        generator: str,
        reviewer: str,
        initial_content: str,
        request: Request,
        context: Optional[Mapping[str, Any]] = None,
        settings: Optional[ReviewSettings] = None,
    ) -> ReviewResult:
        """
        Iterate until the reviewer approves or the iteration budget runs out.

        Raises:
            OperationCancelledError: the request itself was cancelled
        """
        cfg = settings or self.settings
        start = time.monotonic()
        token = request.token.child(timeout=cfg.timeout_seconds)
        loop_request = Request(
            user_id=request.user_id,
            instruction=request.instruction,
            project_id=request.project_id,
            extras=request.extras,
            token=token,
            request_id=request.request_id,
            traces=request.traces,
        )
        context = dict(context or {})
        content = initial_content
        iterations: List[IterationRecord] = []
        last_score = 0.0

        try:
            for index in range(1, cfg.max_iterations + 1):
                token.raise_if_cancelled()
                iteration_start = utc_now()
                started = time.monotonic()

                feedback = await self._review(reviewer, content, loop_request, context)
                last_score = feedback.score

                if feedback.approved or feedback.score >= cfg.min_score:
                    iterations.append(IterationRecord(
                        index=index,
                        content=content,
                        feedback=feedback,
                        approved=True,
                        started_at=iteration_start,
                        duration_ms=int((time.monotonic() - started) * 1000),
                    ))
                    logger.info(f"[run] {reviewer} approved {generator} output on iteration {index} ({feedback.score})")
                    return ReviewResult(
                        success=True,
                        final_content=content,
                        iterations=iterations,
                        total_time=time.monotonic() - start,
                        final_score=feedback.score,
                    )

                token.raise_if_cancelled()
                revision = await self._revise(generator, content, feedback, loop_request, context)
                iterations.append(IterationRecord(
                    index=index,
                    content=content,
                    feedback=feedback,
                    revision=revision,
                    started_at=iteration_start,
                    duration_ms=int((time.monotonic() - started) * 1000),
                ))
                self._publish(generator, reviewer, index, feedback, revision)

                if not revision.improved:
                    logger.info(f"[run] Revision {index} by {generator} brought no change, stopping")
                    break
                content = revision.content
        except OperationCancelledError as e:
            partial = ReviewResult(
                success=False,
                final_content=content,
                iterations=iterations,
                total_time=time.monotonic() - start,
                final_score=last_score,
                error=str(e),
            )
            if request.token.cancelled:
                raise OperationCancelledError(str(e), partial=partial) from e
            logger.warning(f"[run] Review loop timed out after {len(iterations)} iterations")
            partial.error = "review loop timeout"
            return partial

        total_time = time.monotonic() - start
        if cfg.auto_approve:
            return ReviewResult(
                success=True,
                final_content=content,
                iterations=iterations,
                total_time=total_time,
                final_score=last_score,
                auto_approved=True,
            )
        return ReviewResult(
            success=False,
            final_content=content,
            iterations=iterations,
            total_time=total_time,
            final_score=last_score,
            error="max iterations reached without approval",
        )

    async def _review(
        self,
        reviewer: str,
        content: str,
        request: Request,
        context: Dict[str, Any],
    ) -> ReviewFeedback:
        instruction = (
            "Review the following content and answer in the JSON review format.\n\n"
            f"{content}"
        )
        result = await self.executor.execute(reviewer, instruction, request, context=context, action="review")
        return parse_feedback(result.content)

    async def _revise(
        self,
        generator: str,
        content: str,
        feedback: ReviewFeedback,
        request: Request,
        context: Dict[str, Any],
    ) -> RevisionOutcome:
        instruction = (
            "Revise the content according to the review below. Output the revised content only.\n\n"
            f"Original content:\n{content}\n\n"
            f"Score: {feedback.score:.0f}\n"
            f"Issues:\n{_bullets(feedback.issues)}\n"
            f"Suggestions:\n{_bullets(feedback.suggestions)}"
        )
        if feedback.comment:
            instruction += f"\nReviewer comment: {feedback.comment}"
        result = await self.executor.execute(generator, instruction, request, context=context, action="revise")
        revised = result.content.strip()
        return RevisionOutcome(
            content=revised,
            improved=bool(revised) and revised != content.strip(),
            tokens_used=result.tokens_used,
        )

    def _publish(
        self,
        generator: str,
        reviewer: str,
        index: int,
        feedback: ReviewFeedback,
        revision: Optional[RevisionOutcome],
    ) -> None:
        if self.bus is None:
            return
        sent = self.bus.send(
            reviewer,
            generator,
            MessageKind.FEEDBACK,
            feedback.comment,
            metadata={"iteration": index, "score": feedback.score, "approved": feedback.approved},
        )
        if revision is not None:
            self.bus.send(
                generator,
                reviewer,
                MessageKind.REVISION,
                revision.content,
                metadata={"iteration": index, "improved": revision.improved},
                reply_to=sent.id,
            )
