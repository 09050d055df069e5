"""
Langfuse Tracing Service for NovelForge
Observability for requests and agent calls: one trace per request, one
generation per model call. A no-op when Langfuse keys are not configured.
"""

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger("novelforge.tracing")


class TracingService:
    """
    Traces orchestration runs with Langfuse.

    Every method is safe to call when tracing is disabled, and backend
    failures are logged without reaching the caller.
    """

    def __init__(self):
        self._client: Optional[Any] = None
        self._enabled = False
        self._traces: Dict[str, Any] = {}  # request_id -> trace

    def initialize(
        self,
        public_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        host: Optional[str] = None,
    ) -> bool:
        """
        Initialize the Langfuse client.

        Returns:
            True if tracing is enabled, False otherwise
        """
        if not public_key or not secret_key:
            logger.info("[initialize] Langfuse keys not configured. Tracing disabled.")
            return False

        try:
            from langfuse import Langfuse
            self._client = Langfuse(
                public_key=public_key,
                secret_key=secret_key,
                host=host or "https://cloud.langfuse.com",
            )
            self._enabled = True
            logger.info(f"[initialize] Langfuse tracing initialized. Host: {host or 'cloud'}")
            return True
        except Exception as e:
            logger.warning(f"[initialize] Failed to initialize Langfuse: {e}")
            return False

    @property
    def enabled(self) -> bool:
        return self._enabled and self._client is not None

    def start_trace(
        self,
        request_id: str,
        name: str = "request",
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            trace = self._client.trace(
                id=request_id,
                name=name,
                metadata=metadata or {},
                user_id=user_id,
            )
            self._traces[request_id] = trace
            return trace
        except Exception as e:
            logger.warning(f"[start_trace] Failed to start trace: {e}")
            return None

    def end_trace(self, request_id: str, output: Optional[Dict[str, Any]] = None) -> None:
        if not self.enabled:
            return
        trace = self._traces.pop(request_id, None)
        if trace is None:
            return
        try:
            trace.update(output=output)
            self._client.flush()
        except Exception as e:
            logger.warning(f"[end_trace] Failed to end trace: {e}")

    def log_generation(
        self,
        request_id: str,
        name: str,
        model: str,
        input_messages: List[Dict[str, str]],
        output: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        latency_ms: float = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record one model call under the request's trace."""
        if not self.enabled:
            return
        trace = self._traces.get(request_id)
        if trace is None:
            return
        try:
            trace.generation(
                name=name,
                model=model,
                input=input_messages,
                output=output,
                usage={
                    "input": input_tokens,
                    "output": output_tokens,
                    "total": input_tokens + output_tokens,
                },
                metadata={"latency_ms": latency_ms, **(metadata or {})},
            )
        except Exception as e:
            logger.warning(f"[log_generation] Failed to log generation: {e}")

    def log_event(
        self,
        request_id: str,
        name: str,
        level: str = "DEFAULT",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not self.enabled:
            return
        trace = self._traces.get(request_id)
        if trace is None:
            return
        try:
            trace.event(name=name, level=level, metadata=metadata or {})
        except Exception as e:
            logger.warning(f"[log_event] Failed to log event: {e}")

    def shutdown(self) -> None:
        if not self.enabled:
            return
        try:
            self._client.flush()
        except Exception as e:
            logger.warning(f"[shutdown] Failed to flush Langfuse: {e}")
