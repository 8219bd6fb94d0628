import structlog
import logging
import sys
from typing import Dict, Any, List, Optional
from datetime import datetime
import os

from pydantic import BaseModel


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "layer-agent"
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.utcnow().isoformat()

    session_id = structlog.contextvars.get_contextvars().get("session_id")
    if session_id and "session_id" not in event_dict:
        event_dict["session_id"] = session_id

    return event_dict


class AgentLogger:
    """Specialized logger for agent operations"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_tool_execution(
        self,
        tool_name: str,
        tool_use_id: str,
        input_data: Dict[str, Any],
        result: Optional[str] = None,
        duration_ms: Optional[float] = None,
        success: bool = True,
    ):
        """Log tool execution events"""

        self.logger.info(
            "tool_execution",
            tool_name=tool_name,
            tool_use_id=tool_use_id,
            input_data=input_data,
            result_preview=(result or "")[:200],
            duration_ms=duration_ms,
            success=success,
        )

    def log_turn_transition(
        self,
        from_node: str,
        to_node: str,
        turn: int,
        condition: Optional[str] = None,
    ):
        """Log agent loop state transitions"""

        self.logger.info(
            "turn_transition",
            from_node=from_node,
            to_node=to_node,
            turn=turn,
            condition=condition,
        )

    def log_run_summary(
        self,
        outcome: Optional[str],
        turns: List[Any],
    ):
        """Log one completed agent run, one entry per request cycle"""

        self.logger.info(
            "agent_run",
            outcome=outcome,
            turn_count=len(turns),
            tool_calls=[
                [invocation.name for invocation in turn.tool_invocations] for turn in turns
            ],
            text_length=sum(len(turn.text) for turn in turns),
        )


# Global logger instance
agent_logger = AgentLogger("agent")


class LatencyStats(BaseModel):
    """Running latency aggregate for one operation (and tag set)"""
    count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0

    def add(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg_ms": round(self.total_ms / self.count, 3) if self.count else 0.0,
            "min_ms": round(self.min_ms or 0.0, 3),
            "max_ms": round(self.max_ms, 3),
        }


class MetricsCollector:
    """In-process counters, gauges and latency aggregates served on /api/health.

    Latency tagged with ``tool`` is also tracked per tool, e.g.
    ``tool_execution[get_note]``.
    """

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}
        self.latencies: Dict[str, LatencyStats] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        keys = [operation]
        if tags and "tool" in tags:
            keys.append(f"{operation}[{tags['tool']}]")
        for key in keys:
            self.latencies.setdefault(key, LatencyStats()).add(duration_ms)

        agent_logger.logger.debug("metric", metric_type="latency", operation=operation,
                                  duration_ms=duration_ms, tags=tags or {})

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] = self.counters.get(name, 0) + value
        agent_logger.logger.debug("metric", metric_type="counter", name=name, value=value, tags=tags or {})

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        self.gauges[name] = value
        agent_logger.logger.debug("metric", metric_type="gauge", name=name, value=value, tags=tags or {})

    def get_metrics_summary(self) -> Dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "latency": {key: stats.summary() for key, stats in sorted(self.latencies.items())},
        }

    def reset(self):
        self.counters.clear()
        self.gauges.clear()
        self.latencies.clear()


# Process-wide collector
metrics = MetricsCollector()
