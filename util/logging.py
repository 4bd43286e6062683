"""
Distillation audit logging. Do not implement beyond this file's responsibilities.
Structured operation logging for store access, scoring and selection runs.
"""

import logging
from typing import Any, Dict, List


def _preview(text: str, limit: int = 50) -> str:
    if text is None:
        return ""
    return text[:limit] + "..." if len(text) > limit else text


class StructuredLogger:
    """Structured logger for distillation runs, store I/O and LLM scoring."""

    def __init__(self, name: str = "knowledge_distiller"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def set_debug(self, enabled: bool) -> None:
        """Switch between DEBUG and INFO levels."""
        self.logger.setLevel(logging.DEBUG if enabled else logging.INFO)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_store_operation(self, operation: str, collection: str, status: str = "success", details: Dict[str, Any] = None):
        """Log a store read/write/snapshot operation."""
        log_details = {"collection": collection}
        if details:
            log_details.update(details)

        level = logging.ERROR if status == "failed" else logging.INFO
        self.log_operation(f"store.{operation}", status, log_details, level=level)

    def log_prefilter(self, agent: str, fetched: int, accepted: int):
        """Log pre-filter delta for one group."""
        self.log_operation("prefilter", "success", {
            "agent": agent,
            "fetched": fetched,
            "accepted": accepted,
            "rejected": fetched - accepted
        })

    def log_scoring_progress(self, method: str, done: int, total: int):
        """Log scorer progress as a completion fraction."""
        percent = round(done / total * 100) if total else 100
        self.log_operation(f"scoring.{method}", "progress", {
            "done": done,
            "total": total,
            "percent": percent
        })

    def log_llm_fallback(self, batch_start: int, batch_size: int, reason: str, record_id: str = None):
        """Log a fallback from LLM scoring to rule-based scoring."""
        log_details = {
            "batch_start": batch_start,
            "batch_size": batch_size,
            "reason": reason[:200] if reason else ""
        }
        if record_id is not None:
            log_details["record_id"] = record_id

        self.log_operation("scoring.llm_fallback", "degraded", log_details, level=logging.WARNING)

    def log_group_result(self, agent: str, processed: int, kept: int, eligible: int):
        """Log the selection outcome for one group."""
        self.log_operation("distill.group", "success", {
            "agent": agent,
            "processed": processed,
            "eligible": eligible,
            "kept": kept
        })

    def log_distill_run(self, status: str, details: Dict[str, Any] = None):
        """Log start, completion or failure of a distillation run."""
        level = logging.ERROR if status in ("failed", "cancelled") else logging.INFO
        self.log_operation("distill.run", status, details, level=level)

    def log_snapshot(self, collection: str, location: str, status: str = "success"):
        """Log snapshot creation."""
        self.log_operation("store.snapshot", status, {
            "collection": collection,
            "location": location
        })

    def log_memory_preview(self, operation: str, record_id: str, text: str, details: Dict[str, Any] = None):
        """Log a single memory with its text truncated."""
        log_details = {"record_id": record_id, "text": _preview(text)}
        if details:
            log_details.update(details)

        self.log_operation(operation, "debug", log_details, level=logging.DEBUG)

    def log_config_issues(self, issues: List[str]):
        """Log configuration validation failures."""
        self.log_operation("config.validate", "rejected", {
            "issues": issues,
            "issue_count": len(issues)
        }, level=logging.ERROR)

    # Standard logging methods for compatibility
    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)


# Global logger instance
logger = StructuredLogger()
