"""
Structured logging for the governance service.
Every validation, execution and turn transition is logged as a flat operation line
so the audit trail can be grepped alongside the ledger.
"""

import logging
from typing import Any, Dict, List, Optional

SENSITIVE_FIELDS = ['payload', 'content', 'message', 'secret', 'password', 'token']


class StructuredLogger:
    """Structured logger for governance operations."""

    def __init__(self, name: str = "governance"):
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

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_validation(self, validation_id: int, status: str, score: int, violated_rule_ids: List[int],
                       session_id: Optional[str] = None):
        """Log a ledger append."""
        details = {
            "validation_id": validation_id,
            "score": score,
            "violated_rule_ids": list(violated_rule_ids),
        }
        if session_id:
            details["session_id"] = session_id
        self.log_operation("validation.recorded", status, details)

    def log_execution(self, validation_id: int, executed: bool, action_count: int,
                      failed_action_index: Optional[int] = None, error_kind: Optional[str] = None):
        """Log the outcome of an action batch."""
        details = {"validation_id": validation_id, "action_count": action_count}
        if not executed:
            details["failed_action_index"] = failed_action_index
            details["error_kind"] = error_kind
        self.log_operation("execution.batch", "committed" if executed else "rolled_back", details)

    def log_turn_state(self, session_id: str, turn_id: str, state: str, details: Dict[str, Any] = None):
        """Log a session orchestrator state transition."""
        log_details = {"session_id": session_id, "turn_id": turn_id}
        if details:
            log_details.update(details)
        self.log_operation(f"turn.{state}", "transition", log_details)

    def log_collaborator_failure(self, collaborator: str, error_kind: str, session_id: str, reason: str = ""):
        """Log an advisor failure or timeout."""
        log_details = {
            "collaborator": collaborator,
            "error_kind": error_kind,
            "session_id": session_id,
            "reason": reason[:100] if reason else ""
        }
        self.log_operation("collaborator.failure", "aborted", log_details)

    def log_cache_invalidation(self, topic: str, subscriber: str, status: str = "success", error: str = None):
        """Log a stale-cache notification delivery."""
        details = {"topic": topic, "subscriber": subscriber}
        if error:
            details["error"] = error[:100]
        self.log_operation("cache.invalidate", status, details)

    def log_rule_snapshot(self, version: int, rule_count: int, philosophy_count: int):
        """Log a rule store refresh."""
        self.log_operation("rules.snapshot", "loaded", {
            "version": version,
            "non_negotiables": rule_count,
            "philosophy_items": philosophy_count
        })

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None,
                sensitive_fields: List[str] = None):
    """General audit event logging with payload redaction."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, (list, tuple)):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
