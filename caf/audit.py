"""Structured audit events for every filesystem mutation.

Handlers report what they did through an ``AuditLogger``. Events go to the
``caf.audit`` logger and to an optional sink callable, so the core never
depends on how they are displayed or stored.
"""

import getpass
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from caf.env import Environment

logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILURE = "failure"
WARNING = "warning"

_LEVELS = {SUCCESS: logging.INFO, FAILURE: logging.ERROR, WARNING: logging.WARNING}


@dataclass(frozen=True)
class AuditEvent:
    """One audited action."""

    action: str
    resource_name: str
    resource_type: str
    outcome: str
    target_path: str | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""
    actor: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the camelCase keys used in log records."""
        data: dict[str, Any] = {
            "action": self.action,
            "resourceName": self.resource_name,
            "resourceType": self.resource_type,
            "outcome": self.outcome,
            "timestamp": self.timestamp,
        }
        if self.target_path is not None:
            data["targetPath"] = self.target_path
        if self.error is not None:
            data["error"] = self.error
        if self.details:
            data["details"] = self.details
        if self.actor:
            data["actorId"] = self.actor
        return data


AuditSink = Callable[[AuditEvent], None]


def _current_actor() -> str | None:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return None


class AuditLogger:
    """Records audit events with home and project paths masked."""

    def __init__(self, env: Environment, sink: AuditSink | None = None) -> None:
        self._env = env
        self._sink = sink
        self._actor = _current_actor()
        self.events: list[AuditEvent] = []

    def sanitize_path(self, path: str | Path | None) -> str | None:
        """Replace the project root, global state dir and home with placeholders."""
        if path is None:
            return None
        text = str(path)
        replacements = (
            (str(self._env.cwd), "<PROJECT_ROOT>"),
            (str(self._env.global_state_dir), "<GLOBAL_ROOT>"),
            (str(self._env.home), "<HOME>"),
        )
        for prefix, placeholder in replacements:
            if text == prefix or text.startswith(prefix + "/"):
                return placeholder + text[len(prefix):]
        return text

    def log(
        self,
        action: str,
        resource_name: str,
        resource_type: str,
        outcome: str,
        target_path: str | Path | None = None,
        error: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        event = AuditEvent(
            action=action,
            resource_name=resource_name,
            resource_type=resource_type,
            outcome=outcome,
            target_path=self.sanitize_path(target_path),
            error=error,
            details=dict(details or {}),
            timestamp=datetime.now(timezone.utc).isoformat(),
            actor=self._actor,
        )
        self.events.append(event)
        logger.log(
            _LEVELS.get(outcome, logging.INFO),
            "%s %s/%s: %s",
            action,
            resource_type,
            resource_name,
            outcome,
            extra={"audit": event.to_dict()},
        )
        if self._sink is not None:
            self._sink(event)
        return event

    def success(
        self,
        action: str,
        resource_name: str,
        resource_type: str,
        target_path: str | Path | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        return self.log(action, resource_name, resource_type, SUCCESS, target_path, details=details)

    def failure(
        self,
        action: str,
        resource_name: str,
        resource_type: str,
        error: str,
        target_path: str | Path | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        return self.log(
            action, resource_name, resource_type, FAILURE, target_path, error=error, details=details
        )

    def warning(
        self,
        action: str,
        resource_name: str,
        resource_type: str,
        details: dict[str, Any] | None = None,
        target_path: str | Path | None = None,
    ) -> AuditEvent:
        return self.log(action, resource_name, resource_type, WARNING, target_path, details=details)
