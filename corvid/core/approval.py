"""Approval policy deciding which tool calls need a human decision."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from corvid.utils.logging import get_logger

if TYPE_CHECKING:
    from corvid.tools.base import ToolConfirmation

log = get_logger(__name__)


class ApprovalMode(str, Enum):
    DEFAULT = "default"
    AUTO_EDIT = "auto_edit"
    YOLO = "yolo"


class ConfirmationOutcome(str, Enum):
    PROCEED_ONCE = "proceed_once"
    PROCEED_ALWAYS = "proceed_always"
    CANCEL = "cancel"


class ApprovalPolicy:
    """Current approval mode plus the classes of calls accepted for the session.

    The mode is externally mutable; the scheduler reads it every time a call
    is validated.
    """

    def __init__(self, mode: ApprovalMode = ApprovalMode.DEFAULT) -> None:
        self.mode = mode
        self._always_allowed: set[str] = set()

    @property
    def auto_accepts_all(self) -> bool:
        return self.mode is ApprovalMode.YOLO

    def needs_approval(self, confirmation: ToolConfirmation | None) -> bool:
        if confirmation is None or self.mode is ApprovalMode.YOLO:
            return False
        if self.mode is ApprovalMode.AUTO_EDIT and confirmation.kind == "edit":
            return False
        return confirmation.approval_key not in self._always_allowed

    def record(self, outcome: ConfirmationOutcome, confirmation: ToolConfirmation) -> None:
        if outcome is not ConfirmationOutcome.PROCEED_ALWAYS:
            return
        self._always_allowed.add(confirmation.approval_key)
        log.info("approval_always_allowed", key=confirmation.approval_key)

    def reset(self) -> None:
        self._always_allowed.clear()
