"""Catalog of directory actions and their canonical execution order."""

import enum
from dataclasses import dataclass, field
from typing import Any


class ActionType(str, enum.Enum):
    """Every action the engine can run against a target user.

    Declaration order is the execution order: sign-in is blocked and sessions
    are revoked before any cleanup, and irreversible device actions run last.
    """

    DISABLE_ACCOUNT = "disableAccount"
    REVOKE_ACCESS = "revokeAccess"
    RESET_PASSWORD = "resetPassword"
    REVOKE_LICENSES = "revokeLicenses"
    REMOVE_FROM_GROUPS = "removeFromGroups"
    REMOVE_FROM_TEAMS = "removeFromTeams"
    REMOVE_APP_ACCESS = "removeAppAccess"
    REMOVE_AUTH_METHODS = "removeAuthMethods"
    CONVERT_TO_SHARED_MAILBOX = "convertToSharedMailbox"
    SET_EMAIL_FORWARDING = "setEmailForwarding"
    SET_AUTO_REPLY = "setAutoReply"
    BACKUP_DATA = "backupData"
    TRANSFER_FILES = "transferFiles"
    REMOVE_APPS = "removeApps"
    WIPE_DEVICES = "wipeDevices"
    RETIRE_DEVICES = "retireDevices"

    @property
    def is_irreversible(self) -> bool:
        return self in IRREVERSIBLE_ACTIONS

    @property
    def label(self) -> str:
        return ACTION_LABELS[self]


CANONICAL_ORDER: dict[ActionType, int] = {action: index for index, action in enumerate(ActionType)}

IRREVERSIBLE_ACTIONS = frozenset({ActionType.WIPE_DEVICES, ActionType.RETIRE_DEVICES})

# Only one device disposition can be chosen per run
MUTUALLY_EXCLUSIVE_ACTIONS = [(ActionType.WIPE_DEVICES, ActionType.RETIRE_DEVICES)]

ACTION_LABELS: dict[ActionType, str] = {
    ActionType.DISABLE_ACCOUNT: "Disable account",
    ActionType.REVOKE_ACCESS: "Revoke sessions",
    ActionType.RESET_PASSWORD: "Reset password",
    ActionType.REVOKE_LICENSES: "Revoke licenses",
    ActionType.REMOVE_FROM_GROUPS: "Remove from groups",
    ActionType.REMOVE_FROM_TEAMS: "Remove from Teams",
    ActionType.REMOVE_APP_ACCESS: "Remove enterprise application access",
    ActionType.REMOVE_AUTH_METHODS: "Remove authentication methods",
    ActionType.CONVERT_TO_SHARED_MAILBOX: "Convert to shared mailbox",
    ActionType.SET_EMAIL_FORWARDING: "Set email forwarding",
    ActionType.SET_AUTO_REPLY: "Set auto-reply",
    ActionType.BACKUP_DATA: "Back up OneDrive data",
    ActionType.TRANSFER_FILES: "Share files with a new owner",
    ActionType.REMOVE_APPS: "Remove managed apps",
    ActionType.WIPE_DEVICES: "Wipe devices",
    ActionType.RETIRE_DEVICES: "Retire devices",
}


def canonical_sort(actions: list[ActionType]) -> list[ActionType]:
    """Return actions in execution order, regardless of submission order."""
    return sorted(actions, key=CANONICAL_ORDER.__getitem__)


class ActionStatus(str, enum.Enum):
    """Outcome of one action within a run."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ActionOutcome:
    """What a directory handler reports back to the engine.

    ``items`` holds one entry per sub-target touched (group, team, device)
    with its own status and reason.
    """

    status: ActionStatus
    detail: str
    items: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def success(cls, detail: str, items: list[dict[str, Any]] | None = None) -> "ActionOutcome":
        return cls(ActionStatus.SUCCESS, detail, items or [])

    @classmethod
    def skipped(cls, detail: str, items: list[dict[str, Any]] | None = None) -> "ActionOutcome":
        return cls(ActionStatus.SKIPPED, detail, items or [])
