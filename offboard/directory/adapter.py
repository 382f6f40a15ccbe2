"""Directory actions: one handler per ActionType, resolved through a dispatch table.

Handlers return an ActionOutcome or raise DirectoryActionError. Transient
API failures are already retried by GraphClient before they reach here.
"""

import secrets
import string
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from offboard.config import DirectoryConfig, get_config
from offboard.core.logging import get_logger
from offboard.directory.actions import ActionOutcome, ActionStatus, ActionType
from offboard.directory.client import GraphClient, GraphError
from offboard.schemas.scheduled_action import ActionOptions, TargetUser

logger = get_logger(__name__)

GROUP_SELECT = "id,displayName,mailEnabled,securityEnabled,groupTypes,onPremisesSyncEnabled,membershipRule"

FORWARDING_RULE_NAME = "Offboarding forward"

PASSWORD_SYMBOLS = "!@#$%^&*-_=+"

# Removable authentication methods and their collection under /authentication
AUTH_METHOD_SEGMENTS = {
    "#microsoft.graph.microsoftAuthenticatorAuthenticationMethod": "microsoftAuthenticatorMethods",
    "#microsoft.graph.phoneAuthenticationMethod": "phoneMethods",
    "#microsoft.graph.fido2AuthenticationMethod": "fido2Methods",
    "#microsoft.graph.emailAuthenticationMethod": "emailMethods",
    "#microsoft.graph.softwareOathAuthenticationMethod": "softwareOathMethods",
    "#microsoft.graph.windowsHelloForBusinessAuthenticationMethod": "windowsHelloForBusinessMethods",
    "#microsoft.graph.temporaryAccessPassAuthenticationMethod": "temporaryAccessPassMethods",
}
PASSWORD_METHOD_TYPE = "#microsoft.graph.passwordAuthenticationMethod"


class DirectoryActionError(Exception):
    """An action could not be carried out. Recorded as a failed action."""

    def __init__(self, message: str, items: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.items = items or []


Handler = Callable[[GraphClient, TargetUser, ActionOptions], Awaitable[ActionOutcome]]


def group_skip_reason(group: dict[str, Any]) -> str | None:
    """Why a group membership must not be removed through the directory API, if it mustn't.

    Synced groups are owned by the on-premises directory, mail-enabled groups
    by Exchange, and dynamic groups recompute membership from a rule.
    """
    if group.get("onPremisesSyncEnabled"):
        return "synced from on-premises directory"
    if "DynamicMembership" in (group.get("groupTypes") or []) or group.get("membershipRule"):
        return "dynamic membership rule"
    if group.get("mailEnabled"):
        return "mail-enabled group managed by Exchange"
    return None


def generate_password(length: int = 16) -> str:
    """Random password containing lower, upper, digit and symbol characters."""
    length = max(length, 8)
    alphabet = string.ascii_letters + string.digits + PASSWORD_SYMBOLS
    while True:
        password = "".join(secrets.choice(alphabet) for _ in range(length))
        if (
            any(c.islower() for c in password)
            and any(c.isupper() for c in password)
            and any(c.isdigit() for c in password)
            and any(c in PASSWORD_SYMBOLS for c in password)
        ):
            return password


def _item(target_id: str, name: str | None) -> dict[str, Any]:
    return {"id": target_id, "name": name or target_id}


async def _attempt(item: dict[str, Any], call: Awaitable[Any]) -> dict[str, Any]:
    """Await one per-target call and record its outcome on the item."""
    try:
        await call
    except GraphError as e:
        if e.status_code == 404:
            return {**item, "status": ActionStatus.SUCCESS.value, "reason": "already removed"}
        logger.bind(target=item["id"], error=str(e)).warning("directory_item_failed")
        return {**item, "status": ActionStatus.FAILED.value, "error": str(e)}
    return {**item, "status": ActionStatus.SUCCESS.value}


def summarize_items(noun: str, items: list[dict[str, Any]], verb: str = "Removed") -> ActionOutcome:
    """Fold per-target results into one action outcome.

    Nothing to do is a success and only skips is skipped. Any failed target
    fails the whole action, with every per-target result attached.
    """
    if not items:
        return ActionOutcome.success(f"No {noun} found")

    done = [i for i in items if i["status"] == ActionStatus.SUCCESS.value]
    skipped = [i for i in items if i["status"] == ActionStatus.SKIPPED.value]
    failed = [i for i in items if i["status"] == ActionStatus.FAILED.value]

    if failed:
        raise DirectoryActionError(
            f"Failed for {len(failed)} of {len(items)} {noun}: {failed[0]['error']}",
            items,
        )
    if not done:
        reasons = "; ".join(f"{i['name']} ({i['reason']})" for i in skipped)
        return ActionOutcome.skipped(f"Skipped {len(skipped)} {noun}: {reasons}", items)

    detail = f"{verb} {len(done)} {noun}"
    if skipped:
        detail += f", skipped {len(skipped)}"
    return ActionOutcome.success(detail, items)


class DirectoryActionAdapter:
    """Runs catalog actions against one target user."""

    def __init__(
        self,
        config: DirectoryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or get_config().directory
        self._transport = transport
        self._handlers: dict[ActionType, Handler] = {
            ActionType.DISABLE_ACCOUNT: self.disable_account,
            ActionType.REVOKE_ACCESS: self.revoke_access,
            ActionType.RESET_PASSWORD: self.reset_password,
            ActionType.REVOKE_LICENSES: self.revoke_licenses,
            ActionType.REMOVE_FROM_GROUPS: self.remove_from_groups,
            ActionType.REMOVE_FROM_TEAMS: self.remove_from_teams,
            ActionType.REMOVE_APP_ACCESS: self.remove_app_access,
            ActionType.REMOVE_AUTH_METHODS: self.remove_auth_methods,
            ActionType.CONVERT_TO_SHARED_MAILBOX: self.convert_to_shared_mailbox,
            ActionType.SET_EMAIL_FORWARDING: self.set_email_forwarding,
            ActionType.SET_AUTO_REPLY: self.set_auto_reply,
            ActionType.BACKUP_DATA: self.backup_data,
            ActionType.TRANSFER_FILES: self.transfer_files,
            ActionType.REMOVE_APPS: self.remove_apps,
            ActionType.WIPE_DEVICES: self.wipe_devices,
            ActionType.RETIRE_DEVICES: self.retire_devices,
        }
        missing = set(ActionType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for actions: {sorted(a.value for a in missing)}")

    def connect(self, access_token: str) -> GraphClient:
        """Open a client for one run. Close it with ``async with``."""
        return GraphClient(access_token, transport=self._transport)

    async def run(
        self,
        action: ActionType,
        graph: GraphClient,
        user: TargetUser,
        options: ActionOptions,
    ) -> ActionOutcome:
        handler = self._handlers[action]
        try:
            return await handler(graph, user, options)
        except GraphError as e:
            raise DirectoryActionError(str(e)) from e

    # --- Account ---

    async def disable_account(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        await graph.patch(f"/users/{user.id}", {"accountEnabled": False})
        return ActionOutcome.success("Sign-in disabled")

    async def revoke_access(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        await graph.post(f"/users/{user.id}/revokeSignInSessions")
        return ActionOutcome.success("All sign-in sessions revoked")

    async def reset_password(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        password = generate_password(self.config.password_length)
        await graph.patch(
            f"/users/{user.id}",
            {
                "passwordProfile": {
                    "forceChangePasswordNextSignIn": True,
                    "password": password,
                }
            },
        )
        return ActionOutcome.success("Password reset to a random value")

    async def revoke_licenses(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        licenses = await graph.get_all(f"/users/{user.id}/licenseDetails")
        if not licenses:
            return ActionOutcome.success("No licenses assigned")

        await graph.post(
            f"/users/{user.id}/assignLicense",
            {"addLicenses": [], "removeLicenses": [lic["skuId"] for lic in licenses]},
        )
        items = [
            {**_item(lic["skuId"], lic.get("skuPartNumber")), "status": ActionStatus.SUCCESS.value}
            for lic in licenses
        ]
        return ActionOutcome.success(f"Removed {len(licenses)} licenses", items)

    # --- Memberships ---

    async def remove_from_groups(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        # The cast segment leaves out directory roles and administrative units
        groups = await graph.get_all(
            f"/users/{user.id}/memberOf/microsoft.graph.group",
            params={"$select": GROUP_SELECT},
        )

        items = []
        for group in groups:
            item = _item(group["id"], group.get("displayName"))
            reason = group_skip_reason(group)
            if reason:
                logger.bind(user_id=user.id, group_id=group["id"], reason=reason).info("group_removal_skipped")
                items.append({**item, "status": ActionStatus.SKIPPED.value, "reason": reason})
                continue
            items.append(await _attempt(item, graph.delete(f"/groups/{group['id']}/members/{user.id}/$ref")))

        return summarize_items("groups", items)

    async def remove_from_teams(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        teams = await graph.get_all(f"/users/{user.id}/joinedTeams", params={"$select": "id,displayName"})
        items = [
            await _attempt(
                _item(team["id"], team.get("displayName")),
                graph.delete(f"/groups/{team['id']}/members/{user.id}/$ref"),
            )
            for team in teams
        ]
        return summarize_items("teams", items)

    async def remove_app_access(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        assignments = await graph.get_all(f"/users/{user.id}/appRoleAssignments")
        items = [
            await _attempt(
                _item(assignment["id"], assignment.get("resourceDisplayName")),
                graph.delete(f"/users/{user.id}/appRoleAssignments/{assignment['id']}"),
            )
            for assignment in assignments
        ]
        return summarize_items("app role assignments", items)

    async def remove_auth_methods(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        methods = await graph.get_all(f"/users/{user.id}/authentication/methods")

        items = []
        for method in methods:
            method_type = method.get("@odata.type", "")
            if method_type == PASSWORD_METHOD_TYPE:
                continue
            item = _item(method["id"], method_type.removeprefix("#microsoft.graph."))
            segment = AUTH_METHOD_SEGMENTS.get(method_type)
            if segment is None:
                items.append({**item, "status": ActionStatus.SKIPPED.value, "reason": "unsupported method type"})
                continue
            items.append(
                await _attempt(item, graph.delete(f"/users/{user.id}/authentication/{segment}/{method['id']}"))
            )

        return summarize_items("authentication methods", items)

    # --- Mailbox ---

    async def convert_to_shared_mailbox(
        self, graph: GraphClient, user: TargetUser, options: ActionOptions
    ) -> ActionOutcome:
        profile = await graph.get(f"/users/{user.id}", params={"$select": "mail,userPrincipalName"})
        mail = profile.get("mail")
        if not mail:
            return ActionOutcome.skipped("User has no mailbox")
        # Mailbox type is only writable through Exchange Online
        return ActionOutcome.skipped(
            f"Mailbox conversion is not available through the directory API; "
            f"run Set-Mailbox -Identity {mail} -Type Shared in Exchange Online"
        )

    async def set_email_forwarding(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        address = options.forwarding_address or await self._manager_address(graph, user)
        if not address:
            raise DirectoryActionError("No forwarding address given and the user has no manager")

        rule = {
            "displayName": FORWARDING_RULE_NAME,
            "sequence": 1,
            "isEnabled": True,
            "actions": {
                "forwardTo": [{"emailAddress": {"address": address}}],
                "stopProcessingRules": False,
            },
        }
        rules_path = f"/users/{user.id}/mailFolders/inbox/messageRules"
        existing = next(
            (r for r in await graph.get_all(rules_path) if r.get("displayName") == FORWARDING_RULE_NAME),
            None,
        )
        if existing:
            await graph.patch(f"{rules_path}/{existing['id']}", rule)
        else:
            await graph.post(rules_path, rule)
        return ActionOutcome.success(f"Forwarding mail to {address}")

    async def set_auto_reply(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        message = options.auto_reply_message or self.config.auto_reply_message
        await graph.patch(
            f"/users/{user.id}/mailboxSettings",
            {
                "automaticRepliesSetting": {
                    "status": "alwaysEnabled",
                    "externalAudience": "all" if options.auto_reply_external else "none",
                    "internalReplyMessage": message,
                    "externalReplyMessage": message if options.auto_reply_external else "",
                }
            },
        )
        return ActionOutcome.success("Automatic replies enabled")

    # --- Files ---

    async def backup_data(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        drive_id = options.backup_drive_id or self.config.backup_drive_id
        folder_id = options.backup_folder_id or self.config.backup_folder_id
        if not drive_id or not folder_id:
            raise DirectoryActionError("No backup location configured")

        children = await graph.get_all(f"/users/{user.id}/drive/root/children", params={"$select": "id,name"})
        items = [
            await _attempt(
                _item(child["id"], child.get("name")),
                graph.post(
                    f"/users/{user.id}/drive/items/{child['id']}/copy?@microsoft.graph.conflictBehavior=rename",
                    {
                        "parentReference": {"driveId": drive_id, "id": folder_id},
                        "name": f"{user.display_name} - {child.get('name', child['id'])}",
                    },
                ),
            )
            for child in children
        ]
        return summarize_items("items", items, verb="Copied")

    async def transfer_files(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        owner = options.new_file_owner or await self._manager_address(graph, user)
        if not owner:
            raise DirectoryActionError("No new file owner given and the user has no manager")

        await graph.post(
            f"/users/{user.id}/drive/root/invite",
            {
                "recipients": [{"email": owner}],
                "roles": ["write"],
                "requireSignIn": True,
                "sendInvitation": False,
            },
        )
        # Graph cannot reassign OneDrive ownership; the new owner gets write access to the whole drive
        return ActionOutcome.success(f"Granted {owner} write access to the user's OneDrive (ownership unchanged)")

    # --- Devices ---

    async def remove_apps(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        registrations = await graph.get_all(f"/users/{user.id}/managedAppRegistrations")

        tags: dict[str, str | None] = {}
        for registration in registrations:
            if registration.get("deviceTag"):
                tags.setdefault(registration["deviceTag"], registration.get("deviceName"))

        items = [
            await _attempt(
                _item(tag, name),
                graph.post(f"/users/{user.id}/wipeManagedAppRegistrationsByDeviceTag", {"deviceTag": tag}),
            )
            for tag, name in tags.items()
        ]
        return summarize_items("devices", items, verb="Wiped managed apps on")

    async def wipe_devices(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        devices = await self._managed_devices(graph, user)
        items = [
            await _attempt(
                _item(device["id"], device.get("deviceName")),
                graph.post(
                    f"/deviceManagement/managedDevices/{device['id']}/wipe",
                    {"keepEnrollmentData": False, "keepUserData": False},
                ),
            )
            for device in devices
        ]
        return summarize_items("devices", items, verb="Wiped")

    async def retire_devices(self, graph: GraphClient, user: TargetUser, options: ActionOptions) -> ActionOutcome:
        devices = await self._managed_devices(graph, user)
        items = [
            await _attempt(
                _item(device["id"], device.get("deviceName")),
                graph.post(f"/deviceManagement/managedDevices/{device['id']}/retire"),
            )
            for device in devices
        ]
        return summarize_items("devices", items, verb="Retired")

    # --- Lookups ---

    async def _managed_devices(self, graph: GraphClient, user: TargetUser) -> list[dict[str, Any]]:
        return await graph.get_all(
            f"/users/{user.id}/managedDevices",
            params={"$select": "id,deviceName,operatingSystem"},
        )

    async def _manager_address(self, graph: GraphClient, user: TargetUser) -> str | None:
        try:
            manager = await graph.get(f"/users/{user.id}/manager", params={"$select": "mail,userPrincipalName"})
        except GraphError as e:
            if e.status_code == 404:
                return None
            raise
        return manager.get("mail") or manager.get("userPrincipalName")
