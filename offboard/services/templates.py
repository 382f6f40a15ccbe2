"""Named bundles of default actions, loaded from config.yml."""

from offboard.config import ActionTemplate, get_config
from offboard.directory.actions import CANONICAL_ORDER, ActionType
from offboard.schemas.scheduled_action import ActionCatalogEntry, CatalogResponse, TemplateResponse
from offboard.services.errors import ScheduledActionInvalid


def list_templates() -> list[ActionTemplate]:
    return list(get_config().templates.values())


def get_template(template_id: str) -> ActionTemplate:
    template = get_config().templates.get(template_id)
    if template is None:
        raise ScheduledActionInvalid(f"Unknown template: {template_id}")
    return template


def template_actions(template: ActionTemplate) -> list[ActionType]:
    """The template's actions as catalog members.

    Raises:
        ScheduledActionInvalid: If config.yml lists an action outside the catalog
    """
    try:
        return [ActionType(action) for action in template.actions]
    except ValueError as e:
        raise ScheduledActionInvalid(f"Template {template.id} is misconfigured: {e}") from e


def build_catalog() -> CatalogResponse:
    return CatalogResponse(
        actions=[
            ActionCatalogEntry(
                id=action,
                label=action.label,
                order=CANONICAL_ORDER[action],
                irreversible=action.is_irreversible,
            )
            for action in ActionType
        ],
        templates=[
            TemplateResponse(
                id=template.id,
                name=template.name,
                description=template.description,
                actions=template_actions(template),
            )
            for template in list_templates()
        ],
    )
