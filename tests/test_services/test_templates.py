"""Tests for action templates and the catalog."""

import pytest

from offboard.config import ActionTemplate
from offboard.directory.actions import ActionType
from offboard.services.errors import ScheduledActionInvalid
from offboard.services.templates import build_catalog, get_template, list_templates, template_actions


class TestTemplates:
    """Tests for template lookup."""

    def test_builtin_templates_are_loaded(self):
        """Should expose the configured templates."""
        assert {t.id for t in list_templates()} == {"standard", "executive", "contractor", "security"}

    def test_templates_only_use_catalog_actions(self):
        """Should map every template action onto the catalog."""
        for template in list_templates():
            assert template_actions(template)

    def test_templates_never_combine_wipe_and_retire(self):
        """Should ship templates that pass validation."""
        for template in list_templates():
            actions = set(template_actions(template))
            assert not {ActionType.WIPE_DEVICES, ActionType.RETIRE_DEVICES} <= actions

    def test_unknown_template(self):
        """Should reject a template that does not exist."""
        with pytest.raises(ScheduledActionInvalid):
            get_template("nope")

    def test_misconfigured_template(self):
        """Should reject a template naming an action outside the catalog."""
        template = ActionTemplate("broken", {"actions": ["disableAccount", "deleteMailbox"]})
        with pytest.raises(ScheduledActionInvalid, match="misconfigured"):
            template_actions(template)


class TestCatalog:
    """Tests for build_catalog."""

    def test_catalog_order_and_flags(self):
        """Should list actions in execution order with irreversible ones flagged."""
        catalog = build_catalog()

        assert [entry.id for entry in catalog.actions] == list(ActionType)
        assert [entry.id for entry in catalog.actions if entry.irreversible] == [
            ActionType.WIPE_DEVICES,
            ActionType.RETIRE_DEVICES,
        ]
        assert all(entry.label for entry in catalog.actions)
