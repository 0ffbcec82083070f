"""
Action catalog tests - declared sensitivity, aliases, payload models.
"""

import pytest
from pydantic import ValidationError

from sitemind.core import payloads as p
from sitemind.core.catalog import (
    DEFAULT_CATALOG,
    ActionCatalog,
    ActionSpec,
    Sensitivity,
    UnknownActionError,
)


def _spec(name="doThing", sensitivity=Sensitivity.DIRECT):
    return ActionSpec(name, "misc", sensitivity, p.NoParams, p.CacheResult, "clear_cache", "test")


class TestDefaultCatalog:

    def test_gated_actions_are_declared(self):
        gated = {spec.name for spec in DEFAULT_CATALOG.gated_actions()}
        assert gated == {"processRefund", "toggleMaintenanceMode"}

    def test_every_entry_declares_sensitivity(self):
        for spec in DEFAULT_CATALOG:
            assert isinstance(spec.sensitivity, Sensitivity)

    def test_update_order_status_cannot_refund(self):
        spec = DEFAULT_CATALOG.get("updateOrderStatus")
        assert not spec.requires_approval
        with pytest.raises(ValidationError):
            spec.params_model.model_validate({"orderId": 456, "status": "REFUNDED"})

    def test_aliases_resolve_to_canonical(self):
        assert DEFAULT_CATALOG.resolve("generateRefundApproval").name == "processRefund"
        assert DEFAULT_CATALOG.resolve("generateMaintenanceApproval").name == "toggleMaintenanceMode"
        assert "generateRefundApproval" not in DEFAULT_CATALOG.names()

    def test_unknown_action(self):
        assert DEFAULT_CATALOG.resolve("dropDatabase") is None
        assert "dropDatabase" not in DEFAULT_CATALOG
        with pytest.raises(UnknownActionError):
            DEFAULT_CATALOG.get("dropDatabase")

    def test_resolve_ignores_non_strings(self):
        assert DEFAULT_CATALOG.resolve(None) is None
        assert DEFAULT_CATALOG.resolve(["closeTicket"]) is None

    def test_describe_uses_wire_names(self):
        described = DEFAULT_CATALOG.get("processRefund").describe()
        assert described["params"] == ["orderId", "reason"]
        assert described["sensitivity"] == "approval-required"


class TestCatalogConstruction:

    def test_missing_sensitivity_rejected(self):
        with pytest.raises(ValueError, match="Sensitivity"):
            ActionCatalog([_spec(sensitivity="direct")])

    def test_duplicate_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            ActionCatalog([_spec(), _spec()])

    def test_alias_to_unknown_rejected(self):
        with pytest.raises(ValueError, match="unknown action"):
            ActionCatalog([_spec()], aliases={"other": "missing"})

    def test_alias_shadowing_rejected(self):
        with pytest.raises(ValueError, match="shadows"):
            ActionCatalog([_spec("a"), _spec("b")], aliases={"a": "b"})


class TestPayloadModels:

    def test_params_accept_numeric_strings(self):
        params = p.TicketRef.model_validate({"ticketId": "45"})
        assert params.ticket_id == 45

    def test_params_reject_unknown_fields(self):
        with pytest.raises(ValidationError):
            p.TicketRef.model_validate({"ticketId": 45, "force": True})

    def test_data_models_are_strict(self):
        with pytest.raises(ValidationError):
            p.MaintenanceResult.model_validate_json('{"maintenanceMode": "yes"}')

    def test_close_ticket_default_resolution(self):
        assert p.CloseTicketParams(ticket_id=1).resolution == "Closed by administrator"
