"""Parameter definitions must describe what each runner accepts."""

import pytest

from mythcanon.schemas.canonicalization import CanonicalizationMode
from mythcanon.services.canonicalization.orchestrator import default_algorithms

RUNNERS = default_algorithms()


def sample_value(definition):
    if definition.default_value is not None:
        return definition.default_value
    if definition.type == "select":
        return definition.options[0].value
    if definition.type == "boolean":
        return False
    if definition.type == "number":
        return 1
    return "value"


def rail_payload(runner) -> dict:
    return {d.key: sample_value(d) for d in runner.parameter_definitions}


def parsed_value(parsed, model, key):
    rail_keys = getattr(model, "RAIL_KEYS", {})
    if key in rail_keys:
        field_name, attribute = rail_keys[key]
        return getattr(getattr(parsed, field_name), attribute)
    return getattr(parsed, key)


class TestParameterDefinitions:
    """Every advertised key is accepted by the runner's parameter model."""

    @pytest.mark.parametrize("mode", list(CanonicalizationMode))
    def test_keys_are_known(self, mode):
        runner = RUNNERS[mode]
        model = runner.params_model
        known = set(model.model_fields) | set(getattr(model, "RAIL_KEYS", {}))

        assert {d.key for d in runner.parameter_definitions} <= known

    @pytest.mark.parametrize("mode", list(CanonicalizationMode))
    def test_rail_payload_validates(self, mode):
        runner = RUNNERS[mode]
        payload = rail_payload(runner)

        parsed = runner.params_model.model_validate(payload)

        for key, value in payload.items():
            assert parsed_value(parsed, runner.params_model, key) == value

    @pytest.mark.parametrize("mode", list(CanonicalizationMode))
    def test_every_select_option_validates(self, mode):
        runner = RUNNERS[mode]
        for definition in runner.parameter_definitions:
            if definition.type != "select":
                continue
            assert definition.options
            for option in definition.options:
                payload = rail_payload(runner) | {definition.key: option.value}
                parsed = runner.params_model.model_validate(payload)
                assert parsed_value(parsed, runner.params_model, definition.key) == option.value

    @pytest.mark.parametrize("mode", list(CanonicalizationMode))
    def test_number_definitions_reject_text(self, mode):
        runner = RUNNERS[mode]
        for definition in runner.parameter_definitions:
            if definition.type != "number":
                continue
            payload = rail_payload(runner) | {definition.key: "not a number"}
            with pytest.raises(ValueError):
                runner.params_model.model_validate(payload)
