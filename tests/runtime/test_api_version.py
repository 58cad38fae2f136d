"""Tests for the API version policies."""

import pytest

from brickflow.errors import BusinessError
from brickflow.runtime.api_version import PipelineState, V1Policy, V2Policy, V3Policy, policy_for
from brickflow.runtime.models import ApiVersion, BrickKind, Step

CONTEXT = {"@input": {"a": 1}, "@options": {}}


class TestPolicySelection:
    @pytest.mark.parametrize(
        "version,policy_cls",
        [("v1", V1Policy), (ApiVersion.V2, V2Policy), ("v3", V3Policy)],
    )
    def test_policy_for(self, version, policy_cls) -> None:
        assert isinstance(policy_for(version), policy_cls)

    def test_unknown_version(self) -> None:
        with pytest.raises(ValueError):
            policy_for("v4")


class TestFolding:
    def test_keyed_output_binds_new_context(self) -> None:
        policy = policy_for("v3")
        state = policy.initial_state(CONTEXT, {"a": 1})
        step = Step("x", output_key="result")
        folded = policy.fold_output(state, step, BrickKind.TRANSFORMER, [1], is_last=False)

        assert folded.context["@result"] == [1]
        assert "@result" not in state.context
        assert folded.output == {}
        assert folded.block_output == [1]

    @pytest.mark.parametrize("version", ["v1", "v2", "v3"])
    def test_effect_output_is_ignored(self, version) -> None:
        policy = policy_for(version)
        state = PipelineState(context=CONTEXT, output="kept")
        folded = policy.fold_output(state, Step("x"), BrickKind.EFFECT, "ignored", is_last=True)
        assert folded.output == "kept"
        assert folded.block_output is None

    def test_v1_unkeyed_output_replaces_value(self) -> None:
        policy = policy_for("v1")
        state = policy.initial_state(CONTEXT, {"a": 1})
        folded = policy.fold_output(state, Step("x"), BrickKind.READER, {"b": 2}, is_last=False)
        assert policy.template_context(folded) == {**CONTEXT, "b": 2}
        assert not policy.passes_config_through(folded)

        folded = policy.fold_output(folded, Step("x"), BrickKind.TRANSFORMER, "text", is_last=False)
        assert policy.passes_config_through(folded)
        assert policy.brick_context(folded) == "text"

    def test_v2_unkeyed_output_only_kept_when_last(self) -> None:
        policy = policy_for("v2")
        state = policy.initial_state(CONTEXT, {})
        middle = policy.fold_output(state, Step("x"), BrickKind.TRANSFORMER, 1, is_last=False)
        assert middle.output == {}
        last = policy.fold_output(middle, Step("x"), BrickKind.TRANSFORMER, 2, is_last=True)
        assert policy.terminal_value(last) == 2

    def test_renderer_output_only_counts_when_last(self) -> None:
        policy = policy_for("v3")
        state = policy.initial_state(CONTEXT, {})
        middle = policy.fold_output(state, Step("x"), BrickKind.RENDERER, "<p/>", is_last=False)
        assert middle.output == {}
        last = policy.fold_output(state, Step("x"), BrickKind.RENDERER, "<p/>", is_last=True)
        assert last.output == "<p/>"

    def test_expression_returns_last_brick_output(self) -> None:
        policy = policy_for("v3")
        state = policy.expression_state(CONTEXT)
        folded = policy.fold_output(state, Step("x", output_key="k"), BrickKind.TRANSFORMER, 5, is_last=True)
        assert policy.terminal_value(folded) is None
        assert policy.terminal_value(folded, expression=True) == 5

    def test_v1_has_no_nested_pipelines(self) -> None:
        with pytest.raises(BusinessError):
            policy_for("v1").expression_state(CONTEXT)

    def test_render_mode(self) -> None:
        step = Step("x", template_engine="nunjucks")
        assert policy_for("v1").implicit_render(step) == "nunjucks"
        assert policy_for("v2").implicit_render(step) == "nunjucks"
        assert policy_for("v3").implicit_render(step) is None
