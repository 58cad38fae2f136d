"""Tests for expression evaluation and template rendering."""

import pytest

from brickflow.errors import BusinessError, TemplateRenderError
from brickflow.runtime.evaluator import boolean, evaluate, get_prop_by_path, map_args
from brickflow.runtime.expressions import (
    DeferExpression,
    MustacheExpression,
    NunjucksExpression,
    PipelineExpression,
    VarExpression,
)
from brickflow.runtime.templates import render_mustache, render_nunjucks, render_template

CONTEXT = {
    "@input": {"name": "Ada", "tags": ["x", "y"], "html": "<b>hi</b>", "profile": None},
    "@options": {"greeting": "Hello"},
}


class TestBoolean:
    @pytest.mark.parametrize("value", [True, "true", "Yes", " on ", "1", 1, 2.5])
    def test_truthy(self, value) -> None:
        assert boolean(value) is True

    @pytest.mark.parametrize("value", [False, None, "", "false", "no", "anything", 0, [], {"a": 1}])
    def test_falsy(self, value) -> None:
        assert boolean(value) is False


class TestGetPropByPath:
    def test_paths(self) -> None:
        assert get_prop_by_path(CONTEXT, "@input.name") == "Ada"
        assert get_prop_by_path(CONTEXT, "@input.tags.1") == "y"
        assert get_prop_by_path(CONTEXT, "@input?.name") == "Ada"

    def test_missing_paths_are_none(self) -> None:
        assert get_prop_by_path(CONTEXT, "@input.missing.deeper") is None
        assert get_prop_by_path(CONTEXT, "@input.profile.email") is None
        assert get_prop_by_path(CONTEXT, "@input.tags.9") is None
        assert get_prop_by_path(CONTEXT, "@input.name.length") is None
        assert get_prop_by_path(CONTEXT, "@nothing") is None


class TestEvaluate:
    def test_literal(self) -> None:
        assert evaluate(42, CONTEXT) == 42

    def test_var(self) -> None:
        assert evaluate(VarExpression("@input.tags"), CONTEXT) == ["x", "y"]

    def test_templates(self) -> None:
        assert evaluate(MustacheExpression("{{ @options.greeting }}, {{ @input.name }}"), CONTEXT) == "Hello, Ada"
        assert evaluate(NunjucksExpression("{{ @input.tags | join('-') }}"), CONTEXT) == "x-y"

    def test_pipeline_and_defer_are_returned_unchanged(self) -> None:
        pipeline = PipelineExpression(())
        defer = DeferExpression({"a": VarExpression("@input.name")})
        assert evaluate(pipeline, CONTEXT) is pipeline
        assert evaluate(defer, CONTEXT) is defer


class TestMapArgs:
    def test_deep_walk(self) -> None:
        config = {
            "name": VarExpression("@input.name"),
            "list": [MustacheExpression("{{ @input.name }}!"), 3],
            "plain": "{{ @input.name }}",
        }
        assert map_args(config, CONTEXT) == {
            "name": "Ada",
            "list": ["Ada!", 3],
            "plain": "{{ @input.name }}",
        }

    def test_implicit_render(self) -> None:
        config = {"greeting": "{{ @options.greeting }}", "name": "@input.name", "plain": "text"}
        assert map_args(config, CONTEXT, implicit_render="mustache") == {
            "greeting": "Hello",
            "name": "Ada",
            "plain": "text",
        }

    def test_implicit_var_engine(self) -> None:
        assert map_args({"v": "@input.tags"}, CONTEXT, implicit_render="var") == {"v": ["x", "y"]}

    def test_does_not_mutate_config(self) -> None:
        config = {"a": [VarExpression("@input.name")]}
        map_args(config, CONTEXT)
        assert config == {"a": [VarExpression("@input.name")]}


class TestTemplates:
    def test_mustache_escapes_by_default(self) -> None:
        assert render_mustache("{{ @input.html }}", CONTEXT) == "&lt;b&gt;hi&lt;/b&gt;"
        assert render_mustache("{{{ @input.html }}}", CONTEXT) == "<b>hi</b>"
        assert render_mustache("{{ @input.html }}", CONTEXT, autoescape=False) == "<b>hi</b>"

    def test_mustache_missing_tags_render_empty(self) -> None:
        assert render_mustache("[{{ @input.nope }}]", CONTEXT) == "[]"

    def test_mustache_sections(self) -> None:
        assert render_mustache("{{# @input.tags }}{{.}}{{/ @input.tags }}", CONTEXT) == "xy"

    def test_nunjucks_loops_and_filters(self) -> None:
        template = "{% for tag in @input.tags %}{{ tag | upper }}{% endfor %}"
        assert render_nunjucks(template, CONTEXT) == "XY"

    def test_nunjucks_escaping(self) -> None:
        assert render_nunjucks("{{ @input.html }}", CONTEXT) == "&lt;b&gt;hi&lt;/b&gt;"
        assert render_nunjucks("{{ @input.html }}", CONTEXT, autoescape=False) == "<b>hi</b>"

    def test_nunjucks_undefined_is_lenient(self) -> None:
        assert render_nunjucks("[{{ @input.nope.deeper }}]", CONTEXT) == "[]"

    def test_nunjucks_literal_at_sign_outside_tags(self) -> None:
        assert render_nunjucks("mail @input: {{ @input.name }}", CONTEXT) == "mail @input: Ada"

    def test_nunjucks_at_sign_inside_string_literals(self) -> None:
        assert render_nunjucks('{{ "mail@x.com @home" }}', CONTEXT) == "mail@x.com @home"
        assert render_nunjucks("{{ '@home' }}", CONTEXT) == "@home"
        assert render_nunjucks('{{ "" ~ @input.name ~ "}}" }}', CONTEXT) == "Ada}}"
        template = '{% if @input.name == "@x" %}no{% else %}{{ @input.name }}{% endif %}'
        assert render_nunjucks(template, CONTEXT) == "Ada"

    def test_render_errors_are_business_errors(self) -> None:
        with pytest.raises(TemplateRenderError) as exc_info:
            render_template("nunjucks", "{{ broken( }}", CONTEXT)
        assert isinstance(exc_info.value, BusinessError)
        assert exc_info.value.engine == "nunjucks"

    def test_sandbox_blocks_unsafe_access(self) -> None:
        with pytest.raises(TemplateRenderError):
            render_template("nunjucks", "{{ ''.__class__.__mro__[1].__subclasses__() }}", CONTEXT)

    def test_unknown_engine(self) -> None:
        with pytest.raises(TemplateRenderError, match="Unsupported template engine"):
            render_template("handlebars", "x", CONTEXT)
