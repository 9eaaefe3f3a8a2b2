"""Tests for style lookup and prompt composition."""
from createtree.services.style_prompts import (
    IDENTITY_CLAUSE,
    STYLE_PROMPTS,
    compose_edit_prompt,
    compose_generation_prompt,
    render_template,
    resolve_style_description,
)


class TestResolveStyle:
    def test_known_key(self):
        assert resolve_style_description("ghibli") == STYLE_PROMPTS["ghibli"]

    def test_unknown_key_describes_itself(self):
        assert resolve_style_description("vaporwave") == "vaporwave"

    def test_match_is_exact(self):
        assert resolve_style_description("Watercolor") == "Watercolor"


class TestRenderTemplate:
    def test_defaults_and_style(self):
        out = render_template("{{object}} in {{style}}, {{mood}} and {{color}}", "oil")
        assert out == "pregnant woman in oil, happy and vibrant"

    def test_unknown_variable_kept(self):
        assert render_template("a {{planet}} scene", "oil") == "a {{planet}} scene"


class TestComposePrompts:
    def test_edit_prompt_known_style(self):
        prompt = compose_edit_prompt("sketch")
        assert prompt.startswith(STYLE_PROMPTS["sketch"])
        assert IDENTITY_CLAUSE in prompt

    def test_edit_prompt_unknown_style(self):
        assert compose_edit_prompt("vaporwave").startswith("Transform this image into vaporwave style")

    def test_custom_prompt_wins(self):
        assert compose_edit_prompt("sketch", "  just {{style}}  ") == "just sketch"
        assert compose_generation_prompt("sketch", "just {{style}}") == "just sketch"

    def test_blank_custom_prompt_ignored(self):
        assert compose_generation_prompt("oil", "   ") == compose_generation_prompt("oil")

    def test_generation_templates(self):
        assert "goddess" in compose_generation_prompt("golden_goddess")
        assert "fairytale-style" in compose_generation_prompt("storybook")
        default = compose_generation_prompt("cartoon")
        assert "in cartoon style" in default
        assert STYLE_PROMPTS["cartoon"] in default
