"""Tests for narration prompt rendering, custom helpers, and reply parsing."""

import pytest

from gm_director.models import CharacterAISettings, Enemy, NPC, TacticsSettings
from gm_director.prompts import (
    DEFAULT_NARRATION_PROMPT,
    PromptError,
    build_narration_context,
    parse_gm_reply,
    render_prompt,
)


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    assert render_prompt("Hello {{name}}!", {"name": "World"}) == "Hello World!"


def test_render_take_helper():
    tpl = "{{#take items 2}}{{this}} {{/take}}"
    assert render_prompt(tpl, {"items": ["a", "b", "c"]}) == "a b "


def test_render_last_helper():
    tpl = "{{#last items 2}}{{this}} {{/last}}"
    assert render_prompt(tpl, {"items": ["a", "b", "c"]}) == "b c "


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


# ── Narration prompt ─────────────────────────────────────────


def test_default_prompt_includes_scene():
    ctx = build_narration_context(
        "I draw my sword",
        TacticsSettings(tactics_level="cunning", primary_focus="control", teamwork=False),
        entities=[
            Enemy(id="goblin", name="Goblin Chief", description="Scarred and sly"),
            NPC(id="mira", name="Mira", description="The elder"),
        ],
        party={"aria": CharacterAISettings(personality="cautious")},
        location="village-inn",
        time_of_day="night",
    )
    prompt = render_prompt(DEFAULT_NARRATION_PROMPT, ctx)

    assert "Play style: cunning, focused on control." in prompt
    assert "coordinate" not in prompt
    assert "Location: village-inn" in prompt
    assert "Time of day: night" in prompt
    assert "- Goblin Chief (enemy): Scarred and sly" in prompt
    assert "- aria: cautious, balanced, speaks in a polite way" in prompt
    assert "Player: I draw my sword" in prompt


def test_default_prompt_limits_entities_to_five():
    entities = [NPC(id=f"n{i}", name=f"Villager {i}") for i in range(8)]
    prompt = render_prompt(
        DEFAULT_NARRATION_PROMPT,
        build_narration_context("hi", TacticsSettings(), entities=entities),
    )
    assert "Villager 4" in prompt
    assert "Villager 5" not in prompt


def test_free_text_not_html_escaped():
    prompt = render_prompt(
        DEFAULT_NARRATION_PROMPT,
        build_narration_context("I say \"hello\" & <wave>", TacticsSettings()),
    )
    assert "I say \"hello\" & <wave>" in prompt


def test_context_uses_camel_case_keys():
    ctx = build_narration_context("hi", TacticsSettings(), time_of_day="dusk")
    assert ctx["tactics"]["tacticsLevel"] == "strategic"
    assert ctx["timeOfDay"] == "dusk"
    assert ctx["party"] == []


# ── parse_gm_reply ───────────────────────────────────────────


def test_parse_reply_with_suggestion_block():
    text = (
        "The goblin snarls and backs away.\n"
        "\n"
        "Suggestions:\n"
        "- Let the goblin flee\n"
        "- Have Mira intervene\n"
        "* Roll for initiative\n"
    )
    message, suggestions = parse_gm_reply(text)
    assert message == "The goblin snarls and backs away."
    assert suggestions == ["Let the goblin flee", "Have Mira intervene", "Roll for initiative"]


def test_parse_reply_without_block_uses_keywords():
    text = "The door creaks open.\nConsider a perception check."
    message, suggestions = parse_gm_reply(text)
    assert message == text
    assert suggestions == ["Consider a perception check."]


def test_parse_reply_plain():
    assert parse_gm_reply("  Rain falls.  ") == ("Rain falls.", [])
