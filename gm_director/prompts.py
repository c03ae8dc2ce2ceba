"""Handlebars prompt rendering for the game-master narration step."""

from collections.abc import Callable, Sequence
from typing import Any

import pybars

from gm_director.models import CharacterAISettings, Entity, TacticsSettings


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


DEFAULT_NARRATION_PROMPT = """\
You are the game master of a tabletop role-playing session.
Play style: {{tactics.tacticsLevel}}, focused on {{tactics.primaryFocus}}\
{{#if tactics.teamwork}}, enemies coordinate as a team{{/if}}.
{{#if location}}Location: {{{location}}}
{{/if}}{{#if timeOfDay}}Time of day: {{{timeOfDay}}}
{{/if}}{{#if mood}}Mood: {{{mood}}}
{{/if}}{{#if entities}}
Content ready to introduce:
{{#take entities 5}}- {{{name}}} ({{type}}): {{{description}}}
{{/take}}{{/if}}{{#if party}}
Party:
{{#each party}}- {{{id}}}: {{personality}}, {{actionPriority}}, speaks in a {{communicationStyle}} way
{{/each}}{{/if}}
Player: {{{message}}}

Narrate what happens next. Then write a line "Suggestions:" followed by up
to three lines starting with "- ", each a short option for the game master.
"""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_take(this, options, items, count):
    """{{#take array N}}...{{/take}}: iterate over the first N items."""
    result = []
    for item in list(items)[:int(count)]:
        result.extend(options["fn"](item))
    return result


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}}: iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "take": _helper_take,
    "last": _helper_last,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return compiled(context, helpers=_HELPERS)
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def build_narration_context(
    message: str,
    tactics: TacticsSettings,
    entities: Sequence[Entity] = (),
    party: dict[str, CharacterAISettings] | None = None,
    location: str | None = None,
    time_of_day: str | None = None,
    mood: str | None = None,
    recent_actions: Sequence[str] = (),
) -> dict[str, Any]:
    """Assemble template variables for the narration prompt.

    Keys are camelCase so templates read like the JSON the API returns.
    """
    return {
        "message": message,
        "tactics": tactics.model_dump(by_alias=True),
        "entities": [e.model_dump(by_alias=True, mode="json") for e in entities],
        "party": [
            {"id": member_id, **settings.model_dump(by_alias=True)}
            for member_id, settings in (party or {}).items()
        ],
        "location": location,
        "timeOfDay": time_of_day,
        "mood": mood,
        "recentActions": list(recent_actions),
    }


# ── Reply parsing ────────────────────────────────────────

_SUGGESTION_KEYWORDS = ("suggest", "recommend", "consider")
_BULLETS = ("- ", "* ")


def parse_gm_reply(text: str) -> tuple[str, list[str]]:
    """Split a reply into (narration, suggestions).

    Suggestions come from the bulleted lines after a "Suggestions:" line.
    Without that block, lines mentioning suggest/recommend/consider are
    taken as suggestions and the whole reply stays the narration.
    """
    lines = text.strip().splitlines()
    for i, line in enumerate(lines):
        if line.strip().lower().rstrip(":") == "suggestions":
            suggestions = [
                s.strip()[2:].strip()
                for s in lines[i + 1:]
                if s.strip().startswith(_BULLETS) and s.strip()[2:].strip()
            ]
            return "\n".join(lines[:i]).strip(), suggestions

    suggestions = [
        line.strip() for line in lines
        if any(k in line.lower() for k in _SUGGESTION_KEYWORDS)
    ]
    return text.strip(), suggestions
