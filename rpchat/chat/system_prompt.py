"""Roleplay system prompt for a chat.

Pure rendering: same inputs, same output. Optional sections appear only when
their source text is non-empty.
"""

from __future__ import annotations

from rpchat.errors import UnsupportedTemplateVariantError
from rpchat.models import CardData, PersonaData, PromptVariant


def render_system_prompt(
    character_name: str,
    persona_name: str,
    jailbreak: str = "",
    *,
    character_description: str = "",
    world_description: str = "",
    persona_description: str = "",
    character_memory: str = "",
    msg_examples: str = "",
    variant: PromptVariant | str = PromptVariant.MARKDOWN,
) -> str:
    """Render the system prompt for the given variant.

    Raises UnsupportedTemplateVariantError for variants without a template
    (currently "xml") and for unknown variant names.
    """
    try:
        variant = PromptVariant(variant)
    except ValueError:
        raise UnsupportedTemplateVariantError(str(variant)) from None

    if variant is PromptVariant.MARKDOWN:
        return _render_markdown(
            character_name=character_name,
            persona_name=persona_name,
            jailbreak=jailbreak,
            character_description=character_description,
            world_description=world_description,
            persona_description=persona_description,
            character_memory=character_memory,
            msg_examples=msg_examples,
        )
    raise UnsupportedTemplateVariantError(variant.value)


def render_card_prompt(
    card: CardData,
    persona: PersonaData,
    jailbreak: str = "",
    *,
    character_memory: str = "",
    variant: PromptVariant | str = PromptVariant.MARKDOWN,
) -> str:
    """render_system_prompt() fed from card + persona objects."""
    return render_system_prompt(
        character_name=card.character.name,
        persona_name=persona.name,
        jailbreak=jailbreak,
        character_description=card.character.description,
        world_description=card.world.description,
        persona_description=persona.description,
        character_memory=character_memory,
        msg_examples=card.character.msg_examples,
        variant=variant,
    )


def _render_markdown(
    character_name: str,
    persona_name: str,
    jailbreak: str,
    character_description: str,
    world_description: str,
    persona_description: str,
    character_memory: str,
    msg_examples: str,
) -> str:
    sections = [
        "### Instruction\n"
        f"You are now roleplaying as {character_name}.\n"
        f"You are in a chat with {persona_name}.",
        _section("Character Info", character_description),
        _section("World Info", world_description),
        _section("User Info", persona_description, prefix="User's description: "),
        _section("Character Memory", character_memory),
        _section("Messages Examples", msg_examples),
        jailbreak.strip(),
    ]
    return "\n\n".join(s for s in sections if s)


def _section(title: str, body: str, prefix: str = "") -> str:
    """Markdown section, or "" when body is blank."""
    body = body.strip()
    if not body:
        return ""
    return f"### {title}\n{prefix}{body}"
