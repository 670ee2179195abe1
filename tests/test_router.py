import pytest

from flashcouncil.agents import Persona
from flashcouncil.cards.models import AddCard, Card, DeleteCard, EditCard
from flashcouncil.chat.events import Message
from flashcouncil.chat.router import (
    detect_handoff,
    extract_operations,
    extract_prose,
    fallback_persona,
    find_operations_block,
    format_selection_prompt,
    format_transcript_excerpt,
    format_turn_prompt,
    parse_turn,
    persona_aliases,
    select_persona,
)

PANEL = [Persona.EXPLAINER, Persona.CRITIC, Persona.MEMORY_EXPERT, Persona.SUBJECT_EXPERT]


# === Operations extraction ===


def test_fenced_json_block():
    text = (
        "Let's start with the basics.\n\n"
        "```json\n"
        '{"operations": [{"type": "add", "flashcard": {"question": "Q1", "answer": "A1"}, "reason": "core"}]}\n'
        "```"
    )
    ops = extract_operations(text)
    assert len(ops) == 1
    assert isinstance(ops[0], AddCard)
    assert ops[0].fields.question == "Q1"
    assert ops[0].reason == "core"


def test_bare_fence_without_language():
    text = 'Edits:\n```\n{"operations": [{"type": "delete", "flashcard_id": "card-2"}]}\n```'
    assert extract_operations(text) == [DeleteCard(card_id="card-2")]


def test_fallback_to_unfenced_object():
    text = (
        'No fence this time. {"operations": [{"type": "edit", "flashcard_id": "card-1", '
        '"flashcard": {"answer": "A {with braces}"}}]} and some trailing words.'
    )
    ops = extract_operations(text)
    assert len(ops) == 1
    assert isinstance(ops[0], EditCard)
    assert ops[0].fields.answer == "A {with braces}"


def test_fallback_finds_nested_operations_object():
    text = 'Wrapper: {"meta": 1, "payload": {"operations": [{"type": "delete", "id": "card-4"}]}}'
    assert extract_operations(text) == [DeleteCard(card_id="card-4")]


def test_fallback_survives_stray_quote_in_prose():
    text = (
        'Think of a 12" ruler for the height analogy. '
        '{"operations": [{"type": "add", "flashcard": {"question": "Q", "answer": "A"}}]}'
    )
    ops = extract_operations(text)
    assert len(ops) == 1
    assert isinstance(ops[0], AddCard)


def test_fallback_survives_stray_quote_between_objects():
    text = (
        '{"note": "draft"} then a 6" gap '
        '{"operations": [{"type": "delete", "flashcard_id": "card-1"}]}'
    )
    assert extract_operations(text) == [DeleteCard(card_id="card-1")]


def test_first_well_formed_block_wins():
    text = (
        '```json\n{"operations": [{"type": "delete", "flashcard_id": "a"}]}\n```\n'
        '```json\n{"operations": [{"type": "delete", "flashcard_id": "b"}]}\n```'
    )
    assert extract_operations(text) == [DeleteCard(card_id="a")]


def test_malformed_fence_falls_through_to_later_block():
    text = (
        '```json\n{"operations": [oops]}\n```\n'
        'Retrying: {"operations": [{"type": "delete", "flashcard_id": "card-1"}]}'
    )
    assert extract_operations(text) == [DeleteCard(card_id="card-1")]


def test_malformed_entries_are_dropped_individually():
    text = """```json
{"operations": [
  {"type": "add", "flashcard": {"question": "Only a question"}},
  {"type": "explode"},
  "not an object",
  {"type": "edit", "flashcard_id": "card-1"},
  {"type": "delete"},
  {"type": "ADD", "flashcard": {"question": "Q", "answer": "A", "tags": ["x", "x", "y"]}}
]}
```"""
    ops = extract_operations(text)
    assert len(ops) == 1
    assert ops[0].fields.tags == ("x", "y")


def test_numeric_ids_are_accepted():
    ops = extract_operations('{"operations": [{"type": "delete", "flashcard_id": 7}]}')
    assert ops == [DeleteCard(card_id="7")]


@pytest.mark.parametrize("text", [
    "",
    "plain prose with no block",
    "```json\n{not json}\n```",
    '{"operations": "nope"}',
    '{"operations": [' * 5000,
    '{"operations": ' + "[" * 50000 + "]" * 50000 + "}",
    "{" * 3000,
    "```",
    '"operations" {"a": "unterminated',
])
def test_parser_is_total(text):
    result = parse_turn(text, PANEL)
    assert isinstance(result.operations, list)
    assert result.handoff is None or isinstance(result.handoff, Persona)


def test_find_operations_block_returns_none_without_key():
    assert find_operations_block('```json\n{"cards": []}\n```') is None


def test_extract_prose_strips_structured_block():
    text = 'Some thoughts here.\n\n```json\n{"operations": []}\n```\nTrailing'
    assert extract_prose(text) == "Some thoughts here.\n\nTrailing"


def test_extract_prose_stops_at_unterminated_fence():
    assert extract_prose("Before.\n```json\n{\"operations\": [") == "Before."


# === Hand-off detection ===


@pytest.mark.parametrize("text,expected", [
    ("Good start. @critic, please tighten these.", Persona.CRITIC),
    ("[HANDOFF:memory_expert] please check memorability.", Persona.MEMORY_EXPERT),
    ("I'm passing this over to the subject expert now.", Persona.SUBJECT_EXPERT),
    ("Dr. Rodriguez, your turn.", Persona.MEMORY_EXPERT),
    ("Over to you, Prof. Okoye.", Persona.EXPLAINER),
    ("handing off to Dr. Hannah Weiss for a final pass", Persona.CRITIC),
])
def test_detects_handoff(text, expected):
    assert detect_handoff(text, PANEL) is expected


def test_handoff_is_case_insensitive():
    assert detect_handoff("@CRITIC have a look", PANEL) is Persona.CRITIC


def test_first_cue_wins():
    text = "@explainer can you simplify card 2? Later maybe @critic."
    assert detect_handoff(text, PANEL) is Persona.EXPLAINER


def test_closing_phrase_means_no_handoff():
    assert detect_handoff("All done. Back to moderator.", PANEL) is None
    assert detect_handoff("That's all from me, @critic may chime in later.", PANEL) is None


def test_earlier_handoff_beats_later_closing_phrase():
    assert detect_handoff("@critic, your turn. That's all from me.", PANEL) is Persona.CRITIC


def test_plain_mention_is_not_a_handoff():
    assert detect_handoff("I agree with the critic on card 3.", PANEL) is None


def test_no_substring_matches():
    # "critical" contains "critic" but is not an address.
    assert detect_handoff("This is critical, passing to criticism later.", PANEL) is None


def test_handoff_ignores_non_candidates():
    assert detect_handoff("@critic your turn", [Persona.EXPLAINER]) is None


def test_handoff_ignores_mentions_inside_structured_block():
    text = 'Done.\n```json\n{"operations": [], "note": "@critic your turn"}\n```'
    assert detect_handoff(text, PANEL) is None


def test_handoff_after_structured_block_is_detected():
    text = 'Added one.\n```json\n{"operations": []}\n```\n@critic, your turn.'
    assert detect_handoff(text, PANEL) is Persona.CRITIC
    assert parse_turn(text, PANEL).handoff is Persona.CRITIC


def test_persona_aliases():
    aliases = persona_aliases(Persona.MEMORY_EXPERT)
    assert "Dr. Marcus Rodriguez" in aliases
    assert "Dr. Rodriguez" in aliases
    assert "memory_expert" in aliases
    assert "memory expert" in aliases


# === Coordinator selection ===


def test_select_persona_by_id():
    persona, matched = select_persona("Let's have the explainer open.", PANEL)
    assert persona is Persona.EXPLAINER
    assert matched is True


def test_select_persona_skips_last_opener_when_another_is_named():
    text = "The critic opened last time, so the subject_expert should start."
    persona, matched = select_persona(text, PANEL, last_speaker=Persona.CRITIC)
    assert persona is Persona.SUBJECT_EXPERT
    assert matched is True


def test_select_persona_accepts_last_opener_if_only_choice():
    persona, matched = select_persona("critic again", PANEL, last_speaker=Persona.CRITIC)
    assert persona is Persona.CRITIC
    assert matched is True


def test_select_persona_fallback_is_deterministic():
    persona, matched = select_persona("Hmm, anyone.", PANEL, last_speaker=Persona.EXPLAINER)
    assert persona is Persona.CRITIC
    assert matched is False


def test_fallback_with_single_persona():
    assert fallback_persona([Persona.EXPLAINER], Persona.EXPLAINER) is Persona.EXPLAINER


# === Prompt construction ===


def _msg(role: Persona, speaker: str, content: str, seq: int) -> Message:
    return Message(role=role, speaker=speaker, content=content, timestamp=0, sequence=seq)


def test_transcript_excerpt_strips_blocks_and_keeps_last_two():
    history = [
        _msg(Persona.GENERATOR, "Dr. Sarah Chen", "first", 0),
        _msg(Persona.MODERATOR, "Dr. Amara Osei", "second", 1),
        _msg(Persona.CRITIC, "Dr. Hannah Weiss", 'third\n```json\n{"operations": []}\n```', 2),
    ]
    excerpt = format_transcript_excerpt(history)
    assert excerpt.startswith("## Recent Discussion")
    assert "first" not in excerpt
    assert "[Dr. Amara Osei]: second" in excerpt
    assert "[Dr. Hannah Weiss]: third" in excerpt
    assert "operations" not in excerpt


def test_turn_prompt_sections():
    cards = (Card(id="card-1", question="Q", answer="A"),)
    history = [_msg(Persona.GENERATOR, "Dr. Sarah Chen", "Initial draft thoughts", 0)]
    prompt = format_turn_prompt(
        Persona.CRITIC, "Binary Search Trees", cards, history,
        handoff_from=Persona.EXPLAINER, peers=[Persona.EXPLAINER], round_number=2,
    )
    assert prompt.startswith("Prof. Sam Okoye handed the floor to you.")
    assert "[card-1] Q: Q | A: A" in prompt
    assert "Initial draft thoughts" in prompt
    assert "- explainer (Prof. Sam Okoye)" in prompt
    assert "## Your Turn (Round 2)" in prompt


def test_turn_prompt_without_transcript():
    history = [_msg(Persona.GENERATOR, "Dr. Sarah Chen", "Initial draft thoughts", 0)]
    prompt = format_turn_prompt(Persona.CRITIC, "BST", (), history, include_transcript=False)
    assert "Initial draft thoughts" not in prompt
    assert "No flashcards yet." in prompt


def test_selection_prompt_mentions_previous_opener():
    prompt = format_selection_prompt(
        "BST", 2, 3, (), PANEL, last_speaker=Persona.CRITIC,
    )
    assert "Round 2 of 3" in prompt
    assert "critic opened the previous round" in prompt
    for persona in PANEL:
        assert f"- {persona.value} (" in prompt
