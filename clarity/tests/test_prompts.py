from clarity.models import prompts
from clarity.models.schemas import QAPair


def test_fast_prompt_embeds_input_and_language():
    text = prompts.fast_prompt("写一篇文章", language="English")
    assert '"写一篇文章"' in text
    assert "in English" in text
    assert "ONLY output the optimized prompt" in text


def test_fast_prompt_is_deterministic():
    assert prompts.fast_prompt("idea") == prompts.fast_prompt("idea")


def test_questions_prompt_asks_for_two_or_three_questions():
    text = prompts.questions_prompt("plan a trip")
    assert '"plan a trip"' in text
    assert "2-3 multiple-choice questions" in text
    assert prompts.DEFAULT_LANGUAGE in text


def test_format_qa_pairs_accepts_models_and_dicts():
    listing = prompts.format_qa_pairs([
        QAPair(question="Tone?", answer="formal"),
        {"question": "Length?", "answer": "short"},
    ])
    assert listing == "Question: Tone?\nUser Choice: formal\n\nQuestion: Length?\nUser Choice: short"


def test_final_prompt_contains_input_and_choices():
    text = prompts.final_prompt("write a blog post", [QAPair(question="Tone?", answer="formal")])
    assert 'Original Idea: "write a blog post"' in text
    assert "Question: Tone?\nUser Choice: formal" in text


def test_final_prompt_without_choices_still_renders():
    text = prompts.final_prompt("x", [])
    assert "Clarifications:\n\n" in text


def test_questions_schema_requires_every_field():
    item = prompts.QUESTIONS_SCHEMA["properties"]["questions"]["items"]
    assert prompts.QUESTIONS_SCHEMA["required"] == ["questions"]
    assert item["required"] == ["id", "text", "options"]
    assert item["properties"]["options"]["items"]["required"] == ["id", "label", "value"]
