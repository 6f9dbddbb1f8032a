"""Prompt templates for the three proxy actions.

This module builds the text sent to the upstream model for the fast
transform, for clarification question generation and for the final
synthesis with the user's choices.  It also holds the response schema
the model must follow when generating questions.  Everything here is
pure string templating so it can be tested without a network.
"""
from __future__ import annotations
from typing import Iterable, Mapping, Union
import os

from clarity.models.schemas import QAPair

DEFAULT_LANGUAGE = os.environ.get("CLARITY_OUTPUT_LANGUAGE", "Simplified Chinese")

# Response schema for clarify_questions (Gemini OpenAPI subset)

_OPTION_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "id": {"type": "STRING"},
        "label": {"type": "STRING", "description": "Option label shown to the user"},
        "value": {"type": "STRING", "description": "The value to use in the final prompt"},
    },
    "required": ["id", "label", "value"],
}

QUESTIONS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "questions": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "id": {"type": "STRING"},
                    "text": {"type": "STRING", "description": "The question text"},
                    "options": {"type": "ARRAY", "items": _OPTION_SCHEMA},
                },
                "required": ["id", "text", "options"],
            },
        },
    },
    "required": ["questions"],
}

# Fast mode: rewrite directly

def fast_prompt(user_input: str, language: str = DEFAULT_LANGUAGE) -> str:
    return (
        "You are an expert prompt engineer. Your task is to transform the user's raw, "
        f"unstructured idea into a single, high-quality, professional AI prompt in {language}.\n"
        "\n"
        "Rules:\n"
        "1. Keep the intent of the original input.\n"
        "2. Add necessary structure, context, and tone.\n"
        "3. Do NOT output any conversational text. ONLY output the optimized prompt.\n"
        "4. If the input is too short, expand it reasonably.\n"
        "\n"
        f'Raw Input: "{user_input}"\n'
    )

# Clarify mode, step 1: ask multiple-choice questions

def questions_prompt(user_input: str, language: str = DEFAULT_LANGUAGE) -> str:
    return (
        f'Analyze the following user idea: "{user_input}"\n'
        "Identify 2-3 key ambiguities or missing details that would make the prompt better if clarified.\n"
        "Generate 2-3 multiple-choice questions to ask the user.\n"
        "\n"
        "Requirements:\n"
        "1. Maximum 3 questions.\n"
        "2. Questions must be high-level strategic (e.g. tone, depth, format, goal), not trivial.\n"
        "3. Options must be mutually exclusive and significantly distinct.\n"
        f"4. ALL text (questions and option labels) MUST be in {language}.\n"
        "\n"
        "Output MUST be valid JSON matching the schema.\n"
    )

# Clarify mode, step 2: synthesize with the chosen answers

PairLike = Union[QAPair, Mapping[str, str]]


def format_qa_pairs(qa_pairs: Iterable[PairLike]) -> str:
    blocks = []
    for qa in qa_pairs:
        if isinstance(qa, QAPair):
            question, answer = qa.question, qa.answer
        else:
            question, answer = qa["question"], qa["answer"]
        blocks.append(f"Question: {question}\nUser Choice: {answer}")
    return "\n\n".join(blocks)


def final_prompt(user_input: str, qa_pairs: Iterable[PairLike], language: str = DEFAULT_LANGUAGE) -> str:
    context = format_qa_pairs(qa_pairs)
    return (
        "You are an expert prompt engineer.\n"
        "Construct a final, highly optimized prompt based on the user's original idea "
        "and their clarification choices.\n"
        "\n"
        f'Original Idea: "{user_input}"\n'
        "\n"
        "Clarifications:\n"
        f"{context}\n"
        "\n"
        "Output:\n"
        "Incorporate the choices naturally into one cohesive, ready-to-use instruction. "
        f"Return ONLY the final optimized prompt in {language}. "
        "No markdown code blocks unless requested. Do not explain your reasoning.\n"
    )
