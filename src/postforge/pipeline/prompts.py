"""Prompts and response schemas for every generative call in the pipeline.

Schemas use the OpenAPI subset accepted by Gemini's JSON mode; the
Claude backend embeds the same schema in its system prompt.
"""

from __future__ import annotations

import json
from typing import Any

from postforge.integrations.searxng import SearchResult
from postforge.pipeline.models import Outline

# ---------------------------------------------------------------------------
# Outline
# ---------------------------------------------------------------------------

OUTLINE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "title": {"type": "STRING"},
        "sections": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "index": {"type": "INTEGER"},
                    "title": {"type": "STRING"},
                    "summary": {"type": "STRING"},
                    "length": {"type": "STRING"},
                },
                "required": ["index", "title", "summary", "length"],
            },
            "minItems": 1,
        },
    },
    "required": ["sections"],
}

_OUTLINE_PROMPT = (
    "You are planning a search-optimized informational blog post.\n"
    "Write a table of contents of 4 to 7 sections. For each section give its"
    " 0-based index, a heading, a one-paragraph summary of what it covers,"
    " and a target length (e.g. '400 characters').\n"
    "The first section is an introduction; the last one wraps up.\n"
    "Write in {language}.\n\n"
    "[title]\n{title}\n\n[description]\n{content}"
)


def outline_prompt(title: str, content: str, *, language: str) -> str:
    return _OUTLINE_PROMPT.format(title=title, content=content or title, language=language)


# ---------------------------------------------------------------------------
# Body expansion
# ---------------------------------------------------------------------------

BODY_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "title": {"type": "STRING", "description": "Final post title"},
        "sections": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {"html": {"type": "STRING"}},
                "required": ["html"],
            },
            "minItems": 1,
        },
        "seo": {
            "type": "OBJECT",
            "properties": {
                "description": {"type": "STRING"},
                "keywords": {"type": "ARRAY", "items": {"type": "STRING"}},
            },
        },
        "tags": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "10 search keywords used as post tags",
        },
        "thumbnail_text": {
            "type": "OBJECT",
            "properties": {
                "lines": {
                    "type": "ARRAY",
                    "items": {"type": "STRING"},
                    "minItems": 1,
                    "maxItems": 3,
                },
            },
            "description": "Thumbnail caption: at most 3 short lines",
            "required": ["lines"],
        },
    },
    "required": ["sections"],
}

_BODY_PROMPT = (
    "Write the full blog post for the outline below.\n"
    "Rules:\n"
    "- One entry in `sections` per outline section, in the same order.\n"
    "- Each section is self-contained HTML starting with an <h2> heading;"
    " use <p>, <ul>, <ol>, <table> and <strong> as needed. No <html>, <head>"
    " or <body> tags, no inline scripts.\n"
    "- Respect each section's target length.\n"
    "- Also return a meta description and keywords in `seo`, 10 `tags`,"
    " and up to 3 short `thumbnail_text` lines.\n"
    "Write in {language}.\n\n"
    "[outline]\n{outline}"
)


def body_prompt(outline: Outline, *, language: str) -> str:
    return _BODY_PROMPT.format(
        outline=json.dumps(outline.model_dump(), ensure_ascii=False, indent=2),
        language=language,
    )


# ---------------------------------------------------------------------------
# Section enrichment
# ---------------------------------------------------------------------------

IMAGE_PROMPT_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {"prompt": {"type": "STRING"}},
    "required": ["prompt"],
}

KEYWORDS_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "keywords": {"type": "ARRAY", "items": {"type": "STRING"}, "minItems": 1, "maxItems": 5},
    },
    "required": ["keywords"],
}

KEYWORD_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {"keyword": {"type": "STRING"}},
    "required": ["keyword"],
}

PICK_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {"index": {"type": "INTEGER"}},
    "required": ["index"],
}

LINK_TITLE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {"link_title": {"type": "STRING"}},
    "required": ["link_title"],
}


def image_prompt(text: str) -> str:
    return (
        "Read the text below and write a prompt for an image generation model"
        " that illustrates it. Describe a concrete scene. Write the prompt in"
        f" English.\n\n[text]\n{text}"
    )


def stock_keywords_prompt(text: str) -> str:
    return (
        "Read the text below and suggest 5 English keywords to search a stock"
        " photo library for a matching picture, most relevant first."
        f"\n\n[text]\n{text}"
    )


def link_keyword_prompt(text: str, *, language: str) -> str:
    return (
        "Read the section below and suggest the single best web search query"
        f" for finding a reference page about it. Write it in {language}."
        f"\n\n[section]\n{text}"
    )


def video_keyword_prompt(text: str, *, language: str) -> str:
    return (
        "Read the section below and suggest the single best YouTube search"
        f" query for finding a video about it. Write it in {language}."
        f"\n\n[section]\n{text}"
    )


def pick_prompt(text: str, candidates: list[SearchResult], *, kind: str) -> str:
    listing = "\n\n".join(
        f"{i}. {c.title} - {c.url}\n{c.content}" for i, c in enumerate(candidates, start=1)
    )
    return (
        f"Below is a blog section and a numbered list of candidate {kind}s."
        f" Pick the one {kind} that best fits the section.\n"
        "Answer with its number (starting from 1).\n\n"
        f"[section]\n{text}\n\n[candidates]\n{listing}"
    )


def link_title_prompt(title: str, content: str, *, language: str) -> str:
    return (
        "Rewrite the page title below as a short, clear link label of at most"
        f" 30 characters in {language}. Drop site names and filler."
        f"\n\n[title]\n{title}\n\n[page excerpt]\n{content}"
    )


# ---------------------------------------------------------------------------
# Topics
# ---------------------------------------------------------------------------

TOPICS_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "titles": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {"title": {"type": "STRING"}, "content": {"type": "STRING"}},
                "required": ["title", "content"],
            },
        },
    },
    "required": ["titles"],
}


def topics_prompt(topic: str, limit: int, *, language: str) -> str:
    return (
        f"Suggest {limit} search-optimized blog post titles about the topic below.\n"
        "Rules:\n"
        "1. Each title targets a query people actually search for.\n"
        "2. Make them compelling but not clickbait.\n"
        "3. Keep each title around 40-60 characters.\n"
        "4. Prefer numbers or list formats where natural.\n"
        "5. For each title add a one-paragraph `content` brief describing"
        " what the post should cover.\n"
        f"Write in {language}.\n\n[topic]\n{topic}"
    )
