"""Request rewrite rules for the chat and code completion endpoints."""

from __future__ import annotations

import logging
from typing import Mapping

from .config import RelayCfg
from .document import JsonDocument

logger = logging.getLogger(__name__)

INSTRUCT_MODEL = "deepseek-coder"
DEFAULT_LOCALE = "zh_CN"
LOCALE_PHRASE = "Respond in the following locale"

# fields some client versions send that the backends reject
CHAT_STRIPPED_FIELDS = ("intent", "intent_threshold", "intent_content")
CODEX_STRIPPED_FIELDS = ("extra", "nwo")


def resolve_model(model: object, model_map: Mapping[str, str], default: str) -> str:
    """Map *model* through *model_map*; anything unmapped becomes *default*."""
    if isinstance(model, str) and model in model_map:
        return model_map[model]
    return default


def locale_instruction(locale: str) -> str:
    return f"{LOCALE_PHRASE}: {locale or DEFAULT_LOCALE}."


def inject_locale(doc: JsonDocument, locale: str) -> bool:
    """Append the locale instruction to the last message unless it is already there.

    Returns ``True`` when the document was changed.
    """

    messages = doc.get("messages")
    if not isinstance(messages, list) or not messages or not isinstance(messages[-1], dict):
        return False

    path = f"messages.{len(messages) - 1}.content"
    content = doc.get(path)
    suffix = locale_instruction(locale)

    if content is None or isinstance(content, str):
        content = content or ""
        if LOCALE_PHRASE in content:
            return False
        doc.set(path, content + suffix)
        return True

    if isinstance(content, list):
        # multimodal content: one text part per instruction
        for part in content:
            if isinstance(part, dict) and LOCALE_PHRASE in str(part.get("text", "")):
                return False
        content.append({"type": "text", "text": suffix})
        return True

    return False


def clamp_max_tokens(doc: JsonDocument, ceiling: int) -> bool:
    value = doc.get("max_tokens")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if value <= ceiling:
        return False
    doc.set("max_tokens", ceiling)
    return True


def rewrite_chat(doc: JsonDocument, cfg: RelayCfg) -> JsonDocument:
    """Apply the chat completion policy to *doc* in place and return it."""

    requested = doc.get("model")
    model = resolve_model(requested, cfg.chat_model_map, cfg.chat_model_default)
    doc.set("model", model)
    logger.debug("chat model %r -> %r", requested, model)

    if not doc.exists("function_call"):
        inject_locale(doc, cfg.chat_locale)

    for name in CHAT_STRIPPED_FIELDS:
        doc.delete(name)

    if clamp_max_tokens(doc, cfg.chat_max_tokens):
        logger.debug("max_tokens clamped to %d", cfg.chat_max_tokens)

    return doc


def rewrite_codex(doc: JsonDocument) -> JsonDocument:
    """Apply the code completion policy to *doc* in place and return it."""

    for name in CODEX_STRIPPED_FIELDS:
        doc.delete(name)
    doc.set("model", INSTRUCT_MODEL)
    return doc
