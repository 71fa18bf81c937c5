"""Two-language (zh/en) text helpers for user-facing messages and model directives."""

from __future__ import annotations

from copilot_bridge.core.types import UiLanguage

_ZH_ALIASES = frozenset({"zh", "zh-cn", "cn", "中文", "chinese"})
_EN_ALIASES = frozenset({"en", "en-us", "english", "英文"})


def parse_language(raw: str | None) -> UiLanguage | None:
    """Map free user input to a supported language, or None if unrecognised."""
    if not raw:
        return None
    lowered = raw.strip().lower()
    if lowered in _ZH_ALIASES:
        return UiLanguage.ZH
    if lowered in _EN_ALIASES:
        return UiLanguage.EN
    return None


def normalize_language(raw: str | None, fallback: UiLanguage = UiLanguage.EN) -> UiLanguage:
    return parse_language(raw) or fallback


def pick(language: UiLanguage, zh: str, en: str) -> str:
    return en if language == UiLanguage.EN else zh


def language_label(language: UiLanguage) -> str:
    return "English" if language == UiLanguage.EN else "中文"


def language_instruction(language: UiLanguage) -> str:
    if language == UiLanguage.EN:
        return (
            "Language requirement: Respond in English. Keep technical terms accurate; "
            "do not switch to Chinese unless the user explicitly requests translation."
        )
    return "语言要求：请使用中文回复，技术术语可保留英文；除非用户明确要求翻译，否则不要切换到英文。"


def with_language_instruction(language: UiLanguage, content: str) -> str:
    return f"{language_instruction(language)}\n\n{content}"
