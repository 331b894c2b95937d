from __future__ import annotations

INPUT_LOCALES: tuple[str, ...] = (
    "en-US",
    "en-GB",
    "en-AU",
    "en-IN",
    "es-ES",
    "es-MX",
    "es-US",
    "fr-FR",
    "fr-CA",
    "de-DE",
    "it-IT",
    "pt-BR",
    "pt-PT",
    "nl-NL",
    "ja-JP",
    "ko-KR",
    "zh-CN",
    "ru-RU",
    "pl-PL",
    "tr-TR",
    "ar-SA",
    "hi-IN",
)

OUTPUT_LANGUAGES: dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
    "ru": "Russian",
    "pl": "Polish",
    "tr": "Turkish",
    "ar": "Arabic",
    "hi": "Hindi",
    "ur": "Urdu",
    "bn": "Bengali",
    "th": "Thai",
    "vi": "Vietnamese",
    "id": "Indonesian",
    "ms": "Malay",
    "fa": "Persian",
    "he": "Hebrew",
    "sv": "Swedish",
    "da": "Danish",
    "fi": "Finnish",
    "no": "Norwegian",
    "cs": "Czech",
    "hu": "Hungarian",
    "ro": "Romanian",
    "uk": "Ukrainian",
    "el": "Greek",
    "bg": "Bulgarian",
}

DEFAULT_INPUT_LOCALE = "en-US"


def base_code(lang: str) -> str:
    return str(lang or "").strip().replace("_", "-").split("-")[0].lower()


def same_base_language(a: str, b: str) -> bool:
    return bool(base_code(a)) and base_code(a) == base_code(b)


def language_name(lang: str) -> str:
    return OUTPUT_LANGUAGES.get(base_code(lang), str(lang))


def best_input_locale(lang: str) -> str:
    wanted = str(lang or "").strip()
    for locale in INPUT_LOCALES:
        if locale.lower() == wanted.lower():
            return locale
    base = base_code(wanted)
    for locale in INPUT_LOCALES:
        if base_code(locale) == base:
            return locale
    return DEFAULT_INPUT_LOCALE
