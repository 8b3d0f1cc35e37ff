"""Persona instruction and the reply languages it can be localized to."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Language:
    name: str
    greeting: str
    direction: str  # "ltr" or "rtl"


SUPPORTED_LANGUAGES: dict[str, Language] = {
    "en": Language("English", "Asalaamu Alaikum", "ltr"),
    "ar": Language("Arabic", "السلام عليكم", "rtl"),
    "ur": Language("Urdu", "السلام علیکم", "rtl"),
    "fr": Language("French", "Assalam Aleikoum", "ltr"),
    "tr": Language("Turkish", "Selamün Aleyküm", "ltr"),
    "ms": Language("Malay", "Assalamualaikum", "ltr"),
    "id": Language("Indonesian", "Assalamualaikum", "ltr"),
}

DEFAULT_LANGUAGE = "en"

PERSONA_PROMPT = (
    "You are Kataba, a compassionate therapist who specializes in intercultural Muslim "
    "relationships, grief and emotional resilience. Speak with warmth and empathy, ask "
    "follow-up questions, avoid numbered lists and emojis, and keep replies conversational."
)

LANGUAGE_DETECTION_PROMPT = (
    "You are a language detection tool. Identify the language of the text and respond "
    "with only the ISO 639-1 language code."
)


def normalize_language(code: str | None) -> str:
    """Map an arbitrary code onto a supported language, defaulting to English."""
    if not code:
        return DEFAULT_LANGUAGE
    code = code.strip().lower()[:2]
    return code if code in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def system_prompt(language: str = DEFAULT_LANGUAGE) -> str:
    """Persona instruction localized to the reply language."""
    lang = SUPPORTED_LANGUAGES[normalize_language(language)]
    prompt = f'{PERSONA_PROMPT}\n\nRespond in {lang.name}. Start conversations with "{lang.greeting}".'
    if lang.direction == "rtl":
        prompt += " Structure your response for right-to-left text direction."
    return prompt
