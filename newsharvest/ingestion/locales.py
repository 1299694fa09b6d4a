"""Language and country naming used by the article index."""

from __future__ import annotations

from typing import Optional

# ISO 639-1 / 639-2 codes to the language names the index understands.
LANGUAGE_NAMES = {
    "en": "english",
    "pt": "portuguese",
    "es": "spanish",
    "fr": "french",
    "de": "german",
    "it": "italian",
    "ru": "russian",
    "ja": "japanese",
    "zh": "chinese",
    "ko": "korean",
    "ar": "arabic",
    "hi": "hindi",
    "eng": "english",
    "por": "portuguese",
    "spa": "spanish",
    "fra": "french",
    "deu": "german",
    "ita": "italian",
    "rus": "russian",
    "jpn": "japanese",
    "zho": "chinese",
    "kor": "korean",
    "ara": "arabic",
    "hin": "hindi",
}

# Country names as reported in article metadata, mapped to region codes.
COUNTRY_CODES = {
    "BRAZIL": "BR",
    "BRASIL": "BR",
    "UNITED STATES": "US",
    "USA": "US",
    "UNITED KINGDOM": "GB",
    "UK": "GB",
    "INDIA": "IN",
    "CHINA": "CN",
    "JAPAN": "JP",
    "GERMANY": "DE",
    "FRANCE": "FR",
    "ITALY": "IT",
    "SPAIN": "ES",
    "PORTUGAL": "PT",
    "ARGENTINA": "AR",
    "MEXICO": "MX",
    "CANADA": "CA",
    "AUSTRALIA": "AU",
    "NIGERIA": "NG",
    "SOUTH AFRICA": "ZA",
    "RUSSIA": "RU",
}


def language_name(code: str) -> str:
    """``pt`` -> ``portuguese``; unknown codes pass through lowercased."""
    key = (code or "").strip().lower()
    return LANGUAGE_NAMES.get(key, key)


def region_code(value: Optional[str]) -> Optional[str]:
    """Country name or code -> uppercase region code."""
    if not value:
        return None
    upper = value.strip().upper()
    return COUNTRY_CODES.get(upper, upper)
