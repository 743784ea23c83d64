from __future__ import annotations

import regex as re

WHITESPACE = re.compile(r"\s+")
DIGIT_RUN = re.compile(r"[0-9۰-۹٠-٩]+(?:[.٫][0-9۰-۹٠-٩]+)?")
GROUPED_NUMBER = re.compile(r"(?<=\d),(?=\d{3}(?!\d))")

# Arabic letter variants that speech engines and keyboards emit for Persian text.
_LETTER_VARIANTS = str.maketrans({"ي": "ی", "ى": "ی", "ك": "ک", "ە": "ه"})
_PUNCTUATION = str.maketrans({"?": "؟", ";": "؛", ",": "،"})
_PERSIAN_DIGITS = str.maketrans("٠١٢٣٤٥٦٧٨٩", "۰۱۲۳۴۵۶۷۸۹")
_ASCII_DIGITS = str.maketrans("۰۱۲۳۴۵۶۷۸۹٠١٢٣٤٥٦٧٨٩٫", "01234567890123456789.")

_ONES = ["صفر", "یک", "دو", "سه", "چهار", "پنج", "شش", "هفت", "هشت", "نه"]
_TEENS = ["ده", "یازده", "دوازده", "سیزده", "چهارده", "پانزده", "شانزده", "هفده", "هجده", "نوزده"]
_TENS = ["", "", "بیست", "سی", "چهل", "پنجاه", "شصت", "هفتاد", "هشتاد", "نود"]
_HUNDREDS = ["", "صد", "دویست", "سیصد", "چهارصد", "پانصد", "ششصد", "هفتصد", "هشتصد", "نهصد"]
_SCALES = ["", "هزار", "میلیون", "میلیارد", "تریلیون"]


def normalize_punctuation(text: str) -> str:
    return text.translate(_PUNCTUATION)


def normalize_transcript(text: str | None) -> str:
    """Canonicalise a recognised Persian transcript.

    Collapses whitespace, maps Arabic letter and digit variants onto their Persian
    forms and switches ASCII punctuation to the Persian marks. Applying it twice
    gives the same result as applying it once.
    """
    if not text:
        return ""
    canonical = text.translate(_LETTER_VARIANTS).translate(_PERSIAN_DIGITS)
    canonical = normalize_punctuation(canonical)
    return WHITESPACE.sub(" ", canonical).strip()


def _three_digits_to_words(value: int) -> list[str]:
    parts: list[str] = []
    hundreds, rest = divmod(value, 100)
    if hundreds:
        parts.append(_HUNDREDS[hundreds])
    if 10 <= rest < 20:
        parts.append(_TEENS[rest - 10])
    else:
        tens, ones = divmod(rest, 10)
        if tens:
            parts.append(_TENS[tens])
        if ones:
            parts.append(_ONES[ones])
    return parts


def number_to_words(value: int) -> str:
    """Spell out a non-negative integer in Persian, e.g. 1402 -> 'یک هزار و چهارصد و دو'."""
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return _ONES[0]
    groups: list[str] = []
    scale = 0
    while value:
        value, group = divmod(value, 1000)
        if group:
            words = " و ".join(_three_digits_to_words(group))
            groups.append(f"{words} {_SCALES[scale]}".strip())
        scale += 1
    return " و ".join(reversed(groups))


def _digits_one_by_one(digits: str) -> str:
    return " ".join(_ONES[int(d)] for d in digits)


def _spell_match(match: re.Match) -> str:
    raw = match.group(0).translate(_ASCII_DIGITS)
    whole, _, fraction = raw.partition(".")
    if (len(whole) > 1 and whole.startswith("0")) or len(whole) > 15:
        spoken = _digits_one_by_one(whole)
    else:
        spoken = number_to_words(int(whole))
    if fraction:
        spoken = f"{spoken} ممیز {_digits_one_by_one(fraction) if fraction.startswith('0') else number_to_words(int(fraction))}"
    return f" {spoken} "


def spell_out_numbers(text: str) -> str:
    """Replace every digit run (ASCII, Persian or Arabic-Indic) with Persian number words."""
    if not text:
        return ""
    ungrouped = GROUPED_NUMBER.sub("", text)
    return WHITESPACE.sub(" ", DIGIT_RUN.sub(_spell_match, ungrouped)).strip()


__all__ = [
    "normalize_punctuation",
    "normalize_transcript",
    "number_to_words",
    "spell_out_numbers",
]
