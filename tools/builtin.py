"""Built-in tool resolvers, keyed by the tool's ``code_ref``.

Each resolver pairs a pydantic input model (validation + defaults) with a
pure function from validated input to an output dict.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Literal

from pydantic import AliasChoices, BaseModel, Field


@dataclass(frozen=True)
class BuiltinResolver:
    input_model: type[BaseModel]
    resolve: Callable[[Any], dict[str, Any]]

    def __call__(self, raw_inputs: dict[str, Any]) -> dict[str, Any]:
        """Validate then resolve; raises ``pydantic.ValidationError`` on bad input."""
        return self.resolve(self.input_model.model_validate(raw_inputs))


def _round2(value: float) -> float:
    return round(value, 2)


# ─── tip-calculator ────────────────────────────────────────────


class TipCalculatorInput(BaseModel):
    subtotal: float = Field(ge=0)
    tip_percentage: float = Field(ge=0, le=100, validation_alias=AliasChoices("tip_percentage", "tipPercentage"))
    tax_percentage: float = Field(
        default=0, ge=0, le=100, validation_alias=AliasChoices("tax_percentage", "taxPercentage")
    )
    number_of_people: int = Field(
        default=1, ge=1, validation_alias=AliasChoices("number_of_people", "numberOfPeople")
    )


def tip_calculator(data: TipCalculatorInput) -> dict[str, Any]:
    tip_amount = data.subtotal * data.tip_percentage / 100
    tax_amount = data.subtotal * data.tax_percentage / 100
    total = data.subtotal + tip_amount + tax_amount
    return {
        "subtotal": _round2(data.subtotal),
        "tip_amount": _round2(tip_amount),
        "tax_amount": _round2(tax_amount),
        "total": _round2(total),
        "per_person": _round2(total / data.number_of_people),
        "breakdown": {
            "subtotal": _round2(data.subtotal),
            "tip": _round2(tip_amount),
            "tax": _round2(tax_amount),
            "total": _round2(total),
        },
    }


# ─── text-case-converter ───────────────────────────────────────

TargetCase = Literal[
    "uppercase",
    "lowercase",
    "titlecase",
    "sentencecase",
    "camelcase",
    "pascalcase",
    "snakecase",
    "kebabcase",
]

_NON_ALNUM_THEN_CHAR = re.compile(r"[^a-zA-Z0-9]+(.)")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]+")
_UPPER = re.compile(r"([A-Z])")


class TextCaseConverterInput(BaseModel):
    text: str
    target_case: TargetCase = Field(validation_alias=AliasChoices("target_case", "targetCase"))


def _delimited(text: str, separator: str) -> str:
    converted = _UPPER.sub(separator + r"\1", text.strip())
    converted = _NON_ALNUM.sub(separator, converted)
    return converted.strip(separator).lower()


def _camel_words(text: str) -> str:
    return _NON_ALNUM_THEN_CHAR.sub(lambda m: m.group(1).upper(), text.lower())


def text_case_converter(data: TextCaseConverterInput) -> dict[str, Any]:
    text = data.text
    target = data.target_case
    if target == "uppercase":
        converted = text.upper()
    elif target == "lowercase":
        converted = text.lower()
    elif target == "titlecase":
        converted = " ".join(word[:1].upper() + word[1:] for word in text.lower().split(" "))
    elif target == "sentencecase":
        converted = text[:1].upper() + text[1:].lower()
    elif target == "camelcase":
        words = _camel_words(text)
        converted = words[:1].lower() + words[1:]
    elif target == "pascalcase":
        words = _camel_words(text)
        converted = words[:1].upper() + words[1:]
    elif target == "snakecase":
        converted = _delimited(text, "_")
    else:
        converted = _delimited(text, "-")

    return {
        "original": text,
        "converted": converted,
        "target_case": target,
        "character_count": len(text),
    }


# ─── reading-time-calculator ───────────────────────────────────


class ReadingTimeCalculatorInput(BaseModel):
    text: str
    words_per_minute: float = Field(
        default=200, ge=100, le=300, validation_alias=AliasChoices("words_per_minute", "wordsPerMinute")
    )


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit if count == 1 else unit + 's'}"


def reading_time_calculator(data: ReadingTimeCalculatorInput) -> dict[str, Any]:
    word_count = len(data.text.split())
    total_seconds = math.ceil(word_count * 60 / data.words_per_minute)
    minutes, seconds = divmod(total_seconds, 60)

    if minutes == 0:
        display = _plural(seconds, "second")
    elif seconds == 0:
        display = _plural(minutes, "minute")
    else:
        display = f"{_plural(minutes, 'minute')}, {_plural(seconds, 'second')}"

    words_per_minute = int(data.words_per_minute) if float(data.words_per_minute).is_integer() else data.words_per_minute
    return {
        "word_count": word_count,
        "character_count": len(data.text),
        "reading_time_minutes": _round2(word_count / data.words_per_minute),
        "reading_time_seconds": total_seconds,
        "reading_time_display": display,
        "words_per_minute": words_per_minute,
    }


# ─── hash-generator ────────────────────────────────────────────


class HashGeneratorInput(BaseModel):
    text: str = Field(min_length=1)
    algorithm: Literal["md5", "sha1", "sha256", "sha512"] = "sha256"


def hash_generator(data: HashGeneratorInput) -> dict[str, Any]:
    digest = hashlib.new(data.algorithm, data.text.encode("utf-8")).hexdigest()
    return {
        "hash": digest,
        "algorithm": data.algorithm,
        "length": len(digest),
        "uppercase": digest.upper(),
    }


# ─── base64-converter ──────────────────────────────────────────


class Base64ConverterInput(BaseModel):
    text: str
    operation: Literal["encode", "decode"]


def base64_converter(data: Base64ConverterInput) -> dict[str, Any]:
    if data.operation == "encode":
        result = base64.b64encode(data.text.encode("utf-8")).decode("ascii")
    else:
        normalized = re.sub(r"\s", "", data.text)
        try:
            result = base64.b64decode(normalized, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ValueError(f"Invalid base64 string: {exc}") from exc

    return {
        "result": result,
        "operation": data.operation,
        "original_length": len(data.text),
        "result_length": len(result),
    }


BUILTIN_RESOLVERS: dict[str, BuiltinResolver] = {
    "tip-calculator": BuiltinResolver(TipCalculatorInput, tip_calculator),
    "text-case-converter": BuiltinResolver(TextCaseConverterInput, text_case_converter),
    "reading-time-calculator": BuiltinResolver(ReadingTimeCalculatorInput, reading_time_calculator),
    "hash-generator": BuiltinResolver(HashGeneratorInput, hash_generator),
    "base64-converter": BuiltinResolver(Base64ConverterInput, base64_converter),
}
