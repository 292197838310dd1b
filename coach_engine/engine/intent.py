"""Rule-based intent parser used by the deterministic fallback.

Rules are checked in order:
  settings (unit / sound)  => set_weight_unit | set_sound
  "today" + summary words  => today_summary
  trend/report/history     => exercise_report
  "<n> <exercise>" forms   => log_set
  work on / focus / ...    => focus_suggestions
  *                        => unknown
"""

from __future__ import annotations

import re
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from coach_engine.engine.models import WeightUnit


class LogSetIntent(BaseModel):
    type: Literal["log_set"] = "log_set"
    exercise_name: str
    reps: int | None = None
    duration_seconds: int | None = None
    weight: float | None = None
    unit: WeightUnit | None = None


class TodaySummaryIntent(BaseModel):
    type: Literal["today_summary"] = "today_summary"


class ExerciseReportIntent(BaseModel):
    type: Literal["exercise_report"] = "exercise_report"
    exercise_name: str


class SetWeightUnitIntent(BaseModel):
    type: Literal["set_weight_unit"] = "set_weight_unit"
    unit: WeightUnit


class SetSoundIntent(BaseModel):
    type: Literal["set_sound"] = "set_sound"
    enabled: bool


class FocusSuggestionsIntent(BaseModel):
    type: Literal["focus_suggestions"] = "focus_suggestions"


class UnknownIntent(BaseModel):
    type: Literal["unknown"] = "unknown"
    input: str


CoachIntent = Annotated[
    Union[
        LogSetIntent,
        TodaySummaryIntent,
        ExerciseReportIntent,
        SetWeightUnitIntent,
        SetSoundIntent,
        FocusSuggestionsIntent,
        UnknownIntent,
    ],
    Field(discriminator="type"),
]


STOPWORDS = frozenset({
    "show", "me", "my", "the", "for", "trend", "history", "report", "insight",
    "insights", "analyze", "analysis", "of", "on", "please", "stats", "stat",
    "summary", "today", "performance", "how", "am", "i", "doing",
})

EXERCISE_ALIASES: dict[str, str] = {
    "pushup": "Push-ups",
    "pushups": "Push-ups",
    "push-up": "Push-ups",
    "push-ups": "Push-ups",
    "squat": "Squats",
    "squats": "Squats",
    "pullup": "Pull-ups",
    "pullups": "Pull-ups",
    "pull-up": "Pull-ups",
    "pull-ups": "Pull-ups",
    "situp": "Sit-ups",
    "situps": "Sit-ups",
    "sit-up": "Sit-ups",
    "sit-ups": "Sit-ups",
    "plank": "Plank",
}

_LEADING_VERBS = re.compile(r"^(log|add|did|completed|complete|i did|i completed)\s+", re.I)
_NUMBER = r"(\d{1,6}(?:\.\d{1,3})?)"
_WEIGHT_SUFFIX = re.compile(rf"^(.*?)(?:\s+(?:@|at)\s*{_NUMBER}\s*(kg|kgs|lb|lbs))\s*$", re.I)
_DURATION_UNITS = r"(seconds?|secs?|s|minutes?|mins?|m)"
_DURATION_PREFIX = re.compile(rf"^{_NUMBER}\s*{_DURATION_UNITS}\s+(.+)$", re.I)
_DURATION_SUFFIX = re.compile(rf"^(.+?)\s+for\s+{_NUMBER}\s*{_DURATION_UNITS}$", re.I)
_REPS_PREFIX = re.compile(r"^(\d{1,4})\s*(?:x|reps?|rep)?\s+(.+)$", re.I)
_REPS_SUFFIX = re.compile(r"^(.+?)\s+(?:x\s*)?(\d{1,4})\s*(?:reps?|rep)?$", re.I)

_UNIT_SETTING = re.compile(
    r"\b(?:set|switch|change)?\s*(?:my\s+)?(?:weight\s+)?unit\b.*\b(kg|kgs|lb|lbs)\b", re.I
)
_UNIT_SHORTHAND = re.compile(r"\b(?:switch|change)\b.*\b(?:to|in)\s*(kg|kgs|lb|lbs)\b", re.I)
_SOUND_OFF = re.compile(r"\b(?:sound|audio|click)\b.*\b(?:off|mute|disable|disabled)\b", re.I)
_SOUND_ON = re.compile(r"\b(?:sound|audio|click)\b.*\b(?:on|enable|enabled)\b", re.I)

_TODAY = re.compile(r"\b(?:today|todays)\b")
_SUMMARY_WORDS = re.compile(r"\b(?:summary|stats|totals?|workout|sets?|progress|doing)\b")
_WHAT_DID_I_DO = re.compile(r"\bwhat did i do today\b")
_REPORT_WORDS = re.compile(r"\b(?:trend|history|report|insight|analysis|progress)\b")
_REPORT_TARGET = re.compile(r"\b(?:for|on|about)\s+([a-z0-9 -]+)$", re.I)
_FOCUS = re.compile(r"\b(work on|focus|improve|today plan|what should i do)\b", re.I)


def _normalize_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def _to_unit(token: str) -> WeightUnit:
    return "kg" if token.lower().startswith("kg") else "lbs"


def _title_case(value: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in value.split(" ") if word)


def normalize_exercise_alias(value: str) -> str:
    normalized = re.sub(r"[^a-z0-9\s-]", "", value.lower()).strip()
    return EXERCISE_ALIASES.get(normalized, _title_case(normalized))


def normalize_exercise_lookup(value: str) -> str:
    """Lookup key that ignores case, spacing and punctuation."""
    return re.sub(r"[^a-z0-9]", "", value.lower())


def _duration_to_seconds(value: float, unit: str) -> int:
    if unit.lower().startswith("m"):
        return round(value * 60)
    return round(value)


def _extract_weight(text: str) -> tuple[str, float | None, WeightUnit | None]:
    match = _WEIGHT_SUFFIX.match(text)
    if not match:
        return text, None, None
    weight = float(match.group(2))
    if weight <= 0:
        return text, None, None
    return _normalize_whitespace(match.group(1)), weight, _to_unit(match.group(3))


def _parse_log(text: str) -> LogSetIntent | None:
    stripped = _normalize_whitespace(_LEADING_VERBS.sub("", text))
    body, weight, unit = _extract_weight(stripped)
    if not body:
        return None

    for pattern, number_group, unit_group, name_group in (
        (_DURATION_PREFIX, 1, 2, 3),
        (_DURATION_SUFFIX, 2, 3, 1),
    ):
        match = pattern.match(body)
        if match:
            seconds = _duration_to_seconds(float(match.group(number_group)), match.group(unit_group))
            name = normalize_exercise_alias(match.group(name_group))
            if name and seconds > 0:
                return LogSetIntent(
                    exercise_name=name, duration_seconds=seconds, weight=weight, unit=unit
                )

    for pattern, reps_group, name_group in ((_REPS_PREFIX, 1, 2), (_REPS_SUFFIX, 2, 1)):
        match = pattern.match(body)
        if match:
            reps = int(match.group(reps_group))
            name = normalize_exercise_alias(match.group(name_group))
            if name and reps > 0:
                return LogSetIntent(exercise_name=name, reps=reps, weight=weight, unit=unit)

    return None


def _parse_setting(text: str) -> SetWeightUnitIntent | SetSoundIntent | None:
    match = _UNIT_SETTING.search(text) or _UNIT_SHORTHAND.search(text)
    if match:
        return SetWeightUnitIntent(unit=_to_unit(match.group(1)))
    if _SOUND_OFF.search(text):
        return SetSoundIntent(enabled=False)
    if _SOUND_ON.search(text):
        return SetSoundIntent(enabled=True)
    return None


def _parse_summary(text: str) -> TodaySummaryIntent | None:
    if _TODAY.search(text) and _SUMMARY_WORDS.search(text):
        return TodaySummaryIntent()
    if _WHAT_DID_I_DO.search(text):
        return TodaySummaryIntent()
    return None


def _parse_report(text: str) -> ExerciseReportIntent | None:
    if not _REPORT_WORDS.search(text):
        return None
    explicit = _REPORT_TARGET.search(text)
    if explicit:
        raw = explicit.group(1)
    else:
        raw = " ".join(token for token in text.split(" ") if token not in STOPWORDS)
    name = normalize_exercise_alias(_normalize_whitespace(raw))
    if not name:
        return None
    return ExerciseReportIntent(exercise_name=name)


def parse_coach_intent(text: str) -> CoachIntent:
    """Classify a user utterance. Never raises."""
    normalized = _normalize_whitespace(text.lower())
    if not normalized:
        return UnknownIntent(input=text)

    intent = (
        _parse_setting(normalized)
        or _parse_summary(normalized)
        or _parse_report(normalized)
        or _parse_log(normalized)
    )
    if intent is not None:
        return intent
    if _FOCUS.search(normalized):
        return FocusSuggestionsIntent()
    return UnknownIntent(input=text)
