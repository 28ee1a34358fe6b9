"""Rule-based weather tips and the prompt sent to the tip generator.

The heuristics here need no model: they back the UI when generation fails
and give the LLM prompt a consistent shape.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

# WMO weather codes grouped into the coarse buckets the UI has icons for
WMO_BUCKETS: Dict[str, Tuple[int, ...]] = {
    "clear": (0, 1),
    "cloudy": (2, 3, 45, 48),
    "rain": (51, 53, 55, 56, 57, 61, 63, 65, 66, 67, 80, 81, 82),
    "snow": (71, 73, 75, 77, 85, 86),
}

BUCKETS = ("clear", "cloudy", "rain", "snow")


def code_bucket(code: Optional[int]) -> str:
    for bucket, codes in WMO_BUCKETS.items():
        if code in codes:
            return bucket
    return "cloudy"


def text_to_code(text: Optional[str]) -> int:
    """Map a WeatherAPI condition text onto a representative WMO code."""
    s = (text or "").lower()
    if any(word in s for word in ("snow", "sleet", "blizzard")):
        return 71
    if any(word in s for word in ("rain", "drizzle", "shower", "thunder")):
        return 61
    if any(word in s for word in ("cloud", "overcast", "mist", "fog")):
        return 3
    return 1


def bucket_ratios(codes: Sequence[int]) -> Dict[str, float]:
    counts = {bucket: 0 for bucket in BUCKETS}
    for code in codes:
        counts[code_bucket(code)] += 1
    total = len(codes) or 1
    return {bucket: count / total for bucket, count in counts.items()}


def make_suggestion(temp_c: Optional[float], uv: Optional[float], code: Optional[int]) -> str:
    bucket = code_bucket(code)
    parts: List[str] = []
    if uv is not None:
        if uv >= 6:
            parts.append("High UV – wear sunscreen (SPF 30+), hat, and sunglasses.")
        elif uv >= 3:
            parts.append("Moderate UV – consider sunscreen if outdoors long.")
    if temp_c is not None:
        if temp_c <= -5:
            parts.append("Very cold – insulated coat, gloves, and a hat.")
        elif temp_c <= 5:
            parts.append("Chilly – wear a warm jacket and layers.")
        elif temp_c >= 30:
            parts.append("Hot – light clothing and stay hydrated.")
    if bucket == "rain":
        parts.append("Carry a waterproof jacket or umbrella.")
    if bucket == "snow":
        parts.append("Snowy – boots with traction recommended.")
    return " ".join(parts) or "Enjoy your day!"


def build_tip_prompt(
    place: str,
    temp_c: Optional[float],
    condition: Optional[str],
    next_hours: Sequence[Tuple[str, Optional[float], Optional[str]]] = (),
    hours: int = 6,
) -> str:
    """Compose a short prompt such as ``"Seattle, 20C, clear. Next 6h: ..."``.

    ``next_hours`` holds ``(label, temp_c, condition)`` tuples; only the first
    ``hours`` entries are used.
    """

    head = [place.strip() or "Unknown"]
    if temp_c is not None:
        head.append(f"{round(temp_c)}C")
    if condition:
        head.append(condition.strip().lower())
    text = ", ".join(head) + "."
    upcoming = []
    for label, t, cond in list(next_hours)[:hours]:
        bits = [label]
        if t is not None:
            bits.append(f"{round(t)}C")
        if cond:
            bits.append(cond.strip().lower())
        upcoming.append(" ".join(bits))
    if upcoming:
        text += f" Next {len(upcoming)}h: " + "; ".join(upcoming) + "."
    text += " Give one short, practical tip on what to wear or bring."
    return text
