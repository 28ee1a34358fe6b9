import pytest

from src.weathervis.services.tips import (
    bucket_ratios,
    build_tip_prompt,
    code_bucket,
    make_suggestion,
    text_to_code,
)


@pytest.mark.parametrize(
    "code, bucket",
    [(0, "clear"), (1, "clear"), (3, "cloudy"), (45, "cloudy"), (63, "rain"), (95, "cloudy"), (86, "snow"), (None, "cloudy")],
)
def test_code_bucket(code, bucket):
    assert code_bucket(code) == bucket


@pytest.mark.parametrize(
    "text, code",
    [("Sunny", 1), ("Patchy light drizzle", 61), ("Thundery outbreaks", 61), ("Overcast", 3), ("Blizzard", 71), (None, 1)],
)
def test_text_to_code(text, code):
    assert text_to_code(text) == code


def test_bucket_ratios():
    ratios = bucket_ratios([0, 61, 61, 71])
    assert ratios == {"clear": 0.25, "cloudy": 0.0, "rain": 0.5, "snow": 0.25}
    assert bucket_ratios([]) == {"clear": 0.0, "cloudy": 0.0, "rain": 0.0, "snow": 0.0}


def test_make_suggestion_combines_rules():
    assert make_suggestion(32, 8, 0) == "High UV – wear sunscreen (SPF 30+), hat, and sunglasses. Hot – light clothing and stay hydrated."
    assert make_suggestion(-10, 0, 73) == "Very cold – insulated coat, gloves, and a hat. Snowy – boots with traction recommended."
    assert make_suggestion(15, 4, 3) == "Moderate UV – consider sunscreen if outdoors long."
    assert make_suggestion(None, None, None) == "Enjoy your day!"


def test_build_tip_prompt():
    prompt = build_tip_prompt(
        "Seattle",
        20.4,
        "Clear",
        [("1 PM", 21.0, "Clear"), ("2 PM", 20.6, None), ("3 PM", None, "Cloudy")],
        hours=2,
    )
    assert prompt == (
        "Seattle, 20C, clear. Next 2h: 1 PM 21C clear; 2 PM 21C."
        " Give one short, practical tip on what to wear or bring."
    )


def test_build_tip_prompt_without_forecast():
    assert build_tip_prompt(" ", None, None) == "Unknown. Give one short, practical tip on what to wear or bring."
