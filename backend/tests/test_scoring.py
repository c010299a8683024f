from __future__ import annotations

import pytest

from vocafluence.errors import InvalidInputError
from vocafluence.scoring import ENCOURAGEMENT, assess, feedback_comments, round_half_up, tokenize

REFERENCE = "Je suis dentiste Tu es professeur Il est"


def test_tokenize_lowercases_and_drops_blank_tokens() -> None:
    assert tokenize("  Je   SUIS\tdentiste\n") == ["je", "suis", "dentiste"]
    assert tokenize("   ") == []


def test_round_half_up_matches_reported_scores() -> None:
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(59.49) == 59
    assert round_half_up(99.5) == 100


def test_perfect_reading_scores_full_marks() -> None:
    result = assess(REFERENCE, REFERENCE, 4)

    assert result.words_per_minute == 120
    assert result.accuracy == 100
    assert result.fluency == 100
    assert result.score == 100
    assert result.feedback_comments == ["excellent accuracy", "great pace", ENCOURAGEMENT]
    assert result.reference_word_count == 8
    assert result.transcript_word_count == 8


def test_half_reading_reports_skipped_words() -> None:
    result = assess("a b c d e f g h i j", "a b c d e", 6)

    assert result.accuracy == 50
    assert result.words_per_minute == 50
    assert result.fluency == 50
    assert result.score == 50
    assert result.feedback_comments == [
        "needs pronunciation focus",
        "practice reading aloud",
        "skipped 5 words",
    ]


def test_matching_ignores_case_and_order() -> None:
    result = assess("Bonjour Madame Dupont", "dupont MADAME bonjour", 2)
    assert result.accuracy == 100


def test_repeated_words_can_push_accuracy_only_to_cap() -> None:
    result = assess("oui", "oui oui oui", 3)
    assert result.accuracy == 100
    assert result.feedback_comments[2] == ENCOURAGEMENT


def test_slow_reading_with_extra_words() -> None:
    result = assess("un deux trois", "un deux trois quatre cinq six", 60)

    assert result.words_per_minute == 6
    assert result.accuracy == 100
    assert result.fluency == 72
    assert result.feedback_comments == ["excellent accuracy", "improve speed", "added extra words"]


def test_silence_scores_zero() -> None:
    result = assess(REFERENCE, "", 10)

    assert result.score == 0
    assert result.accuracy == 0
    assert result.fluency == 0
    assert result.words_per_minute == 0
    assert result.feedback_comments == ["review script", "practice reading aloud", "skipped 8 words"]


def test_score_uses_unrounded_components() -> None:
    reference = " ".join(f"mot{index}" for index in range(11))
    transcript = " ".join(f"mot{index}" for index in range(6))
    result = assess(reference, transcript, 1)

    # 6/11 accuracy at a capped pace lands exactly on 60.
    assert result.accuracy == 55
    assert result.fluency == 68
    assert result.score == 60


def test_wpm_is_rounded() -> None:
    assert assess("bonjour", "bonjour", 0.8).words_per_minute == 75


@pytest.mark.parametrize(
    ("reference", "duration"),
    [
        ("", 5),
        ("   ", 5),
        (REFERENCE, 0),
        (REFERENCE, -1.5),
    ],
)
def test_invalid_inputs_are_rejected(reference: str, duration: float) -> None:
    with pytest.raises(InvalidInputError):
        assess(reference, "bonjour", duration)


def test_scoring_is_deterministic() -> None:
    assert assess(REFERENCE, "je suis dentiste", 3) == assess(REFERENCE, "je suis dentiste", 3)


def test_feedback_always_has_three_comments() -> None:
    for accuracy, fluency, ref_count, spoken_count in [
        (95, 90, 10, 10),
        (75, 65, 10, 2),
        (55, 40, 3, 9),
        (10, 10, 1, 1),
    ]:
        assert len(feedback_comments(accuracy, fluency, ref_count, spoken_count)) == 3


def test_unrelated_transcript_scores_on_pace_alone() -> None:
    result = assess("a b c d e f g h i j", "k l m n o p q r s t", 10)

    assert result.accuracy == 0
    assert result.words_per_minute == 60
    assert result.fluency == 18
    # 0.4 * 18.0 = 7.2
    assert result.score == 7
    assert result.feedback_comments == ["review script", "practice reading aloud", ENCOURAGEMENT]


@pytest.mark.parametrize(
    ("reference", "transcript", "duration"),
    [
        (REFERENCE, REFERENCE, 0.1),
        (REFERENCE, " ".join([REFERENCE] * 20), 1),
        ("oui", "oui " * 500, 0.5),
        (REFERENCE, "rien a voir", 600),
        ("un", "", 0.01),
        (REFERENCE, "je suis", 3.3),
    ],
)
def test_metrics_stay_within_percentage_range(reference: str, transcript: str, duration: float) -> None:
    result = assess(reference, transcript, duration)

    for value in (result.accuracy, result.fluency, result.score):
        assert 0 <= value <= 100
    assert result.words_per_minute >= 0
