"""Build multiple-choice questions from movie metadata."""
from __future__ import annotations

import random
from typing import List, Optional, Sequence, Tuple

from .models import MovieDetail, Question

GENRE_DISTRACTORS = ["Comedy", "Romance", "Sci-Fi"]
CLOZE_OPTIONS = ["plot", "conflict", "resolution", "twist"]
CLOZE_ANSWER = 1
MIN_CAST = 3
MAX_CAST_OPTIONS = 4


def _genre_question(movie: MovieDetail) -> Optional[Tuple[str, List[str], int]]:
    if not movie.genres:
        return None
    primary = movie.genres[0]
    options = [primary] + [g for g in GENRE_DISTRACTORS if g != primary]
    return f'What\'s a genre of "{movie.title}"?', options, 0


def _cast_question(movie: MovieDetail) -> Optional[Tuple[str, List[str], int]]:
    if len(movie.cast) < MIN_CAST:
        return None
    return f'Who stars in "{movie.title}"?', list(movie.cast[:MAX_CAST_OPTIONS]), 0


def _cloze_question(movie: MovieDetail) -> Optional[Tuple[str, List[str], int]]:
    if not movie.overview:
        return None
    sample = " ".join(movie.overview.split(" ")[3:10])
    return f"Complete this: “…{sample} ___.”", list(CLOZE_OPTIONS), CLOZE_ANSWER


def _shuffled(prompt: str, options: Sequence[str], answer: int, rng: random.Random) -> Question:
    order = list(range(len(options)))
    rng.shuffle(order)
    return Question(
        prompt=prompt,
        options=[options[i] for i in order],
        answer=order.index(answer),
    )


def generate_questions(movie: MovieDetail, rng: Optional[random.Random] = None) -> List[Question]:
    """Return up to three questions for ``movie`` in random order.

    An empty list means there is nothing to quiz about.
    """

    rng = rng or random.Random()
    questions = []
    for build in (_genre_question, _cast_question, _cloze_question):
        built = build(movie)
        if built is not None:
            questions.append(_shuffled(*built, rng=rng))
    rng.shuffle(questions)
    return questions
