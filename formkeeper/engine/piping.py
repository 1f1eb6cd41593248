"""
formkeeper.engine.piping — Answer Piping
=========================================

Rewrites ``{{Q<id>}}`` placeholders in question or help text with answers
collected earlier in the same submission::

    apply_answer_piping("Thanks {{Q1}}!", {1: "Ada"}, questions)
    # → "Thanks Ada!"

Substitution is a single pass over the original text: an inserted answer is
never itself scanned for placeholders.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from formkeeper.constants import PIPED_ANSWER_MAX_LENGTH, render_answer

if TYPE_CHECKING:
    from formkeeper.database.models import FormQuestion

_PLACEHOLDER = re.compile(r"\{\{Q(\d+)\}\}")


def apply_answer_piping(
    text: str,
    answers: Mapping[int, object],
    questions: Iterable[FormQuestion],
) -> str:
    """Substitute every ``{{Q<n>}}`` token in *text*.

    Answered → the rendered answer with ``<``/``>`` escaped, cut to 100
    characters plus ``...``.  Unanswered → ``[<question text>]``, or
    ``[Not answered]`` when *n* is not a known question id.
    """
    if not text:
        return text
    question_text = {q.id: q.question_text for q in questions}

    def _replace(match: re.Match[str]) -> str:
        question_id = int(match.group(1))
        answer = answers.get(question_id)
        if answer is None:
            label = question_text.get(question_id)
            return f"[{label}]" if label is not None else "[Not answered]"

        rendered = render_answer(answer).replace("<", "&lt;").replace(">", "&gt;")
        if len(rendered) > PIPED_ANSWER_MAX_LENGTH:
            rendered = rendered[:PIPED_ANSWER_MAX_LENGTH] + "..."
        return rendered

    return _PLACEHOLDER.sub(_replace, text)
