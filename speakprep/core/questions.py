"""Question bank helpers: bulk import, search-as-you-type and navigation.

Bulk payloads use the format::

    {"part": "1", "q_a": [{"q": "Where do you live?", "a": "I live in ..."}]}
"""

import json
import re
from typing import Any, List, Optional, Sequence

from loguru import logger

from .errors import QuestionImportError
from .store import MetadataStore, Question

TIME_LIMITS = {1: 90, 2: 120, 3: 150}
MAX_KEY_VOCABULARY = 8
MAX_SEARCH_RESULTS = 8

# Keyword -> category, first match wins (part 1 only)
PART_ONE_CATEGORIES = (
    (('hometown', 'where'), 'Hometown'),
    (('work', 'job'), 'Work/Study'),
    (('family',), 'Family'),
    (('hobby', 'free time'), 'Hobbies'),
    (('food',), 'Food'),
    (('travel',), 'Travel'),
)


def time_limit_for(part: int) -> int:
    return TIME_LIMITS.get(part, 120)


def category_for(question: str, part: int) -> str:
    """Derive a category from the question text and IELTS part."""
    if part == 2:
        return 'Long Turn'
    if part == 3:
        return 'Discussion'

    lower = question.lower()
    for keywords, category in PART_ONE_CATEGORIES:
        if any(keyword in lower for keyword in keywords):
            return category
    return 'General'


def extract_key_vocabulary(answer: str) -> List[str]:
    """Return the first unique words of four or more characters in *answer*."""
    words = re.findall(r'\b\w{4,}\b', answer.lower(), re.ASCII)
    return list(dict.fromkeys(words))[:MAX_KEY_VOCABULARY]


def build_question(serial_number: int, part: int, question: str, answer: str) -> Question:
    """Build an unsaved question, deriving its category, key vocabulary and time limit."""
    return Question(
        serial_number=serial_number,
        part=part,
        category=category_for(question, part),
        question=question.strip(),
        sample_answer=answer.strip(),
        key_vocabulary=extract_key_vocabulary(answer),
        time_limit=time_limit_for(part),
    )


def parse_bulk_payload(payload: Any, first_serial: int) -> List[Question]:
    """Validate a bulk payload and build unsaved :class:`Question` rows.

    Args:
        payload: Decoded JSON (a mapping with ``part`` and ``q_a``)
        first_serial: Serial number given to the first question

    Raises:
        QuestionImportError: If the payload is malformed
    """
    if not isinstance(payload, dict) or not payload.get('part') or not isinstance(payload.get('q_a'), list):
        raise QuestionImportError(
            'Invalid JSON format. Expected format: {"part":"1", "q_a":[{"q":"question", "a":"answer"}]}'
        )

    try:
        part = int(payload['part'])
    except (TypeError, ValueError):
        raise QuestionImportError('Part must be 1, 2, or 3')
    if part not in TIME_LIMITS:
        raise QuestionImportError('Part must be 1, 2, or 3')

    questions = []
    for offset, qa in enumerate(payload['q_a']):
        if not isinstance(qa, dict) or not qa.get('q') or not qa.get('a'):
            raise QuestionImportError('Each question must have both "q" (question) and "a" (answer) fields')
        questions.append(build_question(first_serial + offset, part, qa['q'], qa['a']))
    return questions


def import_questions(store: MetadataStore, text: str) -> List[Question]:
    """Parse a bulk JSON document and insert its questions after the highest serial."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise QuestionImportError(f'Invalid JSON: {e}') from e

    questions = parse_bulk_payload(payload, store.next_serial_number())
    store.add_questions(questions)
    logger.info(f'Imported {len(questions)} questions')
    return questions


def add_question(store: MetadataStore, part: int, question: str, answer: str) -> Question:
    """Insert one question after the highest serial number.

    Raises:
        QuestionImportError: If the part is not 1-3 or a field is blank
    """
    if part not in TIME_LIMITS:
        raise QuestionImportError('Part must be 1, 2, or 3')
    if not question.strip() or not answer.strip():
        raise QuestionImportError('Please fill in both question and answer fields')

    added = build_question(store.next_serial_number(), part, question, answer)
    store.add_questions([added])
    logger.info(f'Added question {added.serial_number}')
    return added


def edit_vocabulary(vocabulary: Sequence[str], add: Sequence[str] = (), remove: Sequence[str] = ()) -> List[str]:
    """Return *vocabulary* with *remove* dropped and new, non-blank *add* words appended."""
    dropped = set(remove)
    result = [word for word in vocabulary if word not in dropped]
    for word in add:
        word = word.strip()
        if word and word not in result:
            result.append(word)
    return result


def search_questions(
    questions: Sequence[Question],
    term: str,
    limit: int = MAX_SEARCH_RESULTS,
) -> List[Question]:
    """Filter *questions* the way the search box does.

    Question text and category match case-insensitively; serial number and
    part match as substrings of their decimal form. Blank terms match nothing.
    """
    term = term.strip()
    if not term:
        return []

    lower = term.lower()
    matches = [
        q for q in questions
        if lower in q.question.lower()
        or lower in q.category.lower()
        or term in str(q.serial_number)
        or term in str(q.part)
    ]
    return matches[:limit]


class QuestionNavigator:
    """Cursor over an ordered list of questions."""

    def __init__(self, questions: Sequence[Question]) -> None:
        self._questions = list(questions)
        self._index = 0

    @property
    def current(self) -> Optional[Question]:
        if not self._questions:
            return None
        return self._questions[self._index]

    @property
    def total(self) -> int:
        return len(self._questions)

    @property
    def progress(self) -> float:
        """Percentage of the bank reached, counting the current question."""
        if not self._questions:
            return 0.0
        return (self._index + 1) / len(self._questions) * 100

    def next(self) -> bool:
        if self._index < len(self._questions) - 1:
            self._index += 1
            return True
        return False

    def previous(self) -> bool:
        if self._index > 0:
            self._index -= 1
            return True
        return False

    def jump_to(self, serial_number: int) -> bool:
        for index, question in enumerate(self._questions):
            if question.serial_number == serial_number:
                self._index = index
                return True
        return False
