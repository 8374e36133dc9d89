from typing import List

from pydantic import BaseModel

from issue_agent.generation.recovery import (
    ACCEPTED,
    INVALID_JSON,
    INVALID_SHAPE,
    balanced_slice,
    extract_candidates,
    recover,
)


class Finding(BaseModel):
    title: str
    score: int


def test_fenced_block_is_recovered():
    text = 'Here is the result:\n```json\n{"title": "leak", "score": 3}\n```\nThanks!'

    outcome = recover(text, Finding)

    assert outcome.value == Finding(title="leak", score=3)
    assert outcome.accepted.strategy == "fenced-blocks"
    assert outcome.attempts[0].strategy == "full-text"
    assert outcome.attempts[0].status == INVALID_JSON


def test_balanced_object_ignores_braces_inside_strings():
    text = 'Answer: {"title": "uses } and { in text", "score": 1} trailing words'

    assert balanced_slice(text, "{", "}") == '{"title": "uses } and { in text", "score": 1}'
    assert recover(text, Finding).value.title == "uses } and { in text"


def test_array_targets_use_balanced_array():
    text = 'Result -> [{"title": "a", "score": 1}, {"title": "b", "score": 2}] done'

    outcome = recover(text, List[Finding])

    assert [item.title for item in outcome.value] == ["a", "b"]
    assert outcome.accepted.strategy == "balanced-array"


def test_shape_mismatch_is_tagged_and_nothing_accepted():
    outcome = recover('{"title": "missing score"}', Finding)

    assert outcome.accepted is None
    assert outcome.value is None
    assert [attempt.status for attempt in outcome.attempts] == [INVALID_SHAPE]


def test_duplicate_candidates_are_tried_once():
    candidates = extract_candidates('{"title": "x", "score": 1}')

    assert candidates == [("full-text", '{"title": "x", "score": 1}')]
    assert recover("", Finding).attempts == []
    assert recover('{"title": "x", "score": 1}', Finding).attempts[0].status == ACCEPTED
