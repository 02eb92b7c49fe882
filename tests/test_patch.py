import json

import pytest

from chainstore.patch import get_annotations_patch


@pytest.mark.parametrize(
    "annotations, want",
    [
        ({}, '{"metadata":{}}'),
        ({"foo": "bar"}, '{"metadata":{"annotations":{"foo":"bar"}}}'),
        (
            {"foo": "bar", "baz": "bat"},
            '{"metadata":{"annotations":{"baz":"bat","foo":"bar"}}}',
        ),
    ],
    ids=["empty", "one", "many"],
)
def test_get_annotations_patch(annotations, want):
    assert get_annotations_patch(annotations).decode() == want


def test_html_characters_are_escaped():
    got = get_annotations_patch({"a": "<b>&"}).decode()
    assert got == '{"metadata":{"annotations":{"a":"\\u003cb\\u003e\\u0026"}}}'


def test_patch_round_trips_through_json():
    annotations = {"chains.tekton.dev/signed": "true", "k": "välue"}
    decoded = json.loads(get_annotations_patch(annotations))
    assert decoded == {"metadata": {"annotations": annotations}}