from micromatch.ai import IdentityCanonicalizer
from micromatch.data_models import ParticipantResponse
from micromatch.topics import canonicalize_topics, clean_topic, collect_raw_topics

from conftest import StaticCanonicalizer


def test_clean_topic_folds_case_space_and_accents():
    assert clean_topic("  Café   Culture ") == "cafe culture"
    assert clean_topic("GAMING") == "gaming"
    assert clean_topic(None) == ""
    assert clean_topic("   ") == ""


def test_collect_raw_topics_is_a_deduplicated_union():
    responses = [
        ParticipantResponse(participant_id="A", topics=["Cinema", "travel", ""]),
        ParticipantResponse(participant_id="B", topics=["cinema ", "Soccer"]),
    ]
    assert collect_raw_topics(responses) == ["cinema", "travel", "soccer"]


def test_oracle_called_once_with_all_topics():
    oracle = StaticCanonicalizer({"yoga": "fitness", "gym": "fitness"})
    mapping = canonicalize_topics(["yoga", "gym", "chess"], oracle)
    assert len(oracle.calls) == 1
    assert oracle.calls[0] == ["yoga", "gym", "chess"]
    assert mapping == {"yoga": "fitness", "gym": "fitness", "chess": "chess"}


def test_empty_oracle_answer_falls_back_to_identity():
    mapping = canonicalize_topics(["cinema", "travel"], StaticCanonicalizer({}))
    assert mapping == {"cinema": "cinema", "travel": "travel"}


def test_failing_oracle_falls_back_to_identity():
    oracle = StaticCanonicalizer(error=TimeoutError("oracle timed out"))
    mapping = canonicalize_topics(["cinema", "travel"], oracle)
    assert mapping == {"cinema": "cinema", "travel": "travel"}


def test_oracle_values_are_cleaned_and_blank_values_ignored():
    oracle = StaticCanonicalizer({"movies": "  Cinema ", "films": ""})
    mapping = canonicalize_topics(["movies", "films"], oracle)
    assert mapping == {"movies": "cinema", "films": "films"}


def test_non_dict_oracle_answer_is_ignored():
    class ListOracle:
        def canonicalize(self, topics):
            return ["not", "a", "mapping"]

    assert canonicalize_topics(["a"], ListOracle()) == {"a": "a"}


def test_no_topics_skips_oracle():
    oracle = StaticCanonicalizer({"x": "y"})
    assert canonicalize_topics([], oracle) == {}
    assert oracle.calls == []


def test_identity_canonicalizer():
    assert IdentityCanonicalizer().canonicalize(["a", "b"]) == {"a": "a", "b": "b"}
