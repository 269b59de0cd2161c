import json

from serenity.models.models import Classification
from serenity.services.fallback import StaticFallbackDataset


def test_lookup_normalizes_and_folds_case(dataset):
    assert dataset.lookup("somechannel") == Classification.AI_GENERATED
    assert dataset.lookup("@SomeChannel") == Classification.AI_GENERATED
    assert dataset.lookup("/@HumanChannel/") == Classification.HUMAN_CREATED
    assert dataset.lookup("humanchannel") == Classification.HUMAN_CREATED
    assert dataset.lookup("missing") is None
    assert dataset.lookup("") is None


def test_exact_match_beats_case_folded_match():
    dataset = StaticFallbackDataset(data={"Chan": "ai_generated", "chan": "human_created"})

    assert dataset.lookup("Chan") == Classification.AI_GENERATED
    assert dataset.lookup("chan") == Classification.HUMAN_CREATED
    # No exact hit: first key in file order wins
    assert dataset.lookup("CHAN") == Classification.AI_GENERATED


def test_invalid_classifications_are_skipped():
    dataset = StaticFallbackDataset(data={"good": "mixed", "bad": "robot"})

    assert len(dataset) == 1
    assert dataset.lookup("good") == Classification.MIXED
    assert dataset.lookup("bad") is None


def test_loads_from_file_once(tmp_path):
    path = tmp_path / "channel_data.json"
    path.write_text(json.dumps({"somechannel": "ai_assisted"}))
    dataset = StaticFallbackDataset(path)

    assert dataset.lookup("@somechannel") == Classification.AI_ASSISTED

    path.write_text(json.dumps({}))
    assert dataset.lookup("somechannel") == Classification.AI_ASSISTED


def test_missing_or_broken_file_means_empty(tmp_path):
    assert len(StaticFallbackDataset(tmp_path / "missing.json")) == 0

    broken = tmp_path / "broken.json"
    broken.write_text("[1, 2")
    assert StaticFallbackDataset(broken).lookup("anything") is None
