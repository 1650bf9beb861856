"""Tests for content, identity, challenge and memory storage."""

from lorechat import storage


def test_character_round_trip_lowercases_slug():
    storage.save_character("SeoYeon", {"name": "서연"})
    assert storage.get_character("seoyeon") == {"name": "서연"}


def test_missing_documents_are_none():
    assert storage.get_character("nobody") is None
    assert storage.get_project("nowhere") is None
    assert storage.get_scene("nowhere", "night") is None
    assert storage.get_challenge("none") is None
    assert storage.get_memory("u1", "nobody") is None
    assert storage.get_identity("u1") is None


def test_scene_lives_under_project():
    storage.save_project("harbor", {"lorebook": []})
    storage.save_scene("harbor", "night", {"lorebook": [{"key": "안개"}]})
    assert storage.get_scene("harbor", "night")["lorebook"][0]["key"] == "안개"
    assert (storage.projects_dir() / "harbor" / "scenes" / "night.json").is_file()


def test_identity_upsert():
    storage.save_identity({"id": "u1", "adultVerified": False})
    storage.save_identity({"id": "u2", "adultVerified": False})
    storage.save_identity({"id": "u1", "adultVerified": True})
    assert storage.get_identity("u1")["adultVerified"] is True
    assert storage.get_identity("u2")["adultVerified"] is False


def test_memory_per_user_and_character():
    storage.save_memory("u1", "seoyeon", {"summaries": ["a"]})
    storage.save_memory("u2", "seoyeon", {"summaries": ["b"]})
    assert storage.get_memory("u1", "SeoYeon") == {"summaries": ["a"]}
    assert storage.get_memory("u2", "seoyeon") == {"summaries": ["b"]}


def test_challenge_round_trip():
    storage.save_challenge({"id": "date", "characterSlug": "seoyeon"})
    assert storage.get_challenge("date")["characterSlug"] == "seoyeon"


def test_demo_data():
    from lorechat.demo import DEMO_CHALLENGE_ID, DEMO_CHARACTER_SLUG, create_demo_data

    create_demo_data()
    assert storage.get_character(DEMO_CHARACTER_SLUG)["name"] == "서연"
    assert storage.get_challenge(DEMO_CHALLENGE_ID)["characterSlug"] == DEMO_CHARACTER_SLUG
    assert storage.get_identity("demo-user") is not None
