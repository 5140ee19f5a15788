"""
Tests for display-name profiles and name search.

Tests cover:
- POST /users/profile (trim, validation, last write wins)
- GET /users?ids= profile lookup
- GET /users/find case-insensitive substring search
"""

import pytest

from siso.errors import InvalidArgument
from siso.models import User
from siso.storage import SessionLocal
from siso.users import find_users, parse_id_list, upsert_profile


def set_name(client, user_id: str, display_name: str):
    """Helper to set a display name via the API."""
    response = client.post("/users/profile", json={"userId": user_id, "displayName": display_name})
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def set_updated_at(user_id: str, updated_at: int):
    with SessionLocal() as db:
        db.query(User).filter(User.id == user_id).update({"updated_at": updated_at})
        db.commit()


class TestProfiles:

    def test_set_and_lookup(self, client):
        set_name(client, "aaa111", "Alice")

        response = client.get("/users", params={"ids": "aaa111"})

        assert response.status_code == 200
        profiles = response.json()
        assert len(profiles) == 1
        assert profiles[0]["id"] == "aaa111"
        assert profiles[0]["displayName"] == "Alice"
        assert isinstance(profiles[0]["updatedAt"], int)

    def test_name_is_trimmed(self, client):
        set_name(client, "aaa111", "  Alice  ")

        assert client.get("/users", params={"ids": "aaa111"}).json()[0]["displayName"] == "Alice"

    def test_last_write_wins(self, client):
        set_name(client, "aaa111", "Alice")
        set_name(client, "aaa111", "Alicia")

        profiles = client.get("/users", params={"ids": "aaa111"}).json()

        assert [p["displayName"] for p in profiles] == ["Alicia"]

    def test_blank_name_returns_400(self, client):
        response = client.post("/users/profile", json={"userId": "aaa111", "displayName": "   "})
        assert response.status_code == 400

    def test_empty_user_returns_400(self, client):
        response = client.post("/users/profile", json={"userId": "", "displayName": "Alice"})
        assert response.status_code == 400

    def test_lookup_several_ids(self, client):
        set_name(client, "aaa111", "Alice")
        set_name(client, "bbb222", "Bob")

        profiles = client.get("/users", params={"ids": "aaa111, bbb222,unknown"}).json()

        assert sorted(p["displayName"] for p in profiles) == ["Alice", "Bob"]

    def test_lookup_without_ids_returns_400(self, client):
        assert client.get("/users").status_code == 400

    def test_lookup_with_blank_ids_returns_empty(self, client):
        response = client.get("/users", params={"ids": " , "})

        assert response.status_code == 200
        assert response.json() == []

    def test_parse_id_list(self):
        assert parse_id_list("a, b,,c ") == ["a", "b", "c"]
        with pytest.raises(InvalidArgument):
            parse_id_list(None)

    def test_upsert_profile_service(self, db):
        upsert_profile(db, "aaa111", "Alice")
        upsert_profile(db, "aaa111", "Al")

        assert db.query(User).count() == 1
        assert db.query(User).one().display_name == "Al"


class TestNameSearch:

    @pytest.fixture
    def named_client(self, client):
        set_name(client, "u-alice", "Alice")
        set_name(client, "u-natalia", "Natalia")
        set_name(client, "u-bob", "Bob")
        return client

    def test_substring_case_insensitive(self, named_client):
        response = named_client.get("/users/find", params={"q": "ali"})

        assert response.status_code == 200
        names = sorted(user["displayName"] for user in response.json())
        assert names == ["Alice", "Natalia"]

    def test_uppercase_query(self, named_client):
        names = sorted(u["displayName"] for u in named_client.get("/users/find", params={"q": "ALI"}).json())
        assert names == ["Alice", "Natalia"]

    def test_result_fields(self, named_client):
        result = named_client.get("/users/find", params={"q": "bob"}).json()
        assert result == [{"id": "u-bob", "displayName": "Bob"}]

    def test_no_match(self, named_client):
        assert named_client.get("/users/find", params={"q": "zed"}).json() == []

    def test_newest_updated_first(self, named_client):
        set_updated_at("u-alice", 1_000)
        set_updated_at("u-natalia", 2_000)

        ids = [u["id"] for u in named_client.get("/users/find", params={"q": "ali"}).json()]

        assert ids == ["u-natalia", "u-alice"]

    def test_at_most_ten_results(self, client):
        for i in range(12):
            set_name(client, f"user-{i}", f"Sam {i}")

        assert len(client.get("/users/find", params={"q": "sam"}).json()) == 10

    def test_wildcards_are_literal(self, named_client):
        set_name(named_client, "u-percent", "100% Real")

        result = named_client.get("/users/find", params={"q": "%"}).json()

        assert [u["id"] for u in result] == ["u-percent"]

    def test_non_ascii_letters_match_exactly(self, client):
        set_name(client, "u-aerger", "Ärger")

        def ids(q):
            return [u["id"] for u in client.get("/users/find", params={"q": q}).json()]

        assert ids("Ä") == ["u-aerger"]
        assert ids("ÄRGER") == ["u-aerger"]
        assert ids("ä") == []

    def test_blank_query_returns_400(self, client):
        assert client.get("/users/find", params={"q": "  "}).status_code == 400
        assert client.get("/users/find").status_code == 400

    def test_find_users_service(self, db):
        upsert_profile(db, "u-alice", "Alice")
        upsert_profile(db, "u-bob", "Bob")

        assert [u.id for u in find_users(db, "LIC")] == ["u-alice"]
