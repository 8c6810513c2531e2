"""Tests for the HTTP API."""

import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from markereditor.commands import ServerContext
from markereditor.db import RepositoryError
from markereditor.server import create_app


@pytest.fixture
def api(context):
    """Test client for an app over the seeded database."""
    return TestClient(create_app(context))


class TestErrors:
    """Test error responses."""

    def test_unknown_endpoint(self, api):
        """Test that unknown endpoints return an Error body."""
        response = api.post("/not_a_thing")
        assert response.status_code == 404
        assert response.json() == {"Error": "Invalid endpoint: /not_a_thing"}

    def test_missing_parameter(self, api):
        """Test that a missing parameter is a 400 error."""
        response = api.post("/delete")
        assert response.status_code == 400
        assert response.json() == {"Error": "Parameter 'id' not found."}

    def test_missing_bound(self, api):
        """Test that add reports the first missing integer parameter."""
        response = api.post("/add", params={"metadataId": 3, "start": 1000})
        assert response.status_code == 400
        assert response.json() == {"Error": "Parameter 'end' not found."}

    def test_bad_integer(self, api):
        """Test that a non-integer parameter is a 400 error."""
        response = api.post("/delete", params={"id": "abc"})
        assert response.status_code == 400
        assert "Expected integer" in response.json()["Error"]

    def test_database_error(self, api, context):
        """Test that database failures are a 500 error."""
        with patch.object(context.queries, "get_libraries", side_effect=RepositoryError("locked")):
            response = api.post("/get_sections")
        assert response.status_code == 500
        assert response.json()["Error"] == "Unable to access the database: locked"

    def test_purges_disabled(self, settings, queries):
        """Test that purge endpoints need the backup database."""
        api = TestClient(create_app(ServerContext(settings, queries)))
        response = api.post("/purge_check", params={"id": 3})
        assert response.status_code == 400
        assert response.json()["Error"] == "Action is not enabled due to configuration settings."


class TestMarkerEndpoints:
    """Test marker endpoints."""

    def test_add(self, api):
        """Test adding a marker with form parameters."""
        response = api.post(
            "/add", data={"metadataId": "3", "start": "1000", "end": "5000", "type": "credits"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["parent_id"] == 3
        assert body["marker_type"] == "credits"
        assert body["created_by_user"] is True

    def test_add_overlap(self, api):
        """Test that an overlapping add is rejected."""
        response = api.post("/add", params={"metadataId": 4, "start": 20000, "end": 30000})
        assert response.status_code == 400
        assert response.json()["Error"].startswith("Overlapping markers")

    def test_edit(self, api):
        """Test editing a marker."""
        response = api.post(
            "/edit", params={"id": 1, "start": 16000, "end": 46000, "userCreated": 0}
        )
        assert response.status_code == 200
        assert (response.json()["start"], response.json()["end"]) == (16000, 46000)

    def test_delete(self, api):
        """Test deleting a marker."""
        response = api.post("/delete", params={"id": 1})
        assert response.json()["id"] == 1
        assert api.post("/query", params={"keys": "4"}).json() == {"4": []}

    def test_query(self, api):
        """Test querying markers for several episodes."""
        body = api.post("/query", params={"keys": "3,11"}).json()
        assert body["3"] == []
        assert [m["id"] for m in body["11"]] == [3, 4, 5]


class TestBulkEndpoints:
    """Test bulk endpoints."""

    def test_check_shift(self, api):
        """Test that endShift defaults to startShift."""
        body = api.post("/check_shift", params={"id": 4, "startShift": 1000}).json()
        assert body["applied"] is False
        assert body["episode_data"]["4"]["markers"][0]["start"] == 15000

    def test_shift(self, api):
        """Test shifting intros under a show."""
        body = api.post(
            "/shift", params={"id": 8, "startShift": 1000, "endShift": 2000, "applyTo": 1}
        ).json()
        assert body["applied"] is True
        assert sorted((m["start"], m["end"]) for m in body["all_markers"]) == [(16000, 47000)] * 3

    def test_shift_ignored(self, api):
        """Test ignoring markers in a shift."""
        body = api.post(
            "/shift",
            params={"id": 8, "startShift": 1000, "applyTo": 1, "ignored": "2,6"},
        ).json()
        assert [m["id"] for m in body["all_markers"]] == [3]

    def test_bulk_delete_dry_run(self, api):
        """Test a bulk delete dry run."""
        body = api.post("/bulk_delete", params={"id": 8, "dryRun": 1, "applyTo": 2}).json()
        assert body["applied"] is False
        assert sorted(m["id"] for m in body["deleted_markers"]) == [4, 5]

    def test_bulk_add(self, api):
        """Test a bulk add with a conflict and the Ignore policy."""
        body = api.post(
            "/bulk_add",
            params={"id": 1, "start": 30000, "end": 50000, "type": "intro", "resolveType": 3},
        ).json()
        assert body["applied"] is True
        assert body["ignored_episodes"] == [4]
        assert list(body["episode_map"]) == ["3"]

    def test_bulk_add_bad_resolve_type(self, api):
        """Test that unknown resolve types are rejected."""
        response = api.post(
            "/bulk_add", params={"id": 1, "start": 30000, "end": 50000, "resolveType": 7}
        )
        assert response.status_code == 400

    def test_add_custom(self, api):
        """Test custom bulk add returns a gzip compressed body."""
        markers = {"10": {"start": 50000, "end": 60000}, "13": {"start": 70000, "end": 80000}}
        response = api.post(
            "/add_custom",
            data={"id": "8", "type": "intro", "resolveType": "1", "markers": json.dumps(markers)},
        )
        assert response.status_code == 200
        assert response.headers["content-encoding"] == "gzip"
        body = response.json()
        assert body["applied"] is True
        assert body["episode_map"]["13"]["changed_marker"]["start"] == 70000

    def test_add_custom_bad_markers(self, api):
        """Test that malformed custom marker data is rejected."""
        response = api.post(
            "/add_custom", data={"id": "8", "resolveType": "1", "markers": "{\"10\": 5}"}
        )
        assert response.status_code == 400
        assert "Invalid custom marker data" in response.json()["Error"]

    def test_nuke_section(self, api):
        """Test deleting every credits marker in a section."""
        body = api.post("/nuke_section", params={"sectionId": 1, "deleteType": 2}).json()
        assert body["deleted"] == 2


class TestQueryEndpoints:
    """Test library endpoints."""

    def test_get_sections(self, api):
        """Test listing libraries."""
        body = api.post("/get_sections").json()
        assert [s["name"] for s in body] == ["TV Shows", "Movies"]

    def test_get_section(self, api):
        """Test listing the shows of a library."""
        body = api.post("/get_section", params={"id": 1}).json()
        assert {s["id"] for s in body} == {1, 5, 8}

    def test_get_seasons_and_episodes(self, api):
        """Test walking from a show to its episodes."""
        seasons = api.post("/get_seasons", params={"id": 8}).json()
        assert [s["id"] for s in seasons] == [9, 12]
        episodes = api.post("/get_episodes", params={"id": 9}).json()
        assert [e["metadata_id"] for e in episodes] == [10, 11]

    def test_get_chapters(self, api):
        """Test chapters of an episode."""
        body = api.post("/get_chapters", params={"id": 4}).json()
        assert [c["name"] for c in body["4"]] == ["Opening", "Main"]


class TestPurgeEndpoints:
    """Test purge endpoints."""

    @pytest.fixture
    def purged_id(self, queries, backup):
        """Id of a recorded marker that no longer exists."""
        marker = queries.add_marker(3, 100000, 130000, "intro")
        backup.record_add(marker)
        queries.delete_marker(marker.id)
        return marker.id

    def test_purge_check(self, api, purged_id):
        """Test finding a purged marker."""
        body = api.post("/purge_check", params={"id": 1}).json()
        assert [a["marker_id"] for a in body] == [purged_id]

    def test_all_purges(self, api, purged_id):
        """Test the section purge map."""
        body = api.post("/all_purges", params={"sectionId": 1}).json()
        assert body["1"]["2"]["3"][str(purged_id)]["start"] == 100000

    def test_restore_purge(self, api, purged_id):
        """Test restoring a purged marker."""
        body = api.post(
            "/restore_purge", params={"markerIds": str(purged_id), "sectionId": 1}
        ).json()
        assert len(body["new_markers"]) == 1
        assert api.post("/purge_check", params={"id": 3}).json() == []

    def test_ignore_purge(self, api, purged_id):
        """Test ignoring a purged marker."""
        response = api.post("/ignore_purge", params={"markerIds": str(purged_id), "sectionId": 1})
        assert response.json() == {}
        assert api.post("/all_purges", params={"sectionId": 1}).json() == {}
