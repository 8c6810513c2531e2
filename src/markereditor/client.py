"""HTTP client for a running marker editor server."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import requests

from markereditor.models import (
    BulkAddResult,
    BulkDeleteResult,
    ChapterData,
    LibrarySection,
    MarkerAction,
    MarkerData,
    NukeResult,
    RestoreResult,
    ShiftResult,
)
from markereditor.plex.markers import BulkMarkerResolveType, MarkerEnum, MarkerType

logger = logging.getLogger(__name__)


class MarkerEditorAPIError(Exception):
    """Exception for marker editor API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _ids(values: Iterable[int]) -> str:
    return ",".join(str(value) for value in values)


class MarkerEditorClient:
    """Client for the marker editor HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Base URL of the server (e.g., "http://localhost:3232")
            timeout: Request timeout in seconds
            session: Optional requests session to reuse
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._headers = {"Accept": "application/json"}

    def _post(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """POST to an endpoint and return the decoded JSON body.

        Raises:
            MarkerEditorAPIError: If the request fails or the server reports an error
        """
        url = f"{self.base_url}/{endpoint}"
        try:
            response = self.session.post(
                url,
                params=params,
                data=data,
                headers=self._headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            msg = f"Failed to reach marker editor at {url}: {e}"
            logger.error(msg)
            raise MarkerEditorAPIError(msg) from e

        if not response.ok:
            try:
                message = response.json().get("Error", response.reason)
            except ValueError:
                message = response.text or response.reason
            msg = f"{endpoint} failed ({response.status_code}): {message}"
            logger.error(msg)
            raise MarkerEditorAPIError(msg, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            msg = f"Invalid JSON returned by {endpoint}: {e}"
            logger.error(msg)
            raise MarkerEditorAPIError(msg, response.status_code) from e

    # Markers

    def add_marker(
        self,
        metadata_id: int,
        start: int,
        end: int,
        marker_type: MarkerType | str = MarkerType.INTRO,
        final: bool = False,
    ) -> MarkerData:
        """Add a marker to an episode or movie."""
        data = self._post(
            "add",
            {
                "metadataId": metadata_id,
                "start": start,
                "end": end,
                "type": MarkerType(marker_type).value,
                "final": int(final),
            },
        )
        return MarkerData.model_validate(data)

    def edit_marker(
        self, marker_id: int, start: int, end: int, user_created: bool
    ) -> MarkerData:
        """Change the bounds of a marker."""
        data = self._post(
            "edit",
            {"id": marker_id, "start": start, "end": end, "userCreated": int(user_created)},
        )
        return MarkerData.model_validate(data)

    def delete_marker(self, marker_id: int) -> MarkerData:
        """Delete a marker."""
        return MarkerData.model_validate(self._post("delete", {"id": marker_id}))

    def query(self, metadata_ids: Iterable[int]) -> Dict[int, List[MarkerData]]:
        """Get the markers of several episodes or movies."""
        data = self._post("query", {"keys": _ids(metadata_ids)})
        return {
            int(key): [MarkerData.model_validate(marker) for marker in markers]
            for key, markers in data.items()
        }

    def get_sections(self) -> List[LibrarySection]:
        """Get every movie and TV library."""
        return [LibrarySection.model_validate(s) for s in self._post("get_sections")]

    def get_chapters(self, metadata_id: int) -> Dict[int, List[ChapterData]]:
        """Get chapters of every episode or movie under an item."""
        data = self._post("get_chapters", {"id": metadata_id})
        return {
            int(key): [ChapterData.model_validate(chapter) for chapter in chapters]
            for key, chapters in data.items()
        }

    # Bulk operations

    def _shift_params(
        self, metadata_id, start_shift, end_shift, apply_to, ignored
    ) -> Dict[str, Any]:
        return {
            "id": metadata_id,
            "startShift": start_shift,
            "endShift": start_shift if end_shift is None else end_shift,
            "applyTo": int(apply_to),
            "ignored": _ids(ignored),
        }

    def check_shift(
        self,
        metadata_id: int,
        start_shift: int,
        end_shift: Optional[int] = None,
        apply_to: int = MarkerEnum.ALL,
        ignored: Iterable[int] = (),
    ) -> ShiftResult:
        """Report what a shift would do without applying it."""
        params = self._shift_params(metadata_id, start_shift, end_shift, apply_to, ignored)
        return ShiftResult.model_validate(self._post("check_shift", params))

    def shift(
        self,
        metadata_id: int,
        start_shift: int,
        end_shift: Optional[int] = None,
        apply_to: int = MarkerEnum.ALL,
        force: bool = False,
        ignored: Iterable[int] = (),
    ) -> ShiftResult:
        """Shift the markers under an item."""
        params = self._shift_params(metadata_id, start_shift, end_shift, apply_to, ignored)
        params["force"] = int(force)
        return ShiftResult.model_validate(self._post("shift", params))

    def bulk_delete(
        self,
        metadata_id: int,
        dry_run: bool = False,
        apply_to: int = MarkerEnum.ALL,
        ignored: Iterable[int] = (),
    ) -> BulkDeleteResult:
        """Delete the markers under an item."""
        params = {
            "id": metadata_id,
            "dryRun": int(dry_run),
            "applyTo": int(apply_to),
            "ignored": _ids(ignored),
        }
        return BulkDeleteResult.model_validate(self._post("bulk_delete", params))

    def bulk_add(
        self,
        metadata_id: int,
        start: int,
        end: int,
        marker_type: MarkerType | str = MarkerType.INTRO,
        final: bool = False,
        resolve_type: BulkMarkerResolveType = BulkMarkerResolveType.FAIL,
        ignored: Iterable[int] = (),
    ) -> BulkAddResult:
        """Add a marker to every episode under an item."""
        params = {
            "id": metadata_id,
            "start": start,
            "end": end,
            "type": MarkerType(marker_type).value,
            "final": int(final),
            "resolveType": int(resolve_type),
            "ignored": _ids(ignored),
        }
        return BulkAddResult.model_validate(self._post("bulk_add", params))

    def add_custom(
        self,
        metadata_id: int,
        marker_type: MarkerType | str,
        resolve_type: BulkMarkerResolveType,
        markers: Mapping[int, Tuple[int, int]],
    ) -> BulkAddResult:
        """Add a marker with per-episode bounds to episodes under an item."""
        form = {
            "id": metadata_id,
            "type": MarkerType(marker_type).value,
            "resolveType": int(resolve_type),
            "markers": json.dumps(
                {str(key): {"start": start, "end": end} for key, (start, end) in markers.items()}
            ),
        }
        return BulkAddResult.model_validate(self._post("add_custom", data=form))

    def nuke_section(self, section_id: int, delete_type: int) -> NukeResult:
        """Delete every marker of the selected types in a library section."""
        data = self._post("nuke_section", {"sectionId": section_id, "deleteType": int(delete_type)})
        return NukeResult.model_validate(data)

    # Purges

    def purge_check(self, metadata_id: int) -> List[MarkerAction]:
        """Find purged markers under an item."""
        return [MarkerAction.model_validate(a) for a in self._post("purge_check", {"id": metadata_id})]

    def all_purges(self, section_id: int) -> Dict[int, Dict[int, Dict[int, Dict[int, MarkerAction]]]]:
        """Get the purge tree of a library section."""
        data = self._post("all_purges", {"sectionId": section_id})
        return {
            int(show_id): {
                int(season_id): {
                    int(episode_id): {
                        int(marker_id): MarkerAction.model_validate(action)
                        for marker_id, action in episode.items()
                    }
                    for episode_id, episode in season.items()
                }
                for season_id, season in show.items()
            }
            for show_id, show in data.items()
        }

    def restore_purge(self, marker_ids: Iterable[int], section_id: int) -> RestoreResult:
        """Re-add purged markers."""
        data = self._post("restore_purge", {"markerIds": _ids(marker_ids), "sectionId": section_id})
        return RestoreResult.model_validate(data)

    def ignore_purge(self, marker_ids: Iterable[int], section_id: int) -> None:
        """Stop reporting the given purged markers."""
        self._post("ignore_purge", {"markerIds": _ids(marker_ids), "sectionId": section_id})
