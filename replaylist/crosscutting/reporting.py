import json
import os
from datetime import datetime
from typing import Any, Dict, Optional

from replaylist.crosscutting.metrics import TransferMetrics
from replaylist.domain.entities import MatchResult, Playlist, TransferReport


def match_to_json(result: MatchResult) -> Dict[str, Any]:
    """Serialize one match result to JSON."""
    track = result.source_track
    return {
        "title": track.title,
        "artist": track.artist,
        "isrc": track.isrc,
        "sourceId": track.source_id,
        "destinationId": result.destination_id,
        "method": result.method.value,
        "failure": result.failure,
    }


def report_to_json(report: TransferReport, metrics: Optional[TransferMetrics] = None,
                   transfer_id: Optional[str] = None) -> Dict[str, Any]:
    """Serialize a transfer report (and optional metrics) to JSON."""
    data: Dict[str, Any] = {
        "destinationPlaylistId": report.destination_playlist_id,
        "destinationProvider": report.destination_provider.value,
        "totalTracks": report.total_tracks,
        "matchedCount": len(report.matched),
        "unmatchedCount": report.unmatched_count,
        "matched": [match_to_json(r) for r in report.matched],
        "unmatched": [match_to_json(r) for r in report.unmatched],
    }
    if transfer_id:
        data["transferId"] = transfer_id
    if metrics is not None:
        data["metrics"] = metrics.to_dict()
    return data


def playlist_to_json(playlist: Playlist, include_tracks: bool = True) -> Dict[str, Any]:
    """Serialize a canonical playlist to JSON."""
    data: Dict[str, Any] = {
        "id": playlist.id,
        "name": playlist.name,
        "coverUrl": playlist.cover_url,
        "trackCount": playlist.track_count,
        "tracksComplete": playlist.tracks_complete,
    }
    if playlist.tracks_error:
        data["tracksError"] = playlist.tracks_error
    if include_tracks:
        data["tracks"] = [
            {"title": t.title, "artist": t.artist, "isrc": t.isrc} for t in playlist.tracks
        ]
    return data


def save_report(report: TransferReport, report_path: str, transfer_id: str,
                metrics: Optional[TransferMetrics] = None) -> str:
    """Write the report as JSON under ``report_path`` and return the file path."""
    os.makedirs(report_path, exist_ok=True)
    data = report_to_json(report, metrics=metrics, transfer_id=transfer_id)
    data["savedAt"] = datetime.now().isoformat()
    report_file = os.path.join(report_path, f"transfer_report_{transfer_id}.json")
    with open(report_file, "w") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    return report_file
