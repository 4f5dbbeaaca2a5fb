"""
Decides whether a file has to be re-parsed.

A file is skipped only when it has a catalog record whose stored
modification time equals the on-disk value and whose codec is known. The
codec check heals records written before codec detection existed.
"""

from __future__ import annotations

from dataclasses import dataclass

from tracksync.core.track import Track


@dataclass(frozen=True)
class Fingerprint:
    """(modification time, codec presence) pair stored with each record."""

    modified_time: float
    has_codec: bool

    @classmethod
    def of(cls, track: Track) -> Fingerprint:
        return cls(modified_time=track.date_modified, has_codec=bool(track.codec))


def needs_processing(
    existing: Track | None, current_mtime: float, force_rescan: bool = False
) -> bool:
    """
    Return True when the file must be read and parsed again.

    Args:
        existing: Current catalog record for the path, if any
        current_mtime: Modification time currently on disk
        force_rescan: Re-parse regardless of the stored fingerprint

    Returns:
        False only for an unchanged file with a known codec
    """
    if force_rescan or existing is None:
        return True
    fingerprint = Fingerprint.of(existing)
    return not (fingerprint.modified_time == current_mtime and fingerprint.has_codec)
