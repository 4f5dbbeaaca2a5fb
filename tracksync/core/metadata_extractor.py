"""
Metadata extraction from audio files using mutagen.

Turns one file path into a normalized Track: title, artist, album, duration,
codec, bitrate, sample rate, track number, year, genre, album artist,
composer, comment, lyrics and the first embedded picture.
"""

from __future__ import annotations

import base64
import io
import logging
import os
import time
from typing import Any, NamedTuple

import mutagen
from mutagen.flac import Picture
from mutagen.id3 import ID3
from mutagen.mp4 import MP4Cover

from tracksync.core.catalog_db import CatalogRepository
from tracksync.core.change_detector import needs_processing
from tracksync.core.errors import ExtractionError
from tracksync.core.fs_bridge import FileStat, FilesystemBridge
from tracksync.core.track import (
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    Track,
    display_text,
    make_track_id,
    normalize_path,
    title_from_filename,
)

logger = logging.getLogger(__name__)

# Tag names across Vorbis comments, ID3 frames, MP4 atoms and ASF attributes
TITLE_TAGS = ["title", "TIT2", "\xa9nam", "Title"]
ARTIST_TAGS = ["artist", "TPE1", "\xa9ART", "Author"]
ALBUM_TAGS = ["album", "TALB", "\xa9alb", "WM/AlbumTitle"]
ALBUM_ARTIST_TAGS = ["albumartist", "album artist", "TPE2", "aART", "WM/AlbumArtist"]
COMPOSER_TAGS = ["composer", "TCOM", "\xa9wrt", "WM/Composer"]
GENRE_TAGS = ["genre", "TCON", "\xa9gen", "WM/Genre"]
DATE_TAGS = ["date", "year", "TDRC", "TYER", "\xa9day", "WM/Year"]
TRACK_NUMBER_TAGS = ["tracknumber", "TRCK", "trkn", "WM/TrackNumber"]
COMMENT_TAGS = ["comment", "description", "\xa9cmt", "Description"]
LYRICS_TAGS = ["lyrics", "unsyncedlyrics", "\xa9lyr", "WM/Lyrics"]

# mutagen file type name -> codec label
_CODEC_NAMES = {
    "FLAC": "FLAC",
    "OggFLAC": "FLAC",
    "OggVorbis": "Vorbis I",
    "OggOpus": "Opus",
    "OggSpeex": "Speex",
    "WAVE": "PCM",
    "AIFF": "PCM",
    "ASF": "WMA",
    "AAC": "AAC",
    "AC3": "AC-3",
    "MonkeysAudio": "Monkey's Audio",
    "WavPack": "WavPack",
    "TrueAudio": "TTA",
    "Musepack": "Musepack",
}


class Extraction(NamedTuple):
    """Result of MetadataExtractor.extract()."""

    track: Track
    changed: bool  # False when the stored record was reused unchanged


class _NamedBuffer(io.BytesIO):
    """In-memory file carrying a name so mutagen can score the format by extension."""

    def __init__(self, data: bytes, name: str):
        super().__init__(data)
        self.name = name


class MetadataExtractor:
    """Extracts metadata from audio files."""

    def __init__(
        self,
        bridge: FilesystemBridge,
        catalog: CatalogRepository,
        embed_artwork: bool = True,
    ):
        """
        Initialize metadata extractor.

        Args:
            bridge: Filesystem access for stat and reads
            catalog: Catalog consulted for the existing record of a path
            embed_artwork: Store the first embedded picture as a data URI
        """
        self.bridge = bridge
        self.catalog = catalog
        self.embed_artwork = embed_artwork

    def extract(self, path: str, force: bool = False) -> Extraction:
        """
        Produce the catalog record for one file.

        Unchanged files with a known codec reuse the existing record; anything
        else is read and parsed.

        Args:
            path: Audio file path
            force: Re-parse even when the stored record is up to date

        Returns:
            Extraction with the track and whether it differs from the catalog

        Raises:
            OSError: If the file cannot be stat'ed or read
            ExtractionError: If the tags cannot be parsed
            CatalogError: If the catalog lookup fails
        """
        file_path = normalize_path(path)
        stat = self.bridge.stat(file_path)
        existing = self.catalog.find_by_path(file_path)

        if not needs_processing(existing, stat.modified_time, force):
            logger.debug(f"Unchanged, using catalog record for: {file_path}")
            return Extraction(existing, False)

        data = self.bridge.read_bytes(file_path)
        audio = self._parse(file_path, data)
        track = self._build_track(file_path, stat, audio, existing)
        return Extraction(track, True)

    def _parse(self, file_path: str, data: bytes) -> Any:
        if not data:
            raise ExtractionError(file_path, "file is empty")

        try:
            audio = mutagen.File(_NamedBuffer(data, file_path))
        except Exception as e:
            raise ExtractionError(file_path, f"cannot parse tags: {e}") from e

        if audio is None:
            raise ExtractionError(file_path, "unrecognized audio format")
        return audio

    def _build_track(
        self, file_path: str, stat: FileStat, audio: Any, existing: Track | None
    ) -> Track:
        info = getattr(audio, "info", None)
        length = getattr(info, "length", None) or 0
        ext = os.path.splitext(file_path)[1].lower().lstrip(".")

        album_art = self._extract_picture(audio) if self.embed_artwork else None
        codec = self._codec_name(audio)
        if codec:
            logger.debug(f"Detected codec for {os.path.basename(file_path)}: {codec}")

        year_str = self._extract_text_tag(audio, DATE_TAGS)
        title = self._extract_text_tag(audio, TITLE_TAGS)
        if not title:
            title = display_text(title_from_filename(file_path))
        return Track(
            id=make_track_id(file_path),
            name=title,
            artist=self._extract_text_tag(audio, ARTIST_TAGS) or UNKNOWN_ARTIST,
            album=self._extract_text_tag(audio, ALBUM_TAGS) or UNKNOWN_ALBUM,
            duration=int(round(float(length) * 1000)),
            file_path=file_path,
            file_name=display_text(os.path.basename(file_path)),
            file_size=stat.size,
            format=ext or "unknown",
            codec=codec,
            bitrate=self._positive_int(getattr(info, "bitrate", None)),
            sample_rate=self._positive_int(getattr(info, "sample_rate", None)),
            track_number=self._extract_track_number(audio),
            year=self._parse_year(year_str) if year_str else None,
            genre=self._extract_text_tag(audio, GENRE_TAGS, joiner=", "),
            album_artist=self._extract_text_tag(audio, ALBUM_ARTIST_TAGS),
            composer=self._extract_text_tag(audio, COMPOSER_TAGS, joiner=", "),
            comment=self._extract_comment(audio),
            lyrics=self._extract_lyrics(audio),
            album_art=album_art or (existing.album_art if existing else None),
            date_added=existing.date_added if existing else time.time(),
            date_modified=stat.modified_time,
            play_count=existing.play_count if existing else 0,
            last_played=existing.last_played if existing else None,
        )

    def _tag_values(self, audio: Any, tag_names: list[str]) -> list[Any]:
        """
        Return the raw values of the first tag present in audio.

        Args:
            audio: Mutagen audio file object
            tag_names: List of possible tag names to check

        Returns:
            List of values (ID3 frames are unpacked to their text)
        """
        for tag in tag_names:
            try:
                if tag not in audio:
                    continue
                value = audio[tag]
            except (KeyError, ValueError, TypeError):
                continue

            if hasattr(value, "text"):  # ID3 frame
                value = value.text
            if not isinstance(value, list):
                value = [value]
            if value:
                return value
        return []

    def _extract_text_tag(
        self, audio: Any, tag_names: list[str], joiner: str | None = None
    ) -> str | None:
        """
        Extract text metadata from various tag formats.

        Args:
            audio: Mutagen audio file object
            tag_names: List of possible tag names to check
            joiner: Join multiple values with this separator instead of taking the first

        Returns:
            Tag value as string, or None if not found
        """
        texts = [str(v).strip() for v in self._tag_values(audio, tag_names)]
        texts = [t for t in texts if t]
        if not texts:
            return None
        return joiner.join(texts) if joiner else texts[0]

    def _extract_track_number(self, audio: Any) -> int | None:
        for value in self._tag_values(audio, TRACK_NUMBER_TAGS):
            if isinstance(value, tuple):  # MP4 trkn: (number, total)
                value = value[0] if value else None
            try:
                number = int(str(value).split("/")[0].strip())
            except (ValueError, TypeError):
                continue
            if number > 0:
                return number
        return None

    def _extract_comment(self, audio: Any) -> str | None:
        id3 = self._id3_tags(audio)
        if id3 is not None:
            texts = [t for frame in id3.getall("COMM") for t in frame.text if str(t).strip()]
            return ", ".join(str(t) for t in texts) or None
        return self._extract_text_tag(audio, COMMENT_TAGS, joiner=", ")

    def _extract_lyrics(self, audio: Any) -> str | None:
        id3 = self._id3_tags(audio)
        if id3 is not None:
            texts = [frame.text for frame in id3.getall("USLT") if frame.text]
            return "\n".join(texts) or None
        return self._extract_text_tag(audio, LYRICS_TAGS, joiner="\n")

    def _id3_tags(self, audio: Any) -> Any:
        tags = getattr(audio, "tags", None)
        return tags if isinstance(tags, ID3) else None

    def _extract_picture(self, audio: Any) -> str | None:
        """
        Encode the first embedded picture as a data URI.

        Args:
            audio: Mutagen audio file object

        Returns:
            "data:<mime>;base64,..." or None when the file has no artwork
        """
        picture: tuple[str, bytes] | None = None

        pictures = getattr(audio, "pictures", None)  # FLAC
        id3 = self._id3_tags(audio)
        if pictures:
            picture = (pictures[0].mime, pictures[0].data)
        elif id3 is not None:
            frames = id3.getall("APIC")
            if frames:
                picture = (frames[0].mime, frames[0].data)
        else:
            covers = self._tag_values(audio, ["covr"])
            if covers:
                cover = covers[0]
                mime = "image/png" if cover.imageformat == MP4Cover.FORMAT_PNG else "image/jpeg"
                picture = (mime, bytes(cover))
            else:
                blocks = self._tag_values(audio, ["metadata_block_picture"])
                if blocks:
                    try:
                        decoded = Picture(base64.b64decode(str(blocks[0])))
                        picture = (decoded.mime, decoded.data)
                    except Exception as e:
                        logger.warning("Unreadable picture block: %s", e)

        if not picture or not picture[1]:
            return None
        mime, data = picture
        return f"data:{mime or 'image/jpeg'};base64,{base64.b64encode(data).decode('ascii')}"

    def _codec_name(self, audio: Any) -> str | None:
        kind = type(audio).__name__
        info = getattr(audio, "info", None)

        if kind in ("MP3", "EasyMP3") and info is not None:
            return f"MPEG {info.version:g} Layer {info.layer}"
        if kind in ("MP4", "EasyMP4") and info is not None:
            codec = str(getattr(info, "codec", "") or "")
            if codec.startswith("mp4a"):
                return "AAC"
            if codec == "alac":
                return "ALAC"
            return getattr(info, "codec_description", None) or codec.upper() or None
        return _CODEC_NAMES.get(kind, kind)

    @staticmethod
    def _positive_int(value: Any) -> int | None:
        try:
            number = int(value)
        except (TypeError, ValueError):
            return None
        return number if number > 0 else None

    def _parse_year(self, year_str: str) -> int | None:
        """
        Parse year from various date string formats.

        Args:
            year_str: Year string (e.g., "2023", "2023-05-10")

        Returns:
            Year as integer, or None if parsing fails
        """
        try:
            # Try to extract first 4 digits
            year_part = year_str[:4]
            year = int(year_part)
            if 1900 <= year <= 2100:  # Sanity check
                return year
        except (ValueError, IndexError):
            pass

        return None
