"""
Tests for utilities and the video store.
"""

import json
import os

import pytest

from capsync.exceptions import FileSystemError, FormattingError
from capsync.models import CaptionSegment
from capsync.utils import load_segments, remove_file, save_segments, truncate_tail, unique_path
from capsync.video_store import LocalVideoStore


class TestSegmentFiles:
    """Tests for caption JSON and SRT loading."""

    def test_json_round_trip(self, tmp_path, two_segments):
        path = tmp_path / "captions.json"

        save_segments(two_segments, str(path))

        assert json.loads(path.read_text(encoding="utf-8"))[0] == {"text": "A", "start": 0.0, "end": 3.0}
        assert load_segments(str(path)) == two_segments

    def test_json_object_with_captions_key(self, tmp_path):
        path = tmp_path / "captions.json"
        path.write_text(json.dumps({"captions": [{"text": "Hi", "start": 0, "end": 1}]}), encoding="utf-8")

        assert load_segments(str(path)) == [CaptionSegment("Hi", 0.0, 1.0)]

    def test_srt(self, tmp_path):
        path = tmp_path / "captions.srt"
        path.write_text("1\n00:00:00,000 --> 00:00:01,250\nHi\n\n", encoding="utf-8")

        assert load_segments(str(path)) == [CaptionSegment("Hi", 0.0, 1.25)]

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "captions.json"
        path.write_text('[{"text": "no timing"}]', encoding="utf-8")

        with pytest.raises(FormattingError):
            load_segments(str(path))

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_segments(str(tmp_path / "nope.json"))


class TestFileHelpers:
    """Tests for temp file helpers."""

    def test_unique_path(self, tmp_path):
        first = unique_path(str(tmp_path / "scratch"), "audio", ".wav")
        second = unique_path(str(tmp_path / "scratch"), "audio", "wav")

        assert first != second
        assert first.endswith(".wav") and os.path.basename(first).startswith("audio_")
        assert os.path.isdir(tmp_path / "scratch")

    def test_remove_file(self, tmp_path):
        path = tmp_path / "x.tmp"
        path.write_bytes(b"1")

        assert remove_file(str(path))
        assert not remove_file(str(path))
        assert not remove_file(None)

    def test_truncate_tail(self):
        assert truncate_tail("abcdef", 3) == "...def"
        assert truncate_tail("abc", 10) == "abc"


class TestLocalVideoStore:
    """Tests for upload lookup."""

    def test_exists_and_path(self, tmp_path):
        (tmp_path / "clip.mp4").write_bytes(b"video")
        store = LocalVideoStore(str(tmp_path))

        assert store.exists("clip.mp4")
        assert not store.exists("other.mp4")
        assert store.path_for("clip.mp4") == str(tmp_path / "clip.mp4")

    @pytest.mark.parametrize("name", ["../secret.mp4", "/etc/passwd", "", "."])
    def test_rejects_escaping_names(self, tmp_path, name):
        store = LocalVideoStore(str(tmp_path / "uploads"))

        with pytest.raises(FileSystemError):
            store.path_for(name)
        assert not store.exists(name)
