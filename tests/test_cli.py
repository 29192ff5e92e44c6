"""
Tests for the command-line interface.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from capsync.cli import CLIHandler
from capsync.exceptions import RenderError


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def captions_file(workdir):
    path = workdir / "captions.json"
    path.write_text(json.dumps([
        {"text": "A", "start": 0, "end": 3},
        {"text": "Hello world", "start": 3, "end": 6},
    ]), encoding="utf-8")
    return str(path)


def _run(argv):
    with pytest.raises(SystemExit) as exc_info:
        CLIHandler().run(argv)
    return exc_info.value.code


class TestSyncCommand:
    """Tests for `capsync sync`."""

    def test_reports_active_caption(self, captions_file, capsys):
        code = _run(["sync", "--captions", captions_file, "-t", "4.5", "--style", "karaoke", "--log-level", "ERROR"])

        assert code == 0
        report = json.loads(capsys.readouterr().out)
        assert report["active_segment"]["text"] == "Hello world"
        assert report["highlight_fraction"] == pytest.approx(0.5)
        assert report["highlighted_words"] == ["Hello"]
        assert report["display"]["highlightColor"] == "#FFD700"

    def test_missing_captions_file(self, workdir):
        assert _run(["sync", "--captions", "missing.json", "-t", "1", "--log-level", "ERROR"]) == 1


class TestRenderCommand:
    """Tests for `capsync render`."""

    def test_render_error_shows_user_message(self, workdir, captions_file, video_file, capsys):
        failing = AsyncMock(side_effect=RenderError("ffmpeg exited with code 1", diagnostic="raw stderr"))

        with patch("capsync.cli.CaptionPipeline.render_with_captions", failing):
            code = _run(["render", video_file, "--captions", captions_file, "--no-progress", "--log-level", "ERROR"])

        assert code == 1
        err = capsys.readouterr().err
        assert "Render failed" in err
        assert "raw stderr" not in err

    def test_prints_output_path(self, workdir, captions_file, video_file, capsys):
        succeeding = AsyncMock(return_value="outputs/captioned_1.mp4")

        with patch("capsync.cli.CaptionPipeline.render_with_captions", succeeding):
            code = _run(["render", video_file, "--captions", captions_file, "--style", "top-bar", "--log-level", "ERROR"])

        assert code == 0
        assert capsys.readouterr().out.strip().endswith("outputs/captioned_1.mp4")
        assert succeeding.call_args.args[2] == "top-bar"

    def test_ignores_transcription_provider(self, workdir, captions_file, video_file, capsys, monkeypatch):
        monkeypatch.setenv("CAPSYNC_TRANSCRIPTION_PROVIDER", "no-such-provider")
        succeeding = AsyncMock(return_value="outputs/captioned_2.mp4")

        with patch("capsync.cli.CaptionPipeline.render_with_captions", succeeding), \
                patch("capsync.caption_pipeline.create_transcriber") as factory:
            code = _run(["render", video_file, "--captions", captions_file, "--no-progress", "--log-level", "ERROR"])

        assert code == 0
        factory.assert_not_called()


class TestGenerateCommand:
    """Tests for `capsync generate`."""

    def test_unknown_provider_is_a_configuration_error(self, workdir, video_file):
        assert _run(["generate", video_file, "--provider", "carrier-pigeon", "--log-level", "ERROR"]) == 1

    def test_missing_video(self, workdir):
        assert _run(["generate", "nowhere.mp4", "--log-level", "ERROR"]) == 1

    def test_missing_config_file(self, workdir, video_file):
        assert _run(["generate", video_file, "-c", "absent.yaml", "--log-level", "ERROR"]) == 1
