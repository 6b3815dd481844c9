"""
CLI command tests: project files round-trip through the commands that edit them.
"""

import json

import pytest

import main
from services.motion import Scene


def write_project(path, scenes, **extra):
    """Write a project the way the animate command saves it."""
    main._write_scenes(str(path), {**extra, "scenes": []}, scenes)


class TestNarrateProject:

    @pytest.mark.asyncio
    async def test_narrates_animated_project(self, tmp_path, poller, tts_provider):
        project = tmp_path / "project.json"
        write_project(project, [
            Scene(id="s1", narration_text="Hello there.", video_payload="https://cdn.test/a.mp4"),
            Scene(id="s2", narration_text="Goodbye."),
            Scene(id="s3", narration_text="Already voiced.", audio_payload="https://cdn.test/old.mp3"),
            Scene(id="s4"),
        ], title="Demo")

        ok = await main.narrate_project(str(project), voice="Rachel", provider="fake-tts", poller=poller)

        assert ok
        assert [r.instruction_text for r in tts_provider.submitted] == ["Hello there.", "Goodbye."]
        assert tts_provider.submitted[0].voice == "Rachel"

        saved = json.loads(project.read_text())
        assert saved["title"] == "Demo"
        scenes = {s["id"]: s for s in saved["scenes"]}
        assert scenes["s1"]["audioPayload"] == "https://cdn.test/job-1.mp3"
        assert scenes["s1"]["audioState"] == "ready"
        assert scenes["s1"]["videoPayload"] == "https://cdn.test/a.mp4"
        assert scenes["s2"]["audioPayload"] == "https://cdn.test/job-2.mp3"
        assert scenes["s3"]["audioPayload"] == "https://cdn.test/old.mp3"
        assert scenes["s4"]["audioState"] == "none"

    @pytest.mark.asyncio
    async def test_second_run_submits_nothing(self, tmp_path, poller, tts_provider):
        project = tmp_path / "project.json"
        write_project(project, [Scene(id="s1", narration_text="Hello there.")])

        assert await main.narrate_project(str(project), provider="fake-tts", poller=poller)
        assert await main.narrate_project(str(project), provider="fake-tts", poller=poller)

        assert len(tts_provider.submitted) == 1

    @pytest.mark.asyncio
    async def test_failed_scene_keeps_the_others(self, tmp_path, poller, tts_provider):
        tts_provider.fail_texts = {"Goodbye."}
        project = tmp_path / "project.json"
        write_project(project, [
            Scene(id="s1", narration_text="Hello there."),
            Scene(id="s2", narration_text="Goodbye."),
        ])

        ok = await main.narrate_project(str(project), provider="fake-tts", poller=poller)

        assert not ok
        scenes = {s["id"]: s for s in json.loads(project.read_text())["scenes"]}
        assert scenes["s1"]["audioState"] == "ready"
        assert scenes["s2"]["audioState"] == "none"
        assert scenes["s2"]["audioPayload"] is None

    @pytest.mark.asyncio
    async def test_plain_scene_list(self, tmp_path, poller):
        project = tmp_path / "scenes.json"
        project.write_text(json.dumps([{"id": "s1", "narration": "Legacy key."}]), encoding="utf-8")

        assert await main.narrate_project(str(project), provider="fake-tts", poller=poller)

        saved = json.loads(project.read_text())
        assert isinstance(saved, list)
        assert saved[0]["narrationText"] == "Legacy key."
        assert saved[0]["audioState"] == "ready"
