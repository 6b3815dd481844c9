"""
Provider registry tests.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.errors import UnsupportedProvider
from services.generation.providers import FalKlingProvider
from services.generation.registry import ProviderRegistry

from conftest import ScriptedProvider


class TestProviderRegistry:

    def test_default_providers(self, config):
        registry = ProviderRegistry(config=config)

        assert registry.supported() == ["elevenlabs", "grok", "kling", "kling-standard"]
        assert isinstance(registry.get("kling"), FalKlingProvider)

    def test_same_instance_every_time(self, registry):
        assert registry.get("fake") is registry.get("fake")

    def test_unknown_key_lists_supported(self, registry):
        with pytest.raises(UnsupportedProvider) as exc_info:
            registry.get("sora")

        assert exc_info.value.provider == "sora"
        assert "fake, fake-tts" in str(exc_info.value)

    def test_register_replaces_cached_instance(self, registry, config):
        first = registry.get("fake")
        replacement = ScriptedProvider(config)

        registry.register("fake", lambda cfg: replacement)

        assert registry.get("fake") is replacement
        assert registry.get("fake") is not first

    def test_concurrent_first_use_creates_one_instance(self, config):
        created = []
        barrier = threading.Barrier(8)

        def factory(cfg):
            created.append(1)
            return ScriptedProvider(cfg)

        registry = ProviderRegistry(config=config, factories={"fake": factory})

        def worker(_):
            barrier.wait()
            return registry.get("fake")

        with ThreadPoolExecutor(max_workers=8) as pool:
            instances = list(pool.map(worker, range(8)))

        assert len(created) == 1
        assert all(instance is instances[0] for instance in instances)

    def test_describe(self, registry):
        entries = registry.describe()

        assert [e["key"] for e in entries] == ["fake", "fake-tts"]
        assert entries[0]["kind"] == "video"
        assert entries[1]["kind"] == "audio"
        assert entries[0]["supportedDurations"] == ["5", "10"]

    @pytest.mark.asyncio
    async def test_close_all(self, registry, fake_provider):
        registry.get("fake")

        await registry.close_all()

        assert fake_provider.closed
