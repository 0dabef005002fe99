"""Tests for AppContext wiring."""

import pytest

from fakes import FakeProvider
from sysgopher.config import Settings
from sysgopher.context import AppContext
from sysgopher.errors import InitFailure
from sysgopher.provider_linux import LinuxProvider


class TestAppContext:
    """Tests for AppContext."""

    def test_create_for_platform(self):
        context = AppContext.create(Settings(cache_ttl=3.0, probe_concurrency=4), platform="linux")

        assert isinstance(context.provider, LinuxProvider)
        assert context.provider.cache is context.cache
        assert context.cache.ttl == 3.0
        assert context.pool.probe_concurrency == 4

    def test_unsupported_platform(self):
        with pytest.raises(InitFailure):
            AppContext.create(platform="plan9")

    def test_given_provider_keeps_its_cache(self):
        provider = FakeProvider()
        context = AppContext.create(provider=provider)
        assert context.cache is provider.cache

    def test_start_and_close(self):
        context = AppContext.create(provider=FakeProvider())
        context.attach(pipeline=_NullPipeline(), interval=0)
        context.start()

        assert context.pool.is_running
        assert context.marshaller.is_ui_thread()

        assert context.close()
        assert context.closed
        assert context.scheduler.closed
        assert context.marshaller.closed
        assert not context.pool.is_running
        assert context.close()


class _NullPipeline:
    def run_cycle(self, token, done):
        done()
