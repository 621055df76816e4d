"""Tests for background detector loading."""

from __future__ import annotations

import pytest
from fakes import FakeDetector

from peoplesorter.ml.detector import Detector
from peoplesorter.ml.loader import LoaderState, ModelLoader, ModelUnavailableError


def _broken_factory() -> Detector:
    raise OSError("no network")


class TestModelLoader:
    def test_initially_loading(self) -> None:
        loader = ModelLoader(FakeDetector)
        assert loader.state is LoaderState.LOADING
        assert not loader.is_ready()
        with pytest.raises(ModelUnavailableError, match="still loading"):
            loader.detector()

    async def test_load_success(self) -> None:
        detector = FakeDetector()
        loader = ModelLoader(lambda: detector)
        await loader.load()
        assert loader.is_ready()
        assert loader.state is LoaderState.READY
        assert loader.detector() is detector
        assert loader.error is None

    async def test_load_failure_does_not_raise(self) -> None:
        loader = ModelLoader(_broken_factory)
        await loader.load()
        assert loader.state is LoaderState.FAILED
        assert loader.error == "OSError: no network"
        with pytest.raises(ModelUnavailableError, match="no network"):
            loader.detector()

    async def test_start_runs_in_background(self) -> None:
        loader = ModelLoader(FakeDetector)
        task = loader.start()
        assert loader.start() is task
        await task
        assert loader.is_ready()

    async def test_close_after_load_is_harmless(self) -> None:
        loader = ModelLoader(FakeDetector)
        await loader.start()
        await loader.close()
        assert loader.is_ready()
