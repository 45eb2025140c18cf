"""Tests for the cached real-to-complex transform plans."""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from octrecon.errors import DimensionMismatch, TransformPlanFailure
from octrecon.spectral_transform import RealFFTPlan, SpectralTransformEngine


class TestPlanCache:

    def test_same_plan_for_same_length(self):
        engine = SpectralTransformEngine()
        plan = engine.get_plan_for(256)
        assert engine.get_plan_for(256) is plan
        assert engine.get_plan_for(128) is not plan
        assert 256 in engine and 128 in engine
        assert len(engine) == 2

    def test_concurrent_lookup_creates_one_plan(self):
        engine = SpectralTransformEngine()
        with ThreadPoolExecutor(max_workers=8) as ex:
            plans = list(ex.map(lambda _: engine.get_plan_for(512), range(64)))
        assert all(p is plans[0] for p in plans)
        assert len(engine) == 1

    @pytest.mark.parametrize("length", [0, -4])
    def test_invalid_length_fails(self, length):
        with pytest.raises(TransformPlanFailure):
            SpectralTransformEngine().get_plan_for(length)

    def test_plan_is_immutable(self):
        plan = SpectralTransformEngine().get_plan_for(64)
        with pytest.raises(AttributeError):
            plan.length = 32

    def test_clear(self):
        engine = SpectralTransformEngine()
        engine.get_plan_for(64)
        engine.clear()
        assert len(engine) == 0


class TestForward:

    def test_unnormalized_matches_numpy(self, rng):
        x = rng.standard_normal(200)
        plan = RealFFTPlan(200)
        out = plan.forward(x)
        assert out.shape == (101,)
        np.testing.assert_allclose(out, np.fft.fft(x)[:101], atol=1e-9)

    def test_delta_gives_flat_unit_spectrum(self):
        x = np.zeros(64)
        x[0] = 1.0
        out = SpectralTransformEngine().forward(x)
        np.testing.assert_allclose(out, np.ones(33))

    def test_block_along_last_axis_into_buffer(self, rng):
        x = rng.standard_normal((5, 32))
        plan = RealFFTPlan(32)
        buf = np.empty((5, 17), dtype=np.complex128)
        result = plan.forward(x, out=buf)
        assert result is buf
        np.testing.assert_allclose(buf, np.fft.rfft(x, axis=-1), atol=1e-9)

    def test_wrong_input_length(self):
        with pytest.raises(DimensionMismatch):
            RealFFTPlan(32).forward(np.zeros(31))

    def test_concurrent_forward_with_private_buffers(self, rng):
        plan = SpectralTransformEngine().get_plan_for(1024)
        inputs = [rng.standard_normal(1024) for _ in range(16)]
        expected = [np.fft.rfft(x) for x in inputs]
        with ThreadPoolExecutor(max_workers=4) as ex:
            results = list(ex.map(plan.forward, inputs))
        for got, want in zip(results, expected):
            np.testing.assert_allclose(got, want, atol=1e-8)
