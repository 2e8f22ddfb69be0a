import sys
import threading
from pathlib import Path
from unittest import mock

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from loop_export.errors import ParameterError
from loop_export.noise import NoiseField, NoiseFieldSynthesizer, NoiseTextureCache, NoiseTextureRing
from loop_export.presets import SEPIA_GRAIN, SPECIAL_ONE_V3


def small_field(**overrides) -> NoiseField:
    values = {"width": 48, "height": 32, "base_frequency": 0.1, "octaves": 3, "seed": 7}
    values.update(overrides)
    return NoiseField(**values)


def test_same_field_and_seed_are_byte_identical():
    field = small_field()
    first = NoiseFieldSynthesizer().synthesize(field)
    second = NoiseFieldSynthesizer().synthesize(field)

    assert first.dtype == np.uint8
    assert first.shape == (32, 48)
    assert np.array_equal(first, second)


def test_different_seeds_produce_different_textures():
    synthesizer = NoiseFieldSynthesizer()
    first = synthesizer.synthesize(small_field(seed=1))
    second = synthesizer.synthesize(small_field(seed=2))
    assert not np.array_equal(first, second)


def test_fractal_noise_stays_in_unit_range():
    noise = NoiseFieldSynthesizer().fractal(small_field(octaves=4))
    assert noise.min() >= -1.0
    assert noise.max() <= 1.0
    assert noise.std() > 0.0


def test_alpha_scale_caps_plane_intensity():
    plane = NoiseFieldSynthesizer().synthesize(small_field(alpha_scale=0.6))
    assert plane.max() <= int(0.6 * 255)


def test_frames_in_a_ring_differ_by_stride():
    field = small_field(frame_count=3, frame_stride=15.0)
    ring = NoiseFieldSynthesizer().bake(field)
    assert len(ring) == 3
    assert not np.array_equal(ring.planes[0], ring.planes[1])
    assert not np.array_equal(ring.planes[1], ring.planes[2])


def test_ring_cross_fades_between_frames():
    field = small_field(frame_count=2, update_rate=0.5)
    ring = NoiseFieldSynthesizer().bake(field)
    first = ring.planes[0].astype(np.float32) / 255.0
    second = ring.planes[1].astype(np.float32) / 255.0

    assert ring.frame_position(0.0) == (0, 1, 0.0)
    assert np.allclose(ring.alpha_at(0.0), first)
    assert np.allclose(ring.alpha_at(1.0), (first + second) / 2.0, atol=1e-6)
    assert np.allclose(ring.alpha_at(2.0), second)
    # wraps back to the first frame
    assert np.allclose(ring.alpha_at(4.0), first)


def test_single_frame_ring_is_static():
    ring = NoiseFieldSynthesizer().bake(small_field(frame_count=1))
    assert np.array_equal(ring.alpha_at(0.0), ring.alpha_at(3.3))


def test_ring_planes_are_read_only():
    ring = NoiseFieldSynthesizer().bake(small_field())
    with pytest.raises(ValueError):
        ring.planes[0][0, 0] = 1


def test_ring_reports_tint_in_bgr_order():
    ring = NoiseTextureRing(small_field(color_tint=(139, 90, 43)), (np.zeros((32, 48), np.uint8),))
    assert ring.tint_bgr == (43, 90, 139)


@pytest.mark.parametrize(
    "overrides",
    [
        {"width": 0},
        {"base_frequency": 0.0},
        {"octaves": 0},
        {"frame_count": 0},
        {"contrast": 0.0},
        {"alpha_scale": 1.5},
        {"update_rate": 0.0},
    ],
)
def test_invalid_fields_fail_to_bake(overrides):
    with pytest.raises(ParameterError):
        NoiseFieldSynthesizer().bake(small_field(**overrides))


def test_cache_bakes_each_field_once():
    synthesizer = NoiseFieldSynthesizer()
    cache = NoiseTextureCache(synthesizer)
    field = small_field()

    with mock.patch.object(synthesizer, "bake", wraps=synthesizer.bake) as bake:
        first = cache.get(field)
        second = cache.get(field)
        other = cache.get(small_field(width=64))

    assert first is second
    assert other is not first
    assert bake.call_count == 2
    assert field in cache


def test_cache_is_safe_under_concurrent_access():
    cache = NoiseTextureCache()
    field = small_field()
    rings = []

    def worker():
        rings.append(cache.get(field))

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(rings) == 6
    assert all(ring is rings[0] for ring in rings)


def test_cache_clear_forgets_rings():
    cache = NoiseTextureCache()
    field = small_field()
    cache.get(field)
    cache.clear()
    assert field not in cache


def test_preset_fields_follow_frame_size_unless_texture_is_fixed():
    special = SPECIAL_ONE_V3.noise.field_for((108, 192), seed=3)
    assert (special.width, special.height) == (108, 192)
    assert special.seed == 3
    assert special.octaves == 4

    grain = SEPIA_GRAIN.noise.field_for((108, 192))
    assert (grain.width, grain.height) == (400, 400)
    assert grain.frame_count == 10


def test_negative_timestamps_wrap_around_the_ring():
    ring = NoiseFieldSynthesizer().bake(small_field(frame_count=2, update_rate=0.5))

    assert ring.frame_position(-1.0) == (1, 0, 0.5)
    assert ring.frame_position(-4.0) == (0, 1, 0.0)
    assert np.allclose(ring.alpha_at(-1.0), ring.alpha_at(3.0))
    assert not np.allclose(ring.alpha_at(-1.0), ring.alpha_at(0.0))


def test_cache_evicts_least_recently_used_ring():
    cache = NoiseTextureCache(max_entries=2)
    first, second, third = (small_field(seed=seed) for seed in (1, 2, 3))

    cache.get(first)
    cache.get(second)
    cache.get(first)
    cache.get(third)

    assert len(cache) == 2
    assert first in cache
    assert second not in cache
    assert third in cache


def test_cache_needs_room_for_one_ring():
    with pytest.raises(ParameterError):
        NoiseTextureCache(max_entries=0)


def test_unrelated_fields_bake_concurrently():
    synthesizer = NoiseFieldSynthesizer()
    barrier = threading.Barrier(2, timeout=10)
    original_bake = synthesizer.bake

    def bake_together(field):
        barrier.wait()
        return original_bake(field)

    cache = NoiseTextureCache(synthesizer)
    errors = []

    def worker(field):
        try:
            cache.get(field)
        except threading.BrokenBarrierError as exc:
            errors.append(exc)

    with mock.patch.object(synthesizer, "bake", side_effect=bake_together):
        threads = [
            threading.Thread(target=worker, args=(small_field(seed=seed),)) for seed in (4, 5)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    assert errors == []
    assert len(cache) == 2


def test_failed_bake_is_not_cached():
    synthesizer = NoiseFieldSynthesizer()
    cache = NoiseTextureCache(synthesizer)
    field = small_field()

    with mock.patch.object(synthesizer, "bake", side_effect=RuntimeError("boom")):
        with pytest.raises(RuntimeError):
            cache.get(field)

    assert field not in cache
    assert cache.get(field) is cache.get(field)
