"""
Tests for windowing, the FFT kernel and overlap-add.
"""
import threading

import pytest
import numpy as np

from stemforge.core import transform as tf
from stemforge.core.errors import InvalidInputError, OperationCancelled


def without_nyquist(x: np.ndarray) -> np.ndarray:
    """Remove the (-1)^n component, which a half spectrum cannot carry."""
    alternating = (-1.0) ** np.arange(len(x))
    return x - np.mean(x * alternating) * alternating


class TestWindows:
    """Tests for window generation."""

    def test_hann_endpoints_and_peak(self):
        window = tf.generate_window("hann", 65)
        assert np.isclose(window[0], 0.0)
        assert np.isclose(window[-1], 0.0)
        assert np.isclose(window[32], 1.0)

    def test_hamming_endpoints(self):
        window = tf.generate_window("hamming", 64)
        assert np.isclose(window[0], 0.08)
        assert np.isclose(window[-1], 0.08)

    def test_blackman_endpoints(self):
        window = tf.generate_window("blackman", 64)
        assert np.isclose(window[0], 0.0, atol=1e-12)

    def test_kaiser_shape(self):
        window = tf.generate_window("kaiser", 65, beta=8.6)
        assert np.isclose(window[32], 1.0)
        assert np.isclose(window[0], 1.0 / np.i0(8.6), rtol=1e-6)
        assert np.allclose(window, window[::-1])

    def test_rectangular_is_ones(self):
        assert np.allclose(tf.generate_window("rectangular", 16), 1.0)

    def test_windows_are_symmetric(self):
        for kind in ("hann", "hamming", "blackman"):
            window = tf.generate_window(kind, 128)
            assert np.allclose(window, window[::-1])

    def test_unknown_kind_rejected(self):
        with pytest.raises(InvalidInputError):
            tf.generate_window("triangle", 64)

    def test_size_one(self):
        assert np.allclose(tf.generate_window("hann", 1), [1.0])

    def test_apply_window_truncates(self):
        result = tf.apply_window(np.ones(10), np.full(6, 0.5))
        assert len(result) == 6
        assert np.allclose(result, 0.5)


class TestBessel:

    def test_i0_at_zero(self):
        assert tf.modified_bessel_i0(0.0) == 1.0

    def test_i0_matches_numpy(self):
        for x in (0.5, 2.5, 8.6):
            assert np.isclose(tf.modified_bessel_i0(x), np.i0(x), rtol=1e-8)


class TestFFTKernel:
    """Tests for the radix-2 transform."""

    @pytest.mark.parametrize("size", [0, 1, 3, 1000, 4095])
    def test_rejects_non_power_of_two(self, size):
        with pytest.raises(InvalidInputError):
            tf.FFTKernel(size)

    def test_rejects_wrong_input_length(self):
        kernel = tf.FFTKernel(64)
        with pytest.raises(InvalidInputError):
            kernel.fft(np.zeros(32))

    def test_matches_numpy_fft(self):
        rng = np.random.default_rng(0)
        x = rng.standard_normal(1024)
        magnitudes, phases = tf.fft(x)
        reference = np.fft.fft(x)[:512]
        assert magnitudes.shape == (512,)
        assert np.allclose(magnitudes, np.abs(reference))
        assert np.allclose(magnitudes * np.exp(1j * phases), reference)

    def test_magnitudes_non_negative(self):
        rng = np.random.default_rng(1)
        magnitudes, _ = tf.fft(rng.standard_normal(256))
        assert np.all(magnitudes >= 0)

    @pytest.mark.parametrize("size", [2, 8, 256, 4096])
    def test_round_trip(self, size):
        rng = np.random.default_rng(size)
        x = without_nyquist(rng.standard_normal(size))
        reconstructed = tf.ifft(*tf.fft(x))
        assert len(reconstructed) == size
        assert np.allclose(reconstructed, x, atol=1e-9)

    def test_batched_transform_matches_rows(self):
        rng = np.random.default_rng(2)
        frames = rng.standard_normal((3, 128))
        kernel = tf.get_kernel(128)
        batch_mags, batch_phases = kernel.fft(frames)
        for row, mags, phases in zip(frames, batch_mags, batch_phases):
            single_mags, single_phases = kernel.fft(row)
            assert np.allclose(mags, single_mags)
            assert np.allclose(mags * np.exp(1j * phases), single_mags * np.exp(1j * single_phases))

    def test_kernel_cache(self):
        assert tf.get_kernel(512) is tf.get_kernel(512)


class TestOverlapAdd:
    """Tests for STFT overlap-add resynthesis."""

    def test_identity_reconstructs_signal(self, sample_mono_audio):
        result = tf.overlap_add(sample_mono_audio, lambda m, p: m, 2048, 512)
        assert result.shape == sample_mono_audio.shape
        assert np.allclose(result, sample_mono_audio, atol=1e-4)

    def test_identity_stereo(self, sample_stereo_audio):
        result = tf.overlap_add(sample_stereo_audio, lambda m, p: m, 1024, 256)
        assert result.shape == sample_stereo_audio.shape
        assert np.allclose(result, sample_stereo_audio, atol=1e-4)

    def test_short_input_passes_through(self):
        short = np.linspace(-1, 1, 100, dtype=np.float32)
        result = tf.overlap_add(short, lambda m, p: m * 0, 2048, 512)
        assert np.array_equal(result, short)

    def test_progress_reports_every_block(self, sample_mono_audio):
        events = []
        tf.overlap_add(sample_mono_audio, lambda m, p: m, 2048, 512,
                       progress=lambda c, t, s: events.append((c, t, s)),
                       stage="test", frames_per_block=16)
        assert events
        assert events[-1][0] == events[-1][1]
        assert all(status == "test" for _, _, status in events)

    def test_cancel_raises(self, sample_mono_audio):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled) as info:
            tf.overlap_add(sample_mono_audio, lambda m, p: m, 2048, 512,
                           cancel_event=cancel, stage="test")
        assert info.value.stage == "test"

    def test_invalid_hop_rejected(self, sample_mono_audio):
        with pytest.raises(InvalidInputError):
            tf.overlap_add(sample_mono_audio, lambda m, p: m, 1024, 0)
