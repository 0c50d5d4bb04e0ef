import numpy as np
import pytest

from reptrack.cadence import CadenceEstimator


def sine(freq_hz, rate_hz, n, amp=1.0):
    t = np.arange(n) / rate_hz
    return amp * np.sin(2 * np.pi * freq_hz * t)


def test_returns_none_until_buffer_filled():
    est = CadenceEstimator(fft_size=64, sample_rate_hz=32, update_every=1)
    outs = [est.add_sample(v) for v in sine(1.0, 32, 63)]
    assert all(o is None for o in outs)
    assert not est.filled
    assert est.add_sample(0.0) is not None
    assert est.filled


def test_throttle_after_fill():
    est = CadenceEstimator(fft_size=128, sample_rate_hz=32, update_every=4)
    hits = [i for i, v in enumerate(sine(1.0, 32, 300), start=1) if est.add_sample(v) is not None]
    assert hits[0] == 128
    assert all(b - a >= 4 for a, b in zip(hits, hits[1:]))
    assert len(hits) == len(range(128, 301, 4))


def test_detects_dominant_frequency():
    est = CadenceEstimator(fft_size=128, sample_rate_hz=32, update_every=4)
    out = None
    for v in sine(1.0, 32, 128) + 3.0:
        out = est.add_sample(v) or out
    assert out is not None
    assert out.frequency_hz == pytest.approx(1.0)
    assert out.rpm == pytest.approx(60.0)
    assert out.power > 0
    assert est.last_frequency_hz == pytest.approx(1.0)


def test_exponential_smoothing_against_previous_estimate():
    spectra = []
    for k in (4, 8):
        s = np.zeros(65, dtype=complex)
        s[k] = 1.0 + 1.0j
        spectra.append(s)
    calls = iter(spectra)
    est = CadenceEstimator(fft_size=128, sample_rate_hz=32, update_every=64,
                           smoothing_alpha=0.35, transform=lambda frame: next(calls))
    outs = [o for o in (est.add_sample(0.0) for _ in range(192)) if o is not None]
    assert len(outs) == 2
    assert outs[0].frequency_hz == pytest.approx(1.0)
    assert outs[0].power == pytest.approx(2.0)
    assert outs[1].frequency_hz == pytest.approx(0.35 * 2.0 + 0.65 * 1.0)


def test_degenerate_band_returns_none():
    est = CadenceEstimator(fft_size=8, sample_rate_hz=8, f_min_hz=4.0, f_max_hz=5.0, update_every=1)
    assert est.band_bins() == (4, 4)
    assert all(est.add_sample(v) is None for v in range(20))


def test_missing_backend_degrades_to_none():
    est = CadenceEstimator(fft_size=16, transform=None)
    assert not est.enabled
    assert all(est.add_sample(1.0) is None for _ in range(100))


def test_failing_backend_disables_estimator():
    def broken(frame):
        raise RuntimeError("boom")

    est = CadenceEstimator(fft_size=16, sample_rate_hz=32, update_every=1, transform=broken)
    assert all(est.add_sample(float(i)) is None for i in range(40))
    assert not est.enabled
    assert est.reason.startswith("fft_failed")


def test_set_sample_rate_keeps_buffer():
    est = CadenceEstimator(fft_size=32, sample_rate_hz=16, update_every=1)
    for v in sine(1.0, 16, 32):
        est.add_sample(v)
    assert est.filled
    est.set_sample_rate(32)
    assert est.filled
    assert est.bin_hz == pytest.approx(1.0)


def test_reset_clears_state():
    est = CadenceEstimator(fft_size=32, sample_rate_hz=16, update_every=1)
    for v in sine(1.0, 16, 40):
        est.add_sample(v)
    est.reset()
    assert not est.filled
    assert est.samples_seen == 0
    assert est.last_frequency_hz is None
    assert est.add_sample(1.0) is None


@pytest.mark.parametrize("kwargs", [{"fft_size": 1}, {"update_every": 0}])
def test_invalid_construction(kwargs):
    with pytest.raises(ValueError):
        CadenceEstimator(**kwargs)
