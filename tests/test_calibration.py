"""Tests for calibration loading, validation and persistence."""

from datetime import datetime

import numpy as np
import pytest

from octrecon.calibration import (
    DEFAULT_BACKGROUND_FILE,
    DEFAULT_PHASE_FILE,
    Calibration,
    CalibrationStore,
    estimate_background,
    load_calibration,
    looks_like_calib_dir,
    new_calib_dir_name,
)
from octrecon.errors import MalformedCalibration

from conftest import make_jitter_calibration


def write_files(tmp_path, background_text, phase_text):
    bg = tmp_path / "bg.txt"
    ph = tmp_path / "phase.txt"
    bg.write_text(background_text)
    ph.write_text(phase_text)
    return bg, ph


class TestLoadCalibration:

    def test_reads_whitespace_delimited_files(self, tmp_path):
        bg, ph = write_files(
            tmp_path,
            "1.5 2.5\n3.5\t4.5\n",
            "0 1.0 0.0\n1 0.25 0.75\n2 0.5 0.5\n3 1 0\n",
        )
        calib = load_calibration(4, bg, ph)
        np.testing.assert_array_equal(calib.background, [1.5, 2.5, 3.5, 4.5])
        np.testing.assert_array_equal(calib.index, [0, 1, 2, 3])
        assert calib.phase_unit(1) == (1, 0.25, 0.75)
        assert calib.aline_size == 4

    def test_extra_trailing_values_are_ignored(self, tmp_path):
        bg, ph = write_files(tmp_path, "1 2 3 4 5 6", "0 1 0 1 1 0 0 1 0 0 1 0 9 9 9")
        calib = load_calibration(4, bg, ph)
        assert calib.background.shape == (4,)

    def test_short_background_reports_end_of_file(self, tmp_path):
        bg, ph = write_files(tmp_path, "1 2 3", "0 1 0\n1 1 0\n2 1 0\n3 1 0\n")
        with pytest.raises(MalformedCalibration, match="提前结束"):
            load_calibration(4, bg, ph)

    def test_short_phase_file_reports_end_of_file(self, tmp_path):
        bg, ph = write_files(tmp_path, "1 2 3 4", "0 1 0\n1 1 0\n")
        with pytest.raises(MalformedCalibration, match="提前结束"):
            load_calibration(4, bg, ph)

    def test_unparseable_value_reports_parse_failure(self, tmp_path):
        bg, ph = write_files(tmp_path, "1 2 abc 4", "0 1 0\n1 1 0\n2 1 0\n3 1 0\n")
        with pytest.raises(MalformedCalibration, match="解析失败"):
            load_calibration(4, bg, ph)

    def test_missing_file_reports_io_error(self, tmp_path):
        with pytest.raises(MalformedCalibration, match="I/O"):
            load_calibration(4, tmp_path / "missing.txt", tmp_path / "missing2.txt")

    def test_out_of_range_index_rejected(self, tmp_path):
        bg, ph = write_files(tmp_path, "0 0 0 0", "0 1 0\n3 1 0\n2 1 0\n3 1 0\n")
        with pytest.raises(MalformedCalibration, match="超出范围"):
            load_calibration(4, bg, ph)

    def test_last_record_is_not_range_checked(self):
        # phase[N-1] = {N-1, 1, 0} never feeds interpolation
        calib = Calibration.identity(16)
        assert calib.phase_unit(15) == (15, 1.0, 0.0)

    def test_from_units(self):
        calib = Calibration.from_units(np.zeros(3), [(0, 0.5, 0.5), (1, 1.0, 0.0), (2, 1.0, 0.0)])
        assert calib.phase_unit(0) == (0, 0.5, 0.5)
        np.testing.assert_array_equal(calib.index, [0, 1, 2])

    def test_arrays_are_read_only(self):
        calib = Calibration.identity(8)
        with pytest.raises(ValueError):
            calib.background[0] = 1.0
        with pytest.raises(ValueError):
            calib.index[0] = 1


class TestPersistence:

    def test_save_then_load_dir(self, tmp_path):
        calib = make_jitter_calibration(32, seed=7)
        calib.save_to_dir(tmp_path)
        assert (tmp_path / DEFAULT_BACKGROUND_FILE).exists()
        assert (tmp_path / DEFAULT_PHASE_FILE).exists()

        loaded = load_calibration(32, tmp_path / DEFAULT_BACKGROUND_FILE, tmp_path / DEFAULT_PHASE_FILE)
        np.testing.assert_allclose(loaded.background, calib.background, rtol=1e-9)
        np.testing.assert_array_equal(loaded.index, calib.index)
        np.testing.assert_allclose(loaded.left_coeff, calib.left_coeff, rtol=1e-9)
        np.testing.assert_allclose(loaded.right_coeff, calib.right_coeff, rtol=1e-9)

    def test_new_calib_dir_name(self):
        name = new_calib_dir_name('OCTcalib', datetime(2024, 3, 29, 19, 10, 6))
        assert name == 'OCTcalib 20240329191006'

    def test_looks_like_calib_dir(self, tmp_path):
        calib = tmp_path / "My_Calib_2024"
        data = tmp_path / "sequence01"
        calib.mkdir()
        data.mkdir()
        assert looks_like_calib_dir(calib)
        assert not looks_like_calib_dir(data)
        assert not looks_like_calib_dir(tmp_path / "calib_missing")


class TestBackground:

    def test_estimate_background_averages_alines(self):
        fringe = np.array([[0, 2, 4], [2, 4, 6]], dtype=np.uint16)
        np.testing.assert_array_equal(estimate_background(fringe.ravel(), 3), [1, 3, 5])

    def test_estimate_background_rejects_partial_frames(self):
        with pytest.raises(MalformedCalibration):
            estimate_background(np.zeros(7, dtype=np.uint16), 3)

    def test_with_background_keeps_phase(self):
        calib = make_jitter_calibration(16)
        updated = calib.with_background(np.full(16, 5.0))
        np.testing.assert_array_equal(updated.background, 5.0)
        np.testing.assert_array_equal(updated.index, calib.index)
        assert updated is not calib

    def test_with_background_rejects_wrong_length(self):
        with pytest.raises(MalformedCalibration):
            Calibration.identity(16).with_background(np.zeros(8))


class TestCalibrationStore:

    def test_load_dir(self, calib_dir):
        store = CalibrationStore(64)
        calib = store.load_dir(calib_dir)
        assert calib is not None
        assert store.ok
        assert store.calibration is calib
        assert store.calib_dir == calib_dir

    def test_failed_load_keeps_previous(self, calib_dir, tmp_path):
        store = CalibrationStore(64)
        first = store.load_dir(calib_dir)

        bad = tmp_path / "bad_calib"
        bad.mkdir()
        (bad / DEFAULT_BACKGROUND_FILE).write_text("1 2 3")
        (bad / DEFAULT_PHASE_FILE).write_text("0 1 0")

        with pytest.warns(UserWarning, match="保留原标定"):
            result = store.load_dir(bad)
        assert result is None
        assert store.calibration is first
        assert store.calib_dir == calib_dir

    def test_failed_first_load_leaves_store_empty(self, tmp_path):
        store = CalibrationStore(64)
        with pytest.warns(UserWarning):
            assert store.load_dir(tmp_path) is None
        assert not store.ok

    def test_replace_rejects_wrong_size(self):
        store = CalibrationStore(64)
        with pytest.raises(MalformedCalibration):
            store.replace(Calibration.identity(32))

    def test_update_background_and_save(self, calib_dir, tmp_path):
        store = CalibrationStore(64)
        store.load_dir(calib_dir)
        fringe = np.tile(np.arange(64, dtype=np.uint16), 10)

        calib = store.update_background(fringe)
        np.testing.assert_array_equal(calib.background, np.arange(64))

        when = datetime(2025, 1, 2, 3, 4, 5)
        saved = store.save_to_new_dir(tmp_path / "data", when=when)
        assert saved.name == "OCTcalib 20250102030405"

        reloaded = CalibrationStore(64).load_dir(saved)
        np.testing.assert_allclose(reloaded.background, np.arange(64))

    def test_update_background_requires_calibration(self):
        with pytest.raises(MalformedCalibration):
            CalibrationStore(8).update_background(np.zeros(8))
