"""End-to-end tests for the command line runner and the diagnostic scripts."""

import numpy as np
import pytest
from PIL import Image

from field_io import load_matrix, prepare_field
from orientation_field import InvalidClusterIdError
from smooth_orientation import SmoothingConfig
from run_orientation import main, run
from debug_neighborhood import describe_cell
from profile_orientation import profile_image, detailed_profile


@pytest.fixture
def drawing(tmp_path):
    """8x8 image with a diagonal stroke and a two-cluster partition."""
    rgb = np.full((8, 8, 3), 240, dtype=np.uint8)
    for i in range(8):
        rgb[i, max(0, i - 1):i + 2] = 20
    image_path = tmp_path / "stroke.png"
    Image.fromarray(rgb).save(image_path)

    labels = np.where(np.add.outer(np.arange(8), -np.arange(8)) >= 0, 3, 8)
    cluster_path = tmp_path / "stroke_clusters.txt"
    cluster_path.write_text("8 8\n" + "\n".join(" ".join(str(v) for v in row) for row in labels) + "\n")
    return image_path, cluster_path


class TestRun:
    def test_writes_checkpoints(self, drawing, tmp_path):
        image_path, cluster_path = drawing
        out = tmp_path / "out"
        written = run(image_path, cluster_path, 4, 2, out, SmoothingConfig(window_size=3, filtered_iterations=2))

        names = [p.name for p in written]
        assert names[0] == "stroke_original_mag.txt"
        assert "stroke_2_iter.txt" in names
        assert "stroke_4_iter_grad.png" in names
        assert "stroke_3_iter.txt" not in names
        for p in written:
            assert p.exists()

        angles = load_matrix(str(out / "stroke_4_iter.txt"))
        assert angles.shape == (8, 8)
        assert np.all(angles > -np.pi / 2 - 1e-6)
        assert np.all(angles <= np.pi / 2 + 1e-6)

    def test_original_magnitude_matches_field(self, drawing, tmp_path):
        image_path, cluster_path = drawing
        out = tmp_path / "out"
        run(image_path, cluster_path, 0, 1, out, SmoothingConfig())
        field, _ = prepare_field(str(image_path), str(cluster_path))
        saved = load_matrix(str(out / "stroke_original_mag.txt"))
        np.testing.assert_allclose(saved, field.magnitude, rtol=1e-5)

    def test_too_many_clusters_fails_before_iterating(self, tmp_path, capsys):
        rng = np.random.default_rng(3)
        Image.fromarray(rng.integers(0, 256, size=(20, 15, 3), dtype=np.uint8)).save(tmp_path / "many.png")
        labels = np.arange(300).reshape(20, 15)
        cluster_path = tmp_path / "many_clusters.txt"
        cluster_path.write_text("20 15\n" + "\n".join(" ".join(str(v) for v in row) for row in labels) + "\n")
        out = tmp_path / "out"

        with pytest.raises(InvalidClusterIdError):
            run(tmp_path / "many.png", cluster_path, 3, 3, out, SmoothingConfig(window_size=3))
        assert "iter 1/3" not in capsys.readouterr().out
        assert not out.exists() or list(out.iterdir()) == []

    def test_too_many_clusters_without_checkpoints(self, tmp_path):
        Image.fromarray(np.zeros((20, 15, 3), dtype=np.uint8)).save(tmp_path / "many.png")
        labels = np.arange(300).reshape(20, 15)
        cluster_path = tmp_path / "many_clusters.txt"
        cluster_path.write_text("20 15\n" + "\n".join(" ".join(str(v) for v in row) for row in labels) + "\n")
        out = tmp_path / "out"

        written = run(tmp_path / "many.png", cluster_path, 2, 5, out, SmoothingConfig(window_size=3))
        assert [p.name for p in written] == ["many_original_mag.txt"]


class TestMain:
    def test_cli(self, drawing, tmp_path, capsys):
        image_path, cluster_path = drawing
        out = tmp_path / "cli_out"
        main(['-i', str(image_path), '-c', str(cluster_path), '-n', '2', '-s', '1',
              '-o', str(out), '--window', '3', '--workers', '2'])
        assert (out / "stroke_1_iter.png").exists()
        assert (out / "stroke_2_iter_mag.txt").exists()
        printed = capsys.readouterr().out
        assert "iter 2/2" in printed

    def test_missing_cluster_file(self, drawing, tmp_path, capsys):
        image_path, _ = drawing
        with pytest.raises(SystemExit) as exc:
            main(['-i', str(image_path), '-c', str(tmp_path / "none.txt"), '-n', '1', '-s', '1',
                  '-o', str(tmp_path / "o")])
        assert exc.value.code == 1
        assert "Error:" in capsys.readouterr().err

    def test_dimension_mismatch(self, drawing, tmp_path):
        image_path, _ = drawing
        bad = tmp_path / "bad.txt"
        bad.write_text("2 2\n1 1\n1 1\n")
        with pytest.raises(SystemExit) as exc:
            main(['-i', str(image_path), '-c', str(bad), '-n', '1', '-s', '1', '-o', str(tmp_path / "o")])
        assert exc.value.code == 1

    @pytest.mark.parametrize("extra", [
        ['-s', '0'],
        ['-s', '1', '--window', '0'],
        ['-s', '1', '--range-sigma', '0'],
    ])
    def test_bad_arguments(self, drawing, tmp_path, extra):
        image_path, cluster_path = drawing
        with pytest.raises(SystemExit) as exc:
            main(['-i', str(image_path), '-c', str(cluster_path), '-n', '1', '-o', str(tmp_path)] + extra)
        assert exc.value.code == 2


class TestDescribeCell:
    def test_lists_candidates(self, drawing):
        image_path, cluster_path = drawing
        field, colors = prepare_field(str(image_path), str(cluster_path))
        lines = describe_cell(field, colors, 4, 4, SmoothingConfig(), ignore_magnitude=True)
        assert lines[0].startswith("Cell r: 4, c: 4")
        assert any("qualified neighbors" in line for line in lines)
        assert any(line.strip().startswith("New angle") for line in lines)

    def test_isolated_cell(self, drawing):
        image_path, cluster_path = drawing
        field, colors = prepare_field(str(image_path), str(cluster_path))
        lines = describe_cell(field, colors, 0, 0, SmoothingConfig(window_size=1), ignore_magnitude=True)
        assert "left unchanged" in lines[-1]


class TestProfile:
    def test_stage_timings(self, drawing):
        image_path, cluster_path = drawing
        config = SmoothingConfig(window_size=3)
        timings = profile_image(str(image_path), str(cluster_path), 2, config, verbose=False)
        assert set(timings) == {'prepare_field', 'iteration_1', 'iteration_2', 'total'}
        assert timings['total'] >= 0

        report = detailed_profile(str(image_path), str(cluster_path), config)
        assert "update_cell" in report
