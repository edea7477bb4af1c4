"""Tests for the batch upload command line."""

import pytest

from media_service.cli import main, parse_args


@pytest.fixture
def image_dir(tmp_path, make_image, corrupt_png_bytes):
    images = tmp_path / "images"
    images.mkdir()
    (images / "one.png").write_bytes(make_image(size=(300, 200)))
    (images / "two.jpg").write_bytes(make_image(size=(200, 300), fmt="JPEG"))
    (images / "broken.png").write_bytes(corrupt_png_bytes)
    return images


def test_parse_args_defaults():
    args = parse_args(["photos"])
    assert args.path == "photos"
    assert args.category == "general"
    assert args.folder is None
    assert args.quality is None


def test_parse_args_rejects_unknown_type():
    with pytest.raises(SystemExit):
        parse_args(["photos", "--type", "sticker"])


def test_directory_with_failures_exits_zero(image_dir, local_settings, capsys):
    code = main([str(image_dir), "--type", "event"], settings=local_settings)

    out = capsys.readouterr().out
    assert code == 0
    assert "Successful: 2" in out
    assert "Failed: 1" in out
    assert "Total: 3" in out
    assert "broken.png: [ConversionError.CorruptInput]" in out
    stored = sorted(p.parent.name for p in (local_settings.local_storage_dir / "media").rglob("*.webp"))
    assert stored == ["events", "events"]


def test_single_file_with_overrides(image_dir, local_settings, capsys):
    code = main(
        [str(image_dir / "one.png"), "--folder", "custom", "--width", "150", "--quality", "60"],
        settings=local_settings,
    )

    assert code == 0
    assert "Successful: 1" in capsys.readouterr().out
    assert len(list((local_settings.local_storage_dir / "custom").glob("one-*.webp"))) == 1


def test_invalid_path_exits_one(tmp_path, local_settings, capsys):
    code = main([str(tmp_path / "missing")], settings=local_settings)

    assert code == 1
    assert capsys.readouterr().err.startswith("Error:")


def test_unconfigured_storage_exits_one(image_dir, local_settings, capsys):
    settings = local_settings.model_copy(update={"storage_backend": "r2"})

    code = main([str(image_dir)], settings=settings)

    assert code == 1
    assert "Error:" in capsys.readouterr().err
