from datetime import datetime, timezone

from printkit.manifest import TITLE, generate_manifest


def _manifest(**overrides) -> str:
    params = dict(
        basename="sunset",
        aspect_ratios=["2x3", "ISO"],
        every_size=False,
        original_dimensions=(1000, 1000),
        master_dimensions={"2x3": (7200, 10800), "ISO": (7017, 9933)},
        generated_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )
    params.update(overrides)
    return generate_manifest(**params)


def test_header_and_ratio_lines():
    lines = _manifest(upscaled=True, upscale_stages=2).splitlines()
    assert lines[0] == TITLE
    assert "Source file: sunset" in lines
    assert "Original dimensions: 1000x1000px" in lines
    assert "Generated at: 2024-05-01T12:00:00+00:00" in lines
    assert "DPI: 300" in lines
    assert "Upscaling: Lanczos upscale in 2 stages" in lines
    assert "  - 2x3: 24x36in (7200x10800px)" in lines
    assert "  - ISO: 23.39x33.11in (7017x9933px)" in lines
    assert "Every size mode: DISABLED" in lines


def test_resize_only_and_every_size():
    text = _manifest(upscaled=False, every_size=True, dpi=150, quality=90)
    assert "Upscaling: not needed (source resized only)" in text
    assert "Every size mode: ENABLED" in text
    assert "- JPEG quality: 90% with 4:4:4 chroma subsampling" in text
    assert "- 150 DPI metadata applied to all images" in text


def test_notes_list_off_ratio_sizes():
    text = _manifest()
    assert "- 22×30 cm is slightly off true 3:4 ratio" in text
    assert "- 10×12 cm is slightly off true 4:5 ratio" in text
    assert text.rstrip().endswith("- Print labs may trim a few mm if needed for exact sizes")
