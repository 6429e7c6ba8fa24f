import zipfile
from io import BytesIO

import pytest
from fastapi.testclient import TestClient

from printkit import main
from printkit.config import Settings
from printkit.main import app, extract_basename
from printkit.sizes import BASE_RATIOS

client = TestClient(app)


@pytest.fixture
def fast_settings(monkeypatch):
    settings = Settings(dpi=10, icc_profile_path=None)
    monkeypatch.setattr(main, "settings", settings)
    return settings


def test_health():
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_sizes_catalogue(fast_settings):
    response = client.get("/api/sizes", params={"every_size": "false", "include_5x7": "false"})
    assert response.status_code == 200
    body = response.json()
    assert body["dpi"] == 10
    assert [item["ratio"] for item in body["ratios"]] == list(BASE_RATIOS)

    full = client.get("/api/sizes").json()
    assert full["ratios"][-1]["ratio"] == "5x7"


def test_missing_file_rejected():
    response = client.post("/api/process", data={"everySizes": "false"})
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "input_error"


def test_non_image_mime_rejected():
    response = client.post(
        "/api/process", files={"file": ("notes.txt", b"hello", "text/plain")}
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "input_error"


def test_oversize_upload_rejected(monkeypatch, square_jpeg):
    monkeypatch.setattr(main, "settings", Settings(max_upload_mb=0.001))
    response = client.post(
        "/api/process", files={"file": ("big.jpg", square_jpeg, "image/jpeg")}
    )
    assert response.status_code == 400
    assert "limit" in response.json()["detail"]["message"]


def test_undecodable_image_rejected(fast_settings):
    response = client.post(
        "/api/process", files={"file": ("broken.jpg", b"garbage", "image/jpeg")}
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "decode_error"


def test_process_streams_zip(fast_settings, square_jpeg):
    response = client.post(
        "/api/process",
        files={"file": ("holiday photo.jpg", square_jpeg, "image/jpeg")},
        data={"everySizes": "false", "include5x7": "false"},
    )
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert 'filename="holiday photo_Etsy_Print_Kit.zip"' in response.headers["content-disposition"]
    assert "no-cache" in response.headers["cache-control"]

    with zipfile.ZipFile(BytesIO(response.content)) as zf:
        names = zf.namelist()
    assert len(names) == len(BASE_RATIOS) + 1
    assert names[-1] == "manifest.txt"
    assert "2x3/holiday photo_2x3_24x36in_10dpi.jpg" in names


def test_process_with_every_size_and_5x7(fast_settings, square_jpeg):
    response = client.post(
        "/api/process",
        files={"file": ("p.png", square_jpeg, "image/jpeg")},
        data={"everySizes": "true", "include5x7": "true"},
    )
    assert response.status_code == 200
    with zipfile.ZipFile(BytesIO(response.content)) as zf:
        names = zf.namelist()
    assert "5x7/p_5x7_5x7in_10dpi.jpg" in names
    assert "ISO/p_ISO_A4_10dpi.jpg" in names


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("photo.jpg", "photo"),
        ("C:\\Users\\me\\sunset.final.png", "sunset.final"),
        ("../../etc/passwd", "passwd"),
        ("", "image"),
        (None, "image"),
        ("weird<>name.jpeg", "weird_name"),
    ],
)
def test_extract_basename(filename, expected):
    assert extract_basename(filename) == expected
