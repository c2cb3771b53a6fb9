import csv
import json

from PIL import Image

from stockmeta import image_to_text

from conftest import METADATA, FakeClient, text_response


def write_settings(path, **data):
    path.write_text(json.dumps(data))
    return str(path)


def test_keys_add_and_list(tmp_path, capsys):
    settings_path = str(tmp_path / "settings.json")

    assert image_to_text.main(["--settings", settings_path, "keys", "add", "AIzaSecretKey1234"]) == 0
    assert image_to_text.main(["--settings", settings_path, "keys", "list"]) == 0

    out = capsys.readouterr().out
    assert "Stored 1 key(s)" in out
    assert "#1 AIza...1234" in out
    assert json.loads((tmp_path / "settings.json").read_text())["api_keys"] == ["AIzaSecretKey1234"]


def test_generate_writes_marketplace_csv(tmp_path, monkeypatch, capsys):
    images = tmp_path / "images"
    images.mkdir()
    for name in ("one.jpg", "two.jpg"):
        Image.new("RGB", (50, 50), (0, 128, 0)).save(images / name, format="JPEG")
    settings_path = write_settings(tmp_path / "settings.json", api_keys=["key-1"])
    monkeypatch.setattr(
        "stockmeta.controller.create_client",
        lambda api_key: FakeClient(lambda n, kw: text_response(METADATA), api_key=api_key),
    )

    code = image_to_text.main([
        "--settings", settings_path, "generate", str(images),
        "--site", "adobe-stock", "--vector", "--output-dir", str(tmp_path / "out"),
    ])

    assert code == 0
    with open(tmp_path / "out" / "adobe-stock_metadata.csv", encoding="utf-8-sig", newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["Filename", "Title", "Keywords", "Category"]
    assert [row[0] for row in rows[1:]] == ["one.jpg", "two.jpg"]
    assert rows[1][1] == "Red apple on a wooden table Vector"
    assert rows[1][2] == "apple, fruit, red, vector"
    assert "Successful: 2" in capsys.readouterr().out


def test_generate_without_keys_reports_configuration_error(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    images = tmp_path / "images"
    images.mkdir()
    Image.new("RGB", (20, 20)).save(images / "a.png", format="PNG")

    code = image_to_text.main(["--settings", str(tmp_path / "s.json"), "generate", str(images)])

    assert code == 2
    assert "API Key Missing" in capsys.readouterr().out


def test_generate_on_empty_folder(tmp_path, capsys):
    code = image_to_text.main(["--settings", str(tmp_path / "s.json"), "generate", str(tmp_path)])

    assert code == 1
    assert "No media files found!" in capsys.readouterr().out
