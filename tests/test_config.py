import json

from stockmeta.config import DEFAULT_CONTROLS, Settings, env_api_keys


def test_missing_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)

    settings = Settings.load(str(tmp_path / "missing.json"))

    assert settings.api_keys == []
    assert settings.model == "gemini-2.5-flash"
    assert settings.controls == DEFAULT_CONTROLS
    assert settings.selected_stock_site == "General"


def test_stored_controls_are_merged_over_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({
        "api_keys": ["abc"],
        "controls": {"keywords_count": 45, "advance_title": {"vector": True}},
    }))

    settings = Settings.load(str(path))

    assert settings.api_keys == ["abc"]
    assert settings.controls["keywords_count"] == 45
    assert settings.controls["batch_size"] == 3
    assert settings.controls["advance_title"] == {
        "transparent_bg": False, "white_bg": False, "vector": True, "illustration": False,
    }


def test_corrupt_file_falls_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    path = tmp_path / "settings.json"
    path.write_text("{broken")

    settings = Settings.load(str(path))

    assert settings.controls == DEFAULT_CONTROLS


def test_save_round_trip(tmp_path):
    path = str(tmp_path / "settings.json")
    settings = Settings(path=path)
    settings.add_api_key(" key-1 ")
    settings.add_api_key("key-1")
    settings.update_controls(active_tab="prompt", prompt_switches={"silhouette": True})
    settings.save()

    loaded = Settings.load(path, use_env=False)

    assert loaded.api_keys == ["key-1"]
    assert loaded.controls["active_tab"] == "prompt"
    assert loaded.controls["prompt_switches"]["silhouette"] is True
    assert loaded.controls["prompt_switches"]["white_bg"] is False


def test_defaults_are_not_shared_between_instances(tmp_path):
    first = Settings(path=str(tmp_path / "a.json"))
    first.add_api_key("k")
    first.update_controls(advance_title={"vector": True})

    second = Settings(path=str(tmp_path / "b.json"))

    assert second.api_keys == []
    assert second.controls["advance_title"]["vector"] is False


def test_env_keys_used_when_none_stored(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GEMINI_API_KEYS", "one, two")
    monkeypatch.setenv("GEMINI_API_KEY", "three")

    assert env_api_keys() == ["one", "two", "three"]
    assert Settings.load(str(tmp_path / "none.json")).api_keys == ["one", "two", "three"]


def test_env_keys_are_not_written_on_save(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GEMINI_API_KEY", "env-secret")
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    path = tmp_path / "settings.json"

    settings = Settings.load(str(path))
    settings.update_controls(keywords_count=20)
    settings.save()

    assert settings.api_keys == ["env-secret"]
    stored = json.loads(path.read_text())
    assert stored["api_keys"] == []
    assert "env-secret" not in path.read_text()
    assert stored["controls"]["keywords_count"] == 20


def test_stored_keys_take_precedence_over_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GEMINI_API_KEY", "env-secret")
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"api_keys": ["stored"]}))

    assert Settings.load(str(path)).api_keys == ["stored"]
