from familymed.config import DEFAULTS, load_config, save_config


def test_missing_config_gives_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "cfg.json"))
    assert cfg == DEFAULTS
    assert cfg is not DEFAULTS


def test_saved_values_override_defaults(tmp_path):
    path = str(tmp_path / "cfg.json")
    save_config({"snooze_options": [5, 60], "log_level": "DEBUG"}, path)
    cfg = load_config(path)
    assert cfg["snooze_options"] == [5, 60]
    assert cfg["log_level"] == "DEBUG"
    assert cfg["notification_title"] == DEFAULTS["notification_title"]


def test_broken_config_falls_back(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text("{oops", encoding="utf-8")
    assert load_config(str(path)) == DEFAULTS
    path.write_text("[1, 2]", encoding="utf-8")
    assert load_config(str(path)) == DEFAULTS
