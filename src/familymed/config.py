import copy
import json
import logging
import os

from familymed.notifications import DEFAULT_SNOOZE_TITLE, DEFAULT_TITLE


def _config_dir():
    return os.path.join(os.path.expanduser('~'), '.familymed')


def _config_path():
    base = _config_dir()
    os.makedirs(base, exist_ok=True)
    return os.path.join(base, 'familymed_config.json')


DEFAULTS = {
    'data_file': os.path.join(_config_dir(), 'familymed_data.json'),
    'snooze_options': [10, 15, 30],
    'notification_title': DEFAULT_TITLE,
    'snooze_title': DEFAULT_SNOOZE_TITLE,
    'log_level': 'INFO',
}


def load_config(path=None):
    path = path or _config_path()
    cfg = copy.deepcopy(DEFAULTS)
    if not os.path.exists(path):
        return cfg
    try:
        with open(path, 'r', encoding='utf-8') as f:
            stored = json.load(f)
    except (OSError, ValueError) as e:
        logging.warning(f"[FamilyMed] config {path} unreadable, using defaults: {e}")
        return cfg
    if not isinstance(stored, dict):
        logging.warning(f"[FamilyMed] config {path} is not a JSON object, using defaults")
        return cfg
    cfg.update(stored)
    return cfg


def save_config(cfg: dict, path=None):
    path = path or _config_path()
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(cfg, f, ensure_ascii=False, indent=2)
