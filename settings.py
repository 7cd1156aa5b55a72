from __future__ import annotations

import json
import logging
import os
from typing import Dict, Optional

log = logging.getLogger(__name__)


def default_settings() -> Dict:
    return {
        "language": "ja-JP",  # BCP-47 tag passed to speech capture
        "model_name": os.getenv("WHISPER_MODEL", "small"),
        "device": "auto",  # auto | cpu | gpu
        "beam_size": 1,
        "temperature": 0.0,
        "no_speech_threshold": 0.45,
        "interim_interval_ms": 1200,
        # practice session
        "mode": "manual",  # manual | voice
        "stage_filter": "all",
        "shuffle": False,
        "auto_advance_ms": 1500,
        "correct_threshold": 90,
        "close_threshold": 70,
        # collaborators
        "api_token": os.getenv("WANIKANI_API_TOKEN", ""),
        "db_path": "practice.db",
    }


def settings_path() -> str:
    return os.path.abspath("settings.json")


def load_settings(defaults: Dict, path: str) -> Dict:
    settings = dict(defaults)
    try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
                if isinstance(data, dict):
                    settings.update(data)
    except (OSError, ValueError) as e:
        log.warning(f"Ignoring unreadable settings file {path}: {e}")
    return settings


def save_settings(settings: Dict, path: str) -> None:
    try:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(settings, fh, indent=2, ensure_ascii=False)
    except OSError as e:
        log.warning(f"Could not save settings to {path}: {e}")


def whisper_options(settings: Dict, language: Optional[str] = None) -> Dict:
    opts: Dict = dict(
        language=language,
        task="transcribe",
        temperature=float(settings.get("temperature", 0.0)),
        beam_size=int(settings.get("beam_size", 1)),
        without_timestamps=True,
        condition_on_previous_text=False,
        no_speech_threshold=float(settings.get("no_speech_threshold", 0.45)),
    )

    # whisper picks the device itself; we only control fp16
    device = settings.get("device")
    use_fp16 = False
    if device == "gpu":
        use_fp16 = True
    elif device == "auto":
        try:
            import torch
            use_fp16 = torch.cuda.is_available()
        except Exception:
            use_fp16 = False
    opts["fp16"] = bool(use_fp16)
    return opts
