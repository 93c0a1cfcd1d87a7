"""Tests for reader settings persistence and defaulting."""

import json

import pytest

from narrator.schemas.reader_settings import (
    DEFAULT_PORT,
    DEFAULT_VOICE,
    ReaderSettings,
    ReaderSettingsUpdate,
    coerce_port,
)
from narrator.services.reader_settings import ReaderSettingsService


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (8080, 8080),
        ("9001", 9001),
        (65535, 65535),
        (0, DEFAULT_PORT),
        (70000, DEFAULT_PORT),
        (-1, DEFAULT_PORT),
        ("abc", DEFAULT_PORT),
        (None, DEFAULT_PORT),
        (True, DEFAULT_PORT),
        (80.5, DEFAULT_PORT),
    ],
)
def test_coerce_port(value, expected):
    assert coerce_port(value) == expected


def test_missing_file_yields_defaults(settings_path):
    service = ReaderSettingsService(settings_path)

    settings = service.get_settings()

    assert settings.port == DEFAULT_PORT
    assert settings.selected_voice == DEFAULT_VOICE
    assert (settings.pitch, settings.rate, settings.volume) == (1.0, 1.0, 1.0)
    assert settings.connected is False
    assert not settings_path.exists()


def test_invalid_values_fall_back_to_defaults():
    settings = ReaderSettings.model_validate(
        {
            "port": "nope",
            "selected_voice": "",
            "pitch": 0,
            "rate": 5,
            "volume": -0.5,
            "connected": "yes",
        }
    )

    assert settings == ReaderSettings()


def test_zero_volume_is_kept():
    settings = ReaderSettings.model_validate({"volume": 0})

    assert settings.volume == 0.0


def test_corrupt_file_yields_defaults(settings_path):
    settings_path.write_text("{not json", encoding="utf-8")
    service = ReaderSettingsService(settings_path)

    assert service.get_settings() == ReaderSettings()


def test_update_persists_and_merges(settings_path):
    service = ReaderSettingsService(settings_path)

    service.update_settings(ReaderSettingsUpdate(rate=1.5, selected_voice="Alex"))
    service.update_settings(ReaderSettingsUpdate(volume=0.25))

    on_disk = json.loads(settings_path.read_text(encoding="utf-8"))
    assert on_disk["rate"] == 1.5
    assert on_disk["selected_voice"] == "Alex"
    assert on_disk["volume"] == 0.25


def test_update_defaults_out_of_range_values(settings_path):
    service = ReaderSettingsService(settings_path)

    settings = service.update_settings(ReaderSettingsUpdate(pitch=3.0, port=0))

    assert settings.pitch == 1.0
    assert settings.port == DEFAULT_PORT


def test_voice_settings_are_read_fresh_from_disk(settings_path):
    service = ReaderSettingsService(settings_path)
    assert service.get_voice_settings().rate == 1.0

    # Another writer changes the file behind the service's back
    settings_path.write_text(json.dumps({"rate": 1.8, "pitch": 0.5}), encoding="utf-8")

    voice = service.get_voice_settings()
    assert voice.rate == 1.8
    assert voice.pitch == 0.5


def test_voice_settings_use_camel_case_on_the_wire(settings_path):
    service = ReaderSettingsService(settings_path)

    payload = service.get_voice_settings().model_dump(by_alias=True)

    assert set(payload) == {"selectedVoice", "pitch", "rate", "volume"}


def test_save_port_and_get_port(settings_path):
    service = ReaderSettingsService(settings_path)

    service.save_port(9100)

    assert ReaderSettingsService(settings_path).get_port() == 9100


def test_set_connected_writes_only_on_change(settings_path):
    service = ReaderSettingsService(settings_path)

    service.set_connected(False)
    assert settings_path.exists()
    first_write = settings_path.stat().st_mtime_ns

    service.set_connected(False)
    assert settings_path.stat().st_mtime_ns == first_write

    service.set_connected(True)
    assert json.loads(settings_path.read_text(encoding="utf-8"))["connected"] is True


def test_reset_to_defaults(settings_path):
    service = ReaderSettingsService(settings_path)
    service.update_settings(ReaderSettingsUpdate(port=9000, rate=0.5))

    settings = service.reset_to_defaults()

    assert settings == ReaderSettings()
    assert service.get_port() == DEFAULT_PORT


def test_update_with_unparseable_values_uses_defaults(settings_path):
    service = ReaderSettingsService(settings_path)
    service.update_settings(ReaderSettingsUpdate(port=9000, volume=0.4))

    settings = service.update_settings(
        ReaderSettingsUpdate(port="abc", volume="loud", selected_voice="Alex")
    )

    assert settings.port == DEFAULT_PORT
    assert settings.volume == 1.0
    assert settings.selected_voice == "Alex"


@pytest.mark.parametrize("content", ["{not json", '{"port": 9000, "rate": 1.', "[1, 2]"])
def test_set_connected_leaves_unreadable_file_alone(settings_path, content):
    settings_path.write_text(content, encoding="utf-8")
    service = ReaderSettingsService(settings_path)

    service.set_connected(True)
    service.set_connected(False)

    assert settings_path.read_text(encoding="utf-8") == content


def test_set_connected_keeps_user_settings_once_file_is_readable(settings_path):
    service = ReaderSettingsService(settings_path)
    settings_path.write_text('{"port": 9000, "rate": 1.', encoding="utf-8")
    service.set_connected(True)

    # The other writer finishes its write
    settings_path.write_text(json.dumps({"port": 9000, "rate": 1.5}), encoding="utf-8")
    service.set_connected(True)

    on_disk = json.loads(settings_path.read_text(encoding="utf-8"))
    assert on_disk["port"] == 9000
    assert on_disk["rate"] == 1.5
    assert on_disk["connected"] is True
