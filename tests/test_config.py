import os

import pytest
import yaml

from api.config import (
    DEFAULTS,
    ConfigManager,
    ConfigParseError,
    ConfigReadError,
    apply_overrides,
    is_truthy,
    resolve_config,
    validate_camera,
)


def _write(tmp_path, text, name="config.yaml"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_no_path_returns_defaults():
    config = resolve_config("")

    assert config == DEFAULTS
    assert config["web"]["port"] == 8080
    assert config["auth"]["enabled"] is True


def test_default_resolution_is_repeatable_and_unshared():
    first = resolve_config(None)
    first["web"]["port"] = 1
    first["camera"]["enable"] = True

    second = resolve_config(None)

    assert second == DEFAULTS
    assert DEFAULTS["web"]["port"] == 8080


def test_missing_file_raises_read_error(tmp_path):
    with pytest.raises(ConfigReadError):
        resolve_config(str(tmp_path / "nope.yaml"))


def test_directory_raises_read_error(tmp_path):
    with pytest.raises(ConfigReadError):
        resolve_config(str(tmp_path))


def test_malformed_yaml_raises_parse_error(tmp_path):
    path = _write(tmp_path, "web: [unclosed\n")

    with pytest.raises(ConfigParseError):
        resolve_config(path)


def test_non_mapping_document_raises_parse_error(tmp_path):
    path = _write(tmp_path, "- a\n- b\n")

    with pytest.raises(ConfigParseError):
        resolve_config(path)


def test_section_must_be_mapping(tmp_path):
    path = _write(tmp_path, "web: 8080\n")

    with pytest.raises(ConfigParseError):
        resolve_config(path)


def test_empty_file_yields_defaults(tmp_path):
    assert resolve_config(_write(tmp_path, "")) == DEFAULTS


def test_partial_file_keeps_defaults(tmp_path):
    path = _write(tmp_path, "web:\n  host: 127.0.0.1\ncamera:\n  enable: true\n")

    config = resolve_config(path)

    assert config["web"]["host"] == "127.0.0.1"
    assert config["web"]["port"] == 8080
    assert config["camera"]["enable"] is True
    assert config["camera"]["tick_interval"] == 120
    assert config["auth"] == DEFAULTS["auth"]


def test_unknown_keys_are_kept(tmp_path):
    path = _write(tmp_path, "interface: wlan0\n")

    assert resolve_config(path)["interface"] == "wlan0"


def test_same_content_resolves_identically(tmp_path):
    path = _write(tmp_path, "web:\n  port: 9000\nauth:\n  enabled: false\n")

    assert resolve_config(path) == resolve_config(path)


def test_overrides_take_precedence_over_file(tmp_path):
    path = _write(tmp_path, "web:\n  port: 9000\nauth:\n  enabled: true\n")
    config = resolve_config(path)

    effective = apply_overrides(config, port=9090, no_auth=True)

    assert effective["web"]["port"] == 9090
    assert effective["auth"]["enabled"] is False
    # Input left untouched
    assert config["web"]["port"] == 9000
    assert config["auth"]["enabled"] is True


def test_file_port_used_without_flag(tmp_path):
    config = resolve_config(_write(tmp_path, "web:\n  port: 9000\n"))

    assert apply_overrides(config)["web"]["port"] == 9000


def test_no_auth_flag_unset_keeps_file_setting(tmp_path):
    config = resolve_config(_write(tmp_path, "auth:\n  enabled: false\n"))

    assert apply_overrides(config, no_auth=False)["auth"]["enabled"] is False


@pytest.mark.parametrize("port", [0, 70000, "http"])
def test_invalid_port_rejected(port):
    with pytest.raises(ConfigParseError):
        apply_overrides(resolve_config(""), port=port)


def test_validate_camera_accepts_numeric_string():
    camera = validate_camera({"tick_interval": "15"})

    assert camera["tick_interval"] == 15
    assert camera["image_directory"] == DEFAULTS["camera"]["image_directory"]


@pytest.mark.parametrize("value", [0, -5, "abc", None, True])
def test_validate_camera_rejects_bad_tick_interval(value):
    with pytest.raises(ValueError, match="positive integer"):
        validate_camera({"tick_interval": value})


def test_update_persists_to_file(tmp_path):
    path = _write(tmp_path, "web:\n  port: 9000\n")
    manager = ConfigManager(path)

    manager.update({"camera": {"enable": True, "tick_interval": 30}})

    with open(path, encoding="utf-8") as f:
        saved = yaml.safe_load(f)
    assert saved["web"]["port"] == 9000
    assert saved["camera"]["tick_interval"] == 30
    assert resolve_config(path)["camera"]["enable"] is True


def test_update_keeps_file_as_written(tmp_path):
    path = _write(tmp_path, "web:\n  port: 7070\nextra:\n  keep: 1\n")
    manager = ConfigManager(path)

    config = manager.update({"camera": {"tick_interval": 5}})

    with open(path, encoding="utf-8") as f:
        saved = yaml.safe_load(f)
    assert saved == {"web": {"port": 7070}, "extra": {"keep": 1}, "camera": {"tick_interval": 5}}
    assert config["web"]["host"] == DEFAULTS["web"]["host"]
    assert config["extra"] == {"keep": 1}


@pytest.mark.parametrize(
    "content",
    [
        "web:\n  assets: [a, b]\n",
        "web:\n  port: '80'\n",
        "web:\n  port: true\n",
        "web:\n  host: 5\n",
        "auth:\n  data_dir: 5\n",
        "auth:\n  enabled: 'false'\n",
        "auth:\n  token_hours: 1.5\n",
    ],
)
def test_wrong_typed_values_raise_parse_error(tmp_path, content):
    path = _write(tmp_path, content)

    with pytest.raises(ConfigParseError, match="wrong type"):
        resolve_config(path)


def test_null_assets_allowed(tmp_path):
    path = _write(tmp_path, "web:\n  assets:\n")

    assert resolve_config(path)["web"]["assets"] is None


@pytest.mark.parametrize("port", [True, 8080.9, "8080"])
def test_non_integer_port_override_rejected(port):
    with pytest.raises(ConfigParseError, match="Invalid port"):
        apply_overrides(resolve_config(""), port=port)


def test_non_boolean_auth_enabled_rejected():
    config = resolve_config("")
    config["auth"]["enabled"] = "false"

    with pytest.raises(ConfigParseError, match="auth.enabled"):
        apply_overrides(config)


def test_save_without_path_fails():
    with pytest.raises(ConfigReadError):
        ConfigManager().save(resolve_config(""))


@pytest.mark.parametrize("value,expected", [
    ("1", True), ("true", True), (" Yes ", True), ("0", False), ("", False),
    (True, True), (False, False), (None, False),
])
def test_is_truthy(value, expected):
    assert is_truthy(value) is expected


@pytest.mark.skipif(os.geteuid() == 0, reason="root can read any file")
def test_unreadable_file_raises_read_error(tmp_path):
    path = _write(tmp_path, "web: {}\n")
    os.chmod(path, 0)

    with pytest.raises(ConfigReadError):
        resolve_config(path)
