"""
Configuration tests: defaults, environment binding, YAML files validated
against the bundled JSON schema, and deployment construction.
"""

import pytest
import yaml

from cage.config import (
    CageConfig,
    ConfigError,
    ConfigManager,
    ConfigValidationError,
    get_config,
    get_config_manager,
    schema_validator,
)
from cage.instance import CageInstance


class TestDefaults:
    """Defaults match the documented deployment."""

    def test_deployment_defaults(self):
        config = get_config()
        assert config.deployment.version.get() == 0
        assert config.deployment.process_window_ms.get() == 86_400_000
        assert config.deployment.retract_window_ms.get() == 86_400_000
        assert config.ledger.min_output_lovelace.get() == 2_000_000

    def test_defaults_are_valid(self):
        assert get_config_manager().validate() == []

    def test_defaults_satisfy_schema(self):
        assert list(schema_validator().iter_errors(CageConfig().to_dict())) == []

    def test_to_yaml(self):
        data = yaml.safe_load(get_config().to_yaml())
        assert data["observability"] == {"log_level": "info", "log_format": "json"}

    def test_singleton(self):
        assert ConfigManager() is get_config_manager()


class TestOverrides:
    """Runtime overrides and environment variables."""

    def test_set_and_get_by_path(self):
        manager = get_config_manager()
        manager.set("deployment.process_window_ms", 60_000)
        assert manager.get("deployment.process_window_ms") == 60_000

    def test_invalid_path(self):
        with pytest.raises(ConfigError):
            get_config_manager().set("deployment.nope", 1)
        with pytest.raises(ConfigError):
            get_config_manager().get("nope.version")

    def test_validator_rejects_bad_value(self):
        with pytest.raises(ConfigValidationError):
            get_config_manager().set("deployment.retract_window_ms", 0)

    def test_environment_wins(self, monkeypatch):
        manager = get_config_manager()
        manager.set("deployment.version", 3)
        monkeypatch.setenv("CAGE_VERSION", "7")
        assert manager.get("deployment.version") == 7

    def test_environment_not_an_integer(self, monkeypatch):
        monkeypatch.setenv("CAGE_PROCESS_WINDOW_MS", "soon")
        errors = get_config_manager().validate()
        assert len(errors) == 1
        assert errors[0].startswith("deployment.process_window_ms")

    def test_change_callback(self):
        seen = []
        config = get_config()
        config.deployment.version.on_change(lambda old, new: seen.append((old, new)))
        get_config_manager().set("deployment.version", 2)
        assert seen == [(None, 2)]


class TestFiles:
    """YAML files are schema-checked before being applied."""

    def test_load_file(self, tmp_path):
        path = tmp_path / "cage.yaml"
        path.write_text(yaml.safe_dump({"deployment": {"version": 4, "process_window_ms": 1000}}))
        manager = get_config_manager()
        manager.load_from_file(path)
        assert manager.get("deployment.version") == 4
        assert manager.get("deployment.process_window_ms") == 1000
        assert manager.get("deployment.retract_window_ms") == 86_400_000

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            get_config_manager().load_from_file(tmp_path / "absent.yaml")

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "cage.yaml"
        path.write_text(yaml.safe_dump({"deployment": {"windows": 3}}))
        with pytest.raises(ConfigValidationError) as exc:
            get_config_manager().load_from_file(path)
        assert "deployment" in str(exc.value)

    def test_wrong_type_rejected(self, tmp_path):
        path = tmp_path / "cage.yaml"
        path.write_text(yaml.safe_dump({"observability": {"log_format": "xml"}}))
        with pytest.raises(ConfigValidationError):
            get_config_manager().load_from_file(path)

    def test_empty_file_is_ignored(self, tmp_path):
        path = tmp_path / "cage.yaml"
        path.write_text("")
        get_config_manager().load_from_file(path)
        assert get_config().deployment.version.get() == 0

    def test_load_defaults_from_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / "cage.yaml").write_text(yaml.safe_dump({"deployment": {"version": 9}}))
        monkeypatch.chdir(tmp_path)
        manager = get_config_manager()
        manager.load_defaults()
        assert manager.get("deployment.version") == 9

    def test_reload(self, tmp_path):
        path = tmp_path / "cage.yaml"
        path.write_text(yaml.safe_dump({"deployment": {"version": 1}}))
        manager = get_config_manager()
        manager.load_from_file(path)
        path.write_text(yaml.safe_dump({"deployment": {"version": 5}}))
        manager.reload()
        assert manager.get("deployment.version") == 5


class TestInstanceFromConfig:
    """Deployments are built from the deployment section."""

    def test_from_config(self):
        manager = get_config_manager()
        manager.set("deployment.version", 2)
        manager.set("deployment.process_window_ms", 5_000)
        manager.set("deployment.retract_window_ms", 6_000)
        instance = CageInstance.from_config()
        assert (instance.version, instance.process_window, instance.retract_window) == (2, 5_000, 6_000)
        assert instance == CageInstance(2, 5_000, 6_000)

    def test_version_changes_policy(self):
        first = CageInstance.from_config()
        get_config_manager().set("deployment.version", 1)
        assert CageInstance.from_config().policy_id != first.policy_id
