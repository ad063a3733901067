"""Tests for config module."""

from pathlib import Path

import pytest

import config
from config import AgentConfig, ConfigError, get_config_path, load_agent_config
from workorder.finalizer import DEFAULT_FINALIZER
from workorder.registry import DEFAULT_TYPED_KINDS


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """No env override and no system-wide config file."""
    monkeypatch.delenv('WORK_AGENT_CONFIG', raising=False)
    monkeypatch.setattr(config, 'DEFAULT_CONFIG_PATH', tmp_path / 'missing' / 'config.yaml')


class TestGetConfigPath:
    """Tests for get_config_path()."""

    def test_explicit(self, config_dir):
        path = config_dir / 'config.yaml'
        assert get_config_path(str(path)) == path

    def test_explicit_missing(self, tmp_path):
        with pytest.raises(ConfigError, match='does not exist'):
            get_config_path(str(tmp_path / 'nope.yaml'))

    def test_env(self, monkeypatch, config_dir):
        monkeypatch.setenv('WORK_AGENT_CONFIG', str(config_dir / 'config.yaml'))
        assert get_config_path() == config_dir / 'config.yaml'

    def test_env_missing(self, monkeypatch, tmp_path):
        monkeypatch.setenv('WORK_AGENT_CONFIG', str(tmp_path / 'nope.yaml'))
        with pytest.raises(ConfigError, match='WORK_AGENT_CONFIG'):
            get_config_path()

    def test_explicit_wins_over_env(self, monkeypatch, config_dir, tmp_path):
        other = tmp_path / 'other.yaml'
        other.write_text('namespace: other\n')
        monkeypatch.setenv('WORK_AGENT_CONFIG', str(config_dir / 'config.yaml'))
        assert get_config_path(str(other)) == other

    def test_default_path(self, monkeypatch, config_dir):
        monkeypatch.setattr(config, 'DEFAULT_CONFIG_PATH', config_dir / 'config.yaml')
        assert get_config_path() == config_dir / 'config.yaml'

    def test_none_when_nothing_found(self):
        assert get_config_path() is None


class TestLoadAgentConfig:
    """Tests for load_agent_config()."""

    def test_defaults_without_file(self):
        cfg = load_agent_config()
        assert cfg.namespace == 'default'
        assert cfg.finalizer == DEFAULT_FINALIZER
        assert cfg.request_timeout == 30.0
        assert cfg.status_update_retries == 5
        assert cfg.typed_kinds == list(DEFAULT_TYPED_KINDS)
        assert cfg.config_file is None

    def test_from_file(self, config_dir):
        cfg = load_agent_config(str(config_dir / 'config.yaml'))
        assert cfg.namespace == 'cluster1'
        assert cfg.spoke_kubeconfig == Path('/tmp/spoke.kubeconfig')
        assert cfg.hub_kubeconfig is None
        assert cfg.request_timeout == 15.0
        assert isinstance(cfg.request_timeout, float)
        assert cfg.status_update_retries == 3
        assert cfg.config_file == config_dir / 'config.yaml'

    def test_typed_kinds_from_file(self, config_dir):
        registry = load_agent_config(str(config_dir / 'config.yaml')).typed_registry()
        assert len(registry) == 2
        assert ('', 'Secret') in registry
        assert ('', 'ConfigMap') not in registry
        cluster_role = registry.lookup('rbac.authorization.k8s.io', 'ClusterRole')
        assert cluster_role.namespaced is False

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('')
        assert load_agent_config(str(path)) == AgentConfig(config_file=path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('namespace: [unclosed\n')
        with pytest.raises(ConfigError, match='Invalid YAML'):
            load_agent_config(str(path))

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('- a\n- b\n')
        with pytest.raises(ConfigError, match='must contain a mapping'):
            load_agent_config(str(path))


class TestAgentConfigFromDict:
    """Tests for AgentConfig.from_dict()."""

    def test_unknown_keys(self):
        with pytest.raises(ConfigError, match='Unknown config keys: bogus, extra'):
            AgentConfig.from_dict({'bogus': 1, 'extra': 2, 'namespace': 'x'})

    def test_bad_number(self):
        with pytest.raises(ConfigError, match='Invalid numeric setting'):
            AgentConfig.from_dict({'request_timeout': 'soon'})

    def test_null_values_use_defaults(self):
        cfg = AgentConfig.from_dict({'namespace': None, 'request_timeout': None})
        assert cfg.namespace == 'default'
        assert cfg.request_timeout == 30.0

    def test_typed_kinds_must_be_list(self):
        with pytest.raises(ConfigError, match='must be a list'):
            AgentConfig.from_dict({'typed_kinds': {'kind': 'Secret'}})

    def test_typed_kind_missing_field(self):
        with pytest.raises(ConfigError, match='Invalid typed_kinds entry'):
            AgentConfig.from_dict({'typed_kinds': [{'kind': 'Secret'}]})

    def test_empty_typed_kinds_disables_typed_mode(self):
        cfg = AgentConfig.from_dict({'typed_kinds': []})
        assert len(cfg.typed_registry()) == 0

    def test_kubeconfig_paths_expanded(self):
        cfg = AgentConfig.from_dict({'hub_kubeconfig': '~/hub.yaml'})
        assert isinstance(cfg.hub_kubeconfig, Path)
        assert '~' not in str(cfg.hub_kubeconfig)
