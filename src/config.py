"""Agent configuration management.

Configuration is loaded from a single YAML file. Resolution order:
1. Explicit path (--config)
2. $WORK_AGENT_CONFIG environment variable
3. /etc/work-agent/config.yaml
4. Built-in defaults (no file)

Example:

    namespace: cluster1
    hub_kubeconfig: ~/.kube/hub.yaml
    spoke_kubeconfig: ~/.kube/config
    request_timeout: 30
    typed_kinds:
      - {group: '', kind: Secret, api: CoreV1Api, resource: secret}
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from workorder.finalizer import DEFAULT_FINALIZER
from workorder.registry import DEFAULT_TYPED_KINDS, TypedBinding, TypedKindRegistry

DEFAULT_CONFIG_PATH = Path('/etc/work-agent/config.yaml')


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class AgentConfig:
    """Settings for reconciling WorkOrders.

    The hub is the cluster storing WorkOrders; the spoke is the target
    cluster manifests are applied to. Unset kubeconfig paths fall back to
    in-cluster service account configuration.
    """
    namespace: str = 'default'
    hub_kubeconfig: Optional[Path] = None
    hub_context: Optional[str] = None
    spoke_kubeconfig: Optional[Path] = None
    spoke_context: Optional[str] = None
    finalizer: str = DEFAULT_FINALIZER
    work_group: str = 'work.homestak.dev'
    work_version: str = 'v1'
    work_plural: str = 'workorders'
    request_timeout: float = 30.0
    status_update_retries: int = 5
    typed_kinds: list[TypedBinding] = field(default_factory=lambda: list(DEFAULT_TYPED_KINDS))
    config_file: Optional[Path] = None

    def __post_init__(self):
        for attr in ('hub_kubeconfig', 'spoke_kubeconfig', 'config_file'):
            value = getattr(self, attr)
            if isinstance(value, str):
                setattr(self, attr, Path(value).expanduser())

    def typed_registry(self) -> TypedKindRegistry:
        return TypedKindRegistry(self.typed_kinds)

    @classmethod
    def from_dict(cls, data: dict, config_file: Optional[Path] = None) -> 'AgentConfig':
        """Create AgentConfig from parsed YAML.

        Raises:
            ConfigError: On unknown keys or malformed values
        """
        known = {
            'namespace', 'hub_kubeconfig', 'hub_context', 'spoke_kubeconfig',
            'spoke_context', 'finalizer', 'work_group', 'work_version',
            'work_plural', 'request_timeout', 'status_update_retries', 'typed_kinds',
        }
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        kwargs = {k: v for k, v in data.items() if k != 'typed_kinds' and v is not None}
        try:
            if 'request_timeout' in kwargs:
                kwargs['request_timeout'] = float(kwargs['request_timeout'])
            if 'status_update_retries' in kwargs:
                kwargs['status_update_retries'] = int(kwargs['status_update_retries'])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        if 'typed_kinds' in data:
            entries = data['typed_kinds'] or []
            if not isinstance(entries, list):
                raise ConfigError("typed_kinds must be a list")
            try:
                kwargs['typed_kinds'] = [TypedBinding.from_dict(e) for e in entries]
            except (KeyError, TypeError, AttributeError) as e:
                raise ConfigError(f"Invalid typed_kinds entry: {e}") from e

        return cls(config_file=config_file, **kwargs)


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def get_config_path(explicit: Optional[str] = None) -> Optional[Path]:
    """Discover the config file, or None to use defaults."""
    if explicit:
        path = Path(explicit).expanduser()
        if not path.exists():
            raise ConfigError(f"Config file {path} does not exist")
        return path

    if env_path := os.environ.get('WORK_AGENT_CONFIG'):
        path = Path(env_path).expanduser()
        if path.exists():
            return path
        raise ConfigError(f"WORK_AGENT_CONFIG={env_path} does not exist")

    if DEFAULT_CONFIG_PATH.exists():
        return DEFAULT_CONFIG_PATH

    return None


def load_agent_config(explicit: Optional[str] = None) -> AgentConfig:
    """Load agent configuration using the resolution order above."""
    path = get_config_path(explicit)
    if path is None:
        return AgentConfig()
    return AgentConfig.from_dict(_parse_yaml(path), config_file=path)
