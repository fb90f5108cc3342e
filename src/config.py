"""Run configuration management.

Configuration is loaded from a stack file (YAML) plus environment overrides:
- stacks.yaml: environment name, region, template/parameter dirs, settings, stacks
- ENV_NAME / AWS_REGION environment variables
- CLI flags (highest priority, applied by the caller)

Resolution order for the stack file:
1. Explicit --config path
2. $STACK_DRIVER_CONFIG environment variable
3. ./stacks.yaml in the current working directory
4. stacks.yaml at the repo root

The resulting RunConfig is passed explicitly into the orchestrator and the
provider; nothing is read from process-wide state after load.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = 'landing-zone'
DEFAULT_REGION = 'us-east-1'
DEFAULT_CAPABILITIES = ('CAPABILITY_NAMED_IAM', 'CAPABILITY_AUTO_EXPAND')
CONFIG_FILENAME = 'stacks.yaml'


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class RunConfig:
    """Settings for one orchestrator invocation against one environment.

    Attributes:
        environment: Target environment name, also the stack name prefix
        region: Provider region
        templates_dir: Base directory for relative template references
        params_dir: Base directory for relative parameter references
        capabilities: Capabilities acknowledged on apply
        tags: Extra tags applied to every stack (on top of the managed ones)
        delete_timeout: Seconds to wait for a stack deletion to complete
        poll_interval: Initial seconds between deletion status polls
        max_poll_interval: Upper bound for the poll backoff
        command_timeout: Timeout for a single provider CLI call
        validate_before_apply: Validate templates before applying
        show_outputs: Describe stacks after apply to report their outputs
        aws_cli: AWS CLI executable
        source_path: Stack file the config was loaded from (None for defaults)
    """
    environment: str = DEFAULT_ENVIRONMENT
    region: str = DEFAULT_REGION
    templates_dir: Path = field(default_factory=lambda: get_base_dir() / 'templates')
    params_dir: Path = field(default_factory=lambda: get_base_dir() / 'parameters')
    capabilities: tuple[str, ...] = DEFAULT_CAPABILITIES
    tags: dict[str, str] = field(default_factory=dict)
    delete_timeout: float = 1800.0
    poll_interval: float = 5.0
    max_poll_interval: float = 30.0
    command_timeout: int = 3600
    validate_before_apply: bool = True
    show_outputs: bool = True
    aws_cli: str = 'aws'
    source_path: Optional[Path] = None

    def __post_init__(self):
        if isinstance(self.templates_dir, str):
            self.templates_dir = Path(self.templates_dir)
        if isinstance(self.params_dir, str):
            self.params_dir = Path(self.params_dir)
        if not self.environment:
            raise ConfigError("Environment name must not be empty")
        if not self.region:
            raise ConfigError("Region must not be empty")
        for attr in ('delete_timeout', 'poll_interval', 'max_poll_interval', 'command_timeout'):
            if getattr(self, attr) <= 0:
                raise ConfigError(f"{attr} must be positive, got {getattr(self, attr)}")


def get_base_dir() -> Path:
    """Get the stack-driver repo directory."""
    return Path(__file__).parent.parent  # src/ -> stack-driver/


def discover_config_file(explicit: Optional[str] = None) -> Optional[Path]:
    """Find the stack file to load.

    Returns:
        Path to the stack file, or None if no file is found (built-in defaults apply)

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise ConfigError(f"Stack file not found: {path}")
        return path

    if env_path := os.environ.get('STACK_DRIVER_CONFIG'):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"STACK_DRIVER_CONFIG={env_path} does not exist")

    cwd_file = Path.cwd() / CONFIG_FILENAME
    if cwd_file.exists():
        return cwd_file

    repo_file = get_base_dir() / CONFIG_FILENAME
    if repo_file.exists():
        return repo_file

    return None


def parse_yaml(path: Path) -> dict:
    """Parse a YAML file that must contain a mapping."""
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must be a YAML object (dict)")
    return data


def _resolve_dir(value: Optional[str], base: Path, default: Path) -> Path:
    """Resolve a directory setting relative to the stack file's directory."""
    if not value:
        return default
    path = Path(value)
    return path if path.is_absolute() else base / path


def _number(settings: dict, key: str, default: Any) -> Any:
    value = settings.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"Setting '{key}' must be a number, got {value!r}")
    return value


def _flag(settings: dict, key: str, default: bool) -> bool:
    value = settings.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"Setting '{key}' must be true or false, got {value!r}")
    return value


def load_run_config(
    config_file: Optional[Path] = None,
    environment: Optional[str] = None,
    region: Optional[str] = None,
    templates_dir: Optional[str] = None,
    params_dir: Optional[str] = None,
) -> RunConfig:
    """Build a RunConfig from the stack file, environment and overrides.

    Priority per field: explicit argument > environment variable > stack file > default.

    Args:
        config_file: Stack file path (None to use defaults only)
        environment: Environment name override (--env)
        region: Region override (--region)
        templates_dir: Template directory override
        params_dir: Parameter directory override

    Returns:
        RunConfig instance

    Raises:
        ConfigError: If the stack file or a setting is invalid
    """
    data: dict = {}
    base = Path.cwd()
    if config_file is not None:
        data = parse_yaml(config_file)
        base = config_file.parent

    settings = data.get('settings') or {}
    if not isinstance(settings, dict):
        raise ConfigError("'settings' must be a mapping")

    tags = settings.get('tags') or {}
    if not isinstance(tags, dict):
        raise ConfigError("'settings.tags' must be a mapping")

    capabilities = settings.get('capabilities', list(DEFAULT_CAPABILITIES))
    if not isinstance(capabilities, list) or not all(isinstance(c, str) for c in capabilities):
        raise ConfigError("'settings.capabilities' must be a list of strings")

    config = RunConfig(
        environment=(environment or os.environ.get('ENV_NAME')
                     or data.get('environment') or DEFAULT_ENVIRONMENT),
        region=(region or os.environ.get('AWS_REGION')
                or data.get('region') or DEFAULT_REGION),
        templates_dir=Path(templates_dir) if templates_dir else _resolve_dir(
            data.get('templates_dir'), base, get_base_dir() / 'templates'),
        params_dir=Path(params_dir) if params_dir else _resolve_dir(
            data.get('parameters_dir'), base, get_base_dir() / 'parameters'),
        capabilities=tuple(capabilities),
        tags={str(k): str(v) for k, v in tags.items()},
        delete_timeout=_number(settings, 'delete_timeout', 1800.0),
        poll_interval=_number(settings, 'poll_interval', 5.0),
        max_poll_interval=_number(settings, 'max_poll_interval', 30.0),
        command_timeout=int(_number(settings, 'command_timeout', 3600)),
        validate_before_apply=_flag(settings, 'validate_before_apply', True),
        show_outputs=_flag(settings, 'show_outputs', True),
        aws_cli=str(settings.get('aws_cli', 'aws')),
        source_path=config_file,
    )
    logger.debug(f"Loaded run config: env={config.environment} region={config.region} "
                 f"source={config_file or 'defaults'}")
    return config
