"""Stack set loading for infrastructure orchestration.

A stack set is the ordered list of StackDescriptors for one environment.
Each descriptor names a template and a parameter file by reference; the
orchestrator never looks inside either. Declaration order is preserved and
used as the tie-break order when resolving dependencies.

Stacks are declared by logical role and named {environment}-{role}.
depends_on entries may use roles or full stack names.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from config import ConfigError, RunConfig, parse_yaml

logger = logging.getLogger(__name__)

# Built-in landing zone, in the order its stacks must be deployed
DEFAULT_STACKS: tuple[dict[str, Any], ...] = (
    {
        'role': 'vpc-networking',
        'template': 'vpc-networking.yaml',
        'parameters': 'vpc-networking.json',
    },
    {
        'role': 'iam-sso',
        'template': 'iam-sso.yaml',
        'parameters': 'iam-sso.json',
        'depends_on': ['vpc-networking'],
    },
    {
        'role': 'security-baseline',
        'template': 'security-baseline.yaml',
        'parameters': 'security-baseline.json',
        'depends_on': ['iam-sso'],
    },
)


@dataclass(frozen=True)
class StackDescriptor:
    """Immutable definition of one deployable stack.

    Attributes:
        name: Unique stack name within a run ({environment}-{role})
        template_ref: Locator for the resource template (opaque to the engine)
        params_ref: Locator for parameter overrides (opaque to the engine)
        depends_on: Names of stacks that must be deployed first
        role: Logical role the name was derived from
    """
    name: str
    template_ref: str
    params_ref: str
    depends_on: tuple[str, ...] = ()
    role: str = ''

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        d: dict[str, Any] = {
            'name': self.name,
            'template': self.template_ref,
            'parameters': self.params_ref,
        }
        if self.role:
            d['role'] = self.role
        if self.depends_on:
            d['depends_on'] = list(self.depends_on)
        return d


@dataclass
class StackSet:
    """Ordered collection of stack descriptors for one environment."""
    environment: str
    stacks: list[StackDescriptor] = field(default_factory=list)
    source_path: Optional[Path] = None

    @property
    def names(self) -> list[str]:
        return [s.name for s in self.stacks]

    def get(self, name: str) -> StackDescriptor:
        """Get a descriptor by stack name.

        Raises:
            KeyError: If no stack has that name
        """
        for stack in self.stacks:
            if stack.name == name:
                return stack
        raise KeyError(name)

    @classmethod
    def from_dict(cls, data: dict, config: RunConfig,
                  source_path: Optional[Path] = None) -> 'StackSet':
        """Create a StackSet from the 'stacks' section of a stack file.

        Args:
            data: Mapping with a 'stacks' list
            config: Run configuration (environment and base directories)
            source_path: Optional source path for error messages

        Raises:
            ConfigError: If a stack entry is malformed
        """
        entries = data.get('stacks')
        if not entries:
            raise ConfigError("Stack file must define at least one stack under 'stacks'")
        if not isinstance(entries, list):
            raise ConfigError("'stacks' must be a list")

        env = config.environment
        roles: dict[str, str] = {}
        parsed: list[tuple[str, str, dict]] = []

        for i, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ConfigError(f"Stack {i} must be a mapping")
            role = entry.get('role')
            name = entry.get('name') or (f"{env}-{role}" if role else None)
            if not name:
                raise ConfigError(f"Stack {i} requires 'role' or 'name'")
            for key in ('template', 'parameters'):
                if not entry.get(key):
                    raise ConfigError(f"Stack {i} ({name}) missing required field: {key}")
            depends_on = entry.get('depends_on') or []
            if not isinstance(depends_on, list):
                raise ConfigError(f"Stack {i} ({name}): 'depends_on' must be a list")
            if role:
                roles[role] = name
            parsed.append((name, role or '', entry))

        stacks = []
        for name, role, entry in parsed:
            stacks.append(StackDescriptor(
                name=name,
                template_ref=str(_resolve_ref(entry['template'], config.templates_dir)),
                params_ref=str(_resolve_ref(entry['parameters'], config.params_dir)),
                # Role references become stack names; anything else passes
                # through for the resolver to check
                depends_on=tuple(roles.get(str(d), str(d)) for d in entry.get('depends_on') or []),
                role=role,
            ))

        return cls(environment=env, stacks=stacks, source_path=source_path)


def _resolve_ref(value: str, base_dir: Path) -> Path:
    path = Path(value)
    return path if path.is_absolute() else base_dir / path


def default_stackset(config: RunConfig) -> StackSet:
    """Build the built-in landing zone stack set for config.environment."""
    return StackSet.from_dict({'stacks': [dict(s) for s in DEFAULT_STACKS]}, config)


def load_stackset(config: RunConfig) -> StackSet:
    """Load the stack set for a run.

    Uses config.source_path when set, otherwise the built-in default.

    Raises:
        ConfigError: If the stack file is invalid
    """
    if config.source_path is None:
        logger.debug("No stack file found, using built-in landing zone stacks")
        return default_stackset(config)

    data = parse_yaml(config.source_path)
    stackset = StackSet.from_dict(data, config, source_path=config.source_path)
    logger.debug(f"Loaded {len(stackset.stacks)} stacks from {config.source_path}")
    return stackset
