"""
ConfigLoader: loads and validates a subject's evaluator configurations.

The whole configuration set is checked before any evaluator runs:
- evaluator keys are unique within the subject
- every depends_on names a sibling config
- no config depends on itself, directly or through a cycle
- a sync config never depends on an async one (async units always run
  after the sync pass, so the gate could never open)
- every enabled config builds into an evaluator (known key, valid params)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from app.evaluation.protocols import ConfigRepository
from prompt_tracker_core.domain.exceptions import ConfigurationError, MissingDependencyError
from prompt_tracker_core.domain.models import EvaluatorConfig, Subject
from prompt_tracker_core.evals.base import BaseEvaluator
from prompt_tracker_core.evals.registry import EvaluatorRegistry


@dataclass
class ConfigSet:
    """Validated, ordered configs for one subject plus their built evaluators."""

    subject: Subject
    configs: list[EvaluatorConfig]
    evaluators: dict[str, BaseEvaluator] = field(default_factory=dict)

    @property
    def sync_configs(self) -> list[EvaluatorConfig]:
        return [c for c in self.configs if not c.is_async]

    @property
    def async_configs(self) -> list[EvaluatorConfig]:
        return [c for c in self.configs if c.is_async]

    def evaluator_for(self, config: EvaluatorConfig) -> BaseEvaluator:
        return self.evaluators[config.id]

    def weights(self) -> dict[str, float]:
        return {c.id: c.weight for c in self.configs}


def validate_dependencies(configs: list[EvaluatorConfig]) -> None:
    """
    Check the dependency graph of a subject's configs.

    Args:
        configs: Every config owned by the subject, enabled or not.

    Raises:
        ConfigurationError: Duplicate key, self-dependency, cycle, or sync-on-async.
        MissingDependencyError: depends_on names no sibling config.
    """
    by_key: dict[str, EvaluatorConfig] = {}
    for config in configs:
        if config.evaluator_key in by_key:
            raise ConfigurationError(
                f"Duplicate evaluator_key '{config.evaluator_key}' for "
                f"{config.subject_kind.value} {config.subject_id}"
            )
        by_key[config.evaluator_key] = config

    for config in configs:
        if not config.has_dependency:
            continue
        if config.depends_on == config.evaluator_key:
            raise ConfigurationError(f"Evaluator '{config.evaluator_key}' depends on itself")
        dependency = by_key.get(config.depends_on)
        if dependency is None:
            raise MissingDependencyError(
                f"Evaluator '{config.evaluator_key}' depends on '{config.depends_on}', "
                f"which is not configured for {config.subject_kind.value} {config.subject_id}"
            )
        if not config.is_async and dependency.is_async:
            raise ConfigurationError(
                f"Sync evaluator '{config.evaluator_key}' cannot depend on "
                f"async evaluator '{config.depends_on}'"
            )

    for config in configs:
        seen = {config.evaluator_key}
        current = config
        while current.has_dependency:
            current = by_key[current.depends_on]
            if current.evaluator_key in seen:
                raise ConfigurationError(
                    f"Dependency cycle involving '{config.evaluator_key}': "
                    f"{' -> '.join(sorted(seen))}"
                )
            seen.add(current.evaluator_key)


class ConfigLoader:
    """
    Loads a subject's configs, validates them and builds evaluators once.

    Usage:
        loader = ConfigLoader(config_repo, EvaluatorRegistry(judge_client))
        config_set = loader.load(Subject.prompt("prompt-1"))
    """

    def __init__(self, repository: ConfigRepository, registry: EvaluatorRegistry):
        self.repository = repository
        self.registry = registry

    def load(self, subject: Subject) -> ConfigSet:
        """
        Load the enabled configs for a subject in execution order.

        Raises:
            ConfigurationError: If the set is invalid or an evaluator cannot be built.
        """
        all_configs = self.repository.list_for_subject(subject)
        validate_dependencies(all_configs)

        enabled = sorted((c for c in all_configs if c.enabled), key=EvaluatorConfig.sort_key)
        config_set = ConfigSet(subject=subject, configs=enabled)
        for config in enabled:
            config_set.evaluators[config.id] = self.build(config)

        logger.debug(
            f"Loaded {len(enabled)}/{len(all_configs)} enabled evaluator configs for "
            f"{subject.kind.value} {subject.id}"
        )
        return config_set

    def build(self, config: EvaluatorConfig) -> BaseEvaluator:
        """Build the evaluator for a single config."""
        return self.registry.build(config.evaluator_key, config.config)
