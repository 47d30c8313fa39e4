"""
Monitoring manifest for declarative engine configuration.

Teams describe their bindings, schedules, severity rules and alert rules in a
YAML file and apply it to an engine at startup. Metric definitions are code
and must be registered before the manifest is applied.

Usage:
    from qualitykit import MonitoringEngine, load_manifest

    engine = MonitoringEngine(source)
    manifest = load_manifest("./monitoring.yml")
    manifest.apply_to(engine)

Example manifest (monitoring.yml):
    version: "1.0"

    severity_rules:
      - {pattern: INVALID, match_type: CONTAINS, operator: ">", threshold: 0, severity: CRITICAL}
      - {pattern: FRAUD_FLAG_RATE, operator: ">", threshold: 25, severity: WARNING}

    descriptions:
      FRAUD_FLAG_RATE: Percentage of claims flagged for fraud

    schedules:
      insurance.raw.claims: "60 MINUTE"
      insurance.curated.claims: "USING CRON 0 * * * * UTC"
      insurance.curated.policies: TRIGGER_ON_CHANGES

    bindings:
      - entity: insurance.raw.claims
        metric: DUPLICATE_COUNT
        columns: [claim_id]
      - entity: insurance.curated.claims
        metric: ORPHAN_CLAIMS
        columns: [policy_id]
        second_entity: insurance.curated.policies
        second_columns: [policy_id]

    alert_rules:
      - name: duplicate_claims_alert
        metric: DUPLICATE_COUNT
        entity: insurance.raw.claims
        operator: ">"
        threshold: 0
        schedule: "60 MINUTE"
        state: ACTIVE
        notify:
          channel: TICKET
          recipient: DQ
          priority: High
          labels: [data-quality, duplicates]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, model_validator

from qualitykit.models import (
    AlertRule,
    NotificationTemplate,
    SeverityRule,
    ThresholdPredicate,
    parse_schedule,
)
from qualitykit.severity import SeverityClassifier

if TYPE_CHECKING:
    from qualitykit.engine import MonitoringEngine

logger = logging.getLogger(__name__)


class ManifestBinding(BaseModel):
    """Binding definition in manifest format."""

    entity: str = Field(..., min_length=1)
    metric: str = Field(..., min_length=1)
    columns: List[str] = Field(default_factory=list)
    second_entity: Optional[str] = None
    second_columns: Optional[List[str]] = None


class ManifestAlertRule(BaseModel):
    """Alert rule definition in manifest format."""

    name: str = Field(..., min_length=1)
    metric: str = Field(..., min_length=1)
    entity: str = Field(..., min_length=1)
    operator: str = ">"
    threshold: float = 0
    window_minutes: Optional[int] = Field(None, ge=1)
    schedule: str = "60 MINUTE"
    state: str = "SUSPENDED"
    trigger_mode: Optional[str] = None
    notify: Dict[str, Any] = Field(default_factory=dict)
    comment: Optional[str] = None

    def to_alert_rule(self, default_window_minutes: int, default_trigger_mode: Any) -> AlertRule:
        """Convert to the internal AlertRule model."""
        return AlertRule(
            name=self.name,
            metric_name=self.metric,
            entity=self.entity,
            predicate=ThresholdPredicate(operator=self.operator, threshold=self.threshold),
            window_minutes=self.window_minutes or default_window_minutes,
            schedule=self.schedule,
            state=self.state,
            trigger_mode=self.trigger_mode or default_trigger_mode,
            template=NotificationTemplate(**self.notify),
            comment=self.comment,
        )


class MonitoringManifest(BaseModel):
    """
    Declarative monitoring configuration.

    Attributes:
        version: Manifest schema version (currently "1.0")
        severity_rules: Rules taking precedence over the engine's current rules
        descriptions: Metric name to description mapping
        schedules: Entity to schedule text
        bindings: Metric bindings
        alert_rules: Alert rules
    """

    version: str = Field(default="1.0", pattern=r"^\d+\.\d+$")
    severity_rules: List[SeverityRule] = Field(default_factory=list)
    descriptions: Dict[str, str] = Field(default_factory=dict)
    schedules: Dict[str, str] = Field(default_factory=dict)
    bindings: List[ManifestBinding] = Field(default_factory=list)
    alert_rules: List[ManifestAlertRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_manifest(self) -> "MonitoringManifest":
        """Reject duplicate alert rule names and malformed schedules before anything is applied."""
        names = [r.name for r in self.alert_rules]
        if len(names) != len(set(names)):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate alert rule names: {duplicates}")
        for entity, schedule in self.schedules.items():
            try:
                parse_schedule(schedule)
            except ValueError as e:
                raise ValueError(f"Invalid schedule for {entity}: {e}") from e
        return self

    def apply_to(self, engine: "MonitoringEngine") -> Dict[str, int]:
        """
        Apply the manifest to an engine.

        Every binding is shape-checked and every alert rule is built before the
        engine is touched, so a manifest that fails validation changes nothing.
        Bindings are then created first, then schedules, then alert rules.

        Returns:
            Counts of applied objects per section

        Raises:
            NotFoundError: If a binding references an undefined metric
            ShapeMismatchError: If a binding does not fit its metric
            DataUnavailableError: If a bound entity cannot be described
            pydantic.ValidationError: If an alert rule is invalid
        """
        config = engine.config
        alert_rules = [
            manifest_rule.to_alert_rule(config.default_alert_window_minutes, config.default_trigger_mode)
            for manifest_rule in self.alert_rules
        ]
        for binding in self.bindings:
            engine.bindings.validate(
                binding.entity,
                binding.columns,
                binding.metric,
                second_entity=binding.second_entity,
                second_columns=binding.second_columns,
            )

        if self.severity_rules or self.descriptions:
            current = engine.classifier
            engine.set_classifier(SeverityClassifier(
                rules=tuple(self.severity_rules) + current.rules,
                descriptions={**current.descriptions, **self.descriptions},
            ))

        for binding in self.bindings:
            engine.bindings.bind(
                binding.entity,
                binding.columns,
                binding.metric,
                second_entity=binding.second_entity,
                second_columns=binding.second_columns,
            )

        for entity, schedule in self.schedules.items():
            engine.scheduler.set_schedule(entity, schedule)

        for rule in alert_rules:
            engine.alerts.create_rule(rule)

        counts = {
            "severity_rules": len(self.severity_rules),
            "bindings": len(self.bindings),
            "schedules": len(self.schedules),
            "alert_rules": len(self.alert_rules),
        }
        logger.info(f"Applied monitoring manifest: {counts}")
        return counts


def load_manifest(path: Union[str, Path]) -> MonitoringManifest:
    """
    Load a monitoring manifest from a YAML file.

    Args:
        path: Path to the manifest file

    Returns:
        Validated MonitoringManifest

    Raises:
        FileNotFoundError: If the manifest file doesn't exist
        yaml.YAMLError: If YAML parsing fails
        pydantic.ValidationError: If the manifest structure is invalid
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Manifest file not found: {path}")

    if not path.is_file():
        raise ValueError(f"Manifest path is not a file: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    return MonitoringManifest.model_validate(data)
