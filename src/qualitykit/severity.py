"""
Severity classification.

Severity is derived on read from an ordered list of rules; the first rule
whose pattern matches the metric name and whose threshold comparison holds
decides. NULL values and unmatched metrics are OK. The classifier holds no
mutable state, so one instance can be shared freely between threads.
"""

from typing import Dict, Iterable, Mapping, Optional, Tuple

from qualitykit.models import MatchType, MetricResult, Severity, SeverityRule

# Dashboard rules for the insurance claims quality checks, first match wins
DEFAULT_SEVERITY_RULES: Tuple[SeverityRule, ...] = (
    SeverityRule(pattern="INVALID", match_type=MatchType.CONTAINS, operator=">", threshold=0,
                 severity=Severity.CRITICAL),
    SeverityRule(pattern="ORPHAN", match_type=MatchType.CONTAINS, operator=">", threshold=0,
                 severity=Severity.CRITICAL),
    SeverityRule(pattern="MISSING_CRITICAL_FIELDS", match_type=MatchType.CONTAINS, operator=">",
                 threshold=0, severity=Severity.CRITICAL),
    SeverityRule(pattern="EXCEEDING", match_type=MatchType.CONTAINS, operator=">", threshold=0,
                 severity=Severity.CRITICAL),
    SeverityRule(pattern="DUPLICATE_COUNT", operator=">", threshold=0, severity=Severity.CRITICAL),
    SeverityRule(pattern="NULL_COUNT", operator=">", threshold=0, severity=Severity.WARNING),
    SeverityRule(pattern="RATE", match_type=MatchType.SUFFIX, operator=">", threshold=25,
                 severity=Severity.WARNING),
)

DEFAULT_DESCRIPTIONS: Dict[str, str] = {
    "CLAIMS_EXCEEDING_COVERAGE": "Claims exceed policy coverage limit",
    "FRAUD_FLAG_RATE": "Percentage of claims flagged for fraud",
    "INVALID_DATE_SEQUENCE": "Report date before incident date",
    "MISSING_CRITICAL_FIELDS": "Records with missing required fields",
    "SAME_DAY_CLAIMS": "Claims reported same day as incident",
    "HIGH_VALUE_CLAIMS": "Claims over 100,000 DKK",
    "INVALID_EMAIL_FORMAT": "Invalid email addresses",
    "HIGH_COVERAGE_UTILIZATION": "Claims using >80% of coverage",
    "ORPHAN_CLAIMS": "Claims referencing a policy that does not exist",
    "NULL_COUNT": "NULL values in column",
    "DUPLICATE_COUNT": "Duplicate values found",
}


class SeverityClassifier:
    """
    Maps metric results to OK / WARNING / CRITICAL.

    Args:
        rules: Ordered severity rules; defaults to DEFAULT_SEVERITY_RULES
        descriptions: Metric name to human-readable description
    """

    def __init__(
        self,
        rules: Optional[Iterable[SeverityRule]] = None,
        descriptions: Optional[Mapping[str, str]] = None
    ):
        self.rules: Tuple[SeverityRule, ...] = tuple(DEFAULT_SEVERITY_RULES if rules is None else rules)
        self.descriptions: Dict[str, str] = dict(DEFAULT_DESCRIPTIONS if descriptions is None else descriptions)

    def classify(self, result: MetricResult) -> Severity:
        """Severity of a stored result."""
        return self.classify_value(result.metric_name, result.value)

    def classify_value(self, metric_name: str, value: Optional[float]) -> Severity:
        rule = self.matching_rule(metric_name, value)
        return rule.severity if rule else Severity.OK

    def matching_rule(self, metric_name: str, value: Optional[float]) -> Optional[SeverityRule]:
        """The rule that decides the severity, if any."""
        if value is None:
            return None
        for rule in self.rules:
            if rule.matches_name(metric_name) and rule.operator.compare(value, rule.threshold):
                return rule
        return None

    def describe(self, metric_name: str) -> str:
        """Configured description of a metric, falling back to its name."""
        return self.descriptions.get(metric_name, metric_name)

    def with_rules(self, rules: Iterable[SeverityRule]) -> "SeverityClassifier":
        """A new classifier with ``rules`` taking precedence over the current ones."""
        return SeverityClassifier(tuple(rules) + self.rules, self.descriptions)
