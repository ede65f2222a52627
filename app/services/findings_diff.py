"""Reconcile findings across two scans (e.g. two branches) by fingerprint: common, only-in-A, only-in-B."""

from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar

from app.schemas.findings import SeverityLevel

# Sort rank per severity (lower = more severe); unrecognized severities sort last.
_SEVERITY_RANK: dict[SeverityLevel, int] = {
    "critical": 0,
    "high": 1,
    "medium": 2,
    "low": 3,
    "info": 4,
}
UNKNOWN_SEVERITY_RANK = 99

FINGERPRINT_SEPARATOR = "|"


class FindingLike(Protocol):
    """Anything with the attributes the fingerprint is built from (ORM row or schema)."""

    title: str
    category: str
    severity: str
    cwe: str | None


F = TypeVar("F", bound=FindingLike)


@dataclass
class FindingComparison(Generic[F]):
    common_findings: list[F] = field(default_factory=list)
    only_in_scan_a: list[F] = field(default_factory=list)
    only_in_scan_b: list[F] = field(default_factory=list)


@dataclass
class CategorizedDifferences(Generic[F]):
    """Comparison relabelled assuming scan B is the later one."""

    security_regressions: list[F]
    security_improvements: list[F]
    baseline: list[F]


@dataclass
class SecurityDelta:
    """count(only in A) - count(only in B); positive means B fixed more than it introduced."""

    total_delta: int
    critical_delta: int
    high_delta: int
    medium_delta: int
    low_delta: int
    info_delta: int


def _clean(value: str | None) -> str:
    return (value or "").strip().lower()


def finding_fingerprint(finding: FindingLike) -> str:
    """
    Identity used to match the same vulnerability across scans:
    title|category|severity[|cwe], each lowercased and trimmed.
    """
    parts = [_clean(finding.title), _clean(finding.category), _clean(finding.severity)]
    cwe = _clean(finding.cwe)
    if cwe:
        parts.append(cwe)
    return FINGERPRINT_SEPARATOR.join(parts)


def severity_rank(severity: str | None) -> int:
    return _SEVERITY_RANK.get(_clean(severity), UNKNOWN_SEVERITY_RANK)  # type: ignore[arg-type]


def _index_by_fingerprint(findings: list[F]) -> dict[str, F]:
    # Last occurrence of a fingerprint wins within one scan.
    indexed: dict[str, F] = {}
    for finding in findings:
        indexed[finding_fingerprint(finding)] = finding
    return indexed


def _sorted(entries: list[tuple[str, F]]) -> list[F]:
    # Fingerprint as secondary key makes the order independent of input order.
    entries.sort(key=lambda item: (severity_rank(item[1].severity), item[0]))
    return [finding for _, finding in entries]


def findings_diff(findings_a: list[F], findings_b: list[F]) -> FindingComparison[F]:
    """
    Partition two finding sets by fingerprint.

    Duplicates within one scan collapse to the last instance. Common findings are returned
    as scan A's instances. Each list is sorted by severity
    (critical first, unknown severities last), then by fingerprint.
    """
    by_fp_a = _index_by_fingerprint(findings_a)
    by_fp_b = _index_by_fingerprint(findings_b)

    common: list[tuple[str, F]] = []
    only_a: list[tuple[str, F]] = []
    for fingerprint, finding in by_fp_a.items():
        if fingerprint in by_fp_b:
            common.append((fingerprint, finding))
        else:
            only_a.append((fingerprint, finding))
    only_b = [(fp, finding) for fp, finding in by_fp_b.items() if fp not in by_fp_a]

    return FindingComparison(
        common_findings=_sorted(common),
        only_in_scan_a=_sorted(only_a),
        only_in_scan_b=_sorted(only_b),
    )


def categorize_differences(comparison: FindingComparison[F]) -> CategorizedDifferences[F]:
    return CategorizedDifferences(
        security_regressions=comparison.only_in_scan_b,
        security_improvements=comparison.only_in_scan_a,
        baseline=comparison.common_findings,
    )


def _count_severity(findings: list[F], severity: str) -> int:
    return sum(1 for f in findings if _clean(f.severity) == severity)


def calculate_security_delta(comparison: FindingComparison[F]) -> SecurityDelta:
    only_a = comparison.only_in_scan_a
    only_b = comparison.only_in_scan_b

    def delta(severity: str) -> int:
        return _count_severity(only_a, severity) - _count_severity(only_b, severity)

    return SecurityDelta(
        total_delta=len(only_a) - len(only_b),
        critical_delta=delta("critical"),
        high_delta=delta("high"),
        medium_delta=delta("medium"),
        low_delta=delta("low"),
        info_delta=delta("info"),
    )
