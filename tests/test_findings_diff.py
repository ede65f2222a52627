"""Unit tests for app.services.findings_diff: fingerprinting, partitioning, ordering and delta."""

import random
import unittest

from app.schemas.comparison import InlineFinding
from app.services.findings_diff import (
    UNKNOWN_SEVERITY_RANK,
    calculate_security_delta,
    categorize_differences,
    finding_fingerprint,
    findings_diff,
    severity_rank,
)


def f(title: str, severity: str = "high", category: str = "injection", cwe: str | None = None,
      description: str = "") -> InlineFinding:
    return InlineFinding(title=title, category=category, severity=severity, cwe=cwe,
                         description=description)


def titles(findings) -> list[str]:
    return [x.title for x in findings]


class TestFingerprint(unittest.TestCase):
    def test_normalized_fields(self) -> None:
        self.assertEqual(
            finding_fingerprint(f("  SQL Injection ", "HIGH", " Injection", " CWE-89 ")),
            "sql injection|injection|high|cwe-89",
        )

    def test_cwe_omitted_when_empty(self) -> None:
        self.assertEqual(finding_fingerprint(f("XSS", "medium", "web")), "xss|web|medium")
        self.assertEqual(finding_fingerprint(f("XSS", "medium", "web", "  ")), "xss|web|medium")

    def test_description_ignored(self) -> None:
        self.assertEqual(
            finding_fingerprint(f("XSS", description="one")),
            finding_fingerprint(f("XSS", description="two")),
        )

    def test_severity_rank(self) -> None:
        self.assertEqual(severity_rank("Critical"), 0)
        self.assertEqual(severity_rank("info"), 4)
        self.assertEqual(severity_rank("bogus"), UNKNOWN_SEVERITY_RANK)
        self.assertEqual(severity_rank(None), UNKNOWN_SEVERITY_RANK)


class TestFindingsDiff(unittest.TestCase):
    def test_partition(self) -> None:
        a = [f("A1"), f("Shared", "critical")]
        b = [f("shared ", "CRITICAL"), f("B1", "low")]
        result = findings_diff(a, b)
        self.assertEqual(titles(result.common_findings), ["Shared"])
        self.assertEqual(titles(result.only_in_scan_a), ["A1"])
        self.assertEqual(titles(result.only_in_scan_b), ["B1"])

    def test_common_uses_scan_a_instance(self) -> None:
        a_item = f("Shared", description="from A")
        result = findings_diff([a_item], [f("Shared", description="from B")])
        self.assertIs(result.common_findings[0], a_item)

    def test_same_title_different_cwe_is_distinct(self) -> None:
        result = findings_diff([f("Weak hash", cwe="CWE-327")], [f("Weak hash", cwe="CWE-328")])
        self.assertEqual(len(result.common_findings), 0)
        self.assertEqual(len(result.only_in_scan_a), 1)
        self.assertEqual(len(result.only_in_scan_b), 1)

    def test_empty_inputs(self) -> None:
        result = findings_diff([], [])
        self.assertEqual(
            (result.common_findings, result.only_in_scan_a, result.only_in_scan_b), ([], [], [])
        )
        only_b = findings_diff([], [f("X")])
        self.assertEqual(titles(only_b.only_in_scan_b), ["X"])

    def test_duplicates_within_scan_collapse_to_last(self) -> None:
        last = f("DUP", description="second")
        result = findings_diff([f("Dup", description="first"), last], [])
        self.assertEqual(len(result.only_in_scan_a), 1)
        self.assertIs(result.only_in_scan_a[0], last)

    def test_common_finding_is_last_duplicate_of_scan_a(self) -> None:
        last = f("Dup", description="a2")
        result = findings_diff([f("Dup", description="a1"), last], [f("Dup", description="b")])
        self.assertEqual(len(result.common_findings), 1)
        self.assertIs(result.common_findings[0], last)

    def test_sorted_by_severity_then_fingerprint(self) -> None:
        a = [
            f("b-low", "low"),
            f("z-critical", "critical"),
            f("weird", "unknown-sev"),
            f("a-critical", "critical"),
            f("m-info", "info"),
            f("c-high", "high"),
        ]
        result = findings_diff(a, [])
        self.assertEqual(
            titles(result.only_in_scan_a),
            ["a-critical", "z-critical", "c-high", "b-low", "m-info", "weird"],
        )

    def test_order_independent_of_input_order(self) -> None:
        a = [f(f"finding {i}", sev) for i, sev in enumerate(["high", "low", "medium"] * 4)]
        b = [f(f"finding {i}", sev) for i, sev in enumerate(["high", "low", "medium"] * 2)]
        expected = findings_diff(a, b)
        rng = random.Random(7)
        for _ in range(5):
            shuffled_a, shuffled_b = a[:], b[:]
            rng.shuffle(shuffled_a)
            rng.shuffle(shuffled_b)
            got = findings_diff(shuffled_a, shuffled_b)
            self.assertEqual(titles(got.common_findings), titles(expected.common_findings))
            self.assertEqual(titles(got.only_in_scan_a), titles(expected.only_in_scan_a))
            self.assertEqual(titles(got.only_in_scan_b), titles(expected.only_in_scan_b))

    def test_lists_are_disjoint_and_cover_inputs(self) -> None:
        a = [f("one"), f("two"), f("three")]
        b = [f("two"), f("four")]
        result = findings_diff(a, b)
        fp = finding_fingerprint
        common = {fp(x) for x in result.common_findings}
        only_a = {fp(x) for x in result.only_in_scan_a}
        only_b = {fp(x) for x in result.only_in_scan_b}
        self.assertFalse(common & only_a or common & only_b or only_a & only_b)
        self.assertEqual(common | only_a, {fp(x) for x in a})
        self.assertEqual(common | only_b, {fp(x) for x in b})

    def test_swapping_scans_swaps_sides(self) -> None:
        a = [f("one"), f("two")]
        b = [f("two"), f("three")]
        forward = findings_diff(a, b)
        backward = findings_diff(b, a)
        self.assertEqual(titles(forward.only_in_scan_a), titles(backward.only_in_scan_b))
        self.assertEqual(titles(forward.only_in_scan_b), titles(backward.only_in_scan_a))


class TestCategorizeAndDelta(unittest.TestCase):
    def setUp(self) -> None:
        a = [f("fixed-crit", "critical"), f("fixed-high", "high"), f("same", "medium")]
        b = [f("same", "medium"), f("new-low", "low")]
        self.comparison = findings_diff(a, b)

    def test_categorize(self) -> None:
        categorized = categorize_differences(self.comparison)
        self.assertEqual(titles(categorized.security_regressions), ["new-low"])
        self.assertEqual(titles(categorized.security_improvements), ["fixed-crit", "fixed-high"])
        self.assertEqual(titles(categorized.baseline), ["same"])

    def test_delta(self) -> None:
        delta = calculate_security_delta(self.comparison)
        self.assertEqual(delta.total_delta, 1)
        self.assertEqual(delta.critical_delta, 1)
        self.assertEqual(delta.high_delta, 1)
        self.assertEqual(delta.medium_delta, 0)
        self.assertEqual(delta.low_delta, -1)
        self.assertEqual(delta.info_delta, 0)

    def test_delta_counts_mixed_case_severity(self) -> None:
        delta = calculate_security_delta(findings_diff([], [f("x", "HIGH")]))
        self.assertEqual(delta.high_delta, -1)
        self.assertEqual(delta.total_delta, -1)
