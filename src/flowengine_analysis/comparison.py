"""Inter-rater agreement between two lists of responses."""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .response import output_of


def _norm(value: Any) -> str:
    return str(value).strip().lower()


class ComparisonModel:
    """Base class; subclasses implement `compare` over two equal-length lists of outputs."""

    name = "comparison"

    def compare(self, first: List[Any], second: List[Any]) -> Dict[str, Any]:
        raise NotImplementedError

    @staticmethod
    def compare_multiple(list1: Sequence[Any], list2: Sequence[Any], model: "ComparisonModel") -> Dict[str, Any]:
        """Pair items by position (truncating to the shorter list) and run *model*."""
        first = [output_of(item) for item in (list1 or [])]
        second = [output_of(item) for item in (list2 or [])]
        n = min(len(first), len(second))
        result = model.compare(first[:n], second[:n])
        result.setdefault("type", model.name)
        result.setdefault("items", n)
        return result


class CohensComparisonModel(ComparisonModel):
    """Cohen's kappa on presence/absence of one label per item."""

    name = "cohens_kappa"

    def __init__(self, label: str):
        self.label = _norm(label)

    def _present(self, value: Any) -> bool:
        if isinstance(value, dict):
            return bool(value.get(self.label))
        if isinstance(value, (list, tuple, set)):
            return self.label in {_norm(v) for v in value}
        tokens = [_norm(t) for t in str(value).split(",")]
        return self.label in tokens

    def compare(self, first: List[Any], second: List[Any]) -> Dict[str, Any]:
        a = [self._present(v) for v in first]
        b = [self._present(v) for v in second]
        n = len(a)
        if n == 0:
            return {"label": self.label, "kappa": None, "observed_agreement": None, "expected_agreement": None}
        observed = sum(1 for x, y in zip(a, b) if x == y) / n
        p_a = sum(a) / n
        p_b = sum(b) / n
        expected = p_a * p_b + (1 - p_a) * (1 - p_b)
        kappa = 1.0 if expected == 1 else (observed - expected) / (1 - expected)
        return {
            "label": self.label,
            "kappa": kappa,
            "observed_agreement": observed,
            "expected_agreement": expected,
        }


class KrippendorffsComparisonModel(ComparisonModel):
    """Krippendorff's alpha (nominal) for two coders.

    Items whose values fall outside `categories` (when given) are treated as
    missing and dropped from the coincidence matrix.
    """

    name = "krippendorffs_alpha"

    def __init__(self, categories: Optional[Iterable[Any]] = None):
        self.categories = [_norm(c) for c in (categories or [])]

    def compare(self, first: List[Any], second: List[Any]) -> Dict[str, Any]:
        allowed = set(self.categories)
        pairs = []
        for x, y in zip(first, second):
            cx, cy = _norm(x), _norm(y)
            if allowed and (cx not in allowed or cy not in allowed):
                continue
            pairs.append((cx, cy))

        coincidences: Counter = Counter()
        for cx, cy in pairs:
            coincidences[(cx, cy)] += 1
            coincidences[(cy, cx)] += 1
        totals: Counter = Counter()
        for (c, _k), count in coincidences.items():
            totals[c] += count
        n = sum(totals.values())

        alpha: Optional[float]
        if n < 2:
            alpha = None
        else:
            disagree_observed = sum(count for (c, k), count in coincidences.items() if c != k)
            disagree_expected = sum(totals[c] * totals[k] for c in totals for k in totals if c != k)
            if disagree_expected == 0:
                alpha = 1.0
            else:
                alpha = 1.0 - (n - 1) * disagree_observed / disagree_expected

        return {"categories": list(self.categories), "alpha": alpha, "pairable_items": len(pairs)}
