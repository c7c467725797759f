"""Label space generation for synthetic workloads."""
from typing import Dict, List, Iterator
import hashlib

from batchmetrics.config import CardinalityProfile, LabelValueSpec
from batchmetrics.labels import LabelSet, validate_label_names


def generate_label_values(spec: LabelValueSpec) -> List[str]:
    """Generate list of label values from specification."""
    if spec.values is not None:
        return spec.values

    if spec.range is not None:
        start, end = spec.range
        fmt = spec.fmt or "{}"
        # Support both % formatting and {} formatting
        if '%' in fmt:
            return [fmt % i for i in range(start, end + 1)]
        else:
            return [fmt.format(i) for i in range(start, end + 1)]

    return []


def generate_label_space(profile: CardinalityProfile) -> List[LabelSet]:
    """
    Generate the Cartesian product of all label values in a profile.

    Args:
        profile: Cardinality profile with label specifications

    Returns:
        List of label sets, capped by the profile's series cap
    """
    if not profile.labels:
        return [LabelSet()]

    label_names = list(profile.labels.keys())
    if not validate_label_names(dict.fromkeys(label_names, "")):
        raise ValueError(f"Invalid label names in profile: {label_names}")

    label_value_lists = [
        generate_label_values(profile.labels[name])
        for name in label_names
    ]

    def cartesian_product(lists: List[List[str]]) -> Iterator[List[str]]:
        if not lists:
            yield []
            return

        for item in lists[0]:
            for rest in cartesian_product(lists[1:]):
                yield [item] + rest

    label_combinations = [
        dict(zip(label_names, value_combo))
        for value_combo in cartesian_product(label_value_lists)
    ]

    if profile.series_cap and len(label_combinations) > profile.series_cap:
        label_combinations = apply_series_cap(
            label_combinations,
            profile.series_cap,
            profile.sampling_strategy
        )

    return [LabelSet(labels) for labels in label_combinations]


def apply_series_cap(
    label_combinations: List[Dict[str, str]],
    cap: int,
    strategy: str
) -> List[Dict[str, str]]:
    """
    Apply series cap using specified sampling strategy.

    Args:
        label_combinations: Full list of label combinations
        cap: Maximum number of series
        strategy: Sampling strategy ("first_n" or "hash")

    Returns:
        Sampled list of label combinations
    """
    if strategy == "hash":
        # Deterministic selection independent of declaration order
        def label_hash(labels: Dict[str, str]) -> int:
            label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
            return int(hashlib.md5(label_str.encode()).hexdigest(), 16)

        return sorted(label_combinations, key=label_hash)[:cap]

    return label_combinations[:cap]
