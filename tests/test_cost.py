from __future__ import annotations

import pytest

from webaccess.services.cost import (
    DEFAULT_COST_PER_CALL,
    estimate_cost_per_call,
    estimate_operation_detection_cost,
    format_cost,
)


def test_estimate_cost_matches_model_substring():
    # 2000 in @ $0.15/M + 100 out @ $0.60/M
    assert estimate_cost_per_call("openai/gpt-4o-mini") == pytest.approx(0.00036)


def test_more_specific_model_keys_win():
    assert estimate_cost_per_call("gpt-4o-mini") < estimate_cost_per_call("gpt-4o")
    assert estimate_cost_per_call("gpt-5-mini") < estimate_cost_per_call("gpt-5")


def test_unknown_model_uses_flat_estimate():
    assert estimate_cost_per_call("mystery-model-7b") == DEFAULT_COST_PER_CALL


def test_operation_detection_is_cheaper_than_agent_call():
    assert estimate_operation_detection_cost("gpt-4o") < estimate_cost_per_call("gpt-4o")


@pytest.mark.parametrize(
    ("cost", "expected"),
    [
        (0.00036, "$0.000360"),
        (0.0042, "$0.0042"),
        (0.125, "$0.125"),
        (0.0, "$0.000000"),
    ],
)
def test_format_cost_precision(cost, expected):
    assert format_cost(cost) == expected
