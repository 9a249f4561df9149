"""
Tests for snapshot summary metrics and metric comparison.
"""

from datetime import datetime, timezone
from decimal import Decimal

from app.services.snapshot import compare_metrics, summarize_rows

NOW = datetime(2024, 3, 13, 9, 0, tzinfo=timezone.utc)


def test_summary_of_empty_result():
    """Test an empty result only carries row count and timestamp."""
    assert summarize_rows([], NOW) == {"row_count": 0, "timestamp": NOW.isoformat()}


def test_summary_covers_numeric_columns():
    """Test sum/avg/min/max are computed for numeric first-row columns."""
    rows = [
        {"class_name": "7A", "total": Decimal("100.50"), "students": 20},
        {"class_name": "7B", "total": Decimal("50.50"), "students": 10},
        {"class_name": "7C", "total": None, "students": 30},
    ]

    metrics = summarize_rows(rows, NOW)

    assert metrics["row_count"] == 3
    assert "class_name" not in metrics
    assert metrics["total"] == {"sum": 151.0, "avg": 75.5, "min": 50.5, "max": 100.5}
    assert metrics["students"] == {"sum": 60.0, "avg": 20.0, "min": 10.0, "max": 30.0}


def test_summary_ignores_booleans_and_non_numeric_first_rows():
    """Test booleans are not metrics and the first row decides the column type."""
    rows = [
        {"paid": True, "amount": None},
        {"paid": False, "amount": 12},
    ]

    metrics = summarize_rows(rows, NOW)

    assert "paid" not in metrics
    assert "amount" not in metrics


def test_compare_metrics_on_sums_and_counts():
    """Test absolute and percentage change for shared metrics."""
    current = {"row_count": 12, "timestamp": "t2", "total": {"sum": 150.0, "avg": 1, "min": 1, "max": 1}}
    previous = {"row_count": 10, "timestamp": "t1", "total": {"sum": 100.0, "avg": 1, "min": 1, "max": 1}}

    change = compare_metrics(current, previous)

    assert change == {
        "row_count": {"absolute": 2.0, "percentage": 20.0},
        "total": {"absolute": 50.0, "percentage": 50.0},
    }


def test_compare_metrics_zero_baseline():
    """Test a zero previous value reports 0 percent instead of dividing by zero."""
    change = compare_metrics({"row_count": 5}, {"row_count": 0})

    assert change == {"row_count": {"absolute": 5.0, "percentage": 0.0}}


def test_compare_metrics_skips_one_sided_keys():
    """Test metrics missing on either side are left out."""
    change = compare_metrics(
        {"row_count": 1, "fees": {"sum": 3.0}},
        {"row_count": 1, "grades": {"sum": 4.0}},
    )

    assert change == {"row_count": {"absolute": 0.0, "percentage": 0.0}}
