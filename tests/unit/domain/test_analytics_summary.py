from feature_rollout.domain.analytics import DailyCount, summarize


def test_summary_sums_counts_per_type_and_day():
    rows = [
        DailyCount(date="2024-06-02", event_type="enabled", count=3),
        DailyCount(date="2024-06-02", event_type="used", count=5),
        DailyCount(date="2024-06-01", event_type="enabled", count=2),
        DailyCount(date="2024-06-01", event_type="disabled", count=4),
    ]
    summary = summarize(rows, total_users=6)
    assert summary.total_users == 6
    assert summary.enabled_count == 5
    assert summary.disabled_count == 4
    assert summary.usage_count == 5
    assert summary.daily_breakdown["2024-06-01"] == {"enabled": 2, "disabled": 4, "used": 0}
    assert summary.daily_breakdown["2024-06-02"] == {"enabled": 3, "disabled": 0, "used": 5}


def test_empty_summary():
    data = summarize([], total_users=0).to_dict()
    assert data == {
        "total_users": 0,
        "enabled_count": 0,
        "disabled_count": 0,
        "usage_count": 0,
        "daily_breakdown": {},
    }
