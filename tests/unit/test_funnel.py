import pytest

from funnel_analytics.services.reporting import funnel_frame


def by_segment(segments):
    return {s.segment: s for s in segments}


def test_illustrative_dataset_rates(illustrative_service):
    """Known rates for the 10 android / 10 ios sample"""
    segments = by_segment(illustrative_service.get_funnel())

    assert set(segments) == {"android", "ios"}

    android, ios = segments["android"], segments["ios"]
    assert android.users_at_stage == [10, 4, 2, 1]
    assert ios.users_at_stage == [10, 3, 2, 2]

    assert [s.conversion_rate for s in android.steps] == pytest.approx([40.00, 50.00, 50.00], abs=0.01)
    assert [s.conversion_rate for s in ios.steps] == pytest.approx([30.00, 66.67, 100.00], abs=0.01)

    # Every step is an immediate adjacency in the sample, so the strict
    # variant agrees with the ever-reached rates
    assert [s.strict_conversion_rate for s in android.steps] == pytest.approx([40.00, 50.00, 50.00], abs=0.01)
    assert [s.strict_conversion_rate for s in ios.steps] == pytest.approx([30.00, 66.67, 100.00], abs=0.01)


def test_illustrative_dataset_average_times(illustrative_service):
    segments = by_segment(illustrative_service.get_funnel())

    for segment in segments.values():
        assert [s.avg_time_seconds for s in segment.steps] == [60.0, 120.0, 300.0]


def test_funnel_is_idempotent(illustrative_service):
    first = [s.model_dump() for s in illustrative_service.get_funnel()]
    second = [s.model_dump() for s in illustrative_service.get_funnel()]
    assert first == second


def test_single_event_user_has_no_transition(make_service):
    service = make_service([
        (1, "app_install", "2023-01-02 10:00:00", "ios"),
    ])
    [segment] = service.get_funnel()

    assert segment.users_at_stage == [1, 0, 0, 0]
    assert [s.transition_users for s in segment.steps] == [0, 0, 0]
    assert segment.steps[0].avg_time_seconds is None
    # Zero denominators are reported as None, never 0
    assert segment.steps[1].conversion_rate is None
    assert segment.steps[1].strict_conversion_rate is None


def test_skipped_milestone_counts_as_reached_but_not_transitioned(make_service):
    service = make_service([
        (1, "app_install", "2023-01-02 10:00:00", "android"),
        (1, "view_item", "2023-01-02 10:01:00", "android"),
        (1, "purchase", "2023-01-02 10:05:00", "android"),
    ])
    [segment] = service.get_funnel()

    assert segment.users_at_stage == [1, 1, 0, 1]
    assert [s.transition_users for s in segment.steps] == [1, 0, 0]
    assert segment.steps[2].conversion_rate is None
    assert segment.steps[2].avg_time_seconds is None


def test_intervening_event_breaks_adjacency(make_service):
    service = make_service([
        (1, "app_install", "2023-01-02 10:00:00", "ios"),
        (1, "session_start", "2023-01-02 10:00:30", "ios"),
        (1, "view_item", "2023-01-02 10:01:00", "ios"),
    ])
    [segment] = service.get_funnel(["app_install", "view_item"])

    assert segment.users_at_stage == [1, 1]
    assert segment.steps[0].conversion_rate == 100.0
    assert segment.steps[0].transition_users == 0
    assert segment.steps[0].strict_conversion_rate == 0.0


def test_repeated_milestones_count_once_and_use_first_adjacency(make_service):
    service = make_service([
        (1, "app_install", "2023-01-02 10:00:00", "ios"),
        (1, "view_item", "2023-01-02 10:00:10", "ios"),
        (1, "app_install", "2023-01-02 11:00:00", "ios"),
        (1, "view_item", "2023-01-02 11:00:50", "ios"),
        (2, "app_install", "2023-01-02 10:00:00", "ios"),
        (2, "view_item", "2023-01-02 10:00:30", "ios"),
    ])
    [segment] = service.get_funnel(["app_install", "view_item"])

    assert segment.users_at_stage == [2, 2]
    assert segment.steps[0].transition_users == 2
    # user 1 contributes 10s (first adjacency), user 2 contributes 30s
    assert segment.steps[0].avg_time_seconds == 20.0


def test_equal_timestamps_follow_insertion_order(make_service):
    service = make_service([
        (1, "app_install", "2023-01-02 10:00:00", "ios"),
        (1, "view_item", "2023-01-02 10:00:00", "ios"),
    ])
    [segment] = service.get_funnel(["app_install", "view_item"])

    assert segment.steps[0].transition_users == 1
    assert segment.steps[0].avg_time_seconds == 0.0


def test_segment_without_milestones_is_reported(make_service):
    service = make_service([
        (1, "app_install", "2023-01-02 10:00:00", "ios"),
        (2, "session_start", "2023-01-02 10:00:00", "web"),
    ])
    segments = by_segment(service.get_funnel())

    assert set(segments) == {"ios", "web"}
    assert segments["web"].total_users == 1
    assert segments["web"].users_at_stage == [0, 0, 0, 0]
    assert all(s.conversion_rate is None for s in segments["web"].steps)


def test_missing_platform_is_its_own_segment(make_service):
    service = make_service([
        (1, "app_install", "2023-01-02 10:00:00", None),
        (1, "view_item", "2023-01-02 10:01:00", None),
        (2, "app_install", "2023-01-02 10:00:00", "ios"),
    ])
    segments = service.get_funnel()

    # Null segment sorts last
    assert [s.segment for s in segments] == ["ios", None]
    assert segments[1].users_at_stage == [1, 1, 0, 0]


def test_segment_comes_from_first_install(make_service):
    service = make_service([
        (1, "session_start", "2023-01-01 09:00:00", "web"),
        (1, "app_install", "2023-01-02 10:00:00", "ios"),
        (1, "view_item", "2023-01-02 10:01:00", "android"),
    ])

    assert service.get_segment_conflicts() == [1]
    [segment] = service.get_funnel()
    assert segment.segment == "ios"
    assert segment.users_at_stage == [1, 1, 0, 0]


def test_conflicting_users_can_be_excluded(make_service):
    rows = [
        (1, "app_install", "2023-01-02 10:00:00", "ios"),
        (1, "view_item", "2023-01-02 10:01:00", "android"),
        (2, "app_install", "2023-01-02 10:00:00", "ios"),
    ]
    service = make_service(rows, segment_conflict_policy="exclude")
    [segment] = service.get_funnel()

    assert segment.total_users == 1
    assert segment.users_at_stage == [1, 0, 0, 0]


def test_unsegmented_funnel(illustrative_service):
    [segment] = illustrative_service.get_funnel(segment_by=None)

    assert segment.segment == "all"
    assert segment.users_at_stage == [20, 7, 4, 3]
    assert segment.steps[0].conversion_rate == 35.0


def test_transitions_never_exceed_reached_counts(illustrative_service):
    for segment in illustrative_service.get_funnel():
        for i, step in enumerate(segment.steps):
            assert step.transition_users <= segment.users_at_stage[i]
            assert step.transition_users <= segment.users_at_stage[i + 1]
            assert 0 <= step.strict_conversion_rate <= 100


def test_custom_milestones(illustrative_service):
    segments = by_segment(illustrative_service.get_funnel(["view_item", "add_to_cart"]))

    assert segments["ios"].users_at_stage == [3, 2]
    assert segments["ios"].steps[0].conversion_rate == pytest.approx(66.67, abs=0.01)
    assert segments["ios"].steps[0].strict_conversion_rate == pytest.approx(66.67, abs=0.01)


@pytest.mark.parametrize("milestones", [["app_install", "app_install"], []])
def test_invalid_milestones_rejected(illustrative_service, milestones):
    with pytest.raises(ValueError):
        illustrative_service.get_funnel(milestones)


def test_unknown_segment_key_rejected(illustrative_service):
    with pytest.raises(ValueError):
        illustrative_service.get_funnel(segment_by="country")


def test_empty_log_has_no_segments(make_service):
    assert make_service([]).get_funnel() == []


def test_funnel_frame_columns(illustrative_service):
    frame = funnel_frame(illustrative_service.get_funnel())

    assert list(frame["platform"]) == ["android", "ios"]
    assert list(frame["view_item_to_add_to_cart_rate"]) == pytest.approx([50.0, 66.67], abs=0.01)
    assert list(frame["avg_time_add_to_cart_to_purchase_seconds"]) == [300.0, 300.0]
