from libraries.render_log.correlator import (
    HOUR_MS,
    MAX_JOB_SECONDS,
    JobCorrelator,
    OutcomeStatus,
    infer_seconds,
)

T0 = 1_757_000_000_000


def test_outcome_matches_newest_start_with_same_key() -> None:
    correlator = JobCorrelator()
    correlator.on_start("abc", T0)
    correlator.on_start("abc", T0 + 10_000)

    first = correlator.on_success("abc", T0 + 60_000)
    second = correlator.on_success("abc", T0 + 70_000)

    assert first.started_at_ms == T0 + 10_000
    assert first.inferred_seconds == 50.0
    assert second.started_at_ms == T0
    assert len(correlator) == 0


def test_keys_do_not_cross_match() -> None:
    correlator = JobCorrelator()
    correlator.on_start("abc", T0)

    outcome = correlator.on_success("def", T0 + 1_000)

    assert not outcome.matched
    assert len(correlator) == 1


def test_explicit_render_time_wins_over_wall_delta() -> None:
    correlator = JobCorrelator()
    correlator.on_start("abc123", T0)

    outcome = correlator.on_success("abc123", T0 + 42_000, 40.0)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert outcome.reported_seconds == 40.0
    assert outcome.inferred_seconds == 40.0


def test_start_outside_pairing_window_is_ignored() -> None:
    correlator = JobCorrelator()
    correlator.on_start("abc", T0)

    outcome = correlator.on_success("abc", T0 + 13 * HOUR_MS)

    assert not outcome.matched
    assert outcome.inferred_seconds == 0.0
    assert correlator.unmatched_outcomes == 1


def test_start_after_outcome_is_not_matched() -> None:
    correlator = JobCorrelator()
    correlator.on_start("abc", T0 + 5_000)

    outcome = correlator.on_failure("abc", T0)

    assert not outcome.matched


def test_unmatched_failure_is_counted_with_zero_duration() -> None:
    correlator = JobCorrelator()

    outcome = correlator.on_failure("zzz", T0)

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.started_at_ms is None
    assert outcome.inferred_seconds == 0.0
    assert correlator.unmatched_outcomes == 1


def test_pending_starts_are_bounded_by_count() -> None:
    correlator = JobCorrelator(max_pending=3)
    for index in range(5):
        correlator.on_start(f"job{index}", T0 + index)

    assert len(correlator) == 3
    assert correlator.evicted_starts == 2
    assert [entry.correlation_key for entry in correlator.pending()] == [
        "job2",
        "job3",
        "job4",
    ]
    assert not correlator.on_success("job0", T0 + 10).matched


def test_pending_starts_expire_after_retention() -> None:
    correlator = JobCorrelator()
    correlator.on_start("old", T0)
    correlator.on_start("new", T0 + 25 * HOUR_MS)

    assert [entry.correlation_key for entry in correlator.pending()] == ["new"]
    assert correlator.evicted_starts == 1


def test_infer_seconds_bounds() -> None:
    assert infer_seconds(T0, T0 + 42_000, 40.0) == 40.0
    assert infer_seconds(T0, T0 + 42_000, None) == 42.0
    assert infer_seconds(None, T0, None) == 0.0
    assert infer_seconds(T0, T0 - 1_000, None) == 0.0
    assert infer_seconds(None, T0, MAX_JOB_SECONDS + 1) == 0.0
    assert infer_seconds(None, T0, -3.0) == 0.0


def test_hashless_outcome_only_pairs_with_hashless_start() -> None:
    correlator = JobCorrelator()
    correlator.on_start("abc", T0)

    orphan = correlator.on_success(None, T0 + 5_000)
    correlator.on_start(None, T0 + 10_000)
    paired = correlator.on_success(None, T0 + 25_000)

    assert not orphan.matched
    assert paired.started_at_ms == T0 + 10_000
    assert paired.inferred_seconds == 15.0
    assert len(correlator) == 1
