from datetime import datetime, timedelta

from backend import status_engine as se

START = datetime(2024, 1, 1, 9, 0)
DUE = datetime(2024, 1, 10, 23, 59)


def test_grade_wins_over_everything():
    for now in (START - timedelta(days=3), START, DUE, DUE + timedelta(days=30)):
        assert se.compute_status(now, START, DUE, has_submission=True, has_grade=True) == se.GRADED
        assert se.compute_status(now, START, DUE, has_submission=False, has_grade=True,
                                 in_progress=True) == se.GRADED


def test_submission_is_completed_even_after_due():
    assert se.compute_status(DUE + timedelta(hours=1), START, DUE, True, False) == se.COMPLETED


def test_expired_in_progress_is_past_due():
    now = DUE + timedelta(seconds=1)
    assert se.compute_status(now, START, DUE, has_submission=False, has_grade=False, in_progress=True) == se.PAST_DUE


def test_in_progress_inside_window():
    assert se.compute_status(START + timedelta(days=1), START, DUE, False, False, in_progress=True) == se.IN_PROGRESS


def test_window_boundaries_are_active():
    assert se.compute_status(START, START, DUE, False, False) == se.ACTIVE
    assert se.compute_status(DUE, START, DUE, False, False) == se.ACTIVE
    assert se.compute_status(START - timedelta(seconds=1), START, DUE, False, False) == se.UPCOMING


def test_can_start_only_when_active():
    assert se.can_start(se.ACTIVE)
    for status in (se.UPCOMING, se.IN_PROGRESS, se.COMPLETED, se.GRADED, se.PAST_DUE):
        assert not se.can_start(status)


def test_can_submit_inside_window():
    now = START + timedelta(days=1)
    assert se.can_submit(se.ACTIVE, now, DUE)
    assert se.can_submit(se.IN_PROGRESS, now, DUE)
    assert not se.can_submit(se.UPCOMING, START - timedelta(days=1), DUE)
    assert not se.can_submit(se.COMPLETED, now, DUE)


def test_late_submission_needs_policy():
    now = DUE + timedelta(minutes=6)
    assert not se.can_submit(se.PAST_DUE, now, DUE)
    assert se.can_submit(se.PAST_DUE, now, DUE, allow_late=True)
    assert not se.can_submit(se.GRADED, now, DUE, allow_late=True)


def test_can_unsubmit_until_due():
    assert se.can_unsubmit(se.COMPLETED, DUE - timedelta(minutes=1), DUE)
    assert not se.can_unsubmit(se.COMPLETED, DUE + timedelta(minutes=1), DUE)
    assert not se.can_unsubmit(se.GRADED, DUE - timedelta(minutes=1), DUE)


def test_grading_allowed_from_completed_or_past_due():
    assert se.can_grade(se.COMPLETED)
    assert se.can_grade(se.PAST_DUE)
    assert not se.can_grade(se.ACTIVE)
    assert not se.can_grade(se.GRADED)


def test_lecture_status_follows_clock_and_cancellation_sticks():
    start = datetime(2024, 6, 4, 14, 0)
    end = datetime(2024, 6, 4, 15, 0)
    assert se.compute_lecture_status(start - timedelta(minutes=1), start, end) == se.LECTURE_SCHEDULED
    assert se.compute_lecture_status(start + timedelta(minutes=30), start, end) == se.LECTURE_ONGOING
    assert se.compute_lecture_status(end + timedelta(minutes=1), start, end) == se.LECTURE_COMPLETED
    assert se.compute_lecture_status(start - timedelta(days=1), start, end,
                                     current=se.LECTURE_CANCELLED) == se.LECTURE_CANCELLED


def test_graded_is_the_only_terminal_status():
    assert se.TERMINAL_STATUSES == {se.GRADED}
    assert se.PAST_DUE in se.NON_TERMINAL_STATUSES
