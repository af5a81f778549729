"""
Tests for pinhole_calib.core.aggregator.
"""

import pytest

from pinhole_calib.core.aggregator import (
    MIN_VIEWS_CHARUCO,
    MIN_VIEWS_CHESSBOARD,
    aggregate,
    required_views,
)
from pinhole_calib.core.types import (
    ErrorKind,
    ExtractionOutcome,
    InsufficientViewsError,
    InvalidParameterError,
    NoTargetDetectedError,
    TargetKind,
)


def accepted(views):
    return [ExtractionOutcome.accepted(view) for view in views]


class TestRequiredViews:
    def test_defaults(self):
        assert required_views(TargetKind.CHESSBOARD) == MIN_VIEWS_CHESSBOARD == 10
        assert required_views(TargetKind.CHARUCO) == MIN_VIEWS_CHARUCO == 5

    def test_override(self):
        assert required_views(TargetKind.CHESSBOARD, 4) == 4

    def test_invalid_override(self):
        with pytest.raises(InvalidParameterError):
            required_views(TargetKind.CHESSBOARD, 1)


class TestAggregate:
    def test_enough_views(self, make_views):
        session = aggregate(accepted(make_views(num_views=12)), TargetKind.CHESSBOARD)
        assert session.num_views == 12
        assert session.image_size == (640, 480)
        assert session.num_skipped == 0

    def test_nine_chessboard_views_rejected(self, make_views):
        with pytest.raises(InsufficientViewsError) as exc_info:
            aggregate(accepted(make_views(num_views=9)), TargetKind.CHESSBOARD)
        message = str(exc_info.value)
        assert "9" in message
        assert "10" in message
        assert exc_info.value.found == 9
        assert exc_info.value.required == 10
        assert not isinstance(exc_info.value, NoTargetDetectedError)

    def test_five_charuco_views_accepted(self, make_views):
        session = aggregate(accepted(make_views(num_views=5)), TargetKind.CHARUCO)
        assert session.num_views == 5

    def test_no_views(self):
        outcomes = [
            ExtractionOutcome.skipped("a.png", ErrorKind.TARGET_NOT_FOUND, "no board"),
            ExtractionOutcome.skipped("b.png", ErrorKind.IMAGE_DECODE_FAILURE, "bad file"),
        ]
        with pytest.raises(NoTargetDetectedError) as exc_info:
            aggregate(outcomes, TargetKind.CHESSBOARD)
        assert "No calibration target detected" in str(exc_info.value)
        session = exc_info.value.session
        assert session.targets_not_found == 1
        assert session.decode_failures == 1
        assert session.total_images == 2

    def test_size_mismatch_skipped(self, make_views):
        outcomes = accepted(make_views(num_views=10))
        outcomes.insert(3, accepted(make_views(num_views=1, image_size=(800, 600)))[0])

        session = aggregate(outcomes, TargetKind.CHESSBOARD)
        assert session.num_views == 10
        assert session.size_mismatches == 1
        assert session.image_size == (640, 480)
        assert session.total_images == 11

    def test_first_view_fixes_size(self, make_views):
        outcomes = accepted(make_views(num_views=2, image_size=(800, 600)))
        outcomes += accepted(make_views(num_views=3))
        session = aggregate(outcomes, TargetKind.CHESSBOARD, min_views=2)
        assert session.image_size == (800, 600)
        assert session.num_views == 2
        assert session.size_mismatches == 3

    def test_failed_outcomes_counted(self, make_views):
        outcomes = accepted(make_views(num_views=10))
        outcomes.append(ExtractionOutcome.skipped("x.png", ErrorKind.TARGET_NOT_FOUND, "no board"))
        session = aggregate(outcomes, TargetKind.CHESSBOARD)
        assert session.num_views == 10
        assert session.targets_not_found == 1
        assert session.num_skipped == 1
