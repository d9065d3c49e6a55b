"""Tests for the dispatch exception hierarchy."""

import pytest

from captain_dispatch.core.exceptions import (
    AlreadyResolved,
    DispatchError,
    IllegalTransition,
    InvalidLength,
    NetworkError,
    NoCandidatesAvailable,
    OfferExpired,
    OfferLimitReached,
    PermanentError,
    StateError,
    TransientError,
    ValidationError,
)


@pytest.mark.unit
class TestExceptionHierarchy:
    def test_message_and_details(self):
        error = IllegalTransition("nope", {"ride_id": "r1"})

        assert error.message == "nope"
        assert error.details == {"ride_id": "r1"}
        assert str(error) == "nope"

    def test_details_default_to_empty(self):
        assert DispatchError("x").details == {}

    @pytest.mark.parametrize(
        "error_type,base",
        [
            (NetworkError, TransientError),
            (IllegalTransition, StateError),
            (AlreadyResolved, StateError),
            (OfferExpired, AlreadyResolved),
            (OfferLimitReached, NoCandidatesAvailable),
            (InvalidLength, ValidationError),
            (StateError, PermanentError),
        ],
    )
    def test_subclassing(self, error_type, base):
        assert issubclass(error_type, base)

    def test_transient_and_permanent_are_disjoint(self):
        assert not issubclass(NetworkError, PermanentError)
        assert not issubclass(ValidationError, TransientError)
