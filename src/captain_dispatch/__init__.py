"""Ride matching and dispatch: offers, reassignment, captain admission, fares and OTP."""

__version__ = "1.0.0"
