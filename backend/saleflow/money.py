# Overview: Integer-cent money helpers; basis-point shares, proration and display formatting.

"""
Integer-cent money arithmetic.

All monetary values in SaleFlow are integer minor units (cents) and all rates
are integer basis points (1% = 100 bps). Floats never enter the ledger, so
repeated add/subtract cycles cannot drift.

Rounding is half-up to the cent, applied only at the boundaries that produce
a new amount: line discount, line tax, and proportional refund shares.
"""

from __future__ import annotations


BPS_SCALE = 10_000


def _round_half_up_div(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    if numerator < 0:
        return -_round_half_up_div(-numerator, denominator)
    return (2 * numerator + denominator) // (2 * denominator)


def apply_bps(amount_cents: int, bps: int) -> int:
    """Share of amount_cents at the given rate, e.g. apply_bps(1000, 1600) == 160."""
    if not bps:
        return 0
    return _round_half_up_div(amount_cents * bps, BPS_SCALE)


def prorate(total_cents: int, part: int, whole: int) -> int:
    """total_cents * part / whole, rounded half-up. prorate(t, w, w) == t exactly."""
    if part == whole:
        return total_cents
    if part == 0:
        return 0
    return _round_half_up_div(total_cents * part, whole)


def average(total_cents: int, count: int) -> int:
    if count <= 0:
        return 0
    return _round_half_up_div(total_cents, count)


def format_cents(cents: int | None) -> str:
    """Render cents for human-facing messages: 450 -> '4.50', -5 -> '-0.05'."""
    if cents is None:
        return "0.00"
    sign = "-" if cents < 0 else ""
    units, minor = divmod(abs(cents), 100)
    return f"{sign}{units}.{minor:02d}"
