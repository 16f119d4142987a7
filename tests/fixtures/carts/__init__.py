"""Builders for cart, address and vendor shipping snapshots used across tests."""

from tests.fixtures.carts.builders import (
    FIXED_NOW,
    ca_address,
    fixed_clock,
    make_cart,
    make_item,
    make_method,
    make_rule,
    us_address,
)

__all__ = [
    "FIXED_NOW",
    "ca_address",
    "fixed_clock",
    "make_cart",
    "make_item",
    "make_method",
    "make_rule",
    "us_address",
]
