"""Unit tests for idempotency key generation and parsing."""

import pytest

from voucher_kernel.utils.idempotency import (
    generate_idempotency_key,
    parse_idempotency_key,
)


class TestIdempotencyKeys:

    def test_format(self):
        assert generate_idempotency_key("voucher", "d-1", 7) == "voucher:d-1:7"

    def test_same_inputs_same_key(self):
        assert generate_idempotency_key("voucher", "d-1", 7) == generate_idempotency_key(
            "voucher", "d-1", 7
        )

    def test_version_changes_key(self):
        assert generate_idempotency_key("voucher", "d-1", 7) != generate_idempotency_key(
            "voucher", "d-1", 8
        )

    def test_round_trip(self):
        key = generate_idempotency_key("voucher", "3f9c2a1e-aaaa", 12)
        assert parse_idempotency_key(key) == ("voucher", "3f9c2a1e-aaaa", 12)

    def test_producer_may_contain_colon(self):
        """rsplit keeps colons in the producer part."""
        assert parse_idempotency_key("erp:ui:d-1:3") == ("erp:ui", "d-1", 3)

    @pytest.mark.parametrize("bad", ["", "voucher", "voucher:d-1", "voucher:d-1:x", ":d-1:1"])
    def test_invalid(self, bad):
        with pytest.raises(ValueError, match="Invalid idempotency key"):
            parse_idempotency_key(bad)
