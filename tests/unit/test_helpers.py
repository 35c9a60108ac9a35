"""
Тесты вспомогательных функций
"""

from datetime import datetime, timedelta, timezone

from marketplace.utils.helpers import (
    format_amount,
    format_datetime,
    generate_payment_reference,
    generate_refund_reference,
    generate_transfer_reference,
    get_now,
    new_id,
    to_naive_utc,
    truncate_text,
)


class TestFormatAmount:
    def test_cents(self):
        assert format_amount(12050) == "R 120.50"
        assert format_amount(5) == "R 0.05"

    def test_thousands_separator(self):
        assert format_amount(123456789) == "R 1 234 567.89"

    def test_other_currency(self):
        assert format_amount(100, "USD") == "$ 1.00"
        assert format_amount(100, "EUR") == "EUR 1.00"

    def test_negative(self):
        assert format_amount(-250) == "-R 2.50"


class TestDatetimes:
    def test_get_now_is_naive(self):
        assert get_now().tzinfo is None

    def test_to_naive_utc(self):
        aware = datetime(2026, 3, 2, 11, 0, tzinfo=timezone(timedelta(hours=2)))

        assert to_naive_utc(aware) == datetime(2026, 3, 2, 9, 0)
        assert to_naive_utc(datetime(2026, 3, 2, 9, 0)) == datetime(2026, 3, 2, 9, 0)

    def test_format_datetime(self):
        assert format_datetime(datetime(2026, 3, 4, 9, 5)) == "04.03.2026 09:05 UTC"
        assert format_datetime(None) == "-"


class TestReferences:
    def test_transfer_reference_per_attempt(self):
        order_id = "0f8e7d6c-5b4a-3928-1706-f5e4d3c2b1a0"

        assert generate_transfer_reference(order_id, 1) == "payout-0f8e7d6c5b4a39281706f5e4d3c2b1a0-1"
        assert generate_transfer_reference(order_id, 2) != generate_transfer_reference(order_id, 1)

    def test_refund_reference(self):
        assert generate_refund_reference("ab-cd", 3) == "refund-abcd-3"

    def test_payment_reference_unique(self):
        order_id = new_id()
        first = generate_payment_reference(order_id)

        assert first.startswith("ord-")
        assert first != generate_payment_reference(order_id)


def test_truncate_text():
    assert truncate_text(None) == ""
    assert truncate_text("short") == "short"
    assert truncate_text("x" * 300, max_length=10) == "xxxxxxx..."
