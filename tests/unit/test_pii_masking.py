"""
Тесты маскирования персональных данных
"""

from types import SimpleNamespace

from marketplace.utils.pii_masking import mask_address, mask_code, mask_reference, safe_order_repr
from tests.conftest import BUYER_ADDRESS


class TestMaskAddress:
    def test_dict(self):
        address = {"street": "12 Long Street", "city": "Cape Town", "province": "Western Cape"}

        assert mask_address(address) == "Cape Town, Western Cape, ***"

    def test_model(self):
        assert mask_address(BUYER_ADDRESS) == "Cape Town, Western Cape, ***"
        assert "Long Street" not in mask_address(BUYER_ADDRESS)

    def test_empty(self):
        assert mask_address(None) == "[no address]"
        assert mask_address({"street": "1 Main Rd"}) == "***"


class TestMaskCode:
    def test_recipient_code(self):
        assert mask_code("RCP_1a2b3c4d5e") == "RCP_****4d5e"

    def test_short_codes(self):
        assert mask_code("abc") == "****"
        assert mask_code("abcdefgh") == "****efgh"
        assert mask_code(None) == "[no code]"


class TestMaskReference:
    def test_payment_reference(self):
        assert mask_reference("ord-1a2b3c4d5e6f7a8b9c0d-12345678") == "ord-****5678"

    def test_payout_reference(self):
        masked = mask_reference("payout-0f8e7d6c5b4a39281706f5e4d3c2b1a0-2")

        assert masked.startswith("payout-****")
        assert "0f8e7d6c" not in masked

    def test_empty(self):
        assert mask_reference("") == "[no reference]"


def test_safe_order_repr_hides_address():
    order = SimpleNamespace(
        id="o-1",
        status="paid",
        seller_id="seller-1",
        amount=33500,
        delivery_address=BUYER_ADDRESS.model_dump(),
    )

    text = safe_order_repr(order)

    assert "o-1" in text
    assert "Long Street" not in text
    assert "Cape Town" in text
