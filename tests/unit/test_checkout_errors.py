from storefront.checkout.errors import (
    CheckoutError,
    ErrorCode,
    ErrorKind,
    info_for,
    kind_of,
    sanitize_error_message,
)


def test_every_code_has_kind_and_info():
    for code in ErrorCode:
        assert isinstance(kind_of(code), ErrorKind)
        info = info_for(code)
        assert info.title and info.message and info.suggestion


def test_status_codes_by_kind():
    assert CheckoutError(ErrorCode.INVALID_QUANTITY).status_code == 400
    assert CheckoutError(ErrorCode.OUT_OF_STOCK).status_code == 400
    assert CheckoutError(ErrorCode.RATE_LIMITED).status_code == 429
    assert CheckoutError(ErrorCode.DUPLICATE_REQUEST).status_code == 409
    assert CheckoutError(ErrorCode.PROVIDER_UNAVAILABLE).status_code == 502


def test_payload_uses_info_and_hides_detail():
    err = CheckoutError(ErrorCode.PROVIDER_ERROR, "No such price: 'price_1AbCdEfGhIjKlMnOp' on acct cus_123")
    payload = err.to_payload()

    assert payload["error"] == "Payment system error"
    assert payload["code"] == "provider_error"
    assert payload["kind"] == "upstream"
    assert payload["canRetry"] is True
    assert payload["contactSupport"] is True
    assert "price_" not in str(payload)
    assert "cus_" not in str(payload)


def test_payload_flags_and_item_details_are_sanitized():
    err = CheckoutError(
        ErrorCode.VARIANT_NOT_FOUND,
        items=[{"priceRef": "price_1AbCdEfGhIjKlMnOp", "error": "Stripe price price_1AbCdEfGhIjKlMnOp missing"}],
    )
    payload = err.to_payload()

    assert payload["shouldClearCart"] is True
    assert payload["details"][0]["error"] == "payment system price [item] missing"
    # la référence reste disponible pour que le client retrouve la ligne du panier
    assert payload["details"][0]["priceRef"] == "price_1AbCdEfGhIjKlMnOp"


def test_public_message_replaces_title():
    err = CheckoutError(ErrorCode.TOO_MANY_ITEMS, public_message="Too many items in cart (max 100)")
    assert err.to_payload()["error"] == "Too many items in cart (max 100)"
    assert err.to_payload()["title"] == "Cart issue"


def test_sanitize_error_message():
    raw = (
        "Stripe error for cs_test_a1B2c3 customer cus_Q1w2E3 intent pi_3Abc "
        "product prod_Xyz order 3f2b8c1e-9d4a-4b7e-8f00-1234567890ab"
    )
    cleaned = sanitize_error_message(raw)

    assert cleaned == (
        "payment system error for [session] customer [account] intent [reference] "
        "product [item] order [id]"
    )


def test_sanitize_keeps_words_containing_prefixes():
    # "in_" ne doit pas mordre dans un mot ordinaire
    assert sanitize_error_message("within_limits is fine") == "within_limits is fine"
    assert sanitize_error_message("") == ""
