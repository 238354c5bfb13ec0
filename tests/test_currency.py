import httpx

from currency import ExchangeRateAPI, convert_transactions


def _api(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ExchangeRateAPI(base_url="https://rates.test/v6/latest", client=client)


def _rates_handler(calls):
    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json={
            "result": "success",
            "base_code": "EUR",
            "time_last_update_utc": "Wed, 15 May 2024 00:00:01 +0000",
            "rates": {"EUR": 1.0, "USD": 1.1, "GBP": 0.85},
        })
    return handler


def test_convert_uses_rate_and_caches_per_base():
    calls = []
    api = _api(_rates_handler(calls))

    result = api.convert(100, "eur", "usd")
    assert result["converted_amount"] == 110.0
    assert result["exchange_rate"] == 1.1

    api.convert(10, "EUR", "GBP")
    assert calls == ["/v6/latest/EUR"]


def test_same_currency_skips_the_network():
    def handler(request):
        raise AssertionError("no request expected")

    assert _api(handler).convert(25, "USD", "usd")["converted_amount"] == 25


def test_network_failure_yields_none():
    def handler(request):
        raise httpx.ConnectError("offline")

    api = _api(handler)
    assert api.get_rates("EUR") is None
    assert api.convert(10, "EUR", "USD") is None


def test_error_payload_yields_none():
    api = _api(lambda request: httpx.Response(200, json={"result": "error"}))
    assert api.get_rates("EUR") is None

    api = _api(lambda request: httpx.Response(503))
    assert api.get_rates("EUR") is None


def test_convert_transactions_keeps_originals():
    api = _api(_rates_handler([]))
    rows = [
        {"id": 1, "amount": 100.0, "tax": 10.0, "currency": "EUR"},
        {"id": 2, "amount": 5.0, "tax": 0.0, "currency": "USD"},
    ]

    converted = convert_transactions(rows, "USD", api)

    assert converted[0]["amount"] == 110.0
    assert converted[0]["tax"] == 11.0
    assert converted[0]["currency"] == "USD"
    assert converted[0]["original_amount"] == 100.0
    assert converted[0]["original_currency"] == "EUR"
    assert converted[1] == rows[1]


def test_convert_transactions_without_rates_is_unchanged():
    rows = [{"id": 1, "amount": 100.0, "currency": "EUR"}]

    assert convert_transactions(rows, "USD", None) == rows
    assert convert_transactions(rows, "JPY", _api(_rates_handler([]))) == rows
