from unittest.mock import MagicMock, patch

import requests

from backend import pricing
from backend.app import create_app


def easyship_client(app_config, db, **overrides):
    app_config.update(
        {
            "SHIPPING_PROVIDER": "easyship",
            "EASYSHIP_API_KEY": "es_test",
            "EASYSHIP_BASE_URL": "https://api.easyship.test/",
        }
    )
    app_config.update(overrides)
    return create_app(app_config, db=db).test_client()


def provider_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = body
    return response


def test_invalid_pincode_is_rejected(client):
    response = client.post("/api/shipping/estimate", json={"to_pincode": "1234"})

    assert response.status_code == 400
    assert response.get_json() == {
        "error": "invalid_postal_code",
        "message": "Postal code must be exactly 6 digits (0-9)",
    }


def test_pincode_alias_is_validated(client):
    response = client.post("/api/shipping/estimate", json={"postalCode": "56A001"})
    assert response.status_code == 400


def test_valid_pincode_without_provider_uses_fallback(client):
    response = client.post(
        "/api/shipping/estimate", json={"to_pincode": "560001", "productId": "p1", "weight": 2}
    )

    body = response.get_json()
    assert response.status_code == 200
    assert body["hardcoded"] is True
    assert body["seed"] is None
    assert body["rates"] == [
        {
            "productId": "p1",
            "weight": 2.0,
            "currency": "INR",
            "shipping_cost": pricing.seeded_fare("p1"),
            "label": "Seeded fallback rate for p1",
        }
    ]


def test_hardcode_flag_uses_salted_fallback(app_config, db):
    client = easyship_client(
        app_config, db, SHIPPING_HARDCODE="true", SHIPPING_HARDCODE_SALT="monsoon"
    )

    with patch("backend.app.requests.post") as post:
        body = client.post(
            "/api/shipping/estimate", json={"items": [{"id": "a"}, {"id": "b"}]}
        ).get_json()

    post.assert_not_called()
    assert body["seed"] == "monsoon"
    assert [rate["shipping_cost"] for rate in body["rates"]] == [
        pricing.seeded_fare("a", "monsoon"),
        pricing.seeded_fare("b", "monsoon"),
    ]


def test_unknown_provider_is_501(app_config, db):
    app_config["SHIPPING_PROVIDER"] = "carrier-pigeon"
    client = create_app(app_config, db=db).test_client()

    response = client.post("/api/shipping/estimate", json={"to_pincode": "560001"})

    assert response.status_code == 501
    assert response.get_json()["error"] == "no_provider"


def test_missing_credentials_is_500(app_config, db):
    client = easyship_client(app_config, db, EASYSHIP_BASE_URL="")

    response = client.post("/api/shipping/estimate", json={"to_pincode": "560001"})

    assert response.status_code == 500
    assert response.get_json()["error"] == "missing_credentials"


def test_simple_form_is_expanded_for_easyship(app_config, db):
    client = easyship_client(app_config, db)
    rates = {"rates": [{"courier_name": "Blue Dart", "total_charge": 99}]}

    with patch(
        "backend.app.requests.post", return_value=provider_response(200, rates)
    ) as post:
        response = client.post(
            "/api/shipping/estimate", json={"to_pincode": "560001", "weight": 1.5}
        )

    assert response.get_json() == rates
    url = post.call_args.args[0]
    payload = post.call_args.kwargs["json"]
    assert url == "https://api.easyship.test/rate/v1/rates"
    assert payload["origin_address"] == {"postal_code": "110064", "country_code": "IN"}
    assert payload["destination_address"]["postal_code"] == "560001"
    parcel = payload["parcels"][0]
    assert (parcel["actual_weight"], parcel["length"], parcel["width"], parcel["height"]) == (
        1.5,
        10,
        10,
        5,
    )
    assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer es_test"


def test_provider_errors_are_relayed(app_config, db):
    client = easyship_client(app_config, db)

    with patch(
        "backend.app.requests.post",
        return_value=provider_response(422, {"error": "bad address"}),
    ):
        response = client.post("/api/shipping/estimate", json={"to_pincode": "560001"})

    assert response.status_code == 422
    assert response.get_json() == {"error": "bad address"}


def test_empty_provider_rates_fall_back(app_config, db):
    client = easyship_client(app_config, db)

    with patch("backend.app.requests.post", return_value=provider_response(200, {"rates": []})):
        body = client.post("/api/shipping/estimate", json={"to_pincode": "560001"}).get_json()

    assert body["hardcoded"] is True
    assert body["rates"][0]["productId"] == "default"


def test_provider_network_failure_is_500(app_config, db):
    client = easyship_client(app_config, db)

    with patch(
        "backend.app.requests.post", side_effect=requests.ConnectionError("refused")
    ):
        response = client.post("/api/shipping/estimate", json={"to_pincode": "560001"})

    assert response.status_code == 500
    assert response.get_json()["detail"] == "refused"


def test_full_payload_skips_pincode_check(app_config, db):
    client = easyship_client(app_config, db)
    payload = {
        "origin": {"postal_code": "110064"},
        "destination": {"postal_code": "ABC"},
        "parcels": [{"actual_weight": 1}],
        "to_pincode": "12",
    }

    with patch(
        "backend.app.requests.post", return_value=provider_response(200, {"rates": [{}]})
    ) as post:
        response = client.post("/api/shipping/estimate", json=payload)

    assert response.status_code == 200
    assert post.call_args.kwargs["json"]["destination_address"] == {"postal_code": "ABC"}


def test_track_requires_identifier(app_config, db):
    client = easyship_client(app_config, db)
    response = client.post("/api/shipping/track", json={})
    assert response.status_code == 400


def test_debug_reports_configuration(app_config, db):
    client = easyship_client(app_config, db)

    body = client.get("/api/shipping/debug").get_json()

    assert body["provider"] == "easyship"
    assert body["easyship"] == {"base": True, "key": True}


def test_origin_only_request_validates_pincode(app_config, db):
    client = easyship_client(app_config, db)

    with patch("backend.app.requests.post") as post:
        response = client.post(
            "/api/shipping/estimate",
            json={"origin": {"postal_code": "110001", "country_code": "IN"}, "to_pincode": "12"},
        )

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_postal_code"
    post.assert_not_called()


def test_origin_only_request_builds_destination(app_config, db):
    client = easyship_client(app_config, db)
    origin = {"postal_code": "110001", "country_code": "IN"}

    with patch(
        "backend.app.requests.post", return_value=provider_response(200, {"rates": [{}]})
    ) as post:
        response = client.post(
            "/api/shipping/estimate", json={"origin": origin, "to_pincode": "560001"}
        )

    assert response.status_code == 200
    payload = post.call_args.kwargs["json"]
    assert payload["origin_address"] == origin
    assert payload["destination_address"]["postal_code"] == "560001"
