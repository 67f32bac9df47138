"""Tests for the ACRCloud gateway (HTTP session mocked)"""
from unittest.mock import MagicMock

import pytest
import requests

from audio_recognition.acrcloud import RecognitionGateway
from audio_recognition.errors import ConfigurationError, VendorParseError, VendorTransportError
from audio_recognition.signing import sign
from conftest import track, vendor_payload


def make_response(status=200, payload=None, text="", json_error=None):
    response = MagicMock()
    response.ok = 200 <= status < 300
    response.status_code = status
    response.reason = "OK" if response.ok else "Server Error"
    response.text = text
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def gateway(session):
    return RecognitionGateway(
        "key123", "secret", host="identify-eu-west-1.acrcloud.com",
        timeout=5.0, session=session, clock=lambda: 1700000000.7
    )


async def test_identify_posts_signed_multipart(gateway, session):
    session.post.return_value = make_response(payload=vendor_payload(music=[track(score=90)]))

    result = await gateway.identify(b"sample-bytes", "audio/m4a")

    assert result.ok
    assert result.music[0].title == "Midnight City"
    args, kwargs = session.post.call_args
    assert args[0] == "https://identify-eu-west-1.acrcloud.com/v1/identify"
    assert kwargs["timeout"] == 5.0
    assert kwargs["data"]["timestamp"] == "1700000000"
    assert kwargs["data"]["signature"] == sign("key123", "secret", 1700000000)
    assert kwargs["data"]["sample_bytes"] == str(len(b"sample-bytes"))
    assert kwargs["files"]["sample"] == ("sample.m4a", b"sample-bytes", "audio/m4a")


async def test_vendor_no_result_status_is_not_an_error(gateway, session):
    session.post.return_value = make_response(payload=vendor_payload(code=1001, msg="No result"))
    result = await gateway.identify(b"x")
    assert not result.ok
    assert result.status_code == 1001


async def test_non_2xx_raises_transport_error(gateway, session):
    session.post.return_value = make_response(status=503, text="upstream down" * 100)

    with pytest.raises(VendorTransportError) as exc_info:
        await gateway.identify(b"x")

    assert exc_info.value.status_code == 503
    assert len(exc_info.value.body) == 500


async def test_malformed_json_raises_parse_error(gateway, session):
    session.post.return_value = make_response(json_error=ValueError("Expecting value"))
    with pytest.raises(VendorParseError):
        await gateway.identify(b"x")


async def test_non_object_json_raises_parse_error(gateway, session):
    session.post.return_value = make_response(payload=["unexpected"])
    with pytest.raises(VendorParseError):
        await gateway.identify(b"x")


async def test_timeout_raises_transport_error(gateway, session):
    session.post.side_effect = requests.exceptions.Timeout("read timed out")
    with pytest.raises(VendorTransportError, match="timed out"):
        await gateway.identify(b"x")


async def test_connection_error_raises_transport_error(gateway, session):
    session.post.side_effect = requests.exceptions.ConnectionError("refused")
    with pytest.raises(VendorTransportError):
        await gateway.identify(b"x")


async def test_missing_credentials_fail_before_network(session):
    gateway = RecognitionGateway("", "", session=session)
    assert not gateway.is_configured()
    with pytest.raises(ConfigurationError):
        await gateway.identify(b"x")
    session.post.assert_not_called()


def test_from_config():
    gateway = RecognitionGateway.from_config({
        "access_key": "k", "access_secret": "s", "host": "example.acrcloud.com", "timeout": 12
    })
    assert gateway.is_configured()
    assert gateway.url == "https://example.acrcloud.com/v1/identify"
