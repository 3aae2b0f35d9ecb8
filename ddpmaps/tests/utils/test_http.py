from unittest.mock import Mock, patch

import pytest
import requests

from ddpmaps.utils.http import (
    HttpError,
    async_dalgo_get,
    async_dalgo_post,
    dalgo_get,
    dalgo_post,
)


def ok_response(payload):
    response = Mock()
    response.raise_for_status.return_value = None
    response.json.return_value = payload
    return response


def failed_response(status_code, text):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.raise_for_status.side_effect = requests.HTTPError(text)
    return response


def html_response():
    response = Mock()
    response.status_code = 200
    response.url = "http://api/map-data-overlay/"
    response.raise_for_status.return_value = None
    response.json.side_effect = requests.JSONDecodeError("Expecting value", "<html>", 0)
    return response


@patch("ddpmaps.utils.http.requests.get")
def test_dalgo_get_success(mock_get):
    """returns the decoded json body"""
    mock_get.return_value = ok_response([{"id": 1}])
    assert dalgo_get("http://api/regions/", headers={"x": "y"}, timeout=3) == [{"id": 1}]
    mock_get.assert_called_once_with("http://api/regions/", headers={"x": "y"}, timeout=3)


@patch("ddpmaps.utils.http.requests.get")
def test_dalgo_get_connection_error(mock_get):
    """a connection failure is a 500 HttpError"""
    mock_get.side_effect = requests.ConnectionError("refused")
    with pytest.raises(HttpError) as excinfo:
        dalgo_get("http://api/regions/")
    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "connection error"


@patch("ddpmaps.utils.http.requests.get")
def test_dalgo_get_bad_status(mock_get):
    """a non 2xx status keeps the status code and body"""
    mock_get.return_value = failed_response(404, "not found")
    with pytest.raises(HttpError) as excinfo:
        dalgo_get("http://api/regions/9/children/")
    assert excinfo.value.status_code == 404
    assert excinfo.value.message == "not found"


@patch("ddpmaps.utils.http.requests.post")
def test_dalgo_post_sends_json(mock_post):
    """the body is sent as json"""
    mock_post.return_value = ok_response({"data": []})
    assert dalgo_post("http://api/map-data-overlay/", json={"a": 1}) == {"data": []}
    mock_post.assert_called_once_with(
        "http://api/map-data-overlay/", headers={}, timeout=None, json={"a": 1}
    )


@patch("ddpmaps.utils.http.requests.post")
def test_dalgo_post_bad_status(mock_post):
    mock_post.return_value = failed_response(400, "Missing metrics")
    with pytest.raises(HttpError) as excinfo:
        dalgo_post("http://api/map-data-overlay/", json={})
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
@patch("ddpmaps.utils.http.requests.get")
async def test_async_dalgo_get(mock_get):
    """the async wrapper returns the same result"""
    mock_get.return_value = ok_response({"id": 3})
    assert await async_dalgo_get("http://api/geojsons/3/") == {"id": 3}


@pytest.mark.asyncio
@patch("ddpmaps.utils.http.requests.post")
async def test_async_dalgo_post_error(mock_post):
    """errors propagate through the async wrapper"""
    mock_post.return_value = failed_response(503, "unavailable")
    with pytest.raises(HttpError):
        await async_dalgo_post("http://api/map-data-overlay/", json={})


@patch("ddpmaps.utils.http.requests.get")
def test_dalgo_get_invalid_json(mock_get):
    """a 2xx body that is not json is an HttpError"""
    mock_get.return_value = html_response()
    with pytest.raises(HttpError) as excinfo:
        dalgo_get("http://api/geojsons/4/")
    assert excinfo.value.status_code == 200
    assert excinfo.value.message == "invalid json response"


@patch("ddpmaps.utils.http.requests.post")
def test_dalgo_post_invalid_json(mock_post):
    mock_post.return_value = html_response()
    with pytest.raises(HttpError) as excinfo:
        dalgo_post("http://api/map-data-overlay/", json={})
    assert excinfo.value.message == "invalid json response"
