"""
Helper functions for the maps engine to call the Dalgo charts API via HTTP
"""

import asyncio

import requests

from ddpmaps.utils.custom_logger import CustomLogger

logger = CustomLogger("ddpmaps.http")


class HttpError(Exception):
    """raised when a request to the Dalgo API fails"""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


def _decode(res: requests.Response):
    """a 2xx body that is not json, e.g. a proxy error page, is an HttpError"""
    try:
        return res.json()
    except ValueError as error:
        logger.error(f"invalid json response from {res.url}: {error}")
        raise HttpError(res.status_code, "invalid json response") from error


def dalgo_get(endpoint: str, **kwargs) -> dict:
    """make a GET request"""
    headers = kwargs.pop("headers", {})
    timeout = kwargs.pop("timeout", None)

    try:
        res = requests.get(
            endpoint,
            headers=headers,
            timeout=timeout,
            **kwargs,
        )
    except Exception as error:
        logger.exception(error)
        raise HttpError(500, "connection error") from error
    try:
        res.raise_for_status()
    except Exception as error:
        logger.exception(error)
        raise HttpError(res.status_code, res.text) from error
    return _decode(res)


def dalgo_post(endpoint: str, json: dict = None, **kwargs) -> dict:
    """make a POST request"""
    headers = kwargs.pop("headers", {})
    timeout = kwargs.pop("timeout", None)

    try:
        res = requests.post(
            endpoint,
            headers=headers,
            timeout=timeout,
            json=json,
            **kwargs,
        )
    except Exception as error:
        logger.exception(error)
        raise HttpError(500, "connection error") from error
    try:
        res.raise_for_status()
    except Exception as error:
        logger.exception(error)
        raise HttpError(res.status_code, res.text) from error
    return _decode(res)


async def async_dalgo_get(endpoint: str, **kwargs) -> dict:
    """dalgo_get without blocking the event loop"""
    return await asyncio.to_thread(dalgo_get, endpoint, **kwargs)


async def async_dalgo_post(endpoint: str, json: dict = None, **kwargs) -> dict:
    """dalgo_post without blocking the event loop"""
    return await asyncio.to_thread(dalgo_post, endpoint, json, **kwargs)
