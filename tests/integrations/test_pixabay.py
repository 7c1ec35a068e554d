"""Tests for the Pixabay stock image client."""

import asyncio

import httpx
import pytest

from postforge.integrations.pixabay import PixabayClient, StockImageNotFound


def _handler(hits_by_keyword: dict[str, list[dict]]):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "cdn.pixabay.example":
            return httpx.Response(200, content=b"JPEGDATA")
        keyword = request.url.params["q"]
        if keyword == "error":
            return httpx.Response(500)
        return httpx.Response(200, json={"hits": hits_by_keyword.get(keyword, [])})

    return handler


class TestPixabayClient:
    def test_tries_keywords_in_order(self):
        transport = httpx.MockTransport(
            _handler({"laptop": [{"largeImageURL": "https://cdn.pixabay.example/laptop.jpg"}]})
        )
        client = PixabayClient("key", transport=transport)

        url = asyncio.run(client.search(["error", "desk", "laptop"]))

        assert url == "https://cdn.pixabay.example/laptop.jpg"

    def test_nothing_found(self):
        client = PixabayClient("key", transport=httpx.MockTransport(_handler({})))
        with pytest.raises(StockImageNotFound):
            asyncio.run(client.search(["desk"]))

    def test_empty_keywords(self):
        client = PixabayClient("key", transport=httpx.MockTransport(_handler({})))
        with pytest.raises(ValueError):
            asyncio.run(client.search([]))

    def test_download(self):
        client = PixabayClient("key", transport=httpx.MockTransport(_handler({})))
        data = asyncio.run(client.download("https://cdn.pixabay.example/x.jpg"))
        assert data == b"JPEGDATA"
