import httpx

TINY_JPEG_URI = "data:image/jpeg;base64,/9j/4AAQSkZJRgABAQAAAQABAAD/2wBD"


def gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def mock_http(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))
