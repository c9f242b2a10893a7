import httpx
import pytest

from pharmacity_collector.delegates import OCRSpaceDelegate
from pharmacity_collector.delegates.ocr_delegate import parse_ocr_space_response

OCR_SPACE_PAYLOAD = {
    "ParsedResults": [{
        "TextOverlay": {
            "Lines": [
                {"LineText": "Panadol Extra", "Words": [
                    {"WordText": "Panadol", "Left": 120, "Top": 80, "Height": 40, "Width": 180},
                    {"WordText": "Extra", "Left": 310, "Top": 82, "Height": 38, "Width": 110},
                ]},
                {"LineText": "500mg", "Words": [
                    {"WordText": "500mg", "Left": 130, "Top": 140, "Height": 20, "Width": 70},
                ]},
            ],
            "HasOverlay": True,
        },
        "FileParseExitCode": 1,
        "ParsedText": "Panadol Extra\r\n500mg\r\n",
    }],
    "OCRExitCode": 1,
    "IsErroredOnProcessing": False,
    "ProcessingTimeInMilliseconds": "843",
}


def test_parse_ocr_space_overlay():
    result = parse_ocr_space_response(OCR_SPACE_PAYLOAD)

    assert not result.errored
    assert [line.text for line in result.lines] == ["Panadol Extra", "500mg"]
    assert result.lines[0].words[1].left == 310
    assert result.lines[0].top == 80
    assert result.processing_time_ms == 843.0
    assert result.text.startswith("Panadol Extra")


def test_parse_ocr_space_error():
    result = parse_ocr_space_response({
        "IsErroredOnProcessing": True,
        "OCRExitCode": 3,
        "ErrorMessage": ["Unable to recognize the file type"],
    })

    assert result.errored
    assert result.lines == []
    assert result.error_message == "OCR Error: Unable to recognize the file type"


@pytest.mark.asyncio
async def test_ocr_space_delegate_posts_multipart(tmp_path):
    image = tmp_path / "ocr_1.jpg"
    image.write_bytes(b"jpeg bytes")
    bodies = []

    def handler(request):
        bodies.append(request.read())
        return httpx.Response(200, json=OCR_SPACE_PAYLOAD)

    async with OCRSpaceDelegate("https://ocr.example/parse/image", "k-123",
                                transport=httpx.MockTransport(handler)) as ocr:
        result = await ocr.recognize(image)

    assert len(result.lines) == 2
    body = bodies[0]
    assert b'name="apikey"' in body and b"k-123" in body
    assert b'name="isOverlayRequired"' in body
    assert b'name="file"; filename="ocr_1.jpg"' in body


@pytest.mark.asyncio
async def test_ocr_space_delegate_http_failure_is_an_errored_result(tmp_path):
    image = tmp_path / "ocr_1.jpg"
    image.write_bytes(b"jpeg bytes")

    async with OCRSpaceDelegate("https://ocr.example/parse/image", "k",
                                transport=httpx.MockTransport(lambda r: httpx.Response(500))) as ocr:
        result = await ocr.recognize(image)

    assert result.errored
    assert result.lines == []
