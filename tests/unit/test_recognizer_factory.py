import pytest

from docinsight.config.settings import Settings
from docinsight.recognition.factory import RecognizerFactory
from docinsight.recognition.remote_adapter import HttpRemoteRecognizer
from docinsight.recognition.tesseract_adapter import TesseractRecognizer


class TestRecognizerFactory:
    def test_creates_on_device_recognizer(self) -> None:
        settings = Settings(on_device_language="eng+ara")
        assert isinstance(RecognizerFactory.create_on_device(settings), TesseractRecognizer)

    def test_creates_http_remote_recognizer(self) -> None:
        settings = Settings(remote_ocr_provider="HTTP")
        assert isinstance(RecognizerFactory.create_remote(settings), HttpRemoteRecognizer)

    def test_unknown_remote_provider_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown remote OCR provider"):
            RecognizerFactory.create_remote(Settings(remote_ocr_provider="grpc"))
