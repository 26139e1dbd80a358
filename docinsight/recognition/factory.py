from docinsight.config.settings import Settings
from docinsight.recognition.base import BaseOnDeviceRecognizer, BaseRemoteRecognizer
from docinsight.recognition.remote_adapter import HttpRemoteRecognizer
from docinsight.recognition.tesseract_adapter import TesseractRecognizer


class RecognizerFactory:
    """Creates the on-device and remote recognition adapters."""

    @classmethod
    def create_on_device(cls, settings: Settings) -> BaseOnDeviceRecognizer:
        return TesseractRecognizer(
            language=settings.on_device_language,
            psm=settings.on_device_psm,
            timeout_seconds=settings.on_device_timeout_seconds,
        )

    @classmethod
    def create_remote(cls, settings: Settings) -> BaseRemoteRecognizer:
        provider = settings.remote_ocr_provider.lower()
        if provider != "http":
            raise ValueError(f"Unknown remote OCR provider '{provider}'. Choose from: ['http']")
        return HttpRemoteRecognizer(
            url=settings.remote_ocr_url,
            api_key=settings.remote_ocr_api_key,
            timeout_seconds=settings.remote_ocr_timeout_seconds,
            max_retries=settings.remote_max_inline_retries,
            retry_base_delay_seconds=settings.remote_retry_base_delay_seconds,
        )
