from docinsight.capture.models import DocumentType
from docinsight.recognition.classifier import guess_document_type


class TestGuessDocumentType:
    def test_lab_report(self) -> None:
        text = "Glucose 210 mg/dL\nReference range 70-100"
        assert guess_document_type(text) == DocumentType.LAB_REPORT

    def test_prescription(self) -> None:
        text = "Rx: Amoxicillin 500mg capsules\nSig: one capsule three times daily"
        assert guess_document_type(text) == DocumentType.PRESCRIPTION

    def test_nutrition_label(self) -> None:
        text = "Nutrition Facts\nServing size 30g\nCalories 120\nSodium 5%"
        assert guess_document_type(text) == DocumentType.NUTRITION_LABEL

    def test_single_keyword_is_not_enough(self) -> None:
        assert guess_document_type("Glucose 95") == DocumentType.GENERIC

    def test_tabular_text_is_spreadsheet(self) -> None:
        text = "a\tb\tc\n1\t2\t3\n4\t5\t6\n"
        assert guess_document_type(text) == DocumentType.SPREADSHEET

    def test_empty_text_is_generic(self) -> None:
        assert guess_document_type("") == DocumentType.GENERIC
