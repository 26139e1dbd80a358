from docinsight.templates.interpreters.nutrition_label import interpret, parse_facts
from docinsight.templates.models import FlagSeverity, TemplateKind, TemplateOptions

LABEL = (
    "Nutrition Facts\n"
    "Serving size 1 cup (228g)\n"
    "Servings Per Container 2\n"
    "Calories 250\n"
    "Total Fat 12g\n"
    "Saturated Fat 3g\n"
    "Sodium 470mg\n"
    "Total Carbohydrate 31g\n"
    "Dietary Fiber 0g\n"
    "Total Sugars 5g\n"
    "Protein 5g\n"
)


class TestParseFacts:
    def test_longer_names_claim_their_text(self) -> None:
        facts = {fact["name"]: fact for fact in parse_facts(LABEL)}
        assert facts["Saturated Fat"]["value"] == 3.0
        assert facts["Total Fat"]["value"] == 12.0
        assert facts["Calories"]["unit"] == "kcal"
        assert facts["Sodium"]["daily_value_share"] == round(470 / 2300, 4)
        assert facts["Total Sugars"]["daily_value_share"] is None

    def test_converts_grams_to_milligrams(self) -> None:
        [fact] = parse_facts("Sodium 0.5g")
        assert fact["daily_value_share"] == round(500 / 2300, 4)


class TestInterpret:
    def test_flags_high_sodium_and_low_fiber(self) -> None:
        finding = interpret(LABEL, [], TemplateOptions())

        assert finding.template_kind == TemplateKind.NUTRITION_LABEL
        assert [(f.severity, f.field) for f in finding.flags] == [
            (FlagSeverity.HIGH, "Sodium"),
            (FlagSeverity.LOW, "Dietary Fiber"),
        ]
        assert finding.flags[0].message == "High sodium: 470 mg per serving"
        assert finding.structured_fields["serving_size"] == "1 cup (228g)"
        assert finding.structured_fields["servings_per_container"] == "2"

    def test_macronutrient_chart(self) -> None:
        [hint] = interpret(LABEL, [], TemplateOptions()).visualization_hints
        assert hint.chart == "pie"
        assert hint.series == {"Total Fat": 12.0, "Total Carbohydrate": 31.0, "Protein": 5.0}

    def test_sugar_without_daily_value_uses_ceiling(self) -> None:
        finding = interpret("Total Sugars 30g", [], TemplateOptions())
        assert [(f.severity, f.field) for f in finding.flags] == [
            (FlagSeverity.HIGH, "Total Sugars")
        ]

    def test_empty_label(self) -> None:
        finding = interpret("", [], TemplateOptions())
        assert finding.structured_fields["nutrients"] == []
        assert finding.flags == []
        assert finding.recommendations == []
