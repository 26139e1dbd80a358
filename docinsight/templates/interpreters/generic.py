from docinsight.recognition.models import TextBlock
from docinsight.templates.models import TemplateFinding, TemplateKind, TemplateOptions


def interpret(
    text: str, blocks: list[TextBlock], options: TemplateOptions
) -> TemplateFinding:
    """Passthrough: every document gets a finding, even with nothing to extract."""
    _ = text, blocks, options
    return TemplateFinding(template_kind=TemplateKind.GENERIC)
