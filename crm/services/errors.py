"""Domain errors raised by services and mapped to HTTP responses in crm.main."""


class DocumentError(Exception):
    code = "DOCUMENT_ERROR"


class UnsupportedTemplateTypeError(DocumentError):
    code = "UNSUPPORTED_TEMPLATE_TYPE"

    def __init__(self, mime_type: str):
        self.mime_type = mime_type
        super().__init__(
            f"Unsupported template type '{mime_type}' (only .docx and .xlsx are supported)"
        )


class TemplateRenderError(DocumentError):
    code = "TEMPLATE_RENDER_FAILED"
