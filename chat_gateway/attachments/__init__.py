from .normalizer import AttachmentNormalizer, extract_pdf_text

__all__ = ["AttachmentNormalizer", "extract_pdf_text"]
