"""Utility functions for sanitization, validation and pagination."""

import bleach


def sanitize_question_text(text: str) -> str:
    """Sanitize question text to prevent XSS attacks.

    Allows basic formatting tags but removes script/dangerous content.
    """
    allowed_tags = ['b', 'i', 'u', 'em', 'strong', 'p', 'br', 'code', 'pre', 'ul', 'ol', 'li']
    allowed_attributes = {}

    sanitized = bleach.clean(text, tags=allowed_tags, attributes=allowed_attributes, strip=True)
    return sanitized.strip()


def sanitize_plain(text: str) -> str:
    """Strip all HTML, leaving plain text (options, feedback, titles)."""
    sanitized = bleach.clean(text, tags=[], strip=True)
    return sanitized.strip()


def validate_marks(marks: float, max_marks: float) -> bool:
    """Validate that awarded marks are within acceptable range.

    Raises:
        ValueError: If marks fall outside [0, max_marks]
    """
    if marks is None or isinstance(marks, bool):
        raise ValueError("Marks must be a number")
    if marks < 0 or marks > max_marks:
        raise ValueError(
            f"Marks {marks} out of range [0, {max_marks}]"
        )

    return True


def paginate(items: list, page: int, page_size: int) -> tuple[list, dict]:
    """Slice ``items`` for ``page`` (1-based) and describe the result."""
    total = len(items)
    total_pages = (total + page_size - 1) // page_size if total > 0 else 1
    page = min(max(page, 1), total_pages)
    start_idx = (page - 1) * page_size
    end_idx = start_idx + page_size
    meta = {
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": total_pages,
    }
    return items[start_idx:end_idx], meta
