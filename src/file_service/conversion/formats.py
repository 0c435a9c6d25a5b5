"""Format tokens and filename helpers shared by the registry and the HTTP layer."""

# Closed vocabulary probed when building the capability table and when
# answering "which formats are supported" queries.
KNOWN_FORMATS: tuple[str, ...] = (
    "jpg", "jpeg", "png", "bmp", "gif", "webp",
    "pdf", "docx", "xlsx", "pptx",
    "txt", "md",
)

MEDIA_TYPES: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "bmp": "image/bmp",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "txt": "text/plain",
    "md": "text/markdown",
}


def normalize_format(fmt: str | None) -> str:
    return (fmt or "").strip().lower()


def extract_extension(filename: str | None) -> str:
    """Return the lower-cased extension of `filename`, or "" when there is none.

    A leading dot (".bashrc") or a trailing dot ("archive.") does not count as an
    extension.
    """
    if not filename:
        return ""
    idx = filename.rfind(".")
    if 0 < idx < len(filename) - 1:
        return filename[idx + 1:].lower()
    return ""


def converted_filename(original_filename: str | None, target_format: str) -> str:
    target = normalize_format(target_format)
    if not original_filename:
        return f"converted.{target}"
    idx = original_filename.rfind(".")
    stem = original_filename[:idx] if idx > 0 else original_filename
    return f"{stem}.{target}"


def media_type_for(fmt: str) -> str:
    return MEDIA_TYPES.get(normalize_format(fmt), "application/octet-stream")
