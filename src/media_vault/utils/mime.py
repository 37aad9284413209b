"""Таблицы расширение <-> MIME и пара мелких хелперов вокруг них."""
from typing import Optional

OCTET_STREAM = "application/octet-stream"

CONTENT_TYPES = {
    "jpg": "image/jpeg", "jpeg": "image/jpeg", "png": "image/png", "gif": "image/gif",
    "webp": "image/webp", "svg": "image/svg+xml", "avif": "image/avif",
    "ico": "image/x-icon", "icon": "image/x-icon", "bmp": "image/bmp",
    "tiff": "image/tiff", "tif": "image/tiff",
    "mp4": "video/mp4", "webm": "video/webm", "ogv": "video/ogg", "avi": "video/x-msvideo",
    "mov": "video/quicktime", "wmv": "video/x-ms-wmv", "flv": "video/x-flv",
    "mkv": "video/x-matroska", "m4v": "video/x-m4v", "ts": "video/mp2t",
    "mp3": "audio/mpeg", "wav": "audio/wav", "ogg": "audio/ogg", "m4a": "audio/mp4",
    "aac": "audio/aac", "flac": "audio/flac", "wma": "audio/x-ms-wma",
    "pdf": "application/pdf", "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "rtf": "application/rtf", "txt": "text/plain", "md": "text/markdown", "csv": "text/csv",
    "html": "text/html", "htm": "text/html", "css": "text/css",
    "js": "application/javascript", "xml": "application/xml", "json": "application/json",
    "zip": "application/zip", "rar": "application/x-rar-compressed",
    "7z": "application/x-7z-compressed", "tar": "application/x-tar", "gz": "application/gzip",
    "swf": "application/x-shockwave-flash",
    "ttf": "font/ttf", "otf": "font/otf", "woff": "font/woff", "woff2": "font/woff2",
    "eot": "application/vnd.ms-fontobject",
    "ini": "text/plain", "yml": "application/yaml", "yaml": "application/yaml", "toml": "text/plain",
    "py": "text/x-python", "java": "text/x-java", "c": "text/x-c", "cpp": "text/x-c++",
    "cs": "text/x-csharp", "php": "application/x-php", "rb": "text/x-ruby", "go": "text/x-go",
    "rs": "text/x-rust", "sh": "application/x-sh", "bat": "application/x-bat",
    "sql": "application/sql",
}

EXTENSIONS = {
    "image/jpeg": "jpg", "image/jpg": "jpg", "image/png": "png", "image/gif": "gif",
    "image/webp": "webp", "image/svg+xml": "svg", "image/bmp": "bmp", "image/avif": "avif",
    "image/tiff": "tiff", "image/x-icon": "ico",
    "video/mp4": "mp4", "video/webm": "webm", "video/ogg": "ogv", "video/x-msvideo": "avi",
    "video/quicktime": "mov", "video/x-ms-wmv": "wmv", "video/x-flv": "flv",
    "video/x-matroska": "mkv", "video/x-m4v": "m4v", "video/mp2t": "ts",
    "audio/mpeg": "mp3", "audio/mp3": "mp3", "audio/ogg": "ogg", "audio/wav": "wav",
    "audio/mp4": "m4a", "audio/aac": "aac", "audio/flac": "flac", "audio/x-ms-wma": "wma",
    "application/pdf": "pdf", "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-excel": "xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "application/rtf": "rtf", "application/zip": "zip", "application/x-rar-compressed": "rar",
    "application/x-7z-compressed": "7z", "application/x-tar": "tar", "application/gzip": "gz",
    "text/plain": "txt", "text/markdown": "md", "text/csv": "csv", "text/html": "html",
    "text/css": "css", "text/javascript": "js", "application/javascript": "js",
    "application/json": "json", "application/xml": "xml",
    "font/ttf": "ttf", "font/otf": "otf", "font/woff": "woff", "font/woff2": "woff2",
    "application/vnd.ms-fontobject": "eot", OCTET_STREAM: "bin",
    "application/x-shockwave-flash": "swf",
}

# Эти типы браузер показывает сам, а не скачивает
INLINE_PREFIXES = ("image/", "video/", "audio/")


def extension_of(file_name: Optional[str]) -> str:
    if not file_name or "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[-1].lower()


def content_type_for(ext: Optional[str]) -> str:
    return CONTENT_TYPES.get((ext or "").lower().lstrip("."), OCTET_STREAM)


def extension_for(mime_type: Optional[str]) -> str:
    if not mime_type:
        return "jpg"
    return EXTENSIONS.get(mime_type.split(";", 1)[0].strip().lower(), "bin")


def guess_content_type(file_name: Optional[str], declared: Optional[str] = None) -> str:
    """Заявленный тип, если он осмысленный; иначе по расширению."""
    if declared and declared.split(";", 1)[0].strip().lower() != OCTET_STREAM:
        return declared
    return content_type_for(extension_of(file_name))


def is_inline(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.lower().startswith(INLINE_PREFIXES)


def format_size(size: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{value:.2f} {units[unit]}"
