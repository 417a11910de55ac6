"""
文件安全校验：魔数（真实类型）、大小、命名
"""
from typing import Optional

from dollyland.core.config import settings


# 扩展名 -> 文件头魔数。空列表表示纯文本类，无统一魔数，仅做扩展名白名单
_MAGIC_BY_TYPE: dict[str, list[bytes]] = {
    "pdf": [b"%PDF"],
    "docx": [b"PK\x03\x04"],  # Office Open XML 为 zip 格式
    "xlsx": [b"PK\x03\x04"],
    "pptx": [b"PK\x03\x04"],
    "txt": [],
    "md": [],
    "csv": [],
    "json": [],
    "html": [],
    "htm": [],
}

# 文本类文件若出现这些字节，基本可判定为伪装的二进制
_BINARY_MARKERS = (b"\x00", b"MZ\x90\x00", b"\x7fELF")


def get_extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def validate_filename(filename: str) -> None:
    """校验文件名：长度、禁止路径穿越、禁止危险扩展名"""
    if not filename or not filename.strip():
        raise ValueError("文件名为空")
    name = filename.strip()
    if len(name) > settings.FILE_NAME_MAX_LENGTH:
        raise ValueError(f"文件名长度不能超过 {settings.FILE_NAME_MAX_LENGTH} 个字符")
    if ".." in name or "/" in name or "\\" in name or "\x00" in name:
        raise ValueError("文件名不得包含路径或非法字符")
    ext = get_extension(name)
    if ext in settings.forbidden_file_extensions_list:
        raise ValueError(f"禁止上传该类型文件: .{ext}")


def validate_file_content(content: bytes, extension: str) -> None:
    """大小、类型白名单与魔数校验，不通过时抛 ValueError"""
    if not content:
        raise ValueError("文件内容为空")
    if len(content) > settings.MAX_FILE_SIZE:
        raise ValueError(f"文件大小超过限制（{settings.MAX_FILE_SIZE}字节）")
    ext = (extension or "").strip().lower()
    allowed = settings.allowed_file_types_list
    if ext not in allowed:
        raise ValueError(f"不支持的文件类型: {ext or '无扩展名'}，允许: {', '.join(allowed)}")
    magics: Optional[list[bytes]] = _MAGIC_BY_TYPE.get(ext)
    if not magics:
        head = content[:1024]
        if any(marker in head for marker in _BINARY_MARKERS):
            raise ValueError(f"文件真实类型与扩展名不符（扩展名为 .{ext}），已拒绝上传")
        return
    if not any(content.startswith(m) for m in magics):
        raise ValueError(f"文件真实类型与扩展名不符（扩展名为 .{ext}），可能为伪造类型，已拒绝上传")
