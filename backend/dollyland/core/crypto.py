"""
敏感字段加解密（服务商 API Key），使用 Fernet 对称加密
"""
import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from dollyland.core.config import settings


def _fernet() -> Fernet:
    key = settings.ENCRYPTION_KEY.strip()
    if not key:
        # 未单独配置时由 SECRET_KEY 派生 32 字节密钥
        digest = hashlib.sha256(settings.SECRET_KEY.encode("utf-8")).digest()
        key = base64.urlsafe_b64encode(digest).decode("ascii")
    return Fernet(key.encode("ascii"))


def encrypt_secret(plain: str) -> str:
    """加密明文，返回可入库的字符串"""
    return _fernet().encrypt(plain.encode("utf-8")).decode("ascii")


def decrypt_secret(token: str) -> str:
    """解密入库密文；密钥不匹配或被篡改时抛 ValueError"""
    try:
        return _fernet().decrypt(token.encode("ascii")).decode("utf-8")
    except (InvalidToken, ValueError) as e:
        raise ValueError("密钥解密失败") from e


def mask_secret(plain: str) -> str:
    """仅保留末 4 位用于展示"""
    if not plain:
        return ""
    return "****" + plain[-4:]
