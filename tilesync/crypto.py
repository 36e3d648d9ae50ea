"""
敏感字段处理：在写入存储前编码配置中的敏感字段，读取时还原。
Base64FieldCipher 只做基础混淆，不适用于高安全场景。
"""

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable

logger = logging.getLogger(__name__)


class FieldCipher(ABC):
    """处理设置对象中指定的字符串字段。"""

    @abstractmethod
    def encrypt(self, text: str) -> str:
        ...

    @abstractmethod
    def decrypt(self, text: str) -> str:
        ...

    def process_for_storage(self, obj: Dict[str, Any], field_names: Iterable[str]) -> Dict[str, Any]:
        result = dict(obj)
        for field in field_names:
            value = result.get(field)
            if value and isinstance(value, str):
                result[field] = self.encrypt(value)
        return result

    def process_from_storage(self, obj: Dict[str, Any], field_names: Iterable[str]) -> Dict[str, Any]:
        result = dict(obj)
        for field in field_names:
            value = result.get(field)
            if value and isinstance(value, str):
                result[field] = self.decrypt(value)
        return result


class Base64FieldCipher(FieldCipher):

    def encrypt(self, text: str) -> str:
        return base64.b64encode(text.encode("utf-8")).decode("ascii")

    def decrypt(self, text: str) -> str:
        try:
            return base64.b64decode(text.encode("ascii"), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeError) as e:
            # 解码失败时返回空字符串，与写入前的空值一致
            logger.error(f"解密失败: {e}")
            return ""
