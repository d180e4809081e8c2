# app/schemas/utilities.py
"""
Per-utility configuration records.

Every config is frozen: it is validated once before a batch starts and then
shared read-only by all work items of that batch.
"""

import re
from typing import Any, Dict, List, Literal, Optional
from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.schemas.job import CamelModel


LOWERCASE = "abcdefghijklmnopqrstuvwxyz"
UPPERCASE = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
NUMBERS = "0123456789"
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
SIMILAR_CHARS = "il1Lo0O"
AMBIGUOUS_CHARS = "{}[]()/\\~,;.<>"

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")
_SAFE_FOLDER = re.compile(r"^[\w .-]+$")


class FrozenConfig(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


# --- passwords ---


class PasswordConfig(FrozenConfig):
    length: int = Field(16, ge=4, le=128)
    include_uppercase: bool = True
    include_lowercase: bool = True
    include_numbers: bool = True
    include_symbols: bool = False
    exclude_similar: bool = False
    exclude_ambiguous: bool = False
    custom_chars: Optional[str] = None
    count: int = Field(1, ge=1, le=1000)

    @property
    def charset(self) -> str:
        chars = ""
        if self.include_lowercase:
            chars += LOWERCASE
        if self.include_uppercase:
            chars += UPPERCASE
        if self.include_numbers:
            chars += NUMBERS
        if self.include_symbols:
            chars += SYMBOLS
        if self.custom_chars:
            chars += self.custom_chars
        if self.exclude_similar:
            chars = "".join(c for c in chars if c not in SIMILAR_CHARS)
        if self.exclude_ambiguous:
            chars = "".join(c for c in chars if c not in AMBIGUOUS_CHARS)
        # keep first occurrence order, drop duplicates from custom_chars
        return "".join(dict.fromkeys(chars))

    @model_validator(mode="after")
    def validate_charset(self) -> "PasswordConfig":
        if not self.charset:
            raise ValueError("At least one character type must be selected")
        return self


class PasswordBulkRequest(FrozenConfig):
    config: PasswordConfig
    job_id: Optional[str] = None


# --- QR codes ---


QRType = Literal["url", "text", "wifi", "contact", "email", "sms"]


class QRColor(FrozenConfig):
    dark: str = "#000000"
    light: str = "#FFFFFF"

    @field_validator("dark", "light")
    @classmethod
    def validate_hex(cls, v: str) -> str:
        if not _HEX_COLOR.match(v):
            raise ValueError(f"Invalid color: {v}")
        return v


class QRCodeConfig(FrozenConfig):
    type: QRType
    content: str = Field(..., min_length=1, max_length=2048)
    size: int = Field(256, ge=64, le=2048)
    margin: int = Field(4, ge=0, le=20)
    color: QRColor = Field(default_factory=QRColor)


class QRCodeBulkRequest(FrozenConfig):
    configs: List[QRCodeConfig] = Field(default_factory=list, max_length=1000)
    job_id: Optional[str] = None
    max_concurrent: Optional[int] = Field(None, ge=1, le=100)


# --- images ---


ImageFormat = Literal["jpeg", "png", "webp"]
ImageFit = Literal["cover", "contain", "fill", "inside", "outside"]


class ImageResizerConfig(FrozenConfig):
    width: Optional[int] = Field(None, ge=1, le=10000)
    height: Optional[int] = Field(None, ge=1, le=10000)
    maintain_aspect_ratio: bool = True
    quality: int = Field(90, ge=1, le=100)
    format: ImageFormat = "jpeg"
    fit: ImageFit = "cover"

    @property
    def effective_fit(self) -> ImageFit:
        if not self.maintain_aspect_ratio and self.width and self.height:
            return "fill"
        return self.fit


# --- file conversion ---


DocumentFormat = Literal["txt", "pdf", "docx"]


class FileConverterConfig(FrozenConfig):
    output_format: DocumentFormat


# --- document fetcher ---


class DocumentFetcherConfig(FrozenConfig):
    max_concurrent: int = Field(20, ge=1, le=100)
    timeout: Optional[float] = Field(None, gt=0, le=300)
    auto_organize: bool = True
    column_mapping: Dict[str, str] = Field(default_factory=dict)

    @field_validator("column_mapping")
    @classmethod
    def validate_folders(cls, v: Dict[str, str]) -> Dict[str, str]:
        for column, folder in v.items():
            if not folder or folder in (".", "..") or not _SAFE_FOLDER.match(folder):
                raise ValueError(f"Invalid folder name for column '{column}': {folder!r}")
        return v


class DocumentFetcherRequest(FrozenConfig):
    data: List[Dict[str, Any]]
    config: DocumentFetcherConfig = Field(default_factory=DocumentFetcherConfig)
    job_id: Optional[str] = None
