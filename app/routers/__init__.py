from .document_fetcher import router as document_fetcher_router
from .file_converter import router as file_converter_router
from .image_resizer import router as image_resizer_router
from .password_generator import router as password_generator_router
from .qr_code import router as qr_code_router
from .realtime import router as realtime_router

__all__ = [
    "document_fetcher_router",
    "file_converter_router",
    "image_resizer_router",
    "password_generator_router",
    "qr_code_router",
    "realtime_router",
]
