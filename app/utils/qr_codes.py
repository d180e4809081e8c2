# app/utils/qr_codes.py
"""
QR code payload formatting and PNG rendering.
"""

import asyncio
from pathlib import Path
from typing import Any, List

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from PIL import Image

from app.core.exceptions import ValidationError
from app.core.jobs import WorkContext, WorkItem
from app.schemas.job import WorkOutput
from app.schemas.utilities import QRCodeConfig

NAMESPACE = "qr-code"
JOB_PREFIX = "qr-bulk"


def wifi_payload(value: str) -> str:
    """``SSID:password[:security]`` -> WIFI: payload."""
    parts = value.split(":")
    if len(parts) < 2:
        raise ValidationError(
            "Invalid WiFi configuration format. Expected: SSID:password:security"
        )
    ssid, password = parts[0], parts[1]
    security = parts[2] if len(parts) > 2 and parts[2] else "WPA"
    return f"WIFI:T:{security};S:{ssid};P:{password};H:false;;"


def contact_payload(value: str) -> str:
    """``name:phone[:email[:organization]]`` -> vCard 3.0."""
    parts = value.split(":")
    if len(parts) < 2:
        raise ValidationError(
            "Invalid contact configuration format. Expected: name:phone:email:organization"
        )
    name, phone = parts[0], parts[1]
    email = parts[2] if len(parts) > 2 else ""
    organization = parts[3] if len(parts) > 3 else ""
    return "\n".join(
        [
            "BEGIN:VCARD",
            "VERSION:3.0",
            f"FN:{name}",
            f"TEL:{phone}",
            f"EMAIL:{email}",
            f"ORG:{organization}",
            "END:VCARD",
        ]
    )


def format_content(config: QRCodeConfig) -> str:
    content = config.content
    if config.type == "wifi":
        return wifi_payload(content)
    if config.type == "contact":
        return contact_payload(content)
    if config.type == "email":
        return f"mailto:{content}"
    if config.type == "sms":
        return f"sms:{content}"
    if config.type == "url" and not content.startswith("http"):
        return f"https://{content}"
    return content


def render_png(config: QRCodeConfig, target: Path) -> Path:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_M,
        box_size=10,
        border=config.margin,
    )
    qr.add_data(format_content(config))
    qr.make(fit=True)

    image = qr.make_image(fill_color=config.color.dark, back_color=config.color.light)
    image = image.get_image().convert("RGB")
    image = image.resize((config.size, config.size), Image.Resampling.NEAREST)

    target.parent.mkdir(parents=True, exist_ok=True)
    image.save(target, format="PNG")
    return target


async def qr_work(payload: QRCodeConfig, config: Any, context: WorkContext) -> WorkOutput:
    """Work function: one QR code per item config."""
    # format first so bad wifi/contact strings fail before touching disk
    format_content(payload)
    filename = f"qr-{context.index + 1:04d}.png"
    target = Path(context.work_dir) / filename
    await asyncio.to_thread(render_png, payload, target)
    return WorkOutput(
        message="QR code generated successfully",
        artifact_location=str(target),
        archive_name=filename,
        details={"type": payload.type, "size": payload.size, "format": "png"},
    )


def build_items(configs: List[QRCodeConfig]) -> List[WorkItem]:
    return [WorkItem(identity=f"qr-{i + 1}", payload=c) for i, c in enumerate(configs)]
