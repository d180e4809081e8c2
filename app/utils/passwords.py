# app/utils/passwords.py
"""
Password generation, strength scoring and bulk export files.
"""

import csv
import io
import json
import math
import re
import secrets
from typing import Any, Dict, List

from app.core.jobs import WorkContext, WorkItem
from app.schemas.job import WorkItemResult, WorkOutput, utc_now
from app.schemas.utilities import PasswordConfig

NAMESPACE = "password-generator"
JOB_PREFIX = "pwd-bulk"

_REPEATS = re.compile(r"(.)\1{2,}")
_SEQUENCES = re.compile(r"123|abc|qwe|asd|zxc", re.IGNORECASE)


def create_password(config: PasswordConfig) -> str:
    charset = config.charset
    return "".join(secrets.choice(charset) for _ in range(config.length))


def analyze_strength(password: str) -> Dict[str, Any]:
    score = 0
    feedback: List[str] = []

    if len(password) >= 8:
        score += 1
    else:
        feedback.append("Use at least 8 characters")
    if len(password) >= 12:
        score += 1
    if len(password) >= 16:
        score += 1

    if re.search(r"[a-z]", password):
        score += 1
    else:
        feedback.append("Include lowercase letters")
    if re.search(r"[A-Z]", password):
        score += 1
    else:
        feedback.append("Include uppercase letters")
    if re.search(r"[0-9]", password):
        score += 1
    else:
        feedback.append("Include numbers")
    if re.search(r"[^a-zA-Z0-9]", password):
        score += 1
    else:
        feedback.append("Include special characters")

    if not _REPEATS.search(password):
        score += 1
    else:
        feedback.append("Avoid repeating characters")
    if not _SEQUENCES.search(password):
        score += 1
    else:
        feedback.append("Avoid common sequences")

    if score <= 3:
        level = "weak"
    elif score <= 5:
        level = "fair"
    elif score <= 7:
        level = "good"
    elif score <= 9:
        level = "strong"
    else:
        level = "very-strong"

    return {"score": score, "level": level, "feedback": feedback}


def calculate_entropy(password: str) -> float:
    """Bits, estimated from the distinct characters actually used."""
    unique = len(set(password))
    if unique <= 1:
        return 0.0
    return len(password) * math.log2(unique)


def generate_password(config: PasswordConfig) -> Dict[str, Any]:
    password = create_password(config)
    return {
        "password": password,
        "strength": analyze_strength(password),
        "entropy": round(calculate_entropy(password), 2),
        "generatedAt": utc_now().isoformat(),
    }


def password_work(payload: Any, config: PasswordConfig, context: WorkContext) -> WorkOutput:
    """Work function: one password, no file artifact."""
    return WorkOutput(message="Password generated successfully", details=generate_password(config))


def build_items(config: PasswordConfig) -> List[WorkItem]:
    return [WorkItem(identity=f"pwd-{i + 1}", payload=i) for i in range(config.count)]


def export_files(config: PasswordConfig):
    """Archive extras for a bulk job: txt, csv and json listings of the successes."""

    def build(job_id: str, results: List[WorkItemResult]) -> Dict[str, bytes]:
        ok = [r for r in results if r.status == "success"]

        txt = "\n".join(r.details["password"] for r in ok)

        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(["Password", "Strength Score", "Strength Level", "Entropy", "Generated At"])
        for r in ok:
            writer.writerow(
                [
                    r.details["password"],
                    r.details["strength"]["score"],
                    r.details["strength"]["level"],
                    f"{r.details['entropy']:.2f}",
                    r.details["generatedAt"],
                ]
            )

        document = {
            "metadata": {
                "jobId": job_id,
                "config": config.to_payload(),
                "totalPasswords": len(ok),
            },
            "passwords": [r.details for r in ok],
        }

        return {
            "passwords.txt": txt.encode("utf-8"),
            "passwords.csv": buf.getvalue().encode("utf-8"),
            "passwords.json": json.dumps(document, indent=2).encode("utf-8"),
        }

    return build
