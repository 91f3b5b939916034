"""웹훅 서명 검증 (HMAC-SHA256, base64)"""
import base64
import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def compute_signature(raw: bytes, secret: str) -> str:
    """원본 바이트에 대한 base64 HMAC-SHA256 서명 계산"""

    digest = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(raw: Optional[bytes], signature: Optional[str], secret: Optional[str]) -> bool:
    """원본 본문 기준으로 서명을 검증한다.

    본문, 서명 헤더, 시크릿 중 하나라도 없으면 False (fail closed).
    JSON 재직렬화 결과가 아니라 수신한 바이트 그대로 서명해야 한다.
    """

    if not raw:
        logger.warning("[WEBHOOK] empty body; signature check failed")
        return False

    if not signature:
        logger.warning("[WEBHOOK] missing signature header")
        return False

    if not secret:
        logger.error("[WEBHOOK] webhook secret is not configured")
        return False

    expected = compute_signature(raw, secret)
    if hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8")):
        return True

    logger.error("[WEBHOOK] signature mismatch (len=%s)", len(raw))
    return False
