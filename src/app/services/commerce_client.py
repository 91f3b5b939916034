"""커머스 플랫폼 GraphQL Admin API 클라이언트"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from core.interfaces import ICommerceClient


logger = logging.getLogger(__name__)


CANCEL_SUBSCRIPTION_MUTATION = """
mutation cancelSubscription($subscriptionId: ID!) {
  subscriptionCancel(subscriptionId: $subscriptionId) {
    subscription { id status }
    userErrors { field message }
  }
}
"""

PAUSE_SUBSCRIPTION_MUTATION = """
mutation pauseSubscription($subscriptionId: ID!) {
  subscriptionPause(subscriptionId: $subscriptionId) {
    subscription { id status }
    userErrors { field message }
  }
}
"""

SCHEDULE_PAYMENT_RETRY_MUTATION = """
mutation schedulePaymentRetry($subscriptionId: ID!, $date: DateTime!) {
  subscriptionPaymentRetry(subscriptionId: $subscriptionId, retryDate: $date) {
    subscription { id status }
    userErrors { field message }
  }
}
"""

_SUBSCRIPTION_FIELDS = """
  id
  status
  createdAt
  nextBillingDate
  currencyCode
  customer { id email firstName }
  lines(first: 1) { edges { node { title currentPrice { amount currencyCode } } } }
"""

SUBSCRIPTION_QUERY = """
query subscription($id: ID!) {
  subscriptionContract(id: $id) {%s}
}
""" % _SUBSCRIPTION_FIELDS

SUBSCRIPTION_ORDERS_QUERY = """
query subscriptionOrders($id: ID!, $first: Int!) {
  subscriptionContract(id: $id) {
    id
    orders(first: $first) {
      edges {
        node {
          id
          name
          createdAt
          processedAt
          displayFulfillmentStatus
          totalPriceSet { shopMoney { amount currencyCode } }
          fulfillments { createdAt estimatedDeliveryAt deliveredAt }
        }
      }
    }
  }
}
"""

BILLING_ATTEMPTS_QUERY = """
query billingAttempts($id: ID!, $first: Int!) {
  subscriptionContract(id: $id) {
    id
    billingAttempts(first: $first) {
      edges { node { id createdAt completedAt ready errorCode errorMessage order { id } } }
    }
  }
}
"""

UPCOMING_RENEWALS_QUERY = """
query upcomingRenewals($first: Int!, $query: String!) {
  subscriptionContracts(first: $first, query: $query) {
    edges { node {%s} }
  }
}
""" % _SUBSCRIPTION_FIELDS


class CommerceAPIError(RuntimeError):
    """커머스 API 오류 (전송 오류, GraphQL errors, userErrors 모두 포함)"""

    def __init__(
        self,
        message: str,
        status_code: int,
        payload: Optional[Dict[str, Any]] = None,
        *,
        code: Optional[str] = None,
        user_errors: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}
        self.user_errors = user_errors or []
        self.code = code or self._extract_error_code()

    def _extract_error_code(self) -> Optional[str]:
        """응답 페이로드에서 오류 코드를 추출"""

        errors = self.payload.get("errors") if isinstance(self.payload, dict) else None
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            extensions = errors[0].get("extensions") or {}
            return extensions.get("code")
        if isinstance(errors, str):
            return "api_error"
        return None


class CommerceClient(ICommerceClient):
    """GraphQL Admin API 비동기 클라이언트

    조회(query)는 일시적 오류에 한해 지수 백오프로 재시도하고,
    변경(mutation)은 한 번만 전송한다. 웹훅 재전송이 유일한 재시도 경로다.
    """

    STATUS_MESSAGES: Dict[int, str] = {
        400: "커머스 API 요청 파라미터가 올바르지 않습니다.",
        401: "커머스 API 인증에 실패했습니다.",
        402: "커머스 스토어 결제 상태로 인해 요청이 거부되었습니다.",
        403: "커머스 API 접근 권한이 없습니다.",
        404: "요청한 커머스 리소스를 찾지 못했습니다.",
        423: "커머스 스토어가 잠겨 있습니다.",
        429: "커머스 API 호출이 제한되었습니다. 잠시 후 다시 시도하세요.",
        500: "커머스 API 서버 오류가 발생했습니다.",
        503: "커머스 API 서비스가 일시적으로 불가합니다.",
    }

    RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        store_domain: str,
        access_token: str,
        api_version: str = "2024-01",
        timeout: float = 10.0,
        *,
        max_retries: int = 2,
        backoff_factor: float = 0.5,
    ) -> None:
        if not access_token or not access_token.strip():
            raise ValueError("커머스 API 액세스 토큰이 설정되지 않았습니다.")
        if not store_domain or not store_domain.strip():
            raise ValueError("커머스 스토어 도메인이 설정되지 않았습니다.")

        domain = store_domain.strip().rstrip("/")
        if not domain.startswith("http"):
            domain = f"https://{domain}"

        self.access_token = access_token
        self.endpoint = f"{domain}/admin/api/{api_version}/graphql.json"
        self.timeout = timeout
        self.max_retries = max(0, int(max_retries))
        self.backoff_factor = max(0.0, float(backoff_factor))
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        """커넥션 풀 정리 (애플리케이션 종료 시)"""

        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        operation: str,
        retryable: bool,
    ) -> Dict[str, Any]:
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        body = {"query": query, "variables": variables or {}}
        max_retries = self.max_retries if retryable else 0

        for attempt in range(max_retries + 1):
            try:
                response = await self._get_client().request("POST", self.endpoint, headers=headers, json=body)
            except httpx.TimeoutException as exc:
                logger.warning(
                    "[COMMERCE] request timeout: op=%s attempt=%s error=%s",
                    operation,
                    attempt + 1,
                    exc,
                )
                if attempt == max_retries:
                    raise CommerceAPIError(
                        "커머스 API 응답 시간이 초과되었습니다.",
                        status_code=0,
                        payload={"errors": [{"message": str(exc)}]},
                        code="timeout",
                    ) from exc
                await self._sleep_backoff(attempt)
                continue
            except httpx.RequestError as exc:
                logger.warning(
                    "[COMMERCE] request network error: op=%s attempt=%s error=%s",
                    operation,
                    attempt + 1,
                    exc,
                )
                if attempt == max_retries:
                    raise CommerceAPIError(
                        "커머스 API 네트워크 오류가 발생했습니다.",
                        status_code=0,
                        payload={"errors": [{"message": str(exc)}]},
                        code="network_error",
                    ) from exc
                await self._sleep_backoff(attempt)
                continue

            if response.status_code >= 400:
                payload = self._safe_json(response)
                error = CommerceAPIError(
                    self._resolve_error_message(payload, response.status_code),
                    response.status_code,
                    payload,
                )

                if self._is_retryable_status(response.status_code) and attempt < max_retries:
                    logger.warning(
                        "[COMMERCE] request retry: op=%s status=%s code=%s attempt=%s",
                        operation,
                        response.status_code,
                        error.code,
                        attempt + 1,
                    )
                    await self._sleep_backoff(attempt)
                    continue

                logger.error(
                    "[COMMERCE] request failed: op=%s status=%s code=%s",
                    operation,
                    response.status_code,
                    error.code,
                )
                raise error

            payload = self._safe_json(response)
            if payload.get("errors"):
                logger.error("[COMMERCE] graphql errors: op=%s errors=%s", operation, payload["errors"])
                raise CommerceAPIError(
                    self._resolve_error_message(payload, response.status_code),
                    response.status_code,
                    payload,
                    code="graphql_errors",
                )

            data = payload.get("data")
            if not isinstance(data, dict):
                raise CommerceAPIError(
                    "커머스 API 응답에 data가 없습니다.",
                    response.status_code,
                    payload,
                    code="parse_error",
                )
            return data

        # 이 지점에 도달했다면 모든 재시도가 실패한 것
        raise CommerceAPIError("커머스 API 요청이 반복적으로 실패했습니다.", status_code=0)

    async def _mutate(self, root_field: str, mutation: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """mutation 실행. userErrors가 비어있지 않으면 전송 오류와 동일하게 취급"""

        data = await self._execute(mutation, variables, operation=root_field, retryable=False)
        result = data.get(root_field)
        if not isinstance(result, dict):
            raise CommerceAPIError(
                f"{root_field} 응답이 비어 있습니다.",
                status_code=200,
                payload={"data": data},
                code="parse_error",
            )

        user_errors = result.get("userErrors") or []
        if user_errors:
            messages = "; ".join(str(err.get("message")) for err in user_errors if isinstance(err, dict))
            logger.error("[COMMERCE] %s userErrors: %s", root_field, messages)
            raise CommerceAPIError(
                f"{root_field} 실패: {messages}",
                status_code=200,
                payload={"data": data},
                code="user_errors",
                user_errors=user_errors,
            )

        return result.get("subscription") or {}

    async def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """구독 해지"""

        return await self._mutate(
            "subscriptionCancel",
            CANCEL_SUBSCRIPTION_MUTATION,
            {"subscriptionId": self._contract_gid(subscription_id)},
        )

    async def pause_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """구독 일시정지"""

        return await self._mutate(
            "subscriptionPause",
            PAUSE_SUBSCRIPTION_MUTATION,
            {"subscriptionId": self._contract_gid(subscription_id)},
        )

    async def schedule_payment_retry(self, subscription_id: str, retry_date: datetime) -> Dict[str, Any]:
        """지정 시각에 결제 재시도 예약"""

        if retry_date.tzinfo is None:
            retry_date = retry_date.replace(tzinfo=timezone.utc)
        return await self._mutate(
            "subscriptionPaymentRetry",
            SCHEDULE_PAYMENT_RETRY_MUTATION,
            {
                "subscriptionId": self._contract_gid(subscription_id),
                "date": retry_date.isoformat(),
            },
        )

    async def get_subscription(self, subscription_id: str) -> Optional[Dict[str, Any]]:
        """구독 조회 (없으면 None)"""

        data = await self._execute(
            SUBSCRIPTION_QUERY,
            {"id": self._contract_gid(subscription_id)},
            operation="subscriptionContract",
            retryable=True,
        )
        node = data.get("subscriptionContract")
        return self._normalize_subscription(node) if node else None

    async def get_subscription_orders(self, subscription_id: str, first: int = 250) -> List[Dict[str, Any]]:
        """구독 과거 주문 목록"""

        data = await self._execute(
            SUBSCRIPTION_ORDERS_QUERY,
            {"id": self._contract_gid(subscription_id), "first": first},
            operation="subscriptionOrders",
            retryable=True,
        )
        contract = data.get("subscriptionContract") or {}
        return [self._normalize_order(node) for node in self._nodes(contract.get("orders"))]

    async def get_billing_attempts(self, subscription_id: str, first: int = 50) -> List[Dict[str, Any]]:
        """구독 결제 시도 이력"""

        data = await self._execute(
            BILLING_ATTEMPTS_QUERY,
            {"id": self._contract_gid(subscription_id), "first": first},
            operation="billingAttempts",
            retryable=True,
        )
        contract = data.get("subscriptionContract") or {}
        return [self._normalize_billing_attempt(node) for node in self._nodes(contract.get("billingAttempts"))]

    async def get_upcoming_renewals(self, within_days: int = 3, first: int = 100) -> List[Dict[str, Any]]:
        """N일 이내 갱신 예정인 활성 구독"""

        data = await self._execute(
            UPCOMING_RENEWALS_QUERY,
            {"first": first, "query": f"status:ACTIVE AND next_billing_date:<={within_days}d"},
            operation="subscriptionContracts",
            retryable=True,
        )
        return [self._normalize_subscription(node) for node in self._nodes(data.get("subscriptionContracts"))]

    async def _sleep_backoff(self, attempt: int) -> None:
        """재시도 전 지수 백오프 딜레이"""

        delay = self.backoff_factor * (2**attempt)
        if delay > 0:
            await asyncio.sleep(delay)

    def _is_retryable_status(self, status_code: int) -> bool:
        """HTTP 상태 코드 기준 재시도 가능 여부"""

        return status_code in self.RETRYABLE_STATUS

    def _resolve_error_message(self, payload: Dict[str, Any], status_code: int) -> str:
        """GraphQL/HTTP 오류 응답을 기반으로 메시지 결정"""

        errors = payload.get("errors") if isinstance(payload, dict) else None
        if isinstance(errors, list) and errors:
            first = errors[0]
            message = first.get("message") if isinstance(first, dict) else first
            if isinstance(message, str) and message.strip():
                return message
        if isinstance(errors, str) and errors.strip():
            return errors

        return self.STATUS_MESSAGES.get(status_code, "커머스 API 요청에 실패했습니다")

    @staticmethod
    def _contract_gid(subscription_id: str) -> str:
        value = str(subscription_id)
        if value.startswith("gid://"):
            return value
        return f"gid://shopify/SubscriptionContract/{value}"

    @staticmethod
    def _nodes(connection: Any) -> List[Dict[str, Any]]:
        if not isinstance(connection, dict):
            return []
        return [edge["node"] for edge in connection.get("edges") or [] if isinstance(edge, dict) and edge.get("node")]

    @classmethod
    def _normalize_subscription(cls, node: Dict[str, Any]) -> Dict[str, Any]:
        customer = node.get("customer") or {}
        lines = cls._nodes(node.get("lines"))
        first_line = lines[0] if lines else {}
        current_price = first_line.get("currentPrice") or {}
        return {
            "id": node.get("id"),
            "status": (node.get("status") or "").lower() or None,
            "created_at": node.get("createdAt"),
            "next_billing_date": node.get("nextBillingDate"),
            "currency": node.get("currencyCode") or current_price.get("currencyCode"),
            "price": current_price.get("amount"),
            "customer": {
                "id": customer.get("id"),
                "email": customer.get("email"),
                "first_name": customer.get("firstName"),
            },
            "line_items": [{"title": line.get("title")} for line in lines],
        }

    @staticmethod
    def _normalize_order(node: Dict[str, Any]) -> Dict[str, Any]:
        money = ((node.get("totalPriceSet") or {}).get("shopMoney")) or {}
        fulfillments = node.get("fulfillments") or []
        latest = fulfillments[-1] if fulfillments else {}
        return {
            "id": node.get("id"),
            "order_number": node.get("name"),
            "total_price": money.get("amount"),
            "currency": money.get("currencyCode"),
            "created_at": node.get("createdAt"),
            "processed_at": node.get("processedAt"),
            "fulfillment_status": (node.get("displayFulfillmentStatus") or "").lower() or None,
            "estimated_delivery_at": latest.get("estimatedDeliveryAt"),
            "delivered_at": latest.get("deliveredAt"),
        }

    @staticmethod
    def _normalize_billing_attempt(node: Dict[str, Any]) -> Dict[str, Any]:
        error_code = node.get("errorCode")
        return {
            "id": node.get("id"),
            "created_at": node.get("createdAt"),
            "completed_at": node.get("completedAt"),
            "ready": bool(node.get("ready")),
            "succeeded": bool(node.get("ready")) and not error_code and bool(node.get("order")),
            "error_code": error_code,
            "error_message": node.get("errorMessage"),
        }

    @staticmethod
    def _safe_json(response: httpx.Response) -> Dict[str, Any]:
        """JSON 파싱 실패 시 안전하게 fallback"""

        try:
            payload = response.json()
            return payload if isinstance(payload, dict) else {"data": payload}
        except Exception:
            return {"errors": [{"message": response.text}]}
