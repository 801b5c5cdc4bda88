"""
M-Pesa（Daraja）STK Push 客户端

- OAuth 取令牌：Basic(consumer_key:consumer_secret)
- STK Push：密码 = base64(shortcode + passkey + 时间戳)，时间戳 yyyyMMddHHmmss
- 查询支付状态
- 解析支付回调
"""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import httpx

from duka.core.config import settings

logger = logging.getLogger(__name__)


class MpesaError(Exception):
    """M-Pesa 网关调用失败或返回无法识别的数据"""


def normalize_phone(phone: str) -> str:
    """07XXXXXXXX / +2547XXXXXXXX / 2547XXXXXXXX -> 2547XXXXXXXX"""
    digits = "".join(ch for ch in (phone or "") if ch.isdigit())
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif len(digits) == 9 and digits[0] in "17":
        digits = "254" + digits
    if not digits.startswith("254") or len(digits) != 12:
        raise MpesaError(f"手机号格式不正确: {phone}")
    return digits


def whole_shillings(amount) -> int:
    """Daraja 只接受整数金额，按四舍五入取整"""
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, ts: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{ts}".encode()).decode()


@dataclass
class StkPushResult:
    merchant_request_id: str
    checkout_request_id: str
    response_code: str
    response_description: str
    customer_message: str = ""


@dataclass
class CallbackResult:
    checkout_request_id: str
    merchant_request_id: str
    result_code: int
    result_desc: str
    receipt: Optional[str] = None
    amount: Optional[Decimal] = None
    phone: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.result_code == 0


def parse_callback(payload: Dict[str, Any]) -> CallbackResult:
    """解析 STK 回调：{"Body": {"stkCallback": {...}}}"""
    try:
        callback = payload["Body"]["stkCallback"]
        checkout_request_id = callback["CheckoutRequestID"]
        result_code = int(callback["ResultCode"])
    except (KeyError, TypeError, ValueError) as e:
        raise MpesaError(f"无法识别的 M-Pesa 回调: {e}") from e

    items = {}
    for item in (callback.get("CallbackMetadata") or {}).get("Item", []) or []:
        if isinstance(item, dict) and "Name" in item:
            items[item["Name"]] = item.get("Value")

    amount = items.get("Amount")
    phone = items.get("PhoneNumber")
    return CallbackResult(
        checkout_request_id=checkout_request_id,
        merchant_request_id=callback.get("MerchantRequestID", ""),
        result_code=result_code,
        result_desc=callback.get("ResultDesc", ""),
        receipt=items.get("MpesaReceiptNumber"),
        amount=Decimal(str(amount)) if amount is not None else None,
        phone=str(phone) if phone is not None else None,
    )


class MpesaClient:
    """Daraja API 客户端"""

    def __init__(
        self,
        consumer_key: str = None,
        consumer_secret: str = None,
        passkey: str = None,
        shortcode: str = None,
        callback_url: str = None,
        base_url: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.consumer_key = consumer_key if consumer_key is not None else settings.MPESA_CONSUMER_KEY
        self.consumer_secret = consumer_secret if consumer_secret is not None else settings.MPESA_CONSUMER_SECRET
        self.passkey = passkey if passkey is not None else settings.MPESA_PASSKEY
        self.shortcode = shortcode if shortcode is not None else settings.MPESA_SHORTCODE
        self.callback_url = callback_url if callback_url is not None else settings.MPESA_CALLBACK_URL
        self.base_url = (base_url or settings.MPESA_BASE_URL).rstrip("/")
        # 测试时注入 httpx.MockTransport
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.MPESA_HTTP_TIMEOUT,
            transport=self.transport,
        )

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            error_text = e.response.text[:500] if e.response.text else "无详情"
            logger.error(f"M-Pesa 接口错误 {e.response.status_code} {path}: {error_text}")
            raise MpesaError(f"M-Pesa 接口错误 {e.response.status_code}: {error_text}") from e
        except httpx.HTTPError as e:
            logger.error(f"M-Pesa 网络错误 {path}: {e}")
            raise MpesaError(f"M-Pesa 网络错误: {e}") from e
        except ValueError as e:
            raise MpesaError(f"M-Pesa 返回了非 JSON 数据: {path}") from e

    async def get_token(self, client: httpx.AsyncClient) -> str:
        auth = base64.b64encode(f"{self.consumer_key}:{self.consumer_secret}".encode()).decode()
        data = await self._request(
            client, "GET", "/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            headers={"Authorization": f"Basic {auth}"},
        )
        token = data.get("access_token")
        if not token:
            raise MpesaError("M-Pesa 未返回 access_token")
        return token

    async def stk_push(self, phone: str, amount: Decimal, account_reference: str,
                       description: str = "Payment") -> StkPushResult:
        """发起 STK Push，返回 CheckoutRequestID"""
        phone_number = normalize_phone(phone)
        ts = timestamp()
        whole_amount = whole_shillings(amount)
        body = {
            "BusinessShortCode": self.shortcode,
            "Password": stk_password(self.shortcode, self.passkey, ts),
            "Timestamp": ts,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": whole_amount,
            "PartyA": phone_number,
            "PartyB": self.shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference[:12],
            "TransactionDesc": description[:13],
        }
        async with self._client() as client:
            token = await self.get_token(client)
            data = await self._request(
                client, "POST", "/mpesa/stkpush/v1/processrequest",
                json=body, headers={"Authorization": f"Bearer {token}"},
            )

        if str(data.get("ResponseCode")) != "0" or not data.get("CheckoutRequestID"):
            raise MpesaError(data.get("ResponseDescription") or data.get("errorMessage") or "STK Push 被拒绝")

        logger.info(f"STK Push 已发起: {data['CheckoutRequestID']} 金额 {whole_amount} 手机 {phone_number}")
        return StkPushResult(
            merchant_request_id=data.get("MerchantRequestID", ""),
            checkout_request_id=data["CheckoutRequestID"],
            response_code=str(data.get("ResponseCode")),
            response_description=data.get("ResponseDescription", ""),
            customer_message=data.get("CustomerMessage", ""),
        )

    async def query_status(self, checkout_request_id: str) -> Dict[str, Any]:
        """查询 STK Push 支付状态"""
        ts = timestamp()
        body = {
            "BusinessShortCode": self.shortcode,
            "Password": stk_password(self.shortcode, self.passkey, ts),
            "Timestamp": ts,
            "CheckoutRequestID": checkout_request_id,
        }
        async with self._client() as client:
            token = await self.get_token(client)
            return await self._request(
                client, "POST", "/mpesa/stkpushquery/v1/query",
                json=body, headers={"Authorization": f"Bearer {token}"},
            )


def get_mpesa_client() -> MpesaClient:
    """FastAPI 依赖（测试中可覆盖）"""
    return MpesaClient()
