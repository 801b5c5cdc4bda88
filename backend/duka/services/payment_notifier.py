"""
移动支付结果通知

按 CheckoutRequestID 订阅支付结果，回调到达时发布。
等待方拿到的是一个显式的 Future：可以设置超时，也可以被主动取消（收银员放弃等待）。
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

from duka.services.mpesa import CallbackResult

logger = logging.getLogger(__name__)

CONFIRMED = "confirmed"
FAILED = "failed"
TIMEOUT = "timeout"
CANCELLED = "cancelled"


@dataclass
class WaitOutcome:
    status: str
    result: Optional[CallbackResult] = None


def _resolve(future: asyncio.Future, value):
    if not future.done():
        future.set_result(value)


class PaymentNotifier:
    def __init__(self):
        self._waiters: Dict[str, List[asyncio.Future]] = defaultdict(list)

    def subscribe(self, checkout_request_id: str) -> asyncio.Future:
        """在当前事件循环上创建一个等待支付结果的 Future"""
        future = asyncio.get_running_loop().create_future()
        self._waiters[checkout_request_id].append(future)
        return future

    def unsubscribe(self, checkout_request_id: str, future: asyncio.Future):
        waiters = self._waiters.get(checkout_request_id)
        if not waiters:
            return
        if future in waiters:
            waiters.remove(future)
        if not waiters:
            self._waiters.pop(checkout_request_id, None)

    def waiting(self, checkout_request_id: str) -> int:
        return len(self._waiters.get(checkout_request_id, ()))

    def _deliver(self, checkout_request_id: str, value) -> int:
        waiters = self._waiters.pop(checkout_request_id, [])
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        for future in waiters:
            loop = future.get_loop()
            if loop is current:
                _resolve(future, value)
            else:
                loop.call_soon_threadsafe(_resolve, future, value)
        return len(waiters)

    def publish(self, result: CallbackResult) -> int:
        """发布支付结果，返回被唤醒的等待方数量"""
        delivered = self._deliver(result.checkout_request_id, result)
        logger.info(f"支付结果 {result.checkout_request_id}: code={result.result_code}, 通知 {delivered} 个等待方")
        return delivered

    def cancel(self, checkout_request_id: str) -> int:
        """取消该支付的所有等待"""
        cancelled = self._deliver(checkout_request_id, None)
        if cancelled:
            logger.info(f"取消等待支付 {checkout_request_id}: {cancelled} 个等待方")
        return cancelled

    async def wait(self, checkout_request_id: str, timeout: float,
                   future: Optional[asyncio.Future] = None) -> WaitOutcome:
        """
        等待支付结果

        future 可由调用方事先 subscribe 得到，避免"先查库、后订阅"之间漏掉回调
        """
        future = future or self.subscribe(checkout_request_id)
        try:
            result = await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            return WaitOutcome(TIMEOUT)
        finally:
            self.unsubscribe(checkout_request_id, future)

        if result is None:
            return WaitOutcome(CANCELLED)
        return WaitOutcome(CONFIRMED if result.success else FAILED, result)


payment_notifier = PaymentNotifier()
