"""
收银计算与收银状态机

金额一律使用 Decimal，按两位小数四舍五入（ROUND_HALF_UP）。
折扣和税都按小计计算：合计 = 小计 - 折扣 + 税。
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from duka.core.config import settings

_CENT = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_rate: Decimal
    discount: Decimal
    tax_rate: Decimal
    tax: Decimal
    total: Decimal


def resolve_rates(organization=None) -> Tuple[Decimal, Decimal]:
    """(折扣率, 税率)：组织设置优先，否则取系统默认"""
    if organization is None:
        return settings.DEFAULT_DISCOUNT_RATE, settings.DEFAULT_TAX_RATE
    return (
        organization.discount_rate_or(settings.DEFAULT_DISCOUNT_RATE),
        organization.tax_rate_or(settings.DEFAULT_TAX_RATE),
    )


def compute_totals(lines: Iterable[Tuple[Decimal, int]], discount_rate, tax_rate) -> Totals:
    """
    计算购物车金额

    lines: (单价, 数量)
    """
    discount_rate = Decimal(str(discount_rate))
    tax_rate = Decimal(str(tax_rate))
    subtotal = Decimal("0")
    for price, quantity in lines:
        if quantity < 0 or Decimal(str(price)) < 0:
            raise ValueError("单价和数量不能为负数")
        subtotal += Decimal(str(price)) * quantity
    subtotal = money(subtotal)
    discount = money(subtotal * discount_rate)
    tax = money(subtotal * tax_rate)
    return Totals(
        subtotal=subtotal,
        discount_rate=discount_rate,
        discount=discount,
        tax_rate=tax_rate,
        tax=tax,
        total=subtotal - discount + tax,
    )


def compute_change(amount_paid, total) -> Decimal:
    """找零 = 实收 - 应收，最低为 0"""
    return max(Decimal("0.00"), money(Decimal(str(amount_paid)) - Decimal(str(total))))


# ===== 收银状态机 =====

IDLE = "idle"
METHOD_SELECTED = "method_selected"
PROCESSING = "processing"
SUCCESS = "success"
FAILED = "failed"

TRANSITIONS = {
    IDLE: {METHOD_SELECTED},
    METHOD_SELECTED: {METHOD_SELECTED, PROCESSING, IDLE},
    PROCESSING: {SUCCESS, FAILED},
    SUCCESS: {IDLE},
    FAILED: {METHOD_SELECTED},
}


class InvalidTransition(Exception):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"收银状态不能从 {current} 变为 {target}")


@dataclass
class CartItem:
    product_id: int
    variant_id: Optional[int]
    name: str
    unit_price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return money(self.unit_price * self.quantity)


@dataclass
class CheckoutSession:
    """
    一次收银会话：购物车 + 状态

    显式传递，不使用全局状态；支付成功后清空购物车。
    """
    state: str = IDLE
    payment_method: Optional[str] = None
    failure_reason: Optional[str] = None
    items: Dict[Tuple[int, Optional[int]], CartItem] = field(default_factory=dict)

    def add_item(self, item: CartItem):
        if self.state == PROCESSING:
            raise InvalidTransition(self.state, "edit_cart")
        key = (item.product_id, item.variant_id)
        existing = self.items.get(key)
        if existing:
            existing.quantity += item.quantity
        else:
            self.items[key] = item

    def remove_item(self, product_id: int, variant_id: Optional[int] = None):
        if self.state == PROCESSING:
            raise InvalidTransition(self.state, "edit_cart")
        self.items.pop((product_id, variant_id), None)

    @property
    def lines(self) -> List[CartItem]:
        return list(self.items.values())

    def totals(self, discount_rate, tax_rate) -> Totals:
        return compute_totals(((i.unit_price, i.quantity) for i in self.lines), discount_rate, tax_rate)

    def _go(self, target: str):
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, target)
        self.state = target

    def select_method(self, method: str):
        self._go(METHOD_SELECTED)
        self.payment_method = method
        self.failure_reason = None

    def begin_processing(self):
        if not self.items:
            raise InvalidTransition(self.state, PROCESSING)
        self._go(PROCESSING)

    def succeed(self):
        self._go(SUCCESS)
        self.items.clear()

    def fail(self, reason: str):
        self._go(FAILED)
        self.failure_reason = reason

    def reset(self):
        self._go(IDLE)
        self.payment_method = None
