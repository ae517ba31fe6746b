"""
Database Schemas for the reseller commerce app

Each Pydantic model maps to a MongoDB collection.

Collections:
- user
- products
- product_categories
- promotions
- orders
- purchase_transactions
- purchase_history
- stock_adjustments
- suppliers
- operational_expenses
- bank_accounts
- whatsapp_contacts
- notifications
- cart
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from currency import parse_currency
from database import now

ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Delivered", "Cancelled")
PAYMENT_STATUSES = ("Paid", "Unpaid")
CANCELLABLE_STATUSES = ("Pending", "Processing")
SALE_STATUSES = ("Shipped", "Delivered")

OrderStatus = Literal["Pending", "Processing", "Shipped", "Delivered", "Cancelled"]
PaymentStatus = Literal["Paid", "Unpaid"]
Role = Literal["admin", "reseller"]


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    phone: Optional[str] = Field(None, description="Phone / WhatsApp number")
    position: Optional[str] = Field(None, description="Job title for staff")
    role: Role = Field("reseller", description="admin | reseller")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "products"
    """
    name: str = Field(..., description="Product name")
    sku: str = Field(..., description="Stock keeping unit")
    category: str = Field("Uncategorized", description="Category name")
    price: int = Field(..., ge=0, description="Selling price in Rupiah")
    purchase_price: int = Field(0, ge=0, description="Last purchase price in Rupiah")
    stock: int = Field(0, ge=0, description="Units on hand")
    image: Optional[str] = Field(None, description="Image URL")
    description: str = Field("", description="Product description")

    @field_validator("price", "purchase_price", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return parse_currency(v)


class ProductCategory(BaseModel):
    """
    Collection name: "product_categories"
    """
    name: str = Field(..., min_length=1)


class Promotion(BaseModel):
    """
    Flash sale override of a product's display price.
    Collection name: "promotions"
    """
    product_id: str
    discount_price: int = Field(..., gt=0)
    start_date: datetime
    end_date: datetime


class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(1, ge=1)
    price: int = Field(..., ge=0)
    image: Optional[str] = None
    sku: Optional[str] = None

    @field_validator("price", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return parse_currency(v)


class CustomerDetails(BaseModel):
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    whatsapp: str = Field(..., min_length=1)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "orders"
    """
    customer: str
    customer_details: CustomerDetails
    customer_id: Optional[str] = None
    products: List[OrderItem]
    product_ids: List[str] = Field(default_factory=list)
    subtotal: int = 0
    shipping_fee: int = 0
    shipping_method: str = "expedition"
    total: int = 0
    status: OrderStatus = "Pending"
    payment_status: PaymentStatus = "Unpaid"
    payment_method: str = "bank_transfer"
    payment_proof_url: Optional[str] = None
    date: datetime
    version: int = 1


class PurchaseItem(BaseModel):
    product_id: str
    product_name: str
    quantity: int = Field(..., ge=0)
    purchase_price: int = Field(..., ge=0)


class PurchaseTransaction(BaseModel):
    """
    Collection name: "purchase_transactions"
    """
    date: datetime
    total_amount: int
    items: List[PurchaseItem]
    supplier_name: str = "General Supplier"
    payment_method: str = "cash"
    payment_status: Literal["paid", "unpaid"] = "paid"
    version: int = 1


class PurchaseHistory(BaseModel):
    """
    One row per purchased product, kept in step with its transaction.
    Collection name: "purchase_history"
    """
    product_id: str
    product_name: str
    quantity: int
    purchase_price: int
    purchase_date: datetime
    supplier_name: str
    transaction_id: str


class StockAdjustment(BaseModel):
    """
    Collection name: "stock_adjustments"
    """
    product_id: str
    product_name: str
    sku: Optional[str] = None
    type: Literal["in", "out"]
    quantity: int = Field(..., gt=0)
    reason: str
    previous_stock: int
    new_stock: int
    created_at: datetime


EXPENSE_CATEGORIES = ("supplies", "electricity", "salary", "misc")


class OperationalExpense(BaseModel):
    """
    Running costs that are not stock purchases.
    Collection name: "operational_expenses"
    """
    category: Literal["supplies", "electricity", "salary", "misc"] = Field(..., description="Cost category")
    amount: int = Field(..., gt=0, description="Amount in Rupiah")
    description: str = Field("", description="What the money was spent on")
    date: datetime = Field(default_factory=now)

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return parse_currency(v)


class Supplier(BaseModel):
    """
    Collection name: "suppliers"
    """
    name: str = Field(..., min_length=1)
    address: str = ""
    whatsapp: str = ""


class BankAccount(BaseModel):
    """
    Collection name: "bank_accounts"
    """
    bank_name: str = Field(..., min_length=1)
    account_holder: str = Field(..., min_length=1)
    account_number: str = Field(..., min_length=1)


class WhatsappContact(BaseModel):
    """
    Collection name: "whatsapp_contacts"
    """
    name: str = Field(..., min_length=1)
    number: str = Field(..., min_length=1)


class Notification(BaseModel):
    """
    Collection name: "notifications"
    """
    title: str
    body: str
    type: str
    related_id: Optional[str] = None
    is_read: bool = False
    created_at: datetime


def notification(title: str, body: str, type: str, related_id: Optional[str] = None) -> dict:
    return Notification(
        title=title, body=body, type=type, related_id=related_id, created_at=now(),
    ).model_dump()
