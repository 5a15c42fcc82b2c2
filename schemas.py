"""
Database Schemas for the Bike Accessories Store

Each Pydantic model corresponds to one MongoDB collection:
BikeBrand -> "bike_brand", BikeModel -> "bike_model", BikeProduct ->
"bike_product", Cart -> "cart", Coupon -> "coupon", Otp -> "otp",
Profile -> "profile", Blog -> "blog". Field names are kept camelCase because
they are also the wire format of the API.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

CouponType = Literal["Percentage", "Flat", "Special", "Festival", "First Order"]
CartStatus = Literal["active", "validated", "checkout", "completed", "ordered"]
OrderStatus = Literal["placed", "confirmed", "processing", "shipped", "delivered", "cancelled", "returned"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
PaymentMethod = Literal["online", "card", "upi", "netbanking", "cod", "wallet"]


class BikeBrand(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class BikeModel(BaseModel):
    brand: str = Field(..., description="BikeBrand id")
    name: str = Field(..., min_length=1)
    type: str
    category: str
    description: Optional[str] = None
    imageUrl: Optional[str] = None


class BikeProduct(BaseModel):
    brand: Optional[str] = Field(None, description="BikeBrand id")
    model: Optional[str] = Field(None, description="BikeModel id")
    isBikeSpecific: Optional[bool] = None
    name: str = Field(..., min_length=1)
    shortDescription: Optional[str] = None
    longDescription: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    categoryIcon: Optional[str] = None
    price: float = Field(..., ge=0, description="Price in INR")
    imageUrl: Optional[str] = None
    images: List[str] = []
    quantityAvailable: int = Field(..., ge=0)
    specifications: Optional[str] = None
    shippingAndReturn: Optional[str] = None
    isNewArrival: bool = False
    isGarageFavorite: bool = False


class Address(BaseModel):
    fullName: str
    phone: str
    addressLine1: str
    addressLine2: Optional[str] = None
    city: str
    state: str
    postalCode: str
    country: str


class CartLine(BaseModel):
    product: str
    quantity: int = Field(..., ge=0)
    price: float
    totalPrice: float


class Cart(BaseModel):
    phoneNumber: str
    items: List[CartLine] = []
    shippingAddress: Optional[Address] = None
    billingAddress: Optional[Address] = None
    subtotal: float = 0
    shippingCost: float = 0
    taxAmount: float = 0
    discountAmount: float = 0
    totalAmount: float = 0
    appliedCoupon: Optional[str] = None
    couponCode: Optional[str] = None
    status: CartStatus = "active"
    paymentStatus: PaymentStatus = "pending"
    paymentMethod: Optional[PaymentMethod] = None
    orderNumber: Optional[str] = None
    orderStatus: Optional[OrderStatus] = None
    orderDate: Optional[datetime] = None
    reservationHeld: bool = False
    version: int = 0


class Coupon(BaseModel):
    code: str = Field(..., min_length=1)
    type: CouponType
    discount: float = Field(..., gt=0)
    maxDiscount: Optional[float] = Field(None, ge=0, description="Cap for percentage coupons")
    minCartAmount: float = Field(0, ge=0)
    usageLimit: Optional[int] = Field(None, ge=1, description="None means unlimited")
    isActive: bool = True
    expiresAt: Optional[datetime] = None
    description: Optional[str] = None


class Otp(BaseModel):
    isdCode: str
    phoneNumber: str
    otp: str
    isVerified: bool = False
    failedAttempts: int = 0
    expiresAt: datetime


class OwnedBike(BaseModel):
    brand: str
    model: str


class Profile(BaseModel):
    firstName: str
    lastName: str
    isdCode: str
    phoneNumber: str
    emailId: Optional[EmailStr] = None
    address: Optional[str] = None
    notifyOffers: bool = False
    bikeOwnedByCustomer: List[OwnedBike] = []


class Blog(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    content: str = Field(..., min_length=1)
    imageUrl: Optional[str] = None
