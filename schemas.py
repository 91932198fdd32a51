"""
Database Schemas

Services marketplace collections using MongoDB with Pydantic models for
validation at the request boundary. Models keep unknown fields so clients can
store extra listing or purchase details alongside the ones declared here.

Collections:
- Services: listings offered by a provider (ServiceIn)
- Purchase_Book: purchases of a listing by a customer (PurchaseIn)
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class Person(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: str = Field(..., min_length=1, description="Stored and compared exactly as sent")
    name: Optional[str] = None


class ServiceIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    serviceName: str = Field(..., min_length=1, description="Listing title")
    servicePrice: float = Field(..., ge=0, description="Listing price")
    serviceImage: Optional[str] = Field(None, description="Image URL shown on cards and banners")
    serviceProvider: Person = Field(..., description="Owner of the listing")


class PurchaseIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    serviceId: str = Field(..., min_length=1, description="Reference to Services _id as string")
    currentUser: Person = Field(..., description="Customer making the purchase")
    serviceProvider: Optional[Person] = Field(None, description="Provider of the purchased listing")
    serviceStatus: str = "pending"


class StatusUpdate(BaseModel):
    serviceStatus: str = Field(..., min_length=1)
