import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from bson import ObjectId

from auth import COOKIE_NAME, Identity, TokenService, cookie_options, ensure_owner, require_identity
from database import MarketplaceStore, connect
from logging_config import configure_logging
from schemas import PurchaseIn, ServiceIn, StatusUpdate
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


def get_store(request: Request) -> MarketplaceStore:
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    return doc


def insert_result(res) -> Dict[str, Any]:
    return {"acknowledged": res.acknowledged, "insertedId": str(res.inserted_id)}


def update_result(res) -> Dict[str, Any]:
    upserted = res.upserted_id
    return {
        "acknowledged": res.acknowledged,
        "matchedCount": res.matched_count,
        "modifiedCount": res.modified_count,
        "upsertedId": str(upserted) if upserted is not None else None,
    }


def delete_result(res) -> Dict[str, Any]:
    return {"acknowledged": res.acknowledged, "deletedCount": res.deleted_count}


def store_failure(label: str, message: str, exc: Exception) -> HTTPException:
    logger.error("%s: %s", label, exc)
    return HTTPException(status_code=500, detail=message)


@router.get("/", response_class=PlainTextResponse)
def read_root():
    return "Services Marketplace server is up and running"


@router.get("/test")
def test_database(store: MarketplaceStore = Depends(get_store), settings: Settings = Depends(get_app_settings)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": settings.DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        store.ping()
        response["collections"] = store.collection_names()
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"❌ Not reachable: {str(e)[:80]}"
    return response


# ---------- AUTH ----------
@router.post("/jwt")
def issue_token(
    request: Request,
    response: Response,
    claims: Dict[str, Any] = Body(...),
    settings: Settings = Depends(get_app_settings),
):
    tokens: TokenService = request.app.state.tokens
    token = tokens.issue(claims)
    response.set_cookie(COOKIE_NAME, token, **cookie_options(settings))
    return {"success": True}


@router.post("/logout")
def logout(response: Response, settings: Settings = Depends(get_app_settings)):
    response.delete_cookie(COOKIE_NAME, **cookie_options(settings))
    return {"success": True}


# ---------- SERVICES ----------
@router.post("/add-service", dependencies=[Depends(require_identity)])
def add_service(service: ServiceIn, store: MarketplaceStore = Depends(get_store)):
    try:
        return insert_result(store.add_service(service.model_dump()))
    except Exception as e:
        raise store_failure("Add service", "Failed to add service", e)


@router.get("/banner")
def banner(store: MarketplaceStore = Depends(get_store)):
    try:
        return [serialize_doc(d) for d in store.banner_services()]
    except Exception as e:
        raise store_failure("Banner", "Failed to get banner services", e)


@router.get("/popular-services")
def popular_services(store: MarketplaceStore = Depends(get_store)):
    try:
        return [serialize_doc(d) for d in store.popular_services()]
    except Exception as e:
        raise store_failure("Popular services", "Failed to get popular services", e)


@router.get("/all-services")
def all_services(
    search: Optional[str] = Query(None, description="Case-insensitive match on serviceName"),
    store: MarketplaceStore = Depends(get_store),
):
    try:
        return [serialize_doc(d) for d in store.search_services(search)]
    except Exception as e:
        raise store_failure("All services", "Failed to get services", e)


@router.get("/service-details/{service_id}")
def service_details(service_id: str, store: MarketplaceStore = Depends(get_store)):
    try:
        return serialize_doc(store.get_service(service_id))
    except Exception as e:
        raise store_failure("Service details", "Failed to get service details", e)


@router.get("/manage-service")
def manage_service(
    email: Optional[str] = Query(None),
    identity: Identity = Depends(require_identity),
    store: MarketplaceStore = Depends(get_store),
):
    ensure_owner(identity, email)
    try:
        return [serialize_doc(d) for d in store.services_by_provider(email)]
    except Exception as e:
        raise store_failure("Manage service", "Failed to get your services", e)


@router.delete("/manage-service/{service_id}")
def delete_service(
    service_id: str,
    email: Optional[str] = Query(None),
    identity: Identity = Depends(require_identity),
    store: MarketplaceStore = Depends(get_store),
):
    ensure_owner(identity, email)
    try:
        return delete_result(store.delete_service(service_id, email))
    except Exception as e:
        raise store_failure("Delete service", "Failed to delete service", e)


@router.put("/update-service/{service_id}")
def update_service(
    service_id: str,
    service: ServiceIn,
    identity: Identity = Depends(require_identity),
    store: MarketplaceStore = Depends(get_store),
):
    ensure_owner(identity, service.serviceProvider.email)
    try:
        return update_result(store.replace_service(service_id, service.model_dump()))
    except Exception as e:
        raise store_failure("Update service", "Failed to update service", e)


# ---------- PURCHASES ----------
@router.post("/add-purchase", dependencies=[Depends(require_identity)])
def add_purchase(purchase: PurchaseIn, store: MarketplaceStore = Depends(get_store)):
    try:
        if store.find_purchase(purchase.currentUser.email, purchase.serviceId):
            raise HTTPException(status_code=400, detail="Already purchased")
        return insert_result(store.add_purchase(purchase.model_dump()))
    except HTTPException:
        raise
    except Exception as e:
        raise store_failure("Add purchase", "Failed to add purchase", e)


@router.get("/booked-service")
def booked_service(
    email: Optional[str] = Query(None),
    identity: Identity = Depends(require_identity),
    store: MarketplaceStore = Depends(get_store),
):
    ensure_owner(identity, email)
    try:
        return [serialize_doc(d) for d in store.purchases_by_customer(email)]
    except Exception as e:
        raise store_failure("Booked service", "Failed to get booked services", e)


@router.get("/service-todo")
def service_todo(
    email: Optional[str] = Query(None),
    identity: Identity = Depends(require_identity),
    store: MarketplaceStore = Depends(get_store),
):
    ensure_owner(identity, email)
    try:
        return [serialize_doc(d) for d in store.purchases_by_provider(email)]
    except Exception as e:
        raise store_failure("Service to-do", "Failed to get service to-do list", e)


@router.patch("/service-todo-update-status/{purchase_id}")
def update_service_status(
    purchase_id: str,
    payload: StatusUpdate,
    identity: Identity = Depends(require_identity),
    store: MarketplaceStore = Depends(get_store),
):
    if not identity.email:
        raise HTTPException(status_code=403, detail="Forbidden Access")
    try:
        return update_result(store.update_purchase_status(purchase_id, payload.serviceStatus, identity.email))
    except Exception as e:
        raise store_failure("Update status", "Failed to update service status", e)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[MarketplaceStore] = None,
    token_service: Optional[TokenService] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = None
        if app.state.store is None:
            client = connect(settings)
            app.state.store = MarketplaceStore(client[settings.DATABASE_NAME])
        try:
            yield
        finally:
            if client is not None:
                client.close()
                app.state.store = None

    app = FastAPI(title="Services Marketplace API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.tokens = token_service or TokenService(
        settings.ACCESS_TOKEN_SECRET, settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().PORT)
