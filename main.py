import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError

from aggregations import (
    category_breakdown,
    monthly_series,
    plan_progress,
    recent,
    summarize,
)
from config import get_settings
from context import AppContext
from identity import IdentityError, IdentityProvider, UserProfile
from insights import generate_financial_insights
from listing import (
    SortKey,
    SortOrder,
    TransactionQuery,
    apply_query,
    paginate,
)
from models import NA_CATEGORY, TransactionType
from periods import DateRange, resolve_range
from persistence import (
    EntityKind,
    PermissionDenied,
    PersistenceAdapter,
    PersistenceError,
    RecordNotFound,
    validate_category_choice,
)
from schemas import (
    CategoryIn,
    FinancialPlanIn,
    FinancialPlanPatch,
    ProfileUpdate,
    SignInIn,
    SignUpIn,
    TransactionIn,
    TransactionPatch,
)
from sessions import SESSION_COOKIE, decode_session, encode_session


logger = logging.getLogger(__name__)

REQUEST_FAILED_MESSAGE = "Request failed, please try again."
STREAM_KEEPALIVE_SECS = 15.0


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open(Path(__file__).with_name("pyproject.toml"), "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

router = APIRouter(prefix="/api")


def _document(item: BaseModel) -> dict:
    return item.model_dump(mode="json", by_alias=True)


def _camel(value) -> dict:
    return {to_camel(key): val for key, val in asdict(value).items()}


def _profile(profile: UserProfile) -> dict:
    return {
        "uid": profile.uid,
        "email": profile.email,
        "displayName": profile.display_name,
        "photoUrl": profile.photo_url,
        "firstName": profile.first_name,
        "isDemo": profile.is_demo,
    }


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def current_user(request: Request, context: AppContext = Depends(get_context)) -> dict:
    session = decode_session(context.settings, request.cookies.get(SESSION_COOKIE))
    if session is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    if session["demo"] and context.demo_sessions.load() is None:
        raise HTTPException(status_code=401, detail="Demo session ended")
    return session


def get_adapter(
    session: dict = Depends(current_user), context: AppContext = Depends(get_context)
) -> PersistenceAdapter:
    return context.adapter_for(session["uid"])


def require_identity(context: AppContext = Depends(get_context)) -> IdentityProvider:
    if context.identity is None:
        raise HTTPException(
            status_code=503, detail="Identity provider not configured. Use demo mode."
        )
    return context.identity


def range_from_request(
    range_slug: Optional[str] = Query(default=None, alias="range"),
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> DateRange:
    try:
        return resolve_range(range_slug, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _start_session(
    response: Response, context: AppContext, profile: UserProfile
) -> None:
    token = encode_session(context.settings, profile.uid, demo=profile.is_demo)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=context.settings.session_max_age_secs,
        httponly=True,
        samesite="lax",
    )


# Session


@router.post("/session/demo")
def start_demo(response: Response, context: AppContext = Depends(get_context)):
    profile = context.demo_sessions.start()
    _start_session(response, context, profile)
    return _profile(profile)


@router.post("/session/sign-in")
async def sign_in(
    payload: SignInIn,
    response: Response,
    context: AppContext = Depends(get_context),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        profile = await identity.sign_in(payload.email, payload.password)
    except IdentityError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    _start_session(response, context, profile)
    logger.info("signed_in: user=%s", profile.uid)
    return _profile(profile)


@router.post("/session/sign-up")
async def sign_up(
    payload: SignUpIn,
    response: Response,
    context: AppContext = Depends(get_context),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        profile = await identity.sign_up(
            payload.email, payload.password, payload.display_name
        )
    except IdentityError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _start_session(response, context, profile)
    logger.info("signed_up: user=%s", profile.uid)
    return _profile(profile)


@router.delete("/session", status_code=204)
async def sign_out(
    session: dict = Depends(current_user), context: AppContext = Depends(get_context)
):
    if session["demo"]:
        context.demo_sessions.end()
    elif context.identity is not None:
        await context.identity.sign_out(session["uid"])
    context.release(session["uid"])
    response = Response(status_code=204)
    response.delete_cookie(SESSION_COOKIE)
    return response


@router.get("/profile")
async def get_profile(
    session: dict = Depends(current_user), context: AppContext = Depends(get_context)
):
    if session["demo"]:
        profile = context.demo_sessions.load()
    else:
        identity = require_identity(context)
        profile = await identity.get_user(session["uid"])
    if profile is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return _profile(profile)


@router.patch("/profile")
async def update_profile(
    payload: ProfileUpdate,
    session: dict = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    if session["demo"]:
        profile = context.demo_sessions.update(
            display_name=payload.display_name, photo_url=payload.photo_url
        )
    else:
        identity = require_identity(context)
        try:
            profile = await identity.update_profile(
                session["uid"],
                display_name=payload.display_name,
                photo_url=payload.photo_url,
            )
        except IdentityError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _profile(profile)


# Transactions


@router.get("/transactions")
def list_transactions(
    q: str = "",
    sort: SortKey = SortKey.date,
    order: SortOrder = SortOrder.desc,
    page: int = 1,
    date_range: DateRange = Depends(range_from_request),
    adapter: PersistenceAdapter = Depends(get_adapter),
):
    query = TransactionQuery(
        search=q, date_range=date_range, sort_key=sort, sort_order=order
    )
    result = paginate(apply_query(adapter.transactions.snapshot(), query), page)
    return {
        "items": [_document(txn) for txn in result.items],
        "page": result.page,
        "perPage": result.per_page,
        "totalItems": result.total_items,
        "totalPages": result.total_pages,
    }


@router.post("/transactions", status_code=201)
async def create_transaction(
    payload: TransactionIn, adapter: PersistenceAdapter = Depends(get_adapter)
):
    try:
        validate_category_choice(
            await adapter.categories.fetch(), payload.type, payload.category
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    await adapter.transactions.add(payload)
    return Response(status_code=201)


@router.patch("/transactions/{transaction_id}", status_code=204)
async def update_transaction(
    transaction_id: str,
    payload: TransactionPatch,
    adapter: PersistenceAdapter = Depends(get_adapter),
):
    changes = payload.changes()
    if "type" in changes or "category" in changes:
        existing = next(
            (t for t in await adapter.transactions.fetch() if t.id == transaction_id),
            None,
        )
        if existing is None:
            raise HTTPException(status_code=404, detail="Transaction not found")
        try:
            validate_category_choice(
                await adapter.categories.fetch(),
                changes.get("type", existing.type),
                changes.get("category", existing.category),
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    await adapter.transactions.update(transaction_id, payload)
    return Response(status_code=204)


@router.delete("/transactions/{transaction_id}", status_code=204)
async def delete_transaction(
    transaction_id: str, adapter: PersistenceAdapter = Depends(get_adapter)
):
    await adapter.transactions.delete(transaction_id)
    return Response(status_code=204)


@router.get("/dashboard")
def dashboard(
    date_range: DateRange = Depends(range_from_request),
    adapter: PersistenceAdapter = Depends(get_adapter),
):
    transactions = [
        t for t in adapter.transactions.snapshot() if date_range.contains(t.date)
    ]
    return {
        "range": {
            "slug": date_range.slug,
            "start": date_range.start.isoformat() if date_range.start else None,
            "end": date_range.end.isoformat() if date_range.end else None,
        },
        "summary": _camel(summarize(transactions)),
        "monthly": [_camel(point) for point in monthly_series(transactions)],
        "categories": [_camel(item) for item in category_breakdown(transactions)],
        "recent": [_document(txn) for txn in recent(transactions)],
    }


# Categories


@router.get("/categories")
def list_categories(
    category_type: Optional[TransactionType] = Query(default=None, alias="type"),
    adapter: PersistenceAdapter = Depends(get_adapter),
):
    categories = adapter.categories.snapshot()
    if category_type is not None:
        categories = [
            c for c in categories if c.type == category_type or c.name == NA_CATEGORY
        ]
    return [_document(category) for category in categories]


@router.post("/categories", status_code=201)
async def create_category(
    payload: CategoryIn, adapter: PersistenceAdapter = Depends(get_adapter)
):
    try:
        await adapter.categories.add(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=201)


@router.delete("/categories/{category_id}", status_code=204)
async def delete_category(
    category_id: str, adapter: PersistenceAdapter = Depends(get_adapter)
):
    category = next(
        (c for c in await adapter.categories.fetch() if c.id == category_id), None
    )
    if category is None:
        return Response(status_code=204)
    if category.is_system:
        raise HTTPException(status_code=400, detail="System categories cannot be deleted")
    await adapter.delete_category(category.id, category.name)
    return Response(status_code=204)


# Financial plans


@router.get("/plans")
def list_plans(adapter: PersistenceAdapter = Depends(get_adapter)):
    transactions = adapter.transactions.snapshot()
    return [
        {**_document(plan), "progress": _camel(plan_progress(plan, transactions))}
        for plan in adapter.plans.snapshot()
    ]


@router.post("/plans", status_code=201)
async def create_plan(
    payload: FinancialPlanIn, adapter: PersistenceAdapter = Depends(get_adapter)
):
    await adapter.plans.add(payload)
    return Response(status_code=201)


@router.patch("/plans/{plan_id}", status_code=204)
async def update_plan(
    plan_id: str,
    payload: FinancialPlanPatch,
    adapter: PersistenceAdapter = Depends(get_adapter),
):
    await adapter.plans.update(plan_id, payload)
    return Response(status_code=204)


@router.delete("/plans/{plan_id}", status_code=204)
async def delete_plan(plan_id: str, adapter: PersistenceAdapter = Depends(get_adapter)):
    await adapter.plans.delete(plan_id)
    return Response(status_code=204)


# Insights


@router.post("/insights")
async def insights(
    adapter: PersistenceAdapter = Depends(get_adapter),
    context: AppContext = Depends(get_context),
):
    settings = context.settings
    text = await generate_financial_insights(
        await adapter.transactions.fetch(),
        context.text_generator,
        currency_code=settings.currency_code,
        currency_symbol=settings.currency_symbol,
        temperature=settings.genai_temperature,
    )
    return {"text": text}


# Live updates


@router.get("/stream/{kind}")
async def stream(
    kind: EntityKind,
    request: Request,
    adapter: PersistenceAdapter = Depends(get_adapter),
):
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str] = asyncio.Queue()

    def on_change(items: list) -> None:
        payload = json.dumps([_document(item) for item in items], ensure_ascii=False)
        loop.call_soon_threadsafe(queue.put_nowait, payload)

    unsubscribe = await asyncio.to_thread(adapter.collection(kind).subscribe, on_change)

    async def events():
        try:
            while not await request.is_disconnected():
                try:
                    payload = await asyncio.wait_for(
                        queue.get(), timeout=STREAM_KEEPALIVE_SECS
                    )
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {payload}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(events(), media_type="text/event-stream")


@router.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


def _permission_denied(request: Request, exc: PermissionDenied) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc), "alert": True})


def _record_not_found(request: Request, exc: RecordNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def _request_failed(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Request to %s failed: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": REQUEST_FAILED_MESSAGE})


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    if context is None:
        context = AppContext(get_settings())
    logging.basicConfig(level=context.settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context.create_schema()
        logger.info("Finance dashboard %s started", APP_VERSION)
        yield
        context.close()

    app = FastAPI(title="Finance Dashboard", version=APP_VERSION, lifespan=lifespan)
    app.state.context = context
    app.include_router(router)
    app.add_exception_handler(PermissionDenied, _permission_denied)
    app.add_exception_handler(RecordNotFound, _record_not_found)
    app.add_exception_handler(PersistenceError, _request_failed)
    app.add_exception_handler(SQLAlchemyError, _request_failed)
    return app
