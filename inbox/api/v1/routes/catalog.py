from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.api.v1.deps import get_admin_principal, get_principal
from inbox.api.v1.errors import SERVICE_ERRORS, raise_for_service_error
from inbox.core.db import get_db_session
from inbox.core.security import Principal
from inbox.schemas.assignment import TagResponse
from inbox.schemas.catalog import CreateCatalogEntryRequest, DepartmentResponse
from inbox.services.catalog_service import CatalogService

router = APIRouter()


async def get_catalog_service(
    session: AsyncSession = Depends(get_db_session),
) -> CatalogService:
    return CatalogService(session=session)


@router.get("/tags", response_model=list[TagResponse])
async def list_tags(
    service: CatalogService = Depends(get_catalog_service),
    _: Principal = Depends(get_principal),
) -> list[TagResponse]:
    return [TagResponse.model_validate(tag) for tag in await service.list_tags()]


@router.post("/tags", response_model=TagResponse)
async def create_tag(
    payload: CreateCatalogEntryRequest,
    service: CatalogService = Depends(get_catalog_service),
    _: Principal = Depends(get_admin_principal),
) -> TagResponse:
    try:
        tag = await service.create_tag(payload.name, payload.color, payload.display_order)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return TagResponse.model_validate(tag)


@router.get("/departments", response_model=list[DepartmentResponse])
async def list_departments(
    service: CatalogService = Depends(get_catalog_service),
    _: Principal = Depends(get_principal),
) -> list[DepartmentResponse]:
    departments = await service.list_departments()
    return [DepartmentResponse.model_validate(department) for department in departments]


@router.post("/departments", response_model=DepartmentResponse)
async def create_department(
    payload: CreateCatalogEntryRequest,
    service: CatalogService = Depends(get_catalog_service),
    _: Principal = Depends(get_admin_principal),
) -> DepartmentResponse:
    try:
        department = await service.create_department(
            payload.name, payload.color, payload.display_order
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return DepartmentResponse.model_validate(department)
