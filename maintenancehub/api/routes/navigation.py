"""
api/routes/navigation.py
------------------------
GET /navigation — the sidebar sections this session may see, after role,
package and simulation rules.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from maintenancehub.dependencies import get_current_principal, require_api_scope
from maintenancehub.schemas.simulation import (
    NavigationResponse,
    NavItemRead,
    NavSectionRead,
)
from maintenancehub.services.simulation import AccessPolicy, Principal

router = APIRouter(tags=["Navigation"])


@router.get(
    "/navigation",
    response_model=NavigationResponse,
    summary="Navigation visible to the current session",
)
async def get_navigation(
    principal: Annotated[Principal, Depends(get_current_principal)],
    policy: Annotated[AccessPolicy, Depends(require_api_scope("navigation"))],
) -> NavigationResponse:
    return NavigationResponse(
        effective_role=principal.effective_role,
        package_type=policy.package_type,
        sections=[
            NavSectionRead(
                key=section.key,
                title=section.title,
                items=[NavItemRead(title=i.title, url=i.url) for i in section.items],
            )
            for section in policy.navigation()
        ],
    )
